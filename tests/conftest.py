"""
Pytest configuration and fixtures.

Использование:
    pytest tests/ -v
"""

import textwrap
from pathlib import Path
from typing import Dict, Tuple

import pytest

from tfaudit.config import AuditConfig
from tfaudit.graph.builder import DependencyGraph, ValidationClassifier, build_graph
from tfaudit.hcl.ast import ParsedModule, SourceFile, SourceModule
from tfaudit.hcl.parser import parse_module


# ═══════════════════════════════════════════════════════
# SAMPLE MODULES
# ═══════════════════════════════════════════════════════

DB_VALIDATION = """
resource "terraform_data" "db_business_validations" {
  lifecycle {
    precondition {
      condition     = contains(["prod", "dev"], var.tier)
      error_message = "tier (${var.tier}) must be one of [prod, dev]; set var.tier = 'prod' in .tfvars"
    }
  }
}
"""

DB_INSTANCE_ENFORCED = """
resource "aws_db_instance" "main" {
  instance_class = "db.t3.micro"
  tags           = merge(local.defaults, coalesce(var.overrides, {}))

  depends_on = [terraform_data.db_business_validations]
}
"""

DB_INSTANCE_UNSAFE = """
resource "aws_db_instance" "main" {
  instance_class = "db.t3.micro"
  tags           = merge(local.defaults, var.overrides)

  depends_on = [terraform_data.db_business_validations]
}
"""

VARIABLES = """
variable "tier" {
  type = string
}

variable "overrides" {
  type    = map(string)
  default = {}
}

locals {
  defaults = { team = "platform" }
}
"""


def dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture
def write_module(tmp_path: Path):
    """Фабрика: записать модуль {имя файла: текст} в tmp_path/<module>."""

    def _write(module: str, files: Dict[str, str]) -> Path:
        directory = tmp_path / module if module != "." else tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        for name, text in files.items():
            (directory / name).write_text(dedent(text), encoding="utf-8")
        return directory

    return _write


@pytest.fixture
def config(tmp_path: Path) -> AuditConfig:
    """Конфигурация по умолчанию с корнем в tmp_path и без .env."""
    return AuditConfig(_env_file=None, path=tmp_path)


def parse_source(files: Dict[str, str], module: str = "modules/db") -> ParsedModule:
    source = SourceModule(
        path=module,
        files=[SourceFile(path=f"{module}/{name}", text=dedent(text)) for name, text in files.items()],
    )
    parsed, errors = parse_module(source)
    assert not errors, errors
    return parsed


def graph_for(files: Dict[str, str], module: str = "modules/db") -> Tuple[ParsedModule, DependencyGraph]:
    parsed = parse_source(files, module)
    return parsed, build_graph(parsed, ValidationClassifier())
