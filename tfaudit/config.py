"""
Configuration for the audit engine.

Values come from CLI options, then ``TFAUDIT_*`` environment variables (or a
``.env`` file), then the defaults below.
"""

import fnmatch
import json
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import AuditInputError
from .core.models import Severity


DEFAULT_EXCEPTIONS_FILE = ".tfaudit-exceptions.json"


class EnforcementException(BaseModel):
    """Модуль, которому разрешено не подключать validation-ресурсы."""

    module: str = Field(min_length=1)
    reason: str = Field(min_length=1)

    def matches(self, module_path: str) -> bool:
        return module_path == self.module or fnmatch.fnmatchcase(module_path, self.module)


class AuditConfig(BaseSettings):
    """Конфигурация аудита."""

    model_config = SettingsConfigDict(env_prefix="TFAUDIT_", env_file=".env", extra="ignore")

    # === Input ===
    path: Path = Path(".")
    file_patterns: List[str] = ["*.tf"]
    exclude_dirs: List[str] = [".terraform", ".git", "node_modules", ".terragrunt-cache", "__pycache__"]

    # === Output ===
    output_format: Literal["text", "json"] = "text"
    fail_on: Severity = Severity.ERROR

    # === Execution Settings ===
    max_workers: int = Field(default=4, ge=1)
    run_timeout_seconds: float = Field(default=300.0, ge=0)  # 0 = без дедлайна
    checker_timeout_seconds: float = Field(default=30.0, gt=0)

    # === Validation enforcement ===
    validation_resource_types: List[str] = ["terraform_data", "null_resource"]
    validation_name_pattern: str = "validation"
    exceptions_file: Optional[Path] = None

    # === Error message quality ===
    min_message_tokens: int = 6
    actionable_phrases: List[str] = [
        "set", "use", "must be", "must", "should", "ensure", "provide",
        "specify", "choose", "change", "update", "add", "remove", "configure",
    ]

    # === Null safety ===
    nullable_roots: List[str] = ["var"]
    null_safe_functions: List[str] = ["coalesce", "try", "coalescelist"]
    normalizing_functions: List[str] = ["trimspace", "coalesce", "try"]

    def resolve_root(self) -> Path:
        """Корень аудита; отсутствие пути является фатальной ошибкой входа."""
        root = Path(self.path).expanduser()
        if not root.exists():
            raise AuditInputError(f"Path does not exist: {self.path}")
        if not root.is_dir():
            raise AuditInputError(f"Path is not a directory: {self.path}")
        return root.resolve()

    def is_excluded(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.exclude_dirs)

    def load_exceptions(self, root: Path) -> List[EnforcementException]:
        """
        Загрузить allow-list исключений.

        Явно заданный файл обязан существовать; файл по умолчанию опционален.
        """
        if self.exceptions_file is not None:
            path = Path(self.exceptions_file)
            if not path.is_absolute() and not path.exists():
                path = root / path
            if not path.exists():
                raise AuditInputError(f"Exceptions file not found: {self.exceptions_file}")
        else:
            path = root / DEFAULT_EXCEPTIONS_FILE
            if not path.exists():
                return []
        return load_exceptions_file(path)


_EXCEPTIONS_ADAPTER = TypeAdapter(List[EnforcementException])


def load_exceptions_file(path: Path) -> List[EnforcementException]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise AuditInputError(f"Cannot read exceptions file {path}: {e}") from e
    try:
        return _EXCEPTIONS_ADAPTER.validate_python(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise AuditInputError(f"Invalid exceptions file {path}: {e}") from e


def find_exception(exceptions: List[EnforcementException], module_path: str) -> Optional[EnforcementException]:
    for exception in exceptions:
        if exception.matches(module_path):
            return exception
    return None
