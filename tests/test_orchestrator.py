"""
Tests for AuditOrchestrator: discovery, worker pool, partial failure, deadline.
"""

import asyncio
import threading
from pathlib import Path

import pytest

from tfaudit.checkers import (
    ErrorMessageQualityChecker,
    GraphDiagnosticsChecker,
    NullSafetyChecker,
    ValidationEnforcementChecker,
)
from tfaudit.core.base_checker import BaseChecker
from tfaudit.core.errors import AuditInputError
from tfaudit.core.models import AUDIT_INCOMPLETE, DEAD_VALIDATION, INTERNAL, PARSE_ERROR, Severity
from tfaudit.hcl.parser import parse_module
from tfaudit.orchestrator import AuditOrchestrator
from tfaudit.reports.aggregator import aggregate

from conftest import DB_INSTANCE_ENFORCED, DB_VALIDATION, VARIABLES


def all_checkers(config):
    return [
        ValidationEnforcementChecker(config),
        ErrorMessageQualityChecker(config),
        NullSafetyChecker(config),
        GraphDiagnosticsChecker(config),
    ]


class SlowChecker(BaseChecker):
    """Зависает на выбранных модулях."""

    def __init__(self, slow_modules):
        super().__init__(name="Slow", timeout_seconds=60)
        self.slow_modules = set(slow_modules)

    async def run(self, module, graph):
        if module.path in self.slow_modules:
            await asyncio.sleep(60)
        return []

    def evaluate(self, module, graph):
        return []


class ExplodingChecker(BaseChecker):
    """Падает на модуле "modules/bad"."""

    def __init__(self):
        super().__init__(name="Exploding", timeout_seconds=5)

    def evaluate(self, module, graph):
        if module.path == "modules/bad":
            raise KeyError("unexpected shape")
        return []


# ═══════════════════════════════════════════════════════
# DISCOVERY
# ═══════════════════════════════════════════════════════

class TestDiscovery:

    def test_modules_are_directories_with_tf_files(self, config, write_module, tmp_path):
        write_module(".", {"main.tf": 'resource "aws_s3_bucket" "root" {\n}\n'})
        write_module("modules/db", {"main.tf": DB_INSTANCE_ENFORCED, "README.md": "# db"})
        write_module("modules/empty", {"notes.txt": "nothing"})
        write_module("modules/db/.terraform/cache", {"main.tf": 'resource "x_y" "z" {\n}\n'})

        tasks = AuditOrchestrator(config, []).discover_modules(tmp_path)

        assert [t.module for t in tasks] == [".", "modules/db"]
        assert [p.name for p in tasks[1].files] == ["main.tf"]

    @pytest.mark.asyncio
    async def test_no_module_files_is_input_error(self, config, tmp_path):
        (tmp_path / "notes.txt").write_text("nothing")
        with pytest.raises(AuditInputError):
            await AuditOrchestrator(config, []).run(tmp_path)


# ═══════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════

class TestRun:

    @pytest.mark.asyncio
    async def test_all_modules_audited(self, config, write_module, tmp_path):
        write_module("modules/db", {"validation.tf": DB_VALIDATION})
        write_module("modules/app", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})

        run = await AuditOrchestrator(config, all_checkers(config)).run(tmp_path)

        assert sorted(r.module for r in run.results) == ["modules/app", "modules/db"]
        assert run.incomplete == []
        db = next(r for r in run.results if r.module == "modules/db")
        assert [f.rule_id for f in db.findings] == [DEAD_VALIDATION]
        assert db.findings[0].location.file == "modules/db/validation.tf"

    @pytest.mark.asyncio
    async def test_parse_error_does_not_stop_the_module(self, config, write_module, tmp_path):
        write_module("modules/db", {
            "validation.tf": DB_VALIDATION,
            "broken.tf": 'resource "aws_db_instance" "main" {\n  instance_class = \n}\n',
        })
        write_module("modules/app", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n  bucket = var.name\n}\n'})

        run = await AuditOrchestrator(config, all_checkers(config)).run(tmp_path)
        report = aggregate(run.results, Severity.ERROR, incomplete=run.incomplete)

        rules = [(f.module, f.rule_id) for f in report.findings]
        assert ("modules/db", PARSE_ERROR) in rules
        assert ("modules/db", DEAD_VALIDATION) in rules
        assert rules.count(("modules/db", PARSE_ERROR)) == 1
        parse_error = next(f for f in report.findings if f.rule_id == PARSE_ERROR)
        assert parse_error.location.file == "modules/db/broken.tf"
        assert parse_error.location.line == 2
        assert parse_error.severity == Severity.ERROR
        db = next(r for r in run.results if r.module == "modules/db")
        assert (db.files_parsed, db.files_failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_non_utf8_file_is_a_parse_error(self, config, write_module, tmp_path):
        directory = write_module("modules/db", {"main.tf": DB_INSTANCE_ENFORCED, "vars.tf": VARIABLES})
        (directory / "latin1.tf").write_bytes(b'# caf\xe9\nresource "a_b" "c" {\n}\n')

        run = await AuditOrchestrator(config, []).run(tmp_path)

        findings = run.results[0].findings
        assert [f.rule_id for f in findings] == [PARSE_ERROR]
        assert findings[0].location.file == "modules/db/latin1.tf"

    @pytest.mark.asyncio
    async def test_unreadable_file_is_fatal(self, config, write_module, tmp_path, monkeypatch):
        write_module("modules/db", {"main.tf": DB_INSTANCE_ENFORCED})
        original = Path.read_text

        def read_text(self, *args, **kwargs):
            if self.name == "main.tf":
                raise PermissionError(13, "Permission denied")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(Path, "read_text", read_text)

        with pytest.raises(AuditInputError, match="Permission denied"):
            await AuditOrchestrator(config, []).run(tmp_path)

    @pytest.mark.asyncio
    async def test_checker_crash_is_isolated(self, config, write_module, tmp_path):
        write_module("modules/bad", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        write_module("modules/good", {"validation.tf": DB_VALIDATION})

        checkers = [ExplodingChecker(), ValidationEnforcementChecker(config)]
        run = await AuditOrchestrator(config, checkers).run(tmp_path)

        by_module = {r.module: [f.rule_id for f in r.findings] for r in run.results}
        assert by_module["modules/bad"] == [INTERNAL]
        assert by_module["modules/good"] == [DEAD_VALIDATION]

    @pytest.mark.asyncio
    async def test_single_worker_processes_every_module(self, config, write_module, tmp_path):
        for name in ("a", "b", "c", "d"):
            write_module(f"modules/{name}", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        config.max_workers = 1

        run = await AuditOrchestrator(config, all_checkers(config)).run(tmp_path)

        assert len(run.results) == 4

    @pytest.mark.asyncio
    async def test_parsing_runs_off_the_event_loop(self, config, write_module, tmp_path, monkeypatch):
        write_module("modules/db", {"main.tf": DB_INSTANCE_ENFORCED})
        loop_thread = threading.get_ident()
        parse_threads = []

        def recording_parse(source):
            parse_threads.append(threading.get_ident())
            return parse_module(source)

        monkeypatch.setattr("tfaudit.orchestrator.parse_module", recording_parse)
        run = await AuditOrchestrator(config, []).run(tmp_path)

        assert [r.module for r in run.results] == ["modules/db"]
        assert parse_threads and loop_thread not in parse_threads


# ═══════════════════════════════════════════════════════
# DEADLINE AND CANCELLATION
# ═══════════════════════════════════════════════════════

class TestDeadline:

    @pytest.mark.asyncio
    async def test_deadline_marks_unfinished_modules_incomplete(self, config, write_module, tmp_path):
        write_module("modules/fast", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        write_module("modules/slow", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        config.run_timeout_seconds = 1.0
        config.max_workers = 2

        run = await AuditOrchestrator(config, [SlowChecker(["modules/slow"])]).run(tmp_path)

        assert [r.module for r in run.results] == ["modules/fast"]
        assert [m.module for m in run.incomplete] == ["modules/slow"]
        assert "deadline" in run.incomplete[0].reason

        report = aggregate(run.results, Severity.ERROR, incomplete=run.incomplete)
        assert [f.rule_id for f in report.findings] == [AUDIT_INCOMPLETE]
        assert report.findings[0].severity == Severity.ERROR
        assert report.exit_code == 1
        assert report.incomplete_modules[0].module == "modules/slow"

    @pytest.mark.asyncio
    async def test_queued_modules_are_incomplete_too(self, config, write_module, tmp_path):
        for name in ("a", "b", "c"):
            write_module(f"modules/{name}", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        config.run_timeout_seconds = 0.5
        config.max_workers = 1

        run = await AuditOrchestrator(config, [SlowChecker(["modules/a"])]).run(tmp_path)

        assert run.results == []
        assert [m.module for m in run.incomplete] == ["modules/a", "modules/b", "modules/c"]

    @pytest.mark.asyncio
    async def test_explicit_cancellation_keeps_finished_modules(self, config, write_module, tmp_path):
        write_module("modules/fast", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        write_module("modules/slow", {"main.tf": 'resource "aws_s3_bucket" "logs" {\n}\n'})
        config.max_workers = 2
        orchestrator = AuditOrchestrator(config, [SlowChecker(["modules/slow"])])

        asyncio.get_running_loop().call_later(0.5, orchestrator.cancel)
        run = await orchestrator.run(tmp_path)

        assert [r.module for r in run.results] == ["modules/fast"]
        assert [(m.module, m.reason) for m in run.incomplete] == [("modules/slow", "audit cancelled")]
