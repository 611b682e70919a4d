"""
CLI интерфейс tfaudit.

Команды:
- audit-validations      Подключение validation-ресурсов через depends_on
- audit-errors           Качество error_message
- audit-optional-fields  Null-safety выражений
- audit-ci               Всё вышеперечисленное плюс диагностика графа
- matrix                 Матрица main-ресурс x validation-ресурс

Exit codes: 0 нет находок на уровне порога, 1 есть, 2 ошибка входных данных.
"""

import asyncio
import logging
import signal
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from . import __version__
from .checkers import (
    ErrorMessageQualityChecker,
    GraphDiagnosticsChecker,
    NullSafetyChecker,
    ValidationEnforcementChecker,
)
from .config import AuditConfig
from .core.base_checker import BaseChecker
from .core.errors import AuditInputError
from .core.models import AuditReport, Severity
from .orchestrator import AuditOrchestrator, AuditRun
from .reports.aggregator import aggregate
from .reports.generator import ReportGenerator
from .reports.matrix import build_matrix, print_matrix, render_matrix_json

EXIT_INPUT_ERROR = 2

app = typer.Typer(
    name="tfaudit",
    help="Static audit of Terraform modules: validation enforcement, error messages, null safety.",
    no_args_is_help=True,
)
console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


def setup_logging(verbose: bool = False):
    """Настроить логирование (в stderr, чтобы stdout оставался отчётом)."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
        force=True,
    )


def build_checkers(command: str, config: AuditConfig, root: Path) -> List[BaseChecker]:
    """Checkers для подкоманды."""
    if command == "audit-validations":
        return [ValidationEnforcementChecker(config, config.load_exceptions(root))]
    if command == "audit-errors":
        return [ErrorMessageQualityChecker(config)]
    if command == "audit-optional-fields":
        return [NullSafetyChecker(config)]
    return [
        ValidationEnforcementChecker(config, config.load_exceptions(root)),
        ErrorMessageQualityChecker(config),
        NullSafetyChecker(config),
        GraphDiagnosticsChecker(config),
    ]


def load_config(
    path: Optional[Path],
    output_format: Optional[OutputFormat] = None,
    fail_on: Optional[Severity] = None,
    exceptions: Optional[Path] = None,
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> AuditConfig:
    """
    Собрать конфигурацию: опции CLI поверх TFAUDIT_* и .env.

    Raises:
        AuditInputError: конфигурация невалидна
    """
    overrides: Dict[str, Any] = {}
    if path is not None:
        overrides["path"] = path
    if output_format is not None:
        overrides["output_format"] = output_format.value
    if fail_on is not None:
        overrides["fail_on"] = fail_on
    if exceptions is not None:
        overrides["exceptions_file"] = exceptions
    if max_workers is not None:
        overrides["max_workers"] = max_workers
    if timeout is not None:
        overrides["run_timeout_seconds"] = timeout
    try:
        return AuditConfig(**overrides)
    except ValidationError as e:
        raise AuditInputError(f"Invalid configuration: {e}") from e


async def _run_with_signals(orchestrator: AuditOrchestrator, root: Path) -> AuditRun:
    """Ctrl+C отменяет прогон, но готовые модули остаются в отчёте."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        # Windows или не главный поток: остаётся обычный KeyboardInterrupt
        installed = False
    try:
        return await orchestrator.run(root)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def run_audit(command: str, config: AuditConfig) -> AuditReport:
    """
    Выполнить аудит и собрать отчёт.

    Raises:
        AuditInputError: путь не существует, нет файлов модулей, файл нечитаем
    """
    root = config.resolve_root()
    checkers = build_checkers(command, config, root)
    orchestrator = AuditOrchestrator(config, checkers)

    logger.info(f"Starting {command} on {root}")
    run = asyncio.run(_run_with_signals(orchestrator, root))

    return aggregate(
        run.results,
        fail_on=config.fail_on,
        command=command,
        root=str(config.path),
        incomplete=run.incomplete,
        modules_audited=len(run.modules),
    )


def _audit_command(
    command: str,
    path: Optional[Path],
    output_format: Optional[OutputFormat],
    fail_on: Optional[Severity],
    exceptions: Optional[Path],
    max_workers: Optional[int],
    timeout: Optional[float],
    verbose: bool,
    default_fail_on: Severity = Severity.ERROR,
) -> None:
    setup_logging(verbose)
    try:
        config = load_config(path, output_format, fail_on, exceptions, max_workers, timeout)
        if fail_on is None and "fail_on" not in config.model_fields_set:
            config.fail_on = default_fail_on
        report = run_audit(command, config)
    except AuditInputError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    ReportGenerator(console).print_report(report, config.output_format)
    raise typer.Exit(report.exit_code)


# === Options ===

PATH_OPTION = typer.Option(None, "--path", "-p", help="Корень аудита (по умолчанию текущая директория)")
FORMAT_OPTION = typer.Option(None, "--format", "-f", help="Формат отчёта: text или json")
FAIL_ON_OPTION = typer.Option(None, "--fail-on", help="Минимальная серьёзность для exit code 1")
EXCEPTIONS_OPTION = typer.Option(None, "--exceptions", help="JSON allow-list модулей без enforcement")
MAX_WORKERS_OPTION = typer.Option(None, "--max-workers", min=1, help="Число параллельных воркеров")
TIMEOUT_OPTION = typer.Option(None, "--timeout", min=0, help="Общий дедлайн прогона в секундах (0 = без дедлайна)")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Подробное логирование в stderr")


@app.command("audit-validations")
def audit_validations(
    path: Optional[Path] = PATH_OPTION,
    output_format: Optional[OutputFormat] = FORMAT_OPTION,
    fail_on: Optional[Severity] = FAIL_ON_OPTION,
    exceptions: Optional[Path] = EXCEPTIONS_OPTION,
    max_workers: Optional[int] = MAX_WORKERS_OPTION,
    timeout: Optional[float] = TIMEOUT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Проверить, что validation-ресурсы подключены через depends_on."""
    _audit_command("audit-validations", path, output_format, fail_on, exceptions, max_workers, timeout, verbose)


@app.command("audit-errors")
def audit_errors(
    path: Optional[Path] = PATH_OPTION,
    output_format: Optional[OutputFormat] = FORMAT_OPTION,
    fail_on: Optional[Severity] = FAIL_ON_OPTION,
    exceptions: Optional[Path] = EXCEPTIONS_OPTION,
    max_workers: Optional[int] = MAX_WORKERS_OPTION,
    timeout: Optional[float] = TIMEOUT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Проверить качество error_message (what / why / how)."""
    _audit_command("audit-errors", path, output_format, fail_on, exceptions, max_workers, timeout, verbose)


@app.command("audit-optional-fields")
def audit_optional_fields(
    path: Optional[Path] = PATH_OPTION,
    output_format: Optional[OutputFormat] = FORMAT_OPTION,
    fail_on: Optional[Severity] = FAIL_ON_OPTION,
    exceptions: Optional[Path] = EXCEPTIONS_OPTION,
    max_workers: Optional[int] = MAX_WORKERS_OPTION,
    timeout: Optional[float] = TIMEOUT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Проверить null-safety: merge() и проверки на пустоту."""
    _audit_command("audit-optional-fields", path, output_format, fail_on, exceptions, max_workers, timeout, verbose)


@app.command("audit-ci")
def audit_ci(
    path: Optional[Path] = PATH_OPTION,
    output_format: Optional[OutputFormat] = FORMAT_OPTION,
    fail_on: Optional[Severity] = FAIL_ON_OPTION,
    exceptions: Optional[Path] = EXCEPTIONS_OPTION,
    max_workers: Optional[int] = MAX_WORKERS_OPTION,
    timeout: Optional[float] = TIMEOUT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Полный аудит для CI (по умолчанию --fail-on warning)."""
    _audit_command(
        "audit-ci", path, output_format, fail_on, exceptions, max_workers, timeout, verbose,
        default_fail_on=Severity.WARNING,
    )


@app.command()
def matrix(
    path: Optional[Path] = PATH_OPTION,
    output_format: Optional[OutputFormat] = FORMAT_OPTION,
    max_workers: Optional[int] = MAX_WORKERS_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Показать матрицу зависимостей main-ресурсов от validation-ресурсов."""
    setup_logging(verbose)
    try:
        config = load_config(path, output_format, max_workers=max_workers)
        root = config.resolve_root()
        orchestrator = AuditOrchestrator(config, [])
        graphs = asyncio.run(orchestrator.collect_graphs(root))
    except AuditInputError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(EXIT_INPUT_ERROR)

    matrices = [build_matrix(graph) for graph in graphs]
    if config.output_format == OutputFormat.JSON.value:
        typer.echo(render_matrix_json(matrices))
    else:
        print_matrix(matrices, console)


@app.command()
def version():
    """Показать версию."""
    typer.echo(f"tfaudit {__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
