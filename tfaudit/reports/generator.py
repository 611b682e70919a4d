"""
Report generator for audit results.

Generates:
- Text reports for human reading (styled with rich on a terminal)
- JSON reports for machine processing

Both renderings are pure functions of the AuditReport: no timestamps or
durations, so unchanged input yields byte-identical output.
"""

import json
from itertools import groupby
from typing import Optional

import typer
from rich.console import Console
from rich.text import Text

from ..core.models import AuditReport, Finding, Severity

SEVERITY_STYLES = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
}


class ReportGenerator:
    """Генератор отчётов аудита."""

    def __init__(self, console: Optional[Console] = None):
        """
        Args:
            console: Console для вывода (по умолчанию stdout)
        """
        self.console = console or Console(highlight=False)

    def render_json(self, report: AuditReport) -> str:
        """
        Генерация JSON отчёта.

        Ключи отсортированы, чтобы повторный прогон давал идентичный вывод.
        """
        return json.dumps(report.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)

    def build_text(self, report: AuditReport) -> Text:
        """Текстовый отчёт: находки по модулям, затем сводка."""
        text = Text()
        text.append(f"tfaudit {report.command}: {report.root}\n", style="bold")

        if not report.findings:
            text.append("\nNo findings.\n", style="green")

        for module, findings in groupby(report.findings, key=lambda f: f.module):
            text.append(f"\nModule: {module}\n", style="bold")
            for finding in findings:
                self._append_finding(text, finding)

        text.append("\nSummary: ", style="bold")
        text.append(
            ", ".join(f"{report.counts.get(s.value, 0)} {s.value}" for s in reversed(list(Severity)))
        )
        text.append(f" (total {report.total}), {report.modules_audited} modules audited\n")
        text.append("Exit code: ")
        text.append(str(report.exit_code), style="bold red" if report.exit_code else "bold green")
        text.append("\n")

        if report.incomplete_modules:
            text.append("\nIncomplete modules:\n", style="bold red")
            for incomplete in report.incomplete_modules:
                text.append(f"  {incomplete.module}: {incomplete.reason}\n")

        return text

    def render_text(self, report: AuditReport) -> str:
        return self.build_text(report).plain

    def print_report(self, report: AuditReport, output_format: str = "text") -> None:
        """Вывести отчёт в stdout в нужном формате."""
        if output_format == "json":
            typer.echo(self.render_json(report))
        else:
            self.console.print(self.build_text(report), soft_wrap=True, end="")

    def _append_finding(self, text: Text, finding: Finding) -> None:
        text.append("  ")
        text.append(f"{finding.severity.value.upper():<7}", style=SEVERITY_STYLES[finding.severity])
        text.append(f" {finding.rule_id}", style="bold")
        text.append(f"  {finding.location}")
        if finding.resource_ref:
            text.append(f"  {finding.resource_ref}", style="dim")
        text.append(f"\n      {finding.message}\n")
