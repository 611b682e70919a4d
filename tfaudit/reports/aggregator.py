"""
Finding aggregator.

The single serialization point of a run: merges per-module results in any
order into one deterministically sorted report and computes the exit code.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from ..core.models import (
    AUDIT_INCOMPLETE,
    AuditReport,
    Finding,
    IncompleteModule,
    ModuleResult,
    Severity,
)


def incomplete_finding(incomplete: IncompleteModule) -> Finding:
    return Finding(
        severity=Severity.ERROR,
        rule_id=AUDIT_INCOMPLETE,
        module=incomplete.module,
        message=f"Module was not fully audited: {incomplete.reason}. Its findings are missing from this report.",
    )


def sort_findings(findings: Iterable[Finding]) -> List[Finding]:
    """Отсортировать по (module, severity desc, rule_id, location)."""
    return sorted(findings, key=Finding.sort_key)


def count_by_severity(findings: Iterable[Finding]) -> Dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity.value] += 1
    return counts


def compute_exit_code(findings: Iterable[Finding], fail_on: Severity) -> int:
    """1, если есть находка на уровне порога или выше, иначе 0."""
    return 1 if any(f.severity.at_least(fail_on) for f in findings) else 0


def aggregate(
    results: Sequence[ModuleResult],
    fail_on: Severity,
    command: str = "audit-ci",
    root: str = ".",
    incomplete: Sequence[IncompleteModule] = (),
    modules_audited: Optional[int] = None,
) -> AuditReport:
    """
    Собрать итоговый отчёт.

    Args:
        results: Результаты модулей в порядке завершения воркеров
        fail_on: Порог серьёзности для ненулевого exit code
        incomplete: Модули, не успевшие завершиться
        modules_audited: Число обнаруженных модулей (по умолчанию len(results) + len(incomplete))

    Returns:
        AuditReport, не зависящий от порядка results
    """
    findings: List[Finding] = []
    for result in results:
        findings.extend(result.findings)
    incomplete_sorted = sorted(incomplete, key=lambda m: m.module)
    findings.extend(incomplete_finding(m) for m in incomplete_sorted)

    findings = sort_findings(findings)
    if modules_audited is None:
        modules_audited = len(results) + len(incomplete_sorted)

    return AuditReport(
        command=command,
        root=root,
        findings=findings,
        counts=count_by_severity(findings),
        exit_code=compute_exit_code(findings, fail_on),
        modules_audited=modules_audited,
        incomplete_modules=incomplete_sorted,
    )
