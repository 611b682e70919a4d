"""
Core data models for the audit engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# === Rule identifiers ===
DEAD_VALIDATION = "dead-validation"
EMPTY_VALIDATION = "empty-validation"
PARTIAL_ENFORCEMENT = "partial-enforcement"
LOW_QUALITY_ERROR_MESSAGE = "low-quality-error-message"
UNSAFE_MERGE_ARGUMENT = "unsafe-merge-argument"
NULL_SAFETY_GAP = "null-safety-gap"
DANGLING_REFERENCE = "dangling-reference"
REFERENCE_CYCLE = "reference-cycle"
DUPLICATE_DECLARATION = "duplicate-declaration"
PARSE_ERROR = "parse-error"
AUDIT_INCOMPLETE = "audit-incomplete"
INTERNAL = "internal"


class Severity(str, Enum):
    """Уровень серьёзности находки."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, threshold: "Severity") -> bool:
        """True, если находка этого уровня достигает порога."""
        return self.rank >= threshold.rank


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


@dataclass(frozen=True, order=True)
class SourceLocation:
    """Позиция в исходном файле (путь относительно корня аудита)."""

    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if not self.file:
            return "<module>"
        if not self.line:
            return self.file
        return f"{self.file}:{self.line}:{self.column}"

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass(frozen=True)
class Finding:
    """Находка, обнаруженная в ходе аудита."""

    severity: Severity
    rule_id: str
    module: str
    message: str
    location: SourceLocation = field(default_factory=SourceLocation)
    resource_ref: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = ()

    def sort_key(self) -> Tuple:
        """
        Ключ детерминированной сортировки.

        (module, severity desc, rule_id, location) плюс resource_ref и message,
        чтобы порядок не зависел от порядка завершения воркеров.
        """
        return (
            self.module,
            -self.severity.rank,
            self.rule_id,
            self.location,
            self.resource_ref or "",
            self.message,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Преобразовать в словарь для JSON."""
        return {
            "severity": self.severity.value,
            "ruleId": self.rule_id,
            "module": self.module,
            "resourceRef": self.resource_ref,
            "message": self.message,
            "location": self.location.to_dict(),
            "metadata": dict(self.metadata),
        }


@dataclass
class ModuleResult:
    """Результат аудита одного модуля (сообщение от воркера к агрегатору)."""

    module: str
    findings: List[Finding]
    files_parsed: int = 0
    files_failed: int = 0
    duration_ms: float = 0.0


@dataclass
class IncompleteModule:
    """Модуль, который не успел завершиться."""

    module: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"module": self.module, "reason": self.reason}


@dataclass
class AuditReport:
    """Итоговый отчёт аудита."""

    command: str
    root: str
    findings: List[Finding]
    counts: Dict[str, int]
    exit_code: int
    modules_audited: int
    incomplete_modules: List[IncompleteModule] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.findings)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразовать в словарь для JSON."""
        return {
            "findings": [finding.to_dict() for finding in self.findings],
            "summary": {
                "counts": dict(self.counts),
                "total": self.total,
                "exitCode": self.exit_code,
                "modulesAudited": self.modules_audited,
                "incompleteModules": [m.to_dict() for m in self.incomplete_modules],
            },
        }

    def findings_for(self, module: str) -> List[Finding]:
        return [f for f in self.findings if f.module == module]
