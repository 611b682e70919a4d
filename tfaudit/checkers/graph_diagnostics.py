"""
Graph diagnostics: dangling references, reference cycles, duplicate declarations.
"""

from typing import List

from ..config import AuditConfig
from ..core.base_checker import BaseChecker
from ..core.models import (
    DANGLING_REFERENCE,
    DUPLICATE_DECLARATION,
    REFERENCE_CYCLE,
    Finding,
    Severity,
)
from ..graph.builder import DependencyGraph, address
from ..hcl.ast import ParsedModule


class GraphDiagnosticsChecker(BaseChecker):
    """Структурные находки графа зависимостей (только в audit-ci)."""

    rule_ids = (DANGLING_REFERENCE, REFERENCE_CYCLE, DUPLICATE_DECLARATION)

    def __init__(self, config: AuditConfig):
        super().__init__(name="GraphDiagnostics", timeout_seconds=config.checker_timeout_seconds)
        self.config = config

    def evaluate(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        findings = []

        # Цель ссылки могла быть в файле, который не распарсился
        dangling_severity = Severity.INFO if module.has_parse_failures else Severity.WARNING
        for dangling in graph.dangling:
            findings.append(self.create_finding(
                module,
                dangling_severity,
                DANGLING_REFERENCE,
                f"{dangling.source} references {dangling.reference}, which is not declared "
                f"in module '{module.path}'",
                location=dangling.location,
                resource_ref=dangling.source,
                reference=dangling.reference,
            ))

        for cycle in graph.find_cycles():
            path = " -> ".join(address(key) for key in cycle + [cycle[0]])
            findings.append(self.create_finding(
                module,
                Severity.INFO,
                REFERENCE_CYCLE,
                f"Reference cycle: {path}",
                location=graph.nodes[cycle[0]].location,
                resource_ref=address(cycle[0]),
                cycle=path,
            ))

        for duplicate in graph.duplicates:
            findings.append(self.create_finding(
                module,
                Severity.ERROR,
                DUPLICATE_DECLARATION,
                f"{address(duplicate.key)} is declared more than once; first declaration "
                f"at {duplicate.first}",
                location=duplicate.duplicate,
                resource_ref=address(duplicate.key),
            ))

        return findings
