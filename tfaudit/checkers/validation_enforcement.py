"""
Validation-Enforcement checker.

Checks:
- Every validation resource declares at least one precondition
- Every validation resource is wired into the module through depends_on
- Every main resource of a module with validations depends on one of them
"""

from typing import List, Optional, Sequence

from ..config import AuditConfig, EnforcementException, find_exception
from ..core.base_checker import BaseChecker
from ..core.models import (
    DEAD_VALIDATION,
    EMPTY_VALIDATION,
    PARTIAL_ENFORCEMENT,
    Finding,
    Severity,
)
from ..graph.builder import DependencyGraph, address
from ..hcl.ast import ParsedModule


class ValidationEnforcementChecker(BaseChecker):
    """Проверка того, что validation-ресурсы действительно участвуют в плане."""

    rule_ids = (DEAD_VALIDATION, EMPTY_VALIDATION, PARTIAL_ENFORCEMENT)

    def __init__(self, config: AuditConfig, exceptions: Sequence[EnforcementException] = ()):
        super().__init__(name="ValidationEnforcement", timeout_seconds=config.checker_timeout_seconds)
        self.config = config
        self.exceptions = list(exceptions)

    def evaluate(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        findings: List[Finding] = []
        if not graph.validations:
            return findings

        exception = find_exception(self.exceptions, module.path)
        if exception:
            self.logger.debug(f"{module.path} is allow-listed: {exception.reason}")

        findings.extend(self.check_empty_validations(module, graph))
        findings.extend(self.check_dead_validations(module, graph, exception))
        findings.extend(self.check_partial_enforcement(module, graph, exception))
        return findings

    def check_empty_validations(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        """Validation-ресурс без единого precondition ничего не проверяет."""
        findings = []
        for key in sorted(graph.validations):
            block = graph.nodes[key]
            if block.preconditions:
                continue
            findings.append(self.create_finding(
                module,
                Severity.ERROR,
                EMPTY_VALIDATION,
                f"Validation resource {block.address} declares no precondition blocks, "
                f"so it asserts nothing. Add a lifecycle precondition with a condition "
                f"and an error_message.",
                location=block.location,
                resource_ref=block.address,
            ))
        return findings

    def check_dead_validations(
        self,
        module: ParsedModule,
        graph: DependencyGraph,
        exception: Optional[EnforcementException],
    ) -> List[Finding]:
        """
        Validation-ресурс без входящих depends_on рёбер.

        Terraform вычисляет его preconditions независимо от main-ресурсов,
        поэтому невалидный ввод не блокирует их создание.
        """
        findings = []
        for key in graph.validations_without_enforcement():
            block = graph.nodes[key]
            if exception:
                severity = Severity.INFO
                message = (
                    f"Validation resource {block.address} is not referenced by any depends_on "
                    f"(module is allow-listed: {exception.reason})"
                )
            else:
                severity = Severity.ERROR
                message = (
                    f"Validation resource {block.address} is never enforced: no resource in "
                    f"module '{module.path}' lists it in depends_on, so invalid input does not "
                    f"block the resources it guards. Add depends_on = [{block.address}] to the "
                    f"module's main resources."
                )
            findings.append(self.create_finding(
                module,
                severity,
                DEAD_VALIDATION,
                message,
                location=block.location,
                resource_ref=block.address,
            ))
        return findings

    def check_partial_enforcement(
        self,
        module: ParsedModule,
        graph: DependencyGraph,
        exception: Optional[EnforcementException],
    ) -> List[Finding]:
        """
        Main-ресурсы, не зависящие ни от одного validation-ресурса.

        Сообщается один раз на модуль и только если хотя бы один
        validation-ресурс подключён: полностью неподключённые модули уже
        покрыты dead-validation.
        """
        enforced_validations = [v for v in sorted(graph.validations) if graph.enforcement_edges_to(v)]
        if not enforced_validations:
            return []

        unenforced = graph.unenforced_main_resources()
        if not unenforced:
            return []

        names = ", ".join(address(key) for key in unenforced)
        first = graph.nodes[unenforced[0]]
        validations = ", ".join(address(key) for key in enforced_validations)
        if exception:
            severity = Severity.INFO
            message = (
                f"Resources without a validation dependency: {names} "
                f"(module is allow-listed: {exception.reason})"
            )
        else:
            severity = Severity.WARNING
            message = (
                f"Validation is only partially enforced in module '{module.path}': {names} "
                f"do not depend on any validation resource and are created even when input "
                f"is invalid. Add depends_on = [{validations}] to each of them."
            )
        return [self.create_finding(
            module,
            severity,
            PARTIAL_ENFORCEMENT,
            message,
            location=first.location,
            resource_ref=first.address,
            unenforced=names,
        )]
