"""
Null-Safety checker.

Checks:
- merge() arguments that are bare references to possibly-null values
- Non-empty checks (length(x) > 0, x != "") on possibly-null values
- lookup() on a possibly-null map without a default
"""

from typing import Iterator, List, Optional, Set

from ..config import AuditConfig
from ..core.base_checker import BaseChecker
from ..core.models import NULL_SAFETY_GAP, UNSAFE_MERGE_ARGUMENT, Finding, Severity
from ..graph.builder import DependencyGraph
from ..hcl.ast import (
    Expression,
    FunctionCall,
    Literal,
    Operation,
    ParsedModule,
    Reference,
    iter_block_expressions,
    render,
    walk,
)

_COMPARISON_OPS = frozenset({"==", "!=", ">", ">=", "<", "<="})
_LENGTH_FUNCTIONS = frozenset({"length"})


class NullSafetyChecker(BaseChecker):
    """Проверка обращения с потенциально null значениями."""

    rule_ids = (UNSAFE_MERGE_ARGUMENT, NULL_SAFETY_GAP)

    def __init__(self, config: AuditConfig):
        super().__init__(name="NullSafety", timeout_seconds=config.checker_timeout_seconds)
        self.config = config
        self.nullable_roots = frozenset(config.nullable_roots)
        self.null_safe_functions = frozenset(config.null_safe_functions)
        self.normalizing_functions = frozenset(config.normalizing_functions)

    def evaluate(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        non_nullable = _non_nullable_variables(module)
        findings = []
        for block in module.blocks:
            for expr in iter_block_expressions(block):
                for node in walk(expr):
                    findings.extend(self.check_node(module, block.address, node, non_nullable))
        return findings

    def check_node(
        self,
        module: ParsedModule,
        owner: str,
        node: Expression,
        non_nullable: Set[str],
    ) -> Iterator[Finding]:
        if isinstance(node, FunctionCall) and node.name == "merge":
            for arg in node.args:
                arg = self._exposed(arg, self.null_safe_functions)
                if self._is_nullable(arg, non_nullable):
                    yield self.create_finding(
                        module,
                        Severity.WARNING,
                        UNSAFE_MERGE_ARGUMENT,
                        f"merge() in {owner} receives {arg.dotted} directly; merge fails when "
                        f"it is null. Use coalesce({arg.dotted}, {{}}) or try({arg.dotted}, {{}}).",
                        location=node.location,
                        resource_ref=owner,
                        argument=arg.dotted,
                    )

        elif isinstance(node, FunctionCall) and node.name == "lookup" and len(node.args) == 2:
            target = node.args[0]
            if self._is_nullable(target, non_nullable):
                yield self.create_finding(
                    module,
                    Severity.WARNING,
                    NULL_SAFETY_GAP,
                    f"lookup() in {owner} reads {target.dotted} without a default and fails "
                    f"when it is null or the key is missing. Add a default argument or wrap "
                    f"the map in coalesce().",
                    location=node.location,
                    resource_ref=owner,
                    expression=render(node),
                )

        elif isinstance(node, Operation) and node.op in _COMPARISON_OPS:
            subject = self._unguarded_emptiness_subject(node, non_nullable)
            if subject is not None:
                yield self.create_finding(
                    module,
                    Severity.WARNING,
                    NULL_SAFETY_GAP,
                    f"Non-empty check {render(node)} in {owner} does not normalize "
                    f"{subject.dotted}, which may be null. Use "
                    f"length(trimspace(coalesce({subject.dotted}, \"\"))) instead.",
                    location=node.location,
                    resource_ref=owner,
                    expression=render(node),
                )

    def _exposed(self, expr: Expression, safe_functions: frozenset) -> Expression:
        """
        Снять обёртки-функции, которые пропускают null дальше.

        tomap(var.x) остаётся null, если var.x null, а coalesce(var.x, {}) уже нет.
        """
        while isinstance(expr, FunctionCall) and expr.name not in safe_functions and expr.args:
            expr = expr.args[0]
        return expr

    def _is_nullable(self, expr: Expression, non_nullable: Set[str]) -> bool:
        """Голая ссылка на значение, которое может оказаться null."""
        if not isinstance(expr, Reference) or expr.root not in self.nullable_roots:
            return False
        if expr.root == "var" and len(expr.parts) > 1 and expr.parts[1] in non_nullable:
            return False
        return True

    def _unguarded_emptiness_subject(
        self,
        node: Operation,
        non_nullable: Set[str],
    ) -> Optional[Reference]:
        left, right = node.operands
        for operand, other in ((left, right), (right, left)):
            # length(var.x) > 0
            if (
                isinstance(operand, FunctionCall)
                and operand.name in _LENGTH_FUNCTIONS
                and len(operand.args) == 1
            ):
                inner = self._exposed(operand.args[0], self.normalizing_functions)
                if self._is_nullable(inner, non_nullable):
                    return inner
            # var.x != ""
            if (
                node.op in ("==", "!=")
                and isinstance(other, Literal)
                and other.value == ""
                and self._is_nullable(operand, non_nullable)
            ):
                return operand
        return None


def _non_nullable_variables(module: ParsedModule) -> Set[str]:
    """Переменные, объявленные с nullable = false."""
    names = set()
    for block in module.blocks_of_kind("variable"):
        nullable = block.attributes.get("nullable")
        if isinstance(nullable, Literal) and nullable.value is False:
            names.add(block.local_name)
    return names
