"""
Error-Message-Quality checker.

Checks that every precondition, variable validation and check assertion
explains itself: the message interpolates the value under validation and
carries corrective guidance instead of restating the condition.
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Set, Tuple

from ..config import AuditConfig
from ..core.base_checker import BaseChecker
from ..core.errors import RuleEvaluationError
from ..core.models import LOW_QUALITY_ERROR_MESSAGE, Finding, Severity, SourceLocation
from ..graph.builder import DependencyGraph
from ..hcl.ast import (
    Expression,
    FunctionCall,
    Literal,
    Operation,
    ParsedModule,
    Reference,
    TemplateExpr,
    references_in,
    render,
)

_WORD_RE = re.compile(r"[A-Za-z0-9_']+")
_FORMAT_VERB_RE = re.compile(r"%%|%[-+# 0]*(?:\d+|\*)?(?:\.\d+)?[a-zA-Z]")
_FORMAT_FUNCTIONS = ("format", "formatlist")


@dataclass(frozen=True)
class MessageCheck:
    """Одно утверждение с сообщением об ошибке, найденное в модуле."""

    owner: str
    condition: Optional[Expression]
    message: Optional[Expression]
    location: SourceLocation


@dataclass(frozen=True)
class MessageParts:
    literal_text: str
    references: Tuple[Reference, ...]
    has_interpolation: bool


class ErrorMessageQualityChecker(BaseChecker):
    """Проверка качества error_message (what / why / how)."""

    rule_ids = (LOW_QUALITY_ERROR_MESSAGE,)

    def __init__(self, config: AuditConfig):
        super().__init__(name="ErrorMessageQuality", timeout_seconds=config.checker_timeout_seconds)
        self.config = config
        self._phrase_patterns = [
            re.compile(r"\b" + re.escape(phrase.lower()) + r"\b")
            for phrase in config.actionable_phrases
        ]

    def evaluate(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        findings = []
        for check in iter_message_checks(module):
            finding = self.check_message(module, check)
            if finding is not None:
                findings.append(finding)
        return findings

    def check_message(self, module: ParsedModule, check: MessageCheck) -> Optional[Finding]:
        """
        Проверить одно сообщение.

        Returns:
            Finding или None, если сообщение достаточно информативно
        """
        suggestion = suggest_message(check.condition)

        if check.message is None:
            return self.create_finding(
                module,
                Severity.WARNING,
                LOW_QUALITY_ERROR_MESSAGE,
                f"{check.owner} declares a condition without an error_message. "
                f"Suggested: \"{suggestion}\"",
                location=check.location,
                resource_ref=check.owner,
                template="",
                suggestion=suggestion,
            )

        problems: List[str] = []
        for parts in self.message_variants(check.message):
            for problem in self.problems_with(parts, check.condition):
                if problem not in problems:
                    problems.append(problem)

        if not problems:
            return None

        template = render(check.message)
        return self.create_finding(
            module,
            Severity.WARNING,
            LOW_QUALITY_ERROR_MESSAGE,
            f"Error message of {check.owner} is low quality ({'; '.join(problems)}): "
            f"{template}. Suggested: \"{suggestion}\"",
            location=check.message.location,
            resource_ref=check.owner,
            template=template,
            suggestion=suggestion,
        )

    def message_variants(self, expr: Expression) -> List[MessageParts]:
        """
        Разобрать сообщение на литеральный текст и интерполяции.

        Условное выражение даёт два варианта: оба должны быть качественными.

        Raises:
            RuleEvaluationError: форма сообщения не поддерживается
        """
        if isinstance(expr, Literal):
            text = "" if expr.value is None else str(expr.value)
            return [MessageParts(text, (), False)]

        if isinstance(expr, TemplateExpr):
            refs: List[Reference] = []
            for part in expr.interpolations():
                refs.extend(references_in(part))
            return [MessageParts(expr.literal_text(), tuple(refs), bool(expr.interpolations()))]

        if isinstance(expr, FunctionCall) and expr.name in _FORMAT_FUNCTIONS and expr.args:
            head = self.message_variants(expr.args[0])
            extra: List[Reference] = []
            for arg in expr.args[1:]:
                extra.extend(references_in(arg))
            return [
                MessageParts(
                    _FORMAT_VERB_RE.sub(" ", parts.literal_text),
                    parts.references + tuple(extra),
                    parts.has_interpolation or len(expr.args) > 1,
                )
                for parts in head
            ]

        if isinstance(expr, Operation) and expr.op == "?:":
            _, yes, no = expr.operands
            return self.message_variants(yes) + self.message_variants(no)

        raise RuleEvaluationError(
            f"cannot interpret error_message of kind {expr.kind.value}: {render(expr)}",
            location=expr.location,
        )

    def problems_with(self, parts: MessageParts, condition: Optional[Expression]) -> Iterator[str]:
        condition_subjects: Set[Tuple[str, ...]] = set()
        if condition is not None:
            condition_subjects = {ref.subject() for ref in references_in(condition)}

        if condition_subjects:
            shows_value = any(ref.subject() in condition_subjects for ref in parts.references)
        else:
            shows_value = parts.has_interpolation
        if not shows_value:
            yield "does not interpolate the value under validation"

        words = [w.lower() for w in _WORD_RE.findall(parts.literal_text)]
        if len(words) < self.config.min_message_tokens:
            yield f"fewer than {self.config.min_message_tokens} words of guidance"

        text = parts.literal_text.lower()
        if not any(pattern.search(text) for pattern in self._phrase_patterns):
            yield "no corrective action"
        elif condition is not None and words and _is_restatement(words, condition):
            yield "restates the condition"


def iter_message_checks(module: ParsedModule) -> Iterator[MessageCheck]:
    """Все preconditions, validation-блоки переменных и assert-блоки check."""
    for block in module.blocks:
        if block.opaque:
            continue
        for pre in block.preconditions:
            yield MessageCheck(block.address, pre.condition, pre.error_message, pre.location)
        if block.kind == "variable":
            for validation in block.blocks_of("validation"):
                yield MessageCheck(
                    block.address,
                    validation.attributes.get("condition"),
                    validation.attributes.get("error_message"),
                    validation.location,
                )
        if block.kind == "check":
            for assertion in block.blocks_of("assert"):
                yield MessageCheck(
                    block.address,
                    assertion.attributes.get("condition"),
                    assertion.attributes.get("error_message"),
                    assertion.location,
                )


def _is_restatement(words: List[str], condition: Expression) -> bool:
    condition_words = {w.lower() for w in _WORD_RE.findall(render(condition))}
    return all(word in condition_words for word in words)


def suggest_message(condition: Optional[Expression]) -> str:
    """
    Предложить сообщение в порядке what / why / how.

    what: текущее значение; why: нарушенное условие; how: что исправить.
    """
    subject = "value"
    constraint = "the validation condition"
    if condition is not None:
        constraint = render(condition)
        refs = references_in(condition)
        preferred = [r for r in refs if r.root == "var"] or refs
        if preferred:
            subject = ".".join(preferred[0].subject())
    return (
        f"{subject} is ${{{subject}}}, but {constraint} is required. "
        f"Set {subject} to a value that satisfies this rule."
    )
