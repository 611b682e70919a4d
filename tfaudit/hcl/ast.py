"""
Abstract syntax tree for HCL configuration modules.

Expressions form a closed tagged variant (``ExprKind``). Every node carries a
``SourceLocation`` that is excluded from equality, so two trees parsed from
text that differs only in comments, whitespace or attribute order compare
equal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..core.models import SourceLocation


class ExprKind(Enum):
    LITERAL = "literal"
    REFERENCE = "reference"
    FUNCTION_CALL = "function_call"
    LIST = "list"
    MAP = "map"
    TEMPLATE = "template"
    OPERATION = "operation"
    FOR = "for"


LiteralValue = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Literal:
    value: LiteralValue
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.LITERAL

    def children(self) -> Tuple["Expression", ...]:
        return ()


@dataclass(frozen=True)
class Reference:
    """Обход имён: ``var.tier``, ``aws_s3_bucket.logs.arn``, ``data.x.y.id``."""

    parts: Tuple[str, ...]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.REFERENCE

    @property
    def root(self) -> str:
        return self.parts[0]

    @property
    def dotted(self) -> str:
        return ".".join(self.parts)

    def subject(self) -> Tuple[str, ...]:
        """Префикс, который идентифицирует объект (переменную, ресурс, data source)."""
        if self.root == "data":
            return self.parts[:3]
        return self.parts[:2]

    def children(self) -> Tuple["Expression", ...]:
        return ()


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple["Expression", ...]
    expand_final: bool = False
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.FUNCTION_CALL

    def children(self) -> Tuple["Expression", ...]:
        return self.args


@dataclass(frozen=True)
class ListExpr:
    items: Tuple["Expression", ...]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.LIST

    def children(self) -> Tuple["Expression", ...]:
        return self.items


@dataclass(frozen=True)
class MapExpr:
    items: Tuple[Tuple["Expression", "Expression"], ...]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.MAP

    def children(self) -> Tuple["Expression", ...]:
        out: List[Expression] = []
        for key, value in self.items:
            out.append(key)
            out.append(value)
        return tuple(out)


@dataclass(frozen=True)
class TemplateExpr:
    """Строка с интерполяциями: части либо str, либо Expression."""

    parts: Tuple[Union[str, "Expression"], ...]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.TEMPLATE

    def literal_text(self) -> str:
        """Литеральный текст, включая тела директив %{for}."""
        out = []
        for part in self.parts:
            if isinstance(part, str):
                out.append(part)
            elif isinstance(part, ForExpr) and part.directive:
                body = part.value
                if isinstance(body, TemplateExpr):
                    out.append(body.literal_text())
                elif isinstance(body, Literal) and isinstance(body.value, str):
                    out.append(body.value)
        return "".join(out)

    def interpolations(self) -> Tuple["Expression", ...]:
        return tuple(p for p in self.parts if not isinstance(p, str))

    def children(self) -> Tuple["Expression", ...]:
        return self.interpolations()


@dataclass(frozen=True)
class Operation:
    """
    Операторы и прочие составные формы.

    op: бинарный оператор ("==", "&&", "+", ...), "!"/"neg" для унарных,
    "?:" для условного выражения, "index", "attr", "splat".
    """

    op: str
    operands: Tuple["Expression", ...]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.OPERATION

    def children(self) -> Tuple["Expression", ...]:
        return self.operands


@dataclass(frozen=True)
class ForExpr:
    """
    for-выражение; directive=True для %{for} в шаблоне, тогда value
    является телом цикла (Literal или TemplateExpr).
    """

    key_var: Optional[str]
    value_var: str
    collection: "Expression"
    value: "Expression"
    key: Optional["Expression"] = None
    condition: Optional["Expression"] = None
    grouping: bool = False
    directive: bool = False
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    kind = ExprKind.FOR

    @property
    def is_object(self) -> bool:
        return self.key is not None

    @property
    def bound_names(self) -> Tuple[str, ...]:
        if self.key_var:
            return (self.key_var, self.value_var)
        return (self.value_var,)

    def children(self) -> Tuple["Expression", ...]:
        out = [self.collection]
        if self.key is not None:
            out.append(self.key)
        out.append(self.value)
        if self.condition is not None:
            out.append(self.condition)
        return tuple(out)


Expression = Union[Literal, Reference, FunctionCall, ListExpr, MapExpr, TemplateExpr, Operation, ForExpr]


def walk(expr: Expression) -> Iterator[Expression]:
    """Обойти дерево выражения в глубину (pre-order), без рекурсии."""
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children()))


def references_in(expr: Expression, bound: Tuple[str, ...] = ()) -> List[Reference]:
    """
    Собрать ссылки из выражения.

    Имена, связанные for-выражениями (и переданные в bound), пропускаются.
    """
    found: List[Reference] = []

    def visit(node: Expression, names: Tuple[str, ...]) -> None:
        if isinstance(node, Reference):
            if node.root not in names:
                found.append(node)
            return
        if isinstance(node, ForExpr):
            visit(node.collection, names)
            inner = names + node.bound_names
            for child in node.children()[1:]:
                visit(child, inner)
            return
        for child in node.children():
            visit(child, names)

    visit(expr, bound)
    return found


# === Rendering ===

_BINARY_PRECEDENCE = {
    "||": 1, "&&": 2, "==": 3, "!=": 3,
    "<": 4, ">": 4, "<=": 4, ">=": 4,
    "+": 5, "-": 5, "*": 6, "/": 6, "%": 6,
}


def _quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
    return f'"{escaped}"'


def render(expr: Expression) -> str:
    """Отрисовать выражение в канонический исходный текст."""
    if isinstance(expr, Literal):
        if expr.value is None:
            return "null"
        if isinstance(expr.value, bool):
            return "true" if expr.value else "false"
        if isinstance(expr.value, str):
            return _quote(expr.value)
        return repr(expr.value)
    if isinstance(expr, Reference):
        return expr.dotted
    if isinstance(expr, FunctionCall):
        args = ", ".join(render(a) for a in expr.args)
        return f"{expr.name}({args}{'...' if expr.expand_final else ''})"
    if isinstance(expr, ListExpr):
        return "[" + ", ".join(render(i) for i in expr.items) + "]"
    if isinstance(expr, MapExpr):
        inner = ", ".join(f"{_render_key(k)} = {render(v)}" for k, v in expr.items)
        return "{" + inner + "}"
    if isinstance(expr, TemplateExpr):
        out = []
        for part in expr.parts:
            if isinstance(part, str):
                out.append(_quote(part)[1:-1])
            elif isinstance(part, ForExpr) and part.directive:
                out.append(_render_for_directive(part))
            else:
                out.append("${" + render(part) + "}")
        return '"' + "".join(out) + '"'
    if isinstance(expr, Operation):
        return _render_operation(expr)
    if isinstance(expr, ForExpr):
        names = f"{expr.key_var}, {expr.value_var}" if expr.key_var else expr.value_var
        cond = f" if {render(expr.condition)}" if expr.condition is not None else ""
        if expr.is_object:
            group = "..." if expr.grouping else ""
            return f"{{for {names} in {render(expr.collection)} : {render(expr.key)} => {render(expr.value)}{group}{cond}}}"
        return f"[for {names} in {render(expr.collection)} : {render(expr.value)}{cond}]"
    raise TypeError(f"Unknown expression node: {type(expr).__name__}")


def _render_for_directive(loop: ForExpr) -> str:
    names = f"{loop.key_var}, {loop.value_var}" if loop.key_var else loop.value_var
    body = render(loop.value)[1:-1]
    return f"%{{ for {names} in {render(loop.collection)} }}{body}%{{ endfor }}"


def _render_key(key: Expression) -> str:
    if isinstance(key, Literal) and isinstance(key.value, str) and key.value.isidentifier():
        return key.value
    if isinstance(key, Literal):
        return render(key)
    return f"({render(key)})"


def _render_operation(expr: Operation) -> str:
    op, operands = expr.op, expr.operands
    if op == "?:":
        cond, yes, no = operands
        return f"{_wrap(cond, 0)} ? {_wrap(yes, 0)} : {_wrap(no, 0)}"
    if op == "!":
        return f"!{_wrap(operands[0], 7)}"
    if op == "neg":
        return f"-{_wrap(operands[0], 7)}"
    if op == "index":
        return f"{_wrap(operands[0], 8)}[{render(operands[1])}]"
    if op == "attr":
        name = operands[1].value if isinstance(operands[1], Literal) else render(operands[1])
        return f"{_wrap(operands[0], 8)}.{name}"
    if op == "splat":
        return f"{_wrap(operands[0], 8)}[*]"
    prec = _BINARY_PRECEDENCE[op]
    left, right = operands
    return f"{_wrap(left, prec)} {op} {_wrap(right, prec + 1)}"


def _wrap(expr: Expression, min_precedence: int) -> str:
    text = render(expr)
    if isinstance(expr, Operation):
        if expr.op == "?:" and min_precedence > 0:
            return f"({text})"
        prec = _BINARY_PRECEDENCE.get(expr.op)
        if prec is not None and prec < min_precedence:
            return f"({text})"
    return text


# === Blocks ===

@dataclass(frozen=True)
class NestedBlock:
    """Вложенный блок (lifecycle, precondition, dynamic, ingress, ...)."""

    type: str
    labels: Tuple[str, ...]
    attributes: Dict[str, Expression]
    blocks: Tuple["NestedBlock", ...] = ()
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)

    def blocks_of(self, block_type: str) -> List["NestedBlock"]:
        return [b for b in self.blocks if b.type == block_type]


@dataclass(frozen=True)
class Precondition:
    condition: Optional[Expression]
    error_message: Optional[Expression]
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)


@dataclass(frozen=True)
class ResourceBlock:
    """
    Декларация верхнего уровня.

    kind: тип блока (resource, data, module, variable, ...); type/local_name:
    идентичность внутри модуля. Для неизвестных типов блоков opaque=True,
    а тело сохраняется дословно в body_text.
    """

    kind: str
    type: str
    local_name: str
    labels: Tuple[str, ...] = ()
    attributes: Dict[str, Expression] = field(default_factory=dict)
    blocks: Tuple[NestedBlock, ...] = ()
    depends_on: Tuple[Reference, ...] = ()
    location: SourceLocation = field(default_factory=SourceLocation, compare=False)
    opaque: bool = False
    body_text: str = field(default="", compare=False)
    body_tokens: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        if self.kind == "data":
            return (f"data.{self.type}", self.local_name)
        return (self.type, self.local_name)

    @property
    def address(self) -> str:
        type_, name = self.key
        return f"{type_}.{name}" if name else type_

    def blocks_of(self, block_type: str) -> List[NestedBlock]:
        return [b for b in self.blocks if b.type == block_type]

    @property
    def preconditions(self) -> List[Precondition]:
        """precondition-блоки из lifecycle; у output они лежат прямо в теле."""
        blocks: List[NestedBlock] = []
        if self.kind == "output":
            blocks.extend(self.blocks_of("precondition"))
        for lifecycle in self.blocks_of("lifecycle"):
            blocks.extend(lifecycle.blocks_of("precondition"))
        return [
            Precondition(
                condition=pre.attributes.get("condition"),
                error_message=pre.attributes.get("error_message"),
                location=pre.location,
            )
            for pre in blocks
        ]


# === Modules ===

@dataclass
class SourceFile:
    path: str
    text: str


@dataclass
class SourceModule:
    """Модуль = директория с .tf файлами; идентичность = путь от корня аудита."""

    path: str
    files: List[SourceFile] = field(default_factory=list)


@dataclass
class ParsedModule:
    path: str
    blocks: List[ResourceBlock]
    files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)

    @property
    def has_parse_failures(self) -> bool:
        return bool(self.failed_files)

    def blocks_of_kind(self, kind: str) -> List[ResourceBlock]:
        return [b for b in self.blocks if b.kind == kind]


def iter_nested_expressions(nested: NestedBlock) -> Iterator[Expression]:
    for expr in nested.attributes.values():
        yield expr
    for child in nested.blocks:
        yield from iter_nested_expressions(child)


def iter_block_expressions(block: ResourceBlock) -> Iterator[Expression]:
    """Все выражения блока: атрибуты, depends_on и вложенные блоки."""
    if block.opaque:
        return
    for expr in block.attributes.values():
        yield expr
    for ref in block.depends_on:
        yield ref
    for nested in block.blocks:
        yield from iter_nested_expressions(nested)
