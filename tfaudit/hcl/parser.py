"""
Recursive-descent parser for HCL native syntax.

Produces ``ResourceBlock`` values for the top-level declarations of a file.
Parsing is a pure function of the input text; failures raise ``ParseError``
carrying the file path and line.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple, Union

from ..core.errors import ParseError
from ..core.models import SourceLocation
from .ast import (
    Expression,
    ForExpr,
    FunctionCall,
    ListExpr,
    Literal,
    MapExpr,
    NestedBlock,
    Operation,
    ParsedModule,
    Reference,
    ResourceBlock,
    SourceModule,
    TemplateExpr,
)
from .lexer import EOF, HEREDOC, IDENT, NEWLINE, NUMBER, OP, STRING, Token, tokenize

logger = logging.getLogger(__name__)


KNOWN_BLOCK_TYPES = {
    "resource", "data", "module", "variable", "output", "locals",
    "provider", "terraform", "moved", "import", "removed", "check",
}

# Сколько меток должен иметь блок каждого типа
_LABEL_COUNTS = {
    "resource": 2,
    "data": 2,
    "module": 1,
    "variable": 1,
    "output": 1,
    "provider": 1,
    "check": 1,
    "locals": 0,
    "terraform": 0,
    "moved": 0,
    "import": 0,
    "removed": 0,
}

_DEPENDS_ON_KINDS = {"resource", "data", "module", "output", "check"}

_BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3,
    "<": 4, ">": 4, "<=": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}

_ITERATOR_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")


def _advance_position(line: int, column: int, text: str) -> Tuple[int, int]:
    newlines = text.count("\n")
    if newlines:
        return line + newlines, len(text) - text.rfind("\n")
    return line, column + len(text)


def _find_interpolation_end(raw: str, start: int, path: str, line: int, column: int) -> int:
    """Индекс закрывающей '}' для интерполяции, открытой перед start."""
    depth = 1
    i = start
    in_string = False
    while i < len(raw):
        ch = raw[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise ParseError("Unterminated template interpolation", path, line, column)


class Parser:
    """Парсер одного файла."""

    def __init__(self, text: str, path: str = "<string>", line_offset: int = 0, column_offset: int = 0):
        self.text = text
        self.path = path
        self.tokens = tokenize(text, path, line_offset, column_offset)
        self.pos = 0
        # True: внутри ( или [, где переводы строк незначимы
        self._nesting: List[bool] = []

    # === Token helpers ===

    def _newlines_insignificant(self) -> bool:
        return bool(self._nesting) and self._nesting[-1]

    def peek(self) -> Token:
        if self._newlines_insignificant():
            while self.tokens[self.pos].type == NEWLINE:
                self.pos += 1
        return self.tokens[self.pos]

    def peek_raw(self, offset: int = 0) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def next(self) -> Token:
        token = self.peek()
        if token.type != EOF:
            self.pos += 1
        return token

    def skip_newlines(self) -> None:
        while self.tokens[self.pos].type == NEWLINE:
            self.pos += 1

    def error(self, message: str, token: Optional[Token] = None) -> ParseError:
        token = token or self.peek()
        return ParseError(message, self.path, token.line, token.column)

    def location(self, token: Token) -> SourceLocation:
        return SourceLocation(self.path, token.line, token.column)

    def expect_op(self, value: str) -> Token:
        token = self.next()
        if not token.is_op(value):
            raise self.error(f"Expected {value!r}, found {self._describe(token)}", token)
        return token

    def expect_ident(self) -> Token:
        token = self.next()
        if token.type != IDENT:
            raise self.error(f"Expected identifier, found {self._describe(token)}", token)
        return token

    @staticmethod
    def _describe(token: Token) -> str:
        if token.type == EOF:
            return "end of file"
        if token.type == NEWLINE:
            return "newline"
        return repr(token.value)

    # === File / body ===

    def parse_file(self) -> List[ResourceBlock]:
        blocks: List[ResourceBlock] = []
        while True:
            self.skip_newlines()
            token = self.peek_raw()
            if token.type == EOF:
                return blocks
            if token.type != IDENT:
                raise self.error(f"Expected block or attribute, found {self._describe(token)}", token)
            if self.peek_raw(1).is_op("="):
                raise self.error(f"Top-level attribute {token.value!r} is not allowed", token)
            blocks.append(self._parse_top_level_block())

    def _parse_labels(self) -> List[str]:
        labels = []
        while True:
            token = self.peek_raw()
            if token.type == STRING:
                value = self._template_from_token(token)
                if not isinstance(value, Literal):
                    raise self.error("Block labels must be plain strings", token)
                labels.append(value.value)
                self.pos += 1
            elif token.type == IDENT:
                labels.append(token.value)
                self.pos += 1
            else:
                return labels

    def _parse_top_level_block(self) -> ResourceBlock:
        type_token = self.expect_ident()
        block_type = type_token.value
        labels = self._parse_labels()
        location = self.location(type_token)

        if block_type not in KNOWN_BLOCK_TYPES:
            return self._parse_opaque_block(block_type, labels, location)

        expected = _LABEL_COUNTS[block_type]
        if len(labels) != expected:
            raise self.error(
                f"Block {block_type!r} expects {expected} label(s), found {len(labels)}",
                type_token,
            )

        self.expect_op("{")
        attributes, blocks = self._parse_body()
        self._expect_block_end()

        depends_on: Tuple[Reference, ...] = ()
        if block_type in _DEPENDS_ON_KINDS and "depends_on" in attributes:
            depends_on = self._depends_on(attributes.pop("depends_on"))

        if block_type in ("resource", "data"):
            type_, name = labels
        elif expected == 1:
            type_, name = block_type, labels[0]
        else:
            type_, name = block_type, ""

        return ResourceBlock(
            kind=block_type,
            type=type_,
            local_name=name,
            labels=tuple(labels),
            attributes=attributes,
            blocks=tuple(blocks),
            depends_on=depends_on,
            location=location,
        )

    def _parse_opaque_block(self, block_type: str, labels: List[str], location: SourceLocation) -> ResourceBlock:
        """Неизвестный тип блока: тело сохраняется как есть, без разбора."""
        open_token = self.peek_raw()
        if not open_token.is_op("{"):
            raise self.error(f"Expected '{{' after block {block_type!r}", open_token)
        self.pos += 1
        depth = 1
        body_tokens = []
        while True:
            token = self.peek_raw()
            if token.type == EOF:
                raise self.error(f"Unclosed block {block_type!r}", open_token)
            self.pos += 1
            if token.is_op("{"):
                depth += 1
            elif token.is_op("}"):
                depth -= 1
                if depth == 0:
                    close_token = token
                    break
            if token.type != NEWLINE:
                body_tokens.append(token.value)
        self._expect_block_end()

        logger.debug(f"{self.path}: passing through unknown block type {block_type!r}")
        return ResourceBlock(
            kind=block_type,
            type=block_type,
            local_name=".".join(labels),
            labels=tuple(labels),
            location=location,
            opaque=True,
            body_text=self.text[open_token.end:close_token.start],
            body_tokens=tuple(body_tokens),
        )

    def _expect_block_end(self) -> None:
        token = self.peek_raw()
        if token.type in (NEWLINE, EOF) or token.is_op("}"):
            return
        raise self.error("Expected newline after block", token)

    def _parse_body(self) -> Tuple[Dict[str, Expression], List[NestedBlock]]:
        """Разобрать тело блока после '{' до закрывающей '}' включительно."""
        self._nesting.append(False)
        try:
            attributes: Dict[str, Expression] = {}
            blocks: List[NestedBlock] = []
            while True:
                self.skip_newlines()
                token = self.peek_raw()
                if token.is_op("}"):
                    self.pos += 1
                    return attributes, blocks
                if token.type == EOF:
                    raise self.error("Unexpected end of file, expected '}'", token)
                if token.type != IDENT:
                    raise self.error(f"Expected attribute or block, found {self._describe(token)}", token)

                if self.peek_raw(1).is_op("="):
                    self.pos += 2
                    if token.value in attributes:
                        raise self.error(f"Attribute {token.value!r} redefined", token)
                    attributes[token.value] = self.parse_expression()
                    end = self.peek_raw()
                    if not (end.type in (NEWLINE, EOF) or end.is_op("}")):
                        raise self.error(f"Unexpected {self._describe(end)} after attribute value", end)
                else:
                    self.pos += 1
                    labels = self._parse_labels()
                    self.expect_op("{")
                    nested_attrs, nested_blocks = self._parse_body()
                    self._expect_block_end()
                    blocks.append(NestedBlock(
                        type=token.value,
                        labels=tuple(labels),
                        attributes=nested_attrs,
                        blocks=tuple(nested_blocks),
                        location=self.location(token),
                    ))
        finally:
            self._nesting.pop()

    def _depends_on(self, expr: Expression) -> Tuple[Reference, ...]:
        if not isinstance(expr, ListExpr) or not all(isinstance(i, Reference) for i in expr.items):
            loc = expr.location
            raise ParseError("depends_on must be a list of references", self.path, loc.line, loc.column)
        return tuple(expr.items)

    # === Expressions ===

    def parse_expression(self) -> Expression:
        condition = self._parse_binary(1)
        if self.peek().is_op("?"):
            self.next()
            yes = self.parse_expression()
            self.expect_op(":")
            no = self.parse_expression()
            return Operation("?:", (condition, yes, no), location=condition.location)
        return condition

    def _parse_binary(self, min_precedence: int) -> Expression:
        left = self._parse_unary()
        while True:
            token = self.peek()
            if token.type != OP:
                return left
            precedence = _BINARY_PRECEDENCE.get(token.value)
            if precedence is None or precedence < min_precedence:
                return left
            self.next()
            right = self._parse_binary(precedence + 1)
            left = Operation(token.value, (left, right), location=left.location)

    def _parse_unary(self) -> Expression:
        token = self.peek()
        if token.is_op("!"):
            self.next()
            return Operation("!", (self._parse_unary(),), location=self.location(token))
        if token.is_op("-"):
            self.next()
            operand = self._parse_unary()
            if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) \
                    and not isinstance(operand.value, bool):
                return Literal(-operand.value, location=self.location(token))
            return Operation("neg", (operand,), location=self.location(token))
        return self._parse_postfix(self._parse_primary())

    def _parse_postfix(self, expr: Expression) -> Expression:
        while True:
            token = self.peek()
            if token.is_op("."):
                self.next()
                after = self.next()
                if after.type == IDENT:
                    if isinstance(expr, Reference):
                        expr = Reference(expr.parts + (after.value,), location=expr.location)
                    else:
                        expr = Operation("attr", (expr, Literal(after.value, location=self.location(after))),
                                         location=expr.location)
                elif after.type == NUMBER:
                    index = Literal(int(after.value), location=self.location(after))
                    expr = Operation("index", (expr, index), location=expr.location)
                elif after.is_op("*"):
                    expr = Operation("splat", (expr,), location=expr.location)
                else:
                    raise self.error(f"Expected attribute name after '.', found {self._describe(after)}", after)
            elif token.is_op("["):
                self.next()
                self._nesting.append(True)
                try:
                    if self.peek().is_op("*"):
                        self.next()
                        self.expect_op("]")
                        expr = Operation("splat", (expr,), location=expr.location)
                    else:
                        key = self.parse_expression()
                        self.expect_op("]")
                        expr = Operation("index", (expr, key), location=expr.location)
                finally:
                    self._nesting.pop()
            else:
                return expr

    def _parse_primary(self) -> Expression:
        token = self.next()
        loc = self.location(token)

        if token.type == NUMBER:
            if any(c in token.value for c in ".eE"):
                return Literal(float(token.value), location=loc)
            return Literal(int(token.value), location=loc)

        if token.type in (STRING, HEREDOC):
            return self._template_from_token(token)

        if token.type == IDENT:
            if token.value == "true":
                return Literal(True, location=loc)
            if token.value == "false":
                return Literal(False, location=loc)
            if token.value == "null":
                return Literal(None, location=loc)
            name = token.value
            # provider::aws::arn_parse(...)
            while self.peek_raw().is_op("::"):
                self.pos += 1
                name += "::" + self.expect_ident().value
            if self.peek_raw().is_op("("):
                self.pos += 1
                return self._parse_call(name, loc)
            return Reference((name,), location=loc)

        if token.is_op("("):
            self._nesting.append(True)
            try:
                inner = self.parse_expression()
                self.expect_op(")")
            finally:
                self._nesting.pop()
            return inner

        if token.is_op("["):
            self._nesting.append(True)
            try:
                if self._at_for_keyword():
                    return self._parse_for(loc, closing="]")
                return self._parse_list(loc)
            finally:
                self._nesting.pop()

        if token.is_op("{"):
            self.skip_newlines()
            if self._at_for_keyword():
                self._nesting.append(True)
                try:
                    return self._parse_for(loc, closing="}")
                finally:
                    self._nesting.pop()
            self._nesting.append(False)
            try:
                return self._parse_object(loc)
            finally:
                self._nesting.pop()

        raise self.error(f"Expected expression, found {self._describe(token)}", token)

    def _at_for_keyword(self) -> bool:
        token = self.peek()
        if token.type != IDENT or token.value != "for":
            return False
        following = self.peek_raw(1)
        return following.type == IDENT

    def _parse_call(self, name: str, loc: SourceLocation) -> FunctionCall:
        self._nesting.append(True)
        try:
            args: List[Expression] = []
            expand = False
            while not self.peek().is_op(")"):
                args.append(self.parse_expression())
                if self.peek().is_op("..."):
                    self.next()
                    expand = True
                    break
                if not self.peek().is_op(","):
                    break
                self.next()
            self.expect_op(")")
            return FunctionCall(name, tuple(args), expand_final=expand, location=loc)
        finally:
            self._nesting.pop()

    def _parse_list(self, loc: SourceLocation) -> ListExpr:
        items: List[Expression] = []
        while not self.peek().is_op("]"):
            items.append(self.parse_expression())
            if not self.peek().is_op(","):
                break
            self.next()
        self.expect_op("]")
        return ListExpr(tuple(items), location=loc)

    def _parse_object(self, loc: SourceLocation) -> MapExpr:
        items: List[Tuple[Expression, Expression]] = []
        while True:
            self.skip_newlines()
            if self.peek_raw().is_op("}"):
                self.pos += 1
                return MapExpr(tuple(items), location=loc)
            key = self.parse_expression()
            if isinstance(key, Reference) and len(key.parts) == 1:
                key = Literal(key.parts[0], location=key.location)
            separator = self.next()
            if not separator.is_op("=", ":"):
                raise self.error(f"Expected '=' or ':' after object key, found {self._describe(separator)}", separator)
            value = self.parse_expression()
            items.append((key, value))
            end = self.peek_raw()
            if end.is_op(","):
                self.pos += 1
            elif end.type == NEWLINE or end.is_op("}"):
                continue
            else:
                raise self.error(f"Expected ',' or newline between object items, found {self._describe(end)}", end)

    def _parse_for(self, loc: SourceLocation, closing: str) -> ForExpr:
        self.next()  # 'for'
        first = self.expect_ident().value
        key_var: Optional[str] = None
        value_var = first
        if self.peek().is_op(","):
            self.next()
            key_var, value_var = first, self.expect_ident().value
        in_token = self.expect_ident()
        if in_token.value != "in":
            raise self.error("Expected 'in' in for expression", in_token)
        collection = self.parse_expression()
        self.expect_op(":")

        key_expr: Optional[Expression] = None
        grouping = False
        first_expr = self.parse_expression()
        if closing == "}":
            self.expect_op("=>")
            key_expr = first_expr
            value_expr = self.parse_expression()
            if self.peek().is_op("..."):
                self.next()
                grouping = True
        else:
            value_expr = first_expr

        condition: Optional[Expression] = None
        token = self.peek()
        if token.type == IDENT and token.value == "if":
            self.next()
            condition = self.parse_expression()
        self.expect_op(closing)
        return ForExpr(
            key_var=key_var,
            value_var=value_var,
            collection=collection,
            value=value_expr,
            key=key_expr,
            condition=condition,
            grouping=grouping,
            location=loc,
        )

    # === Templates ===

    def _template_from_token(self, token: Token) -> Expression:
        loc = self.location(token)
        if token.type == HEREDOC:
            raw = token.value
            if token.strip_indent:
                raw = _strip_heredoc_indent(raw)
            return parse_template(raw, self.path, token.content_line, 1, loc, escapes=False)
        return parse_template(token.value, self.path, token.line, token.column + 1, loc, escapes=True)


def _strip_heredoc_indent(raw: str) -> str:
    lines = raw.split("\n")
    indents = [len(l) - len(l.lstrip(" \t")) for l in lines if l.strip()]
    cut = min(indents) if indents else 0
    return "\n".join(l[cut:] for l in lines)


def _unescape(text: str, path: str, line: int, column: int) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt in _ESCAPES:
                out.append(_ESCAPES[nxt])
                i += 2
                continue
            if nxt in ("u", "U"):
                width = 4 if nxt == "u" else 8
                digits = text[i + 2:i + 2 + width]
                try:
                    out.append(chr(int(digits, 16)))
                except ValueError:
                    raise ParseError(f"Invalid unicode escape \\{nxt}{digits}", path, line, column + i)
                i += 2 + width
                continue
            raise ParseError(f"Invalid escape sequence \\{nxt}", path, line, column + i)
        out.append(ch)
        i += 1
    return "".join(out)


class _TemplateFrame:
    """Уровень вложенности шаблона: весь шаблон или тело %{for}."""

    def __init__(self, loop: Optional[Tuple[Optional[str], str, Expression, SourceLocation]] = None):
        self.loop = loop
        self.parts: List[Union[str, Expression]] = []
        self.literal: List[str] = []

    def flush(self) -> None:
        if self.literal:
            self.parts.append("".join(self.literal))
            self.literal = []

    def add(self, expr: Expression) -> None:
        self.flush()
        self.parts.append(expr)

    def close(self, location: SourceLocation) -> Expression:
        self.flush()
        if not any(not isinstance(p, str) for p in self.parts):
            return Literal("".join(p for p in self.parts if isinstance(p, str)), location=location)
        return TemplateExpr(tuple(self.parts), location=location)


def parse_template(
    raw: str,
    path: str = "<string>",
    line: int = 1,
    column: int = 1,
    location: Optional[SourceLocation] = None,
    escapes: bool = True,
) -> Expression:
    """
    Разобрать содержимое строки или heredoc в Literal или TemplateExpr.

    ${expr} становится частью-выражением; для %{if X} сохраняется выражение X;
    %{for a in X}...%{endfor} становится ForExpr(directive=True), чтобы имена
    итератора не считались ссылками внутри тела цикла.
    """
    location = location or SourceLocation(path, line, column)
    frames = [_TemplateFrame()]
    i = 0
    cur_line, cur_col = line, column
    chunk_start = 0

    def flush_literal_until(end: int) -> None:
        text = raw[chunk_start:end]
        if text:
            frames[-1].literal.append(_unescape(text, path, cur_line, cur_col) if escapes else text)

    while i < len(raw):
        if raw.startswith("$${", i) or raw.startswith("%%{", i):
            flush_literal_until(i)
            frames[-1].literal.append(raw[i + 1:i + 3])
            i += 3
            chunk_start = i
            continue
        if escapes and raw[i] == "\\":
            i += 2
            continue
        if raw.startswith("${", i) or raw.startswith("%{", i):
            flush_literal_until(i)
            is_directive = raw[i] == "%"
            end = _find_interpolation_end(raw, i + 2, path, cur_line, cur_col)
            inner_line, inner_col = _advance_position(line, column, raw[:i + 2])
            inner = raw[i + 2:end]
            if inner.startswith("~"):
                inner = " " + inner[1:]
                literal = frames[-1].literal
                if literal:
                    literal[-1] = literal[-1].rstrip()
            if inner.endswith("~"):
                inner = inner[:-1]

            if is_directive:
                _apply_directive(frames, inner, path, inner_line, inner_col)
            else:
                frames[-1].add(_parse_standalone_expression(inner, path, inner_line - 1, inner_col - 1))
            i = end + 1
            chunk_start = i
            cur_line, cur_col = _advance_position(line, column, raw[:i])
            continue
        i += 1

    flush_literal_until(len(raw))
    if len(frames) > 1:
        loop_location = frames[-1].loop[3]
        raise ParseError("Template for directive is missing %{endfor}", path, loop_location.line, loop_location.column)
    return frames[0].close(location)


def _apply_directive(frames: List[_TemplateFrame], inner: str, path: str, line: int, column: int) -> None:
    stripped = inner.strip()
    keyword = stripped.split(None, 1)[0] if stripped else ""
    offset = len(inner) - len(inner.lstrip())
    if keyword == "if":
        body_start = inner.index("if") + 2
        frames[-1].add(_parse_standalone_expression(inner[body_start:], path, line - 1, column - 1 + body_start))
    elif keyword == "for":
        frames.append(_TemplateFrame(_parse_for_directive(inner, path, line, column)))
    elif keyword == "endfor":
        if len(frames) == 1:
            raise ParseError("Template %{endfor} without a matching for directive", path, line, column + offset)
        frame = frames.pop()
        key_var, value_var, collection, loop_location = frame.loop
        frames[-1].add(ForExpr(
            key_var=key_var,
            value_var=value_var,
            collection=collection,
            value=frame.close(loop_location),
            directive=True,
            location=loop_location,
        ))
    elif keyword not in ("else", "endif"):
        raise ParseError(f"Unknown template directive {keyword!r}", path, line, column + offset)


def _parse_for_directive(
    inner: str, path: str, line: int, column: int
) -> Tuple[Optional[str], str, Expression, SourceLocation]:
    offset = len(inner) - len(inner.lstrip())
    loop_location = SourceLocation(path, line, column + offset)
    marker = inner.find(" in ")
    if marker == -1:
        raise ParseError("Expected 'in' in template for directive", path, line, column + offset)
    names = [name.strip() for name in inner[inner.index("for") + 3:marker].split(",")]
    if len(names) not in (1, 2) or not all(_ITERATOR_NAME_RE.fullmatch(name) for name in names):
        raise ParseError("Invalid iterator names in template for directive", path, line, column + offset)
    key_var, value_var = (names[0], names[1]) if len(names) == 2 else (None, names[0])
    body_start = marker + 4
    collection = _parse_standalone_expression(inner[body_start:], path, line - 1, column - 1 + body_start)
    return key_var, value_var, collection, loop_location


def _parse_standalone_expression(text: str, path: str, line_offset: int, column_offset: int) -> Expression:
    parser = Parser(text, path, line_offset, column_offset)
    parser._nesting.append(True)
    expr = parser.parse_expression()
    trailing = parser.peek()
    if trailing.type != EOF:
        raise parser.error(f"Unexpected {parser._describe(trailing)} in template interpolation", trailing)
    return expr


# === Public API ===

def parse_file(text: str, path: str = "<string>") -> List[ResourceBlock]:
    """Разобрать содержимое файла в список блоков верхнего уровня."""
    return Parser(text, path).parse_file()


def parse_expression(text: str, path: str = "<expr>") -> Expression:
    """Разобрать одиночное выражение (удобно для тестов и сообщений)."""
    return _parse_standalone_expression(text, path, 0, 0)


def parse_module(source: SourceModule) -> Tuple[ParsedModule, List[ParseError]]:
    """
    Разобрать все файлы модуля.

    Файл с ошибкой пропускается; ошибки возвращаются отдельно, чтобы
    остальные файлы модуля продолжали участвовать в аудите.
    """
    blocks: List[ResourceBlock] = []
    errors: List[ParseError] = []
    parsed_files: List[str] = []
    failed_files: List[str] = []

    for source_file in sorted(source.files, key=lambda f: f.path):
        try:
            file_blocks = parse_file(source_file.text, source_file.path)
        except ParseError as e:
            logger.warning(f"Skipping {source_file.path}: {e.message} (line {e.line})")
            errors.append(e)
            failed_files.append(source_file.path)
            continue
        except RecursionError:
            errors.append(ParseError("Expression nesting too deep", source_file.path, 0, 0))
            failed_files.append(source_file.path)
            continue
        blocks.extend(file_blocks)
        parsed_files.append(source_file.path)

    return ParsedModule(
        path=source.path,
        blocks=blocks,
        files=parsed_files,
        failed_files=failed_files,
    ), errors
