"""
Tokenizer for HCL native syntax.

Quoted strings and heredocs are returned as single tokens with their raw
template content; the parser splits interpolations out of them later.
"""

from dataclasses import dataclass
from typing import List

from ..core.errors import ParseError


# Token types
IDENT = "IDENT"
NUMBER = "NUMBER"
STRING = "STRING"
HEREDOC = "HEREDOC"
NEWLINE = "NEWLINE"
OP = "OP"
EOF = "EOF"

_THREE_CHAR_OPS = ("...",)
_TWO_CHAR_OPS = ("==", "!=", "<=", ">=", "&&", "||", "=>", "::")
_ONE_CHAR_OPS = "{}[]()=,.:?+-*/%<>!"


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int
    start: int
    end: int
    # Для HEREDOC: строка, с которой начинается содержимое, и флаг <<-
    content_line: int = 0
    strip_indent: bool = False

    def is_op(self, *values: str) -> bool:
        return self.type == OP and self.value in values

    def __repr__(self) -> str:
        return f"Token({self.type}, {self.value!r}, {self.line}:{self.column})"


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch == "_"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-"


class Lexer:
    """Однопроходный лексер по исходному тексту."""

    def __init__(self, text: str, path: str = "<string>", line_offset: int = 0, column_offset: int = 0):
        self.text = text
        self.path = path
        self.pos = 0
        self.line = 1 + line_offset
        self.col = 1 + column_offset
        self.tokens: List[Token] = []

    def error(self, message: str, line: int = None, column: int = None) -> ParseError:
        return ParseError(message, self.path, line or self.line, column or self.col)

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self.pos >= len(self.text):
                return
            if self.text[self.pos] == "\n":
                self.line += 1
                self.col = 1
            else:
                self.col += 1
            self.pos += 1

    def _peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        return self.text[idx] if idx < len(self.text) else ""

    def tokenize(self) -> List[Token]:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]

            if ch in " \t\r\ufeff":
                self._advance()
            elif ch == "\n":
                self._emit(NEWLINE, "\n", self.pos, self.line, self.col)
                self._advance()
            elif ch == "#" or (ch == "/" and self._peek(1) == "/"):
                while self.pos < len(text) and text[self.pos] != "\n":
                    self._advance()
            elif ch == "/" and self._peek(1) == "*":
                self._block_comment()
            elif ch == '"':
                self._string()
            elif ch == "<" and self._peek(1) == "<" and (
                _is_ident_start(self._peek(2)) or (self._peek(2) == "-" and _is_ident_start(self._peek(3)))
            ):
                self._heredoc()
            elif ch.isdigit():
                self._number()
            elif _is_ident_start(ch):
                start, line, col = self.pos, self.line, self.col
                while self.pos < len(text) and _is_ident_char(text[self.pos]):
                    self._advance()
                self._emit(IDENT, text[start:self.pos], start, line, col)
            else:
                self._operator()

        self._emit(EOF, "", self.pos, self.line, self.col)
        return self.tokens

    def _emit(self, type_: str, value: str, start: int, line: int, col: int, **extra) -> None:
        end = self.pos if type_ not in (NEWLINE, EOF) else start + len(value)
        self.tokens.append(Token(type_, value, line, col, start, max(end, start), **extra))

    def _block_comment(self) -> None:
        line, col = self.line, self.col
        self._advance(2)
        while self.pos < len(self.text):
            if self.text[self.pos] == "*" and self._peek(1) == "/":
                self._advance(2)
                return
            self._advance()
        raise self.error("Unterminated block comment", line, col)

    def _number(self) -> None:
        text = self.text
        start, line, col = self.pos, self.line, self.col
        while self._peek().isdigit():
            self._advance()
        if self._peek() == "." and self._peek(1).isdigit():
            self._advance()
            while self._peek().isdigit():
                self._advance()
        if self._peek() in ("e", "E"):
            sign = 1 if self._peek(1) in ("+", "-") else 0
            if self._peek(1 + sign).isdigit():
                self._advance(1 + sign)
                while self._peek().isdigit():
                    self._advance()
        self._emit(NUMBER, text[start:self.pos], start, line, col)

    def _operator(self) -> None:
        start, line, col = self.pos, self.line, self.col
        for op in _THREE_CHAR_OPS + _TWO_CHAR_OPS:
            if self.text.startswith(op, self.pos):
                self._advance(len(op))
                self._emit(OP, op, start, line, col)
                return
        ch = self.text[self.pos]
        if ch in _ONE_CHAR_OPS:
            self._advance()
            self._emit(OP, ch, start, line, col)
            return
        raise self.error(f"Unexpected character {ch!r}")

    def _string(self) -> None:
        """
        Считать строку в кавычках целиком, включая вложенные ${...}.

        Значение токена: сырое содержимое между кавычками.
        """
        start, line, col = self.pos, self.line, self.col
        self._advance()  # opening quote
        content_start = self.pos
        self._scan_template_until('"', line, col)
        value = self.text[content_start:self.pos]
        self._advance()  # closing quote
        self._emit(STRING, value, start, line, col)

    def _scan_template_until(self, terminator: str, line: int, col: int) -> None:
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self.error("Unterminated string", line, col)
            ch = text[self.pos]
            if ch == terminator:
                return
            if ch == "\n":
                raise self.error("Newline in quoted string", line, col)
            if ch == "\\":
                self._advance(2)
            elif text.startswith("$${", self.pos) or text.startswith("%%{", self.pos):
                self._advance(3)
            elif text.startswith("${", self.pos) or text.startswith("%{", self.pos):
                self._advance(2)
                self._skip_interpolation()
            else:
                self._advance()

    def _skip_interpolation(self) -> None:
        """Пропустить тело ${...} с учётом вложенных скобок и строк."""
        text = self.text
        line, col = self.line, self.col
        depth = 1
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == '"':
                self._advance()
                self._scan_template_until('"', self.line, self.col)
                self._advance()
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    self._advance()
                    return
            self._advance()
        raise self.error("Unterminated template interpolation", line, col)

    def _heredoc(self) -> None:
        start, line, col = self.pos, self.line, self.col
        self._advance(2)
        strip = False
        if self._peek() == "-":
            strip = True
            self._advance()
        marker_start = self.pos
        while _is_ident_char(self._peek()):
            self._advance()
        marker = self.text[marker_start:self.pos]
        while self._peek() in (" ", "\t", "\r"):
            self._advance()
        if self._peek() != "\n":
            raise self.error("Heredoc marker must be followed by a newline", line, col)
        self._advance()
        content_line = self.line
        content_start = self.pos
        while True:
            if self.pos >= len(self.text):
                raise self.error(f"Unterminated heredoc, expected {marker}", line, col)
            eol = self.text.find("\n", self.pos)
            if eol == -1:
                eol = len(self.text)
            if self.text[self.pos:eol].strip() == marker:
                content = self.text[content_start:self.pos]
                self._advance(eol - self.pos)
                self._emit(HEREDOC, content, start, line, col, content_line=content_line, strip_indent=strip)
                return
            self._advance(eol - self.pos + 1)


def tokenize(text: str, path: str = "<string>", line_offset: int = 0, column_offset: int = 0) -> List[Token]:
    return Lexer(text, path, line_offset, column_offset).tokenize()
