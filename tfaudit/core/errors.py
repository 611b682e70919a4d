"""
Exceptions raised by the audit engine.

ParseError and RuleEvaluationError are recoverable: the orchestrator turns
them into findings. AuditInputError is fatal for the whole run.
"""

from typing import Optional


class AuditError(Exception):
    """Базовое исключение аудита."""
    pass


class ParseError(AuditError):
    """Файл не удалось разобрать."""

    def __init__(self, message: str, path: str = "<unknown>", line: int = 0, column: int = 0):
        self.message = message
        self.path = path
        self.line = line
        self.column = column
        super().__init__(f"{path}:{line}:{column}: {message}")

    def with_path(self, path: str) -> "ParseError":
        return ParseError(self.message, path, self.line, self.column)


class RuleEvaluationError(AuditError):
    """Checker встретил форму AST, которую не умеет интерпретировать."""

    def __init__(self, message: str, location: Optional[object] = None):
        self.location = location
        super().__init__(message)


class AuditInputError(AuditError):
    """Входные данные непригодны: путь не существует, файл нечитаем, неверный конфиг."""
    pass
