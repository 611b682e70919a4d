"""
Audit checkers.

Contains:
- ValidationEnforcementChecker - dead/empty validation, partial enforcement
- ErrorMessageQualityChecker - качество error_message
- NullSafetyChecker - merge() и проверки на пустоту с возможным null
- GraphDiagnosticsChecker - висячие ссылки, циклы, дубликаты
"""

from .error_messages import ErrorMessageQualityChecker
from .graph_diagnostics import GraphDiagnosticsChecker
from .null_safety import NullSafetyChecker
from .validation_enforcement import ValidationEnforcementChecker

__all__ = [
    "ErrorMessageQualityChecker",
    "GraphDiagnosticsChecker",
    "NullSafetyChecker",
    "ValidationEnforcementChecker",
]
