"""
Base class for audit checkers.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..graph.builder import DependencyGraph
from ..hcl.ast import ParsedModule
from .errors import RuleEvaluationError
from .models import INTERNAL, Finding, Severity, SourceLocation

logger = logging.getLogger(__name__)


class BaseChecker(ABC):
    """
    Базовый класс для всех checkers.

    Единственная способность подкласса: evaluate(module, graph). Метод run()
    добавляет:
    - Timeout
    - Изоляцию ошибок: любое исключение превращается в находку `internal`
    - Логирование
    """

    # Правила, которые может выдавать checker (для документации и фильтров)
    rule_ids: Tuple[str, ...] = ()

    def __init__(self, name: str, timeout_seconds: float = 30.0):
        """
        Args:
            name: Имя checker'а (для логирования и отчётов)
            timeout_seconds: Таймаут на один модуль
        """
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.logger = logging.getLogger(f"tfaudit.{name}")

    async def run(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        """
        Запустить проверку модуля с error handling и timeout.

        Returns:
            Список находок; сбой checker'а не затрагивает другие checkers и модули
        """
        start_time = time.perf_counter()
        try:
            findings = await asyncio.wait_for(
                asyncio.to_thread(self.evaluate, module, graph),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.error(f"{self.name} timed out on {module.path} after {self.timeout_seconds}s")
            return [self._internal_finding(module, f"{self.name} timed out after {self.timeout_seconds}s")]
        except RuleEvaluationError as e:
            self.logger.warning(f"{self.name} could not evaluate {module.path}: {e}")
            location = e.location if isinstance(e.location, SourceLocation) else None
            return [self._internal_finding(module, f"{self.name} could not evaluate module: {e}", location)]
        except Exception as e:
            self.logger.error(f"{self.name} failed on {module.path}: {e}", exc_info=True)
            return [self._internal_finding(module, f"{self.name} failed: {type(e).__name__}: {e}")]

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.debug(
            f"{self.name} on {module.path}: {len(findings)} findings, duration={duration_ms:.2f}ms"
        )
        return findings

    @abstractmethod
    def evaluate(self, module: ParsedModule, graph: DependencyGraph) -> List[Finding]:
        """
        Выполнить проверку (должен быть реализован в подклассах).

        Returns:
            Список находок
        """
        pass

    def create_finding(
        self,
        module: ParsedModule,
        severity: Severity,
        rule_id: str,
        message: str,
        location: Optional[SourceLocation] = None,
        resource_ref: Optional[str] = None,
        **metadata: str,
    ) -> Finding:
        """Удобный метод для создания Finding."""
        return Finding(
            severity=severity,
            rule_id=rule_id,
            module=module.path,
            message=message,
            location=location or SourceLocation(),
            resource_ref=resource_ref,
            metadata=tuple(sorted(metadata.items())),
        )

    def _internal_finding(
        self,
        module: ParsedModule,
        message: str,
        location: Optional[SourceLocation] = None,
    ) -> Finding:
        return self.create_finding(module, Severity.ERROR, INTERNAL, message, location, checker=self.name)
