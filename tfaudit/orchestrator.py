"""
Audit orchestrator for parallel module processing.

Features:
- Module discovery under the audit root
- Bounded worker pool, results passed back through a queue
- Overall run deadline and explicit cancellation
- Unfinished modules are reported, never silently dropped
"""

import asyncio
import fnmatch
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

from .config import AuditConfig
from .core.base_checker import BaseChecker
from .core.errors import AuditInputError, ParseError
from .core.models import PARSE_ERROR, Finding, IncompleteModule, ModuleResult, Severity, SourceLocation
from .graph.builder import DependencyGraph, ValidationClassifier, build_graph
from .hcl.ast import SourceFile, SourceModule
from .hcl.parser import parse_module

logger = logging.getLogger(__name__)


@dataclass
class ModuleTask:
    """Единица работы для воркера: модуль и его файлы."""

    module: str
    files: List[Path]


@dataclass
class AuditRun:
    """Сырые результаты прогона до агрегации."""

    modules: List[str]
    results: List[ModuleResult] = field(default_factory=list)
    incomplete: List[IncompleteModule] = field(default_factory=list)


def parse_error_finding(module: str, error: ParseError) -> Finding:
    return Finding(
        severity=Severity.ERROR,
        rule_id=PARSE_ERROR,
        module=module,
        message=f"Cannot parse {error.path}: {error.message}. The file was skipped.",
        location=SourceLocation(error.path, error.line, error.column),
    )


class AuditOrchestrator:
    """Оркестратор: раздаёт модули воркерам и собирает результаты."""

    def __init__(self, config: AuditConfig, checkers: Sequence[BaseChecker]):
        """
        Args:
            config: Конфигурация аудита
            checkers: Checkers, которые выполняются для каждого модуля
        """
        self.config = config
        self.checkers = list(checkers)
        self.classifier = ValidationClassifier(
            resource_types=tuple(config.validation_resource_types),
            name_pattern=config.validation_name_pattern,
        )
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Запросить отмену; завершённые модули всё равно попадут в отчёт."""
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    # === Discovery ===

    def discover_modules(self, root: Path) -> List[ModuleTask]:
        """
        Найти модули: каждая директория с подходящими файлами считается модулем.

        Идентичность модуля: POSIX-путь от корня ("." для самого корня).
        """
        tasks = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not self.config.is_excluded(d))
            matched = sorted(
                name for name in filenames
                if any(fnmatch.fnmatchcase(name, pattern) for pattern in self.config.file_patterns)
            )
            if not matched:
                continue
            directory = Path(dirpath)
            module = directory.relative_to(root).as_posix()
            tasks.append(ModuleTask(module=module, files=[directory / name for name in matched]))
        return sorted(tasks, key=lambda t: t.module)

    def require_modules(self, root: Path) -> List[ModuleTask]:
        tasks = self.discover_modules(root)
        if not tasks:
            patterns = ", ".join(self.config.file_patterns)
            raise AuditInputError(f"No module files ({patterns}) found under {root}")
        return tasks

    # === Per-module work ===

    async def load_module(self, root: Path, task: ModuleTask) -> Tuple[SourceModule, List[ParseError]]:
        """
        Прочитать файлы модуля.

        Raises:
            AuditInputError: файл нечитаем (права, исчез во время прогона)
        """
        source = SourceModule(path=task.module)
        undecodable: List[ParseError] = []
        for path in task.files:
            relative = path.relative_to(root).as_posix()
            try:
                text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except UnicodeDecodeError as e:
                undecodable.append(ParseError(f"File is not valid UTF-8 ({e.reason})", relative, 0, 0))
                continue
            except OSError as e:
                raise AuditInputError(f"Cannot read {relative}: {e.strerror or e}") from e
            source.files.append(SourceFile(path=relative, text=text))
        return source, undecodable

    async def audit_module(self, root: Path, task: ModuleTask) -> ModuleResult:
        """Разобрать модуль, построить граф и прогнать все checkers."""
        start_time = time.perf_counter()

        source, read_errors = await self.load_module(root, task)
        parsed, parse_errors = await asyncio.to_thread(parse_module, source)
        for error in read_errors:
            parsed.failed_files.append(error.path)
        parsed.failed_files.sort()

        findings = [parse_error_finding(task.module, e) for e in read_errors + parse_errors]
        graph = await asyncio.to_thread(build_graph, parsed, self.classifier)

        checker_results = await asyncio.gather(*(c.run(parsed, graph) for c in self.checkers))
        for checker_findings in checker_results:
            findings.extend(checker_findings)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(f"Module {task.module}: {len(findings)} findings in {duration_ms:.1f}ms")
        return ModuleResult(
            module=task.module,
            findings=findings,
            files_parsed=len(parsed.files),
            files_failed=len(parsed.failed_files),
            duration_ms=duration_ms,
        )

    async def collect_graphs(self, root: Path) -> List[DependencyGraph]:
        """Построить графы всех модулей (для матрицы зависимостей), без checkers."""
        tasks = self.require_modules(root)
        semaphore = asyncio.Semaphore(self.config.max_workers)

        async def build(task: ModuleTask) -> DependencyGraph:
            async with semaphore:
                source, _ = await self.load_module(root, task)
                parsed, _ = await asyncio.to_thread(parse_module, source)
                return await asyncio.to_thread(build_graph, parsed, self.classifier)

        return list(await asyncio.gather(*(build(t) for t in tasks)))

    async def _worker(self, root: Path, work: "asyncio.Queue[ModuleTask]", results: "asyncio.Queue[ModuleResult]"):
        while True:
            try:
                task = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await self.audit_module(root, task)
            await results.put(result)

    # === Run ===

    async def run(self, root: Path) -> AuditRun:
        """
        Прогнать аудит всех модулей под root.

        Returns:
            AuditRun с результатами завершённых модулей и списком незавершённых

        Raises:
            AuditInputError: нет ни одного файла модуля или файл нечитаем
        """
        tasks = self.require_modules(root)

        logger.info(f"Auditing {len(tasks)} modules with {self.config.max_workers} workers...")

        work: asyncio.Queue = asyncio.Queue()
        for task in tasks:
            work.put_nowait(task)
        results: asyncio.Queue = asyncio.Queue()

        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        worker_count = min(self.config.max_workers, len(tasks))
        workers = [
            asyncio.create_task(self._worker(root, work, results), name=f"tfaudit-worker-{i}")
            for i in range(worker_count)
        ]
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())
        stop_reason = await self._join(workers, cancel_waiter)

        run = AuditRun(modules=[t.module for t in tasks])
        while not results.empty():
            run.results.append(results.get_nowait())

        finished: Set[str] = {r.module for r in run.results}
        for task in tasks:
            if task.module not in finished:
                run.incomplete.append(IncompleteModule(task.module, stop_reason or "worker stopped"))

        if run.incomplete:
            logger.warning(f"{len(run.incomplete)} modules incomplete: {stop_reason}")
        return run

    async def _join(self, workers: List[asyncio.Task], cancel_waiter: asyncio.Task) -> Optional[str]:
        """
        Дождаться воркеров, дедлайна или отмены.

        Returns:
            Причина остановки или None, если все воркеры завершились
        """
        loop = asyncio.get_running_loop()
        timeout = self.config.run_timeout_seconds or None
        deadline = loop.time() + timeout if timeout else None
        pending = set(workers)
        stop_reason = None

        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    stop_reason = f"run deadline of {timeout:g}s exceeded"
                    break
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if cancel_waiter in done:
                    stop_reason = "audit cancelled"
                    break
                for worker in done:
                    pending.discard(worker)
                    error = worker.exception()
                    if error is not None:
                        raise error
        finally:
            cancel_waiter.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, cancel_waiter, return_exceptions=True)

        return stop_reason
