"""
Dependency matrix view.

Генерируется из enforcement-рёбер графа: какие main-ресурсы модуля
зависят от каких validation-ресурсов. Это только представление отчёта,
на вход аудиту матрица не подаётся.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.table import Table

from ..graph.builder import DependencyGraph, address


@dataclass
class ModuleMatrix:
    module: str
    validations: List[str]
    rows: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def unenforced(self) -> List[str]:
        return [resource for resource, enforced_by in self.rows.items() if not enforced_by]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module": self.module,
            "validations": list(self.validations),
            "resources": [
                {"resource": resource, "enforcedBy": list(enforced_by)}
                for resource, enforced_by in self.rows.items()
            ],
        }


def build_matrix(graph: DependencyGraph) -> ModuleMatrix:
    """Матрица main-ресурс x validation-ресурс одного модуля."""
    validations = [address(v) for v in sorted(graph.validations)]
    matrix = ModuleMatrix(module=graph.module, validations=validations)
    for main, cells in graph.enforcement_matrix().items():
        matrix.rows[address(main)] = [address(v) for v, enforced in cells.items() if enforced]
    return matrix


def render_matrix_json(matrices: Sequence[ModuleMatrix]) -> str:
    payload = {"modules": [m.to_dict() for m in sorted(matrices, key=lambda m: m.module)]}
    return json.dumps(payload, indent=2, sort_keys=True)


def print_matrix(matrices: Sequence[ModuleMatrix], console: Console) -> None:
    """Вывести матрицы таблицами rich; модули без validation-ресурсов пропускаются."""
    shown = 0
    for matrix in sorted(matrices, key=lambda m: m.module):
        if not matrix.validations:
            continue
        shown += 1
        table = Table(title=f"Module: {matrix.module}", title_justify="left")
        table.add_column("Resource", style="cyan", no_wrap=True)
        for validation in matrix.validations:
            table.add_column(validation, justify="center")
        for resource, enforced_by in matrix.rows.items():
            cells = ["yes" if v in enforced_by else "[red]no[/]" for v in matrix.validations]
            table.add_row(resource, *cells)
        console.print(table)
    if not shown:
        console.print("[dim]No modules with validation resources.[/]")
