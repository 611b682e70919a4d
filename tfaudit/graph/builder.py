"""
Dependency graph construction for a parsed module.

Nodes are resource/data/module declarations keyed by ``(type, local_name)``.
Edges come from ``depends_on`` (explicit, these are the enforcement edges
when they target a validation resource) and from references embedded in
attribute expressions (implicit).
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..core.models import SourceLocation
from ..hcl.ast import (
    NestedBlock,
    ParsedModule,
    Reference,
    ResourceBlock,
    references_in,
)

logger = logging.getLogger(__name__)


NodeKey = Tuple[str, str]

GRAPH_KINDS = ("resource", "data", "module")
MAIN_KINDS = ("resource", "module")

# Корни ссылок, которые никогда не указывают на узлы графа
NON_RESOURCE_ROOTS = frozenset({"var", "local", "each", "count", "self", "path", "terraform"})

# Мета-аргументы, значения которых не являются ссылками на ресурсы
_NON_REFERENCE_ATTRIBUTES = frozenset({"provider", "providers"})
_NON_REFERENCE_LIFECYCLE_ATTRIBUTES = frozenset({"ignore_changes"})

# moved/removed ссылаются на адреса, которых в конфигурации уже нет
_NO_DANGLING_SWEEP_KINDS = frozenset({"variable", "provider", "terraform", "moved", "removed", "import"})


class EdgeKind(Enum):
    DEPENDS_ON = "depends_on"
    IMPLICIT = "implicit"


@dataclass(frozen=True)
class Edge:
    source: NodeKey
    target: NodeKey
    kind: EdgeKind
    location: SourceLocation = field(compare=False, default_factory=SourceLocation)


@dataclass(frozen=True)
class DanglingReference:
    source: str
    reference: str
    location: SourceLocation


@dataclass(frozen=True)
class DuplicateDeclaration:
    key: NodeKey
    first: SourceLocation
    duplicate: SourceLocation


@dataclass
class ValidationClassifier:
    """Правило, по которому ресурс считается validation-ресурсом."""

    resource_types: Sequence[str] = ("terraform_data", "null_resource")
    name_pattern: str = "validation"

    def __post_init__(self):
        self._name_re = re.compile(self.name_pattern)

    def is_validation(self, block: ResourceBlock) -> bool:
        if block.kind != "resource" or block.type not in self.resource_types:
            return False
        return bool(self._name_re.search(block.local_name)) or bool(block.preconditions)


def address(key: NodeKey) -> str:
    return f"{key[0]}.{key[1]}"


def resolve_target(ref: Reference) -> Optional[NodeKey]:
    """
    Ключ узла, на который указывает ссылка, или None, если ссылка не на ресурс.

    Ресурсные типы всегда имеют вид <provider>_<type>, поэтому корень без '_'
    (например, имя итератора) ресурсом не считается.
    """
    parts = ref.parts
    root = parts[0]
    if root in NON_RESOURCE_ROOTS or len(parts) < 2:
        return None
    if root == "data":
        if len(parts) < 3:
            return None
        return (f"data.{parts[1]}", parts[2])
    if root == "module":
        return ("module", parts[1])
    if "_" not in root:
        return None
    return (root, parts[1])


class DependencyGraph:
    """Направленный граф зависимостей одного модуля."""

    def __init__(self, module: str):
        self.module = module
        self.nodes: Dict[NodeKey, ResourceBlock] = {}
        self.edges: List[Edge] = []
        self.validations: Set[NodeKey] = set()
        self.main_resources: Set[NodeKey] = set()
        self.dangling: List[DanglingReference] = []
        self.duplicates: List[DuplicateDeclaration] = []
        self._outgoing: Dict[NodeKey, Set[NodeKey]] = defaultdict(set)
        self._incoming_enforcement: Dict[NodeKey, List[Edge]] = defaultdict(list)

    # === Construction ===

    def add_node(self, block: ResourceBlock, is_validation: bool) -> bool:
        key = block.key
        if key in self.nodes:
            self.duplicates.append(DuplicateDeclaration(key, self.nodes[key].location, block.location))
            return False
        self.nodes[key] = block
        if is_validation:
            self.validations.add(key)
        elif block.kind in MAIN_KINDS:
            self.main_resources.add(key)
        return True

    def add_edge(self, edge: Edge) -> None:
        if edge.source == edge.target and edge.kind == EdgeKind.IMPLICIT:
            # self-ссылки через атрибуты (например, в for_each) не образуют цикла
            return
        self.edges.append(edge)
        self._outgoing[edge.source].add(edge.target)
        # validation -> validation не подключает ни одну из них к плану
        if (
            edge.kind == EdgeKind.DEPENDS_ON
            and edge.target in self.validations
            and edge.source not in self.validations
        ):
            self._incoming_enforcement[edge.target].append(edge)

    # === Queries ===

    def successors(self, key: NodeKey) -> List[NodeKey]:
        return sorted(self._outgoing.get(key, ()))

    def enforcement_edges_to(self, validation: NodeKey) -> List[Edge]:
        return list(self._incoming_enforcement.get(validation, ()))

    def enforced_by(self, validation: NodeKey) -> Set[NodeKey]:
        return {e.source for e in self.enforcement_edges_to(validation)}

    def validations_without_enforcement(self) -> List[NodeKey]:
        """Все validation-ресурсы без входящих enforcement-рёбер."""
        return sorted(v for v in self.validations if not self._incoming_enforcement.get(v))

    def main_resources_without_edge_to(self, validation: NodeKey) -> List[NodeKey]:
        """Все main-ресурсы без enforcement-ребра к validation-ресурсу X."""
        enforced = self.enforced_by(validation)
        return sorted(m for m in self.main_resources if m not in enforced)

    def unenforced_main_resources(self) -> List[NodeKey]:
        """Main-ресурсы без ребра ни к одному validation-ресурсу модуля."""
        enforced: Set[NodeKey] = set()
        for validation in self.validations:
            enforced |= self.enforced_by(validation)
        return sorted(m for m in self.main_resources if m not in enforced)

    def enforcement_matrix(self) -> Dict[NodeKey, Dict[NodeKey, bool]]:
        """Матрица main-ресурс x validation-ресурс по enforcement-рёбрам."""
        validations = sorted(self.validations)
        matrix = {}
        for main in sorted(self.main_resources):
            matrix[main] = {v: main in self.enforced_by(v) for v in validations}
        return matrix

    def find_cycles(self) -> List[List[NodeKey]]:
        """
        Найти циклы итеративным DFS с тремя цветами, O(V + E).

        Каждый цикл возвращается один раз, повёрнутым так, чтобы начинаться
        с наименьшего ключа.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color: Dict[NodeKey, int] = {key: WHITE for key in self.nodes}
        seen: Set[Tuple[NodeKey, ...]] = set()
        cycles: List[List[NodeKey]] = []

        for start in sorted(self.nodes):
            if color[start] != WHITE:
                continue
            path: List[NodeKey] = [start]
            position: Dict[NodeKey, int] = {start: 0}
            stack = [(start, iter(self.successors(start)))]
            color[start] = GRAY

            while stack:
                node, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    state = color.get(neighbor)
                    if state is None:
                        continue
                    if state == WHITE:
                        color[neighbor] = GRAY
                        position[neighbor] = len(path)
                        path.append(neighbor)
                        stack.append((neighbor, iter(self.successors(neighbor))))
                        advanced = True
                        break
                    if state == GRAY:
                        cycle = path[position[neighbor]:]
                        pivot = cycle.index(min(cycle))
                        canonical = tuple(cycle[pivot:] + cycle[:pivot])
                        if canonical not in seen:
                            seen.add(canonical)
                            cycles.append(list(canonical))
                if not advanced:
                    color[node] = BLACK
                    stack.pop()
                    path.pop()
                    del position[node]

        return sorted(cycles)


def _block_references(block: ResourceBlock) -> List[Reference]:
    """Ссылки из атрибутов и вложенных блоков (без depends_on и мета-аргументов)."""
    refs: List[Reference] = []
    for name, expr in block.attributes.items():
        if name in _NON_REFERENCE_ATTRIBUTES:
            continue
        refs.extend(references_in(expr))
    for nested in block.blocks:
        refs.extend(_nested_references(nested, ()))
    return refs


def _nested_references(nested: NestedBlock, bound: Tuple[str, ...]) -> List[Reference]:
    refs: List[Reference] = []
    names = bound
    if nested.type == "dynamic" and nested.labels:
        iterator = nested.attributes.get("iterator")
        if isinstance(iterator, Reference) and len(iterator.parts) == 1:
            names = bound + (iterator.parts[0],)
        else:
            names = bound + (nested.labels[0],)
    for name, expr in nested.attributes.items():
        if nested.type == "lifecycle" and name in _NON_REFERENCE_LIFECYCLE_ATTRIBUTES:
            continue
        if nested.type == "dynamic" and name == "iterator":
            continue
        # for_each динамического блока вычисляется вне области итератора
        refs.extend(references_in(expr, bound if name == "for_each" else names))
    for child in nested.blocks:
        refs.extend(_nested_references(child, names))
    return refs


def _scoped_data_keys(block: ResourceBlock) -> Set[NodeKey]:
    """Data sources, объявленные внутри check-блока и видимые только в нём."""
    if block.kind != "check":
        return set()
    return {
        (f"data.{nested.labels[0]}", nested.labels[1])
        for nested in block.blocks_of("data")
        if len(nested.labels) == 2
    }


def build_graph(module: ParsedModule, classifier: Optional[ValidationClassifier] = None) -> DependencyGraph:
    """
    Построить граф зависимостей модуля.

    Неразрешимые ссылки не прерывают построение, а попадают в graph.dangling.
    """
    classifier = classifier or ValidationClassifier()
    graph = DependencyGraph(module.path)

    graph_blocks = [b for b in module.blocks if b.kind in GRAPH_KINDS]
    accepted: List[ResourceBlock] = []
    for block in graph_blocks:
        if graph.add_node(block, classifier.is_validation(block)):
            accepted.append(block)

    for block in accepted:
        source = block.key
        for ref in block.depends_on:
            target = resolve_target(ref)
            if target is None or target not in graph.nodes:
                graph.dangling.append(DanglingReference(block.address, ref.dotted, ref.location))
                continue
            graph.add_edge(Edge(source, target, EdgeKind.DEPENDS_ON, ref.location))

        for ref in _block_references(block):
            target = resolve_target(ref)
            if target is None:
                continue
            if target not in graph.nodes:
                graph.dangling.append(DanglingReference(block.address, ref.dotted, ref.location))
                continue
            graph.add_edge(Edge(source, target, EdgeKind.IMPLICIT, ref.location))

    # Ссылки из output/locals/check тоже могут висеть в воздухе
    for block in module.blocks:
        if block.kind in GRAPH_KINDS or block.opaque or block.kind in _NO_DANGLING_SWEEP_KINDS:
            continue
        scoped = _scoped_data_keys(block)
        for ref in list(block.depends_on) + _block_references(block):
            target = resolve_target(ref)
            if target is not None and target not in graph.nodes and target not in scoped:
                graph.dangling.append(DanglingReference(block.address, ref.dotted, ref.location))

    logger.debug(
        f"Graph for {module.path}: {len(graph.nodes)} nodes, {len(graph.edges)} edges, "
        f"{len(graph.validations)} validations, {len(graph.dangling)} dangling"
    )
    return graph
