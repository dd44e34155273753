"""
Dependency graph and execution plan models.

Service names are interned to integer indices in definition order; the
graph stores, for every index, the indices it depends on.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Set, Tuple

from .errors import UnknownServiceError


@dataclass(frozen=True)
class DependencyGraph:
    """
    Directed acyclic graph of services. An edge ``a -> b`` means ``a`` needs
    ``b`` to be running first.
    """

    names: Tuple[str, ...]
    edges: Tuple[Tuple[int, ...], ...]
    _index: Dict[str, int] = field(init=False, repr=False, compare=False)
    _reverse: Tuple[Tuple[int, ...], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_index", {name: i for i, name in enumerate(self.names)})
        reverse: List[List[int]] = [[] for _ in self.names]
        for src, deps in enumerate(self.edges):
            for dep in deps:
                reverse[dep].append(src)
        object.__setattr__(self, "_reverse", tuple(tuple(r) for r in reverse))

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def index_of(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise UnknownServiceError(name) from None

    def dependencies(self, name: str) -> List[str]:
        """Services ``name`` links to directly."""
        return [self.names[i] for i in self.edges[self.index_of(name)]]

    def dependents(self, name: str) -> List[str]:
        """Services that link to ``name`` directly."""
        return [self.names[i] for i in self._reverse[self.index_of(name)]]

    def ancestors(self, name: str) -> List[str]:
        """Every service ``name`` transitively depends on, in definition order."""
        return self._names_of(self._walk([self.index_of(name)], self.edges))

    def descendants(self, name: str) -> List[str]:
        """Every service that transitively depends on ``name``, in definition order."""
        return self._names_of(self._walk([self.index_of(name)], self._reverse))

    def closure(self, names: Iterable[str]) -> List[str]:
        """
        The given services plus all their ancestors, in definition order.
        """
        start = [self.index_of(n) for n in names]
        reached = self._walk(start, self.edges) | set(start)
        return self._names_of(reached)

    def edge_list(self) -> List[Tuple[str, str]]:
        return [(self.names[src], self.names[dep]) for src, deps in enumerate(self.edges) for dep in deps]

    def _walk(self, start: List[int], adjacency: Tuple[Tuple[int, ...], ...]) -> Set[int]:
        seen: Set[int] = set()
        stack = [n for i in start for n in adjacency[i]]
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(adjacency[node])
        return seen

    def _names_of(self, indices: Set[int]) -> List[str]:
        return [self.names[i] for i in sorted(indices)]


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Ordered batches of services. Services within one batch have no ordering
    relationship; every dependency of a batch lives in an earlier batch.
    """

    batches: Tuple[Tuple[str, ...], ...]

    def __iter__(self) -> Iterator[Tuple[str, ...]]:
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    def services(self) -> List[str]:
        return [name for batch in self.batches for name in batch]

    def batch_index(self, name: str) -> int:
        for i, batch in enumerate(self.batches):
            if name in batch:
                return i
        raise UnknownServiceError(name)

    def restrict(self, names: Iterable[str]) -> "ExecutionPlan":
        """
        Keeps only ``names``, preserving batch order and dropping batches
        that end up empty.
        """
        keep = set(names)
        batches = tuple(
            tuple(n for n in batch if n in keep) for batch in self.batches
        )
        return ExecutionPlan(tuple(b for b in batches if b))

    def reversed(self) -> "ExecutionPlan":
        """The same batches, last first (dependents before dependencies)."""
        return ExecutionPlan(tuple(reversed(self.batches)))

    def flattened(self) -> "ExecutionPlan":
        """All services in a single batch, for commands with no ordering."""
        services = tuple(self.services())
        return ExecutionPlan((services,) if services else ())
