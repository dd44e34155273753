"""
Dependency resolution for services to determine startup and shutdown order.
"""
import logging
from typing import Dict, List, Tuple

from ..MODELS.dependency_graph import DependencyGraph, ExecutionPlan
from ..MODELS.errors import CyclicDependencyError, UnknownServiceError
from ..MODELS.pod_config import PodConfig

logger = logging.getLogger(__name__)

_UNSEEN, _VISITING, _VISITED = 0, 1, 2


class DependencyGraphBuilder:
    """
    Builds the link graph of a pod and the batched order to run it in.
    """

    def build(self, config: PodConfig) -> DependencyGraph:
        """
        Builds the dependency graph from service links.

        :param config: The merged pod configuration.
        :return: The validated, acyclic graph.
        :raises UnknownServiceError: If a link names an undefined service.
        :raises CyclicDependencyError: If the links form a cycle.
        """
        names = config.service_names()
        index: Dict[str, int] = {name: i for i, name in enumerate(names)}

        edges: List[Tuple[int, ...]] = []
        for name in names:
            deps = []
            for target in config.services[name].link_targets():
                if target not in index:
                    raise UnknownServiceError(target, from_service=name)
                deps.append(index[target])
            edges.append(tuple(deps))

        graph = DependencyGraph(tuple(names), tuple(edges))
        self._check_acyclic(graph)
        return graph

    def plan(self, graph: DependencyGraph) -> ExecutionPlan:
        """
        Layers the graph into batches (Kahn's algorithm, run from the
        services with no dependencies outwards).

        :param graph: An acyclic dependency graph.
        :return: The execution plan.
        """
        remaining = [len(deps) for deps in graph.edges]
        dependents: List[List[int]] = [[] for _ in graph.names]
        for src, deps in enumerate(graph.edges):
            for dep in deps:
                dependents[dep].append(src)

        batches = []
        current = [i for i, count in enumerate(remaining) if count == 0]
        while current:
            batches.append(tuple(graph.names[i] for i in current))
            ready = []
            for node in current:
                for dependent in dependents[node]:
                    remaining[dependent] -= 1
                    if remaining[dependent] == 0:
                        ready.append(dependent)
            current = sorted(ready)

        plan = ExecutionPlan(tuple(batches))
        logger.debug("Execution plan: %s", [list(b) for b in plan])
        return plan

    def build_plan(self, config: PodConfig) -> Tuple[DependencyGraph, ExecutionPlan]:
        graph = self.build(config)
        return graph, self.plan(graph)

    def _check_acyclic(self, graph: DependencyGraph):
        """
        Depth-first search with visiting/visited marks; a link back to a
        service still being visited closes a cycle.
        """
        state = [_UNSEEN] * len(graph)
        for root in range(len(graph)):
            if state[root] != _UNSEEN:
                continue
            state[root] = _VISITING
            path = [root]
            pending = [iter(graph.edges[root])]
            while path:
                nxt = next(pending[-1], None)
                if nxt is None:
                    state[path.pop()] = _VISITED
                    pending.pop()
                elif state[nxt] == _VISITING:
                    cycle = path[path.index(nxt):] + [nxt]
                    raise CyclicDependencyError([graph.names[i] for i in cycle])
                elif state[nxt] == _UNSEEN:
                    state[nxt] = _VISITING
                    path.append(nxt)
                    pending.append(iter(graph.edges[nxt]))
