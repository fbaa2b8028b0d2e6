# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Construction of the dependency graph and cycle detection.
"""
from typing import Dict, Iterable, List, Set, Tuple

from ..exceptions import MissingDependencyError
from ..MODELS.dependency_graph import Cycle, DependencyGraph, Edge, GraphNode
from ..MODELS.service import DependencyType, Service

UNVISITED = 0
IN_PROGRESS = 1
DONE = 2


def build_graph(services: Iterable[Service]) -> Tuple[DependencyGraph, List[MissingDependencyError]]:
    """
    Builds the dependency graph from a set of services.

    Dependency targets are resolved by name. Targets that do not exist are
    kept in ``graph.unresolved``; the hard, required ones are also returned
    as errors. Construction never stops early, the caller decides whether
    to proceed.

    :param services: Services to include, usually the whole registry.
    :return: The graph and the list of missing hard dependencies.
    """
    graph = DependencyGraph()
    for service in services:
        with service.read_lock():
            node = GraphNode(
                id=service.id,
                name=service.name,
                order=service.order,
                enabled=service.is_enabled,
                has_health_url=bool(service.health_url),
                startup_delay=service.startup_delay,
                dependencies=list(service.dependencies),
            )
        graph.add_node(node)

    errors: List[MissingDependencyError] = []
    for service_id in graph.ids():
        node = graph.nodes[service_id]
        for dep in node.dependencies:
            target = graph.id_for(dep.service_name)
            if target is None:
                graph.unresolved.append((node.id, dep))
                if dep.type == DependencyType.HARD and dep.required:
                    errors.append(MissingDependencyError(node.name, dep.service_name))
                continue
            graph.add_edge(Edge(source=node.id, target=target, dependency=dep))
    return graph, errors


def detect_cycles(graph: DependencyGraph) -> Tuple[List[Cycle], bool]:
    """
    Finds dependency cycles with a depth-first traversal.

    Each node moves through unvisited -> in progress -> done. Reaching a node
    that is still in progress is a back edge; the cycle is read off the active
    path. Every distinct cycle found is reported, rotated so that the
    alphabetically first service leads.

    :param graph: The graph to inspect.
    :return: The cycles found and whether there were any.
    """
    state: Dict[str, int] = {service_id: UNVISITED for service_id in graph.nodes}
    path: List[str] = []
    cycles: List[Cycle] = []
    seen: Set[Tuple[str, ...]] = set()

    def visit(service_id: str) -> None:
        state[service_id] = IN_PROGRESS
        path.append(service_id)
        edges = sorted(
            graph.dependencies_of(service_id),
            key=lambda e: graph.nodes[e.target].sort_key,
        )
        for edge in edges:
            if state[edge.target] == IN_PROGRESS:
                names = [graph.name_of(i) for i in path[path.index(edge.target):]]
                key = _canonical(names)
                if key not in seen:
                    seen.add(key)
                    cycles.append(Cycle(nodes=list(key)))
            elif state[edge.target] == UNVISITED:
                visit(edge.target)
        path.pop()
        state[service_id] = DONE

    for service_id in graph.ids():
        if state[service_id] == UNVISITED:
            visit(service_id)

    return cycles, bool(cycles)


def _canonical(names: List[str]) -> Tuple[str, ...]:
    start = names.index(min(names))
    return tuple(names[start:] + names[:start])
