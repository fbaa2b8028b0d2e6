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
Dependency resolution for services to determine startup and shutdown order.
"""
import heapq
from typing import Dict, List, Set, Tuple

from ..exceptions import CycleError
from ..MODELS.dependency_graph import DependencyGraph, StartupOrder
from ..MODELS.service import DependencyType


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """

    def resolve(self, graph: DependencyGraph) -> List[str]:
        """
        Determines the order to start services using Kahn's algorithm.

        Among services that are ready at the same time, lower ``order``
        values go first, then names in lexicographic order, so the result
        never depends on dict iteration order.

        :param graph: The dependency graph.
        :return: Service ids, every dependency before its dependents.
        :raises CycleError: If the graph has a cycle. No partial order is returned.
        """
        remaining: Dict[str, int] = {
            service_id: len(graph.dependencies_of(service_id)) for service_id in graph.nodes
        }
        ready: List[Tuple[int, str, str]] = [
            graph.nodes[service_id].sort_key
            for service_id, count in remaining.items()
            if count == 0
        ]
        heapq.heapify(ready)

        ordered: List[str] = []
        while ready:
            _, _, service_id = heapq.heappop(ready)
            ordered.append(service_id)
            for edge in graph.dependents_of(service_id):
                remaining[edge.source] -= 1
                if remaining[edge.source] == 0:
                    heapq.heappush(ready, graph.nodes[edge.source].sort_key)

        if len(ordered) != len(graph):
            blocked = [graph.name_of(i) for i, count in remaining.items() if count > 0]
            raise CycleError(blocked)
        return ordered

    def resolve_names(self, graph: DependencyGraph) -> List[str]:
        """Same as :meth:`resolve`, returning service names."""
        return [graph.name_of(service_id) for service_id in self.resolve(graph)]

    def shutdown_order(self, graph: DependencyGraph) -> List[str]:
        """Dependents before their dependencies: the startup order reversed."""
        return list(reversed(self.resolve(graph)))

    def startup_order(self, graph: DependencyGraph) -> StartupOrder:
        """
        The startup order as reported to API clients.
        """
        names = self.resolve_names(graph)
        return StartupOrder(startup_order=names, services=len(names))

    def hard_closure(self, graph: DependencyGraph, service_id: str) -> Set[str]:
        """
        The service plus everything it transitively needs through hard edges.

        :param graph: The dependency graph.
        :param service_id: The requested service.
        :return: Ids in the closure, including ``service_id``.
        """
        closure: Set[str] = set()
        stack = [service_id]
        while stack:
            current = stack.pop()
            if current in closure:
                continue
            closure.add(current)
            for edge in graph.dependencies_of(current):
                if edge.type == DependencyType.HARD and edge.target not in closure:
                    stack.append(edge.target)
        return closure
