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
Dependency graph derived from the service registry, plus the result types
produced by validation and startup-order resolution.

The graph is rebuilt on demand and never cached across registry changes.
Nodes are service ids; an edge points from a dependent to its dependency.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import Field

from .service import DependencyType, ServiceDependency, VtxModel, utcnow


@dataclass
class GraphNode:
    """Snapshot of the service attributes the graph algorithms need."""

    id: str
    name: str
    order: int = 0
    enabled: bool = True
    has_health_url: bool = False
    startup_delay: float = 0.0
    dependencies: List[ServiceDependency] = field(default_factory=list)

    @property
    def sort_key(self) -> Tuple[int, str, str]:
        return (self.order, self.name, self.id)


@dataclass(frozen=True)
class Edge:
    """A resolved dependency: ``source`` depends on ``target``."""

    source: str
    target: str
    dependency: ServiceDependency

    @property
    def type(self) -> DependencyType:
        return self.dependency.type


@dataclass
class Cycle:
    """A dependency cycle as service names, following dependency direction."""

    nodes: List[str]

    def __str__(self) -> str:
        if not self.nodes:
            return ""
        return " -> ".join(self.nodes + [self.nodes[0]])


class DependencyGraph:
    """
    Adjacency structure over service ids.
    """

    def __init__(self):
        self.nodes: Dict[str, GraphNode] = {}
        self._ids_by_name: Dict[str, str] = {}
        self._outgoing: Dict[str, List[Edge]] = {}
        self._incoming: Dict[str, List[Edge]] = {}
        # (dependent id, dependency) pairs whose target name is not registered
        self.unresolved: List[Tuple[str, ServiceDependency]] = []

    def add_node(self, node: GraphNode) -> None:
        self.nodes[node.id] = node
        self._ids_by_name[node.name] = node.id
        self._outgoing.setdefault(node.id, [])
        self._incoming.setdefault(node.id, [])

    def add_edge(self, edge: Edge) -> None:
        self._outgoing[edge.source].append(edge)
        self._incoming[edge.target].append(edge)

    def __contains__(self, service_id: str) -> bool:
        return service_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def id_for(self, name: str) -> Optional[str]:
        return self._ids_by_name.get(name)

    def name_of(self, service_id: str) -> str:
        node = self.nodes.get(service_id)
        return node.name if node else service_id

    def ids(self) -> List[str]:
        """All node ids, sorted by (order, name)."""
        return [n.id for n in sorted(self.nodes.values(), key=lambda n: n.sort_key)]

    def dependencies_of(self, service_id: str) -> List[Edge]:
        return list(self._outgoing.get(service_id, []))

    def dependents_of(self, service_id: str) -> List[Edge]:
        return list(self._incoming.get(service_id, []))

    def edges(self) -> Iterable[Edge]:
        for service_id in self.ids():
            yield from self._outgoing[service_id]

    def dependents_index(self) -> Dict[str, List[str]]:
        """
        Reverse index: service name -> sorted names of services that declare
        it as a dependency.
        """
        index: Dict[str, List[str]] = {node.name: [] for node in self.nodes.values()}
        for service_id, edges in self._incoming.items():
            names = {self.nodes[e.source].name for e in edges}
            index[self.nodes[service_id].name] = sorted(names)
        return index

    def subgraph(self, service_ids: Iterable[str]) -> "DependencyGraph":
        """
        Restricts the graph to ``service_ids``; edges leaving the set are dropped.
        Unresolved dependencies of kept services are carried over.
        """
        keep = set(service_ids)
        sub = DependencyGraph()
        for service_id in keep:
            sub.add_node(self.nodes[service_id])
        for service_id in keep:
            for edge in self._outgoing[service_id]:
                if edge.target in keep:
                    sub.add_edge(edge)
        sub.unresolved = [(source, dep) for source, dep in self.unresolved if source in keep]
        return sub


class ValidationResult(VtxModel):
    """Outcome of validating the dependency configuration."""

    valid: bool = True
    errors: List[str] = []
    warnings: List[str] = []
    checked: datetime = Field(default_factory=utcnow)


class StartupOrder(VtxModel):
    """A computed start sequence."""

    startup_order: List[str] = []
    services: int = 0
    generated: datetime = Field(default_factory=utcnow)
