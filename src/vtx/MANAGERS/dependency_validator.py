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
Validation of the dependency configuration without touching any state.
"""
import logging

from ..MODELS.dependency_graph import DependencyGraph, ValidationResult
from ..MODELS.service import DependencyType
from ..RUNNERS.graph_builder import detect_cycles

logger = logging.getLogger(__name__)


class DependencyValidator:
    """
    Reports configuration errors and warnings for a dependency graph.

    Errors are missing targets of hard, required edges and cycles. Warnings
    cover edges that will not behave as configured: soft, optional or
    non-required edges to missing services, edges to disabled services, and
    health-gated edges to services without a health URL. Warnings never make
    the result invalid.
    """

    def validate(self, graph: DependencyGraph) -> ValidationResult:
        errors = []
        warnings = []

        for source_id, dep in graph.unresolved:
            source = graph.name_of(source_id)
            if dep.type == DependencyType.HARD and dep.required:
                errors.append(f"service {source} depends on non-existent service {dep.service_name}")
            else:
                warnings.append(
                    f"service {source} has {dep.type.value} dependency on non-existent service {dep.service_name}"
                )

        for edge in graph.edges():
            source = graph.nodes[edge.source]
            target = graph.nodes[edge.target]
            if not target.enabled:
                warnings.append(
                    f"service {source.name} has {edge.type.value} dependency on disabled service {target.name}"
                )
            if edge.dependency.health_check and not target.has_health_url:
                warnings.append(
                    f"service {source.name} waits for health of {target.name}, which has no health URL"
                )

        cycles, _ = detect_cycles(graph)
        for cycle in cycles:
            errors.append(f"circular dependency detected: {cycle}")

        result = ValidationResult(valid=not errors, errors=errors, warnings=warnings)
        if errors:
            logger.warning("Dependency validation failed: %s", "; ".join(errors))
        return result
