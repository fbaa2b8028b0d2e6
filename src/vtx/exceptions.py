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
Error types raised by the registry, resolver, supervisor and orchestrator.

Every error names the service (and, for dependency errors, the edge target)
and renders as a single human-readable line.
"""
from typing import Any, List, Optional


class VtxError(Exception):
    """Base class for all vtx errors."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.service = service


class ServiceNotFoundError(VtxError):
    """No service is registered under the given id or name."""

    def __init__(self, key: str):
        super().__init__(f"service {key} not found", service=key)


class DuplicateServiceError(VtxError):
    """A service with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"service {name} is already registered", service=name)


class ValidationError(VtxError):
    """Structural configuration errors (missing dependencies, cycles)."""

    def __init__(self, errors: List[str], service: Optional[str] = None):
        self.errors = list(errors)
        message = "; ".join(self.errors) if self.errors else "invalid dependency configuration"
        super().__init__(message, service=service)


class MissingDependencyError(ValidationError):
    """A hard, required dependency points at a service that does not exist."""

    def __init__(self, service: str, dependency: str):
        self.dependency = dependency
        super().__init__(
            [f"service {service} depends on non-existent service {dependency}"],
            service=service,
        )


class CycleError(ValidationError):
    """The dependency graph is not acyclic; no order can be produced."""

    def __init__(self, nodes: List[str]):
        self.nodes = sorted(nodes)
        super().__init__(
            [f"circular dependency detected among: {', '.join(self.nodes)}"]
        )


class DependencyTimeoutError(VtxError):
    """A hard dependency edge was not satisfied within its timeout."""

    def __init__(
        self,
        service: str,
        dependency: str,
        timeout: float,
        reason: str = "",
        report: Any = None,
    ):
        self.dependency = dependency
        self.timeout = timeout
        self.reason = reason
        self.report = report
        message = f"timeout waiting for dependency {service} -> {dependency} (waited {timeout:g}s)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, service=service)


class AlreadyRunningError(VtxError):
    """Start was requested for a service that is not stopped."""

    def __init__(self, service: str, status: str = "running"):
        self.status = status
        super().__init__(f"service {service} is already {status}", service=service)


class NotRunningError(VtxError):
    """Stop was requested for a service that has no live process."""

    def __init__(self, service: str, status: str = "stopped"):
        self.status = status
        super().__init__(f"service {service} is not running (status: {status})", service=service)


class ProcessSpawnError(VtxError):
    """The service process could not be started."""

    def __init__(self, service: str, cause: str):
        self.cause = cause
        super().__init__(f"failed to start service {service}: {cause}", service=service)


class ProcessExitError(VtxError):
    """The service process exited without being asked to stop."""

    def __init__(self, service: str, exit_code: Optional[int]):
        self.exit_code = exit_code
        super().__init__(
            f"service {service} exited unexpectedly with code {exit_code}", service=service
        )


class HealthCheckError(VtxError):
    """A health probe failed at the network level."""

    def __init__(self, service: str, cause: str):
        self.cause = cause
        super().__init__(f"health check failed for {service}: {cause}", service=service)


class OrchestrationCancelledError(VtxError):
    """A long-running wait was aborted through its cancellation event."""

    def __init__(self, operation: str, service: Optional[str] = None):
        self.operation = operation
        where = f" while handling {service}" if service else ""
        super().__init__(f"{operation} was cancelled{where}", service=service)


class ProfileNotFoundError(VtxError):
    """No profile with the given name exists in the configuration store."""

    def __init__(self, name: str):
        self.profile = name
        super().__init__(f"profile {name} not found")


class ConfigurationError(VtxError):
    """A fleet file could not be read or does not describe a valid fleet."""

    def __init__(self, source: str, cause: str):
        self.source = source
        self.cause = cause
        super().__init__(f"invalid fleet configuration {source}: {cause}")
