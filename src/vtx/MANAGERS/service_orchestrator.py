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
Orchestration of a service fleet: dependency-gated startup, reverse-order
shutdown, profiles and single-service actions.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ..exceptions import (
    AlreadyRunningError,
    CycleError,
    DependencyTimeoutError,
    NotRunningError,
    OrchestrationCancelledError,
    ProcessSpawnError,
    ValidationError,
)
from ..MODELS.configuration import FleetConfig, GlobalConfig, Profile
from ..MODELS.dependency_graph import DependencyGraph, Edge, StartupOrder, ValidationResult
from ..MODELS.service import DependencyType, HealthStatus, LogEntry, Service, ServiceStatus
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.graph_builder import build_graph
from ..UTILS.rwlock import SyncRWLock
from .config_store import ConfigStore
from .dependency_validator import DependencyValidator
from .health_monitor import HealthChecker, HealthMonitor, poll
from .log_aggregator import LogAggregator
from .process_manager import ProcessSupervisor
from .registry import ServiceRegistry
from .resource_monitor import ResourceMonitor
from .uptime_tracker import UptimeTracker

logger = logging.getLogger(__name__)

_SATISFIED = "satisfied"
_FAILED = "failed"
_PENDING = "pending"


class OutcomeStatus(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already-running"
    SKIPPED = "skipped"
    STOPPED = "stopped"
    FAILED = "failed"
    NOT_STARTED = "not-started"


@dataclass
class ServiceOutcome:
    status: OutcomeStatus
    message: str = ""


@dataclass
class FleetReport:
    """
    Per-service outcomes of a fleet operation. Partial success is a valid
    result; ``succeeded`` is False as soon as one service failed or was
    never attempted.
    """

    operation: str
    order: List[str] = field(default_factory=list)
    outcomes: Dict[str, ServiceOutcome] = field(default_factory=dict)

    def record(self, name: str, status: OutcomeStatus, message: str = "") -> None:
        self.outcomes[name] = ServiceOutcome(status, message)

    @property
    def succeeded(self) -> bool:
        return not any(
            o.status in (OutcomeStatus.FAILED, OutcomeStatus.NOT_STARTED) for o in self.outcomes.values()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "order": list(self.order),
            "succeeded": self.succeeded,
            "outcomes": {
                name: {"status": o.status.value, "message": o.message} for name, o in self.outcomes.items()
            },
        }


@dataclass
class ServiceActionResult:
    """The updated service projection plus a human-readable message."""

    service: Dict[str, Any]
    message: str


class Orchestrator:
    """
    Coordinates the registry, resolver, supervisor and health checker.

    Fleet operations (start all, stop all, profiles) are mutually exclusive;
    single-service operations may run concurrently with each other. A stop
    of the fleet cancels every orchestration still waiting on a dependency.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        settings: Optional[GlobalConfig] = None,
        config_store: Optional[ConfigStore] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        health_checker: Optional[HealthChecker] = None,
        uptime: Optional[UptimeTracker] = None,
        resources: Optional[ResourceMonitor] = None,
    ):
        """
        Initializes the orchestrator.

        :param registry: The services to manage.
        :param settings: Global settings.
        :param config_store: Profiles and stored environment variables.
        :param supervisor: Process supervisor; built from the settings when omitted.
        :param health_checker: Health checker; built from the settings when omitted.
        :param uptime: Shared uptime tracker.
        :param resources: Resource sampler used by the background monitor.
        """
        self.registry = registry
        self.settings = settings or GlobalConfig()
        self.config_store = config_store or ConfigStore()
        self.uptime = uptime or UptimeTracker()
        self.supervisor = supervisor or ProcessSupervisor(
            self.settings, config_store=self.config_store, uptime=self.uptime
        )
        self.health_checker = health_checker or HealthChecker(
            self.settings, is_alive=self.supervisor.is_alive, uptime=self.uptime
        )
        self.resolver = DependencyResolver()
        self.validator = DependencyValidator()
        self.logs = LogAggregator(self.settings.log_dir)
        self.monitor = HealthMonitor(
            self.registry.list,
            self.health_checker,
            resources=resources or ResourceMonitor(),
            uptime=self.uptime,
            settings=self.settings,
        )
        self.active_profile: Optional[Profile] = None
        self._fleet_lock = SyncRWLock("fleet")
        self._cancels: Set[threading.Event] = set()
        self._cancels_lock = threading.Lock()

    @classmethod
    def from_fleet(cls, fleet: FleetConfig) -> "Orchestrator":
        """Builds an orchestrator for a parsed fleet file."""
        registry = ServiceRegistry(fleet.services, max_log_entries=fleet.settings.max_log_entries)
        return cls(registry, settings=fleet.settings, config_store=ConfigStore.from_fleet(fleet))

    # Fleet operations

    def start_all(self) -> FleetReport:
        """
        Starts every enabled service in dependency order.

        :raises ValidationError: If the configuration is invalid; nothing is started.
        :raises DependencyTimeoutError: If a hard dependency is not met; the
            partial report is attached to the error.
        :raises OrchestrationCancelledError: If a concurrent stop cancelled the run.
        """
        with self._operation() as cancel, self._fleet_lock.write_lock():
            graph, order = self._plan()
            report = FleetReport("start-all", order=[graph.name_of(i) for i in order])
            logger.info("Starting services in order: %s", ", ".join(report.order))
            self._start_sequence(graph, order, report, cancel)
            return report

    def stop_all(self) -> FleetReport:
        """
        Cancels in-flight orchestrations, then stops every running service,
        dependents before their dependencies.
        """
        self._cancel_all()
        with self._fleet_lock.write_lock():
            graph, _ = build_graph(self.registry.list())
            try:
                order = self.resolver.shutdown_order(graph)
            except CycleError as e:
                logger.warning("%s; stopping in registry order", e)
                order = list(reversed(graph.ids()))
            report = FleetReport("stop-all", order=[graph.name_of(i) for i in order])
            self._stop_sequence(order, report)
            return report

    def start_profile(self, name: str) -> FleetReport:
        """
        Activates a profile and starts its services plus everything they
        hard-depend on.

        :raises ProfileNotFoundError: If the profile is unknown.
        """
        profile = self.config_store.profile(name)
        with self._operation() as cancel, self._fleet_lock.write_lock():
            self.active_profile = profile
            requested = [self.registry.get(key).id for key in profile.services]
            graph, order = self._plan(requested)
            report = FleetReport(f"start-profile:{name}", order=[graph.name_of(i) for i in order])
            logger.info("Starting profile %s: %s", name, ", ".join(report.order))
            self._start_sequence(graph, order, report, cancel, requested=set(requested), profile=profile)
            return report

    def stop_profile(self, name: str) -> FleetReport:
        """
        Stops the services listed in a profile in reverse dependency order.
        Shared dependencies outside the profile keep running.
        """
        profile = self.config_store.profile(name)
        self._cancel_all()
        with self._fleet_lock.write_lock():
            members = {self.registry.get(key).id for key in profile.services}
            graph, _ = build_graph(self.registry.list())
            try:
                order = [i for i in self.resolver.shutdown_order(graph) if i in members]
            except CycleError:
                order = [i for i in reversed(graph.ids()) if i in members]
            report = FleetReport(f"stop-profile:{name}", order=[graph.name_of(i) for i in order])
            self._stop_sequence(order, report)
            if self.active_profile is not None and self.active_profile.name == name:
                self.active_profile = None
            return report

    # Single-service operations

    def start_one(self, key: str) -> ServiceActionResult:
        """
        Starts one service, first starting whatever it hard-depends on.

        :raises AlreadyRunningError: If the service is already up.
        """
        with self._operation() as cancel, self._fleet_lock.read_lock():
            service = self.registry.get(key)
            with service.read_lock():
                if service.status not in (ServiceStatus.STOPPED, ServiceStatus.ERROR):
                    raise AlreadyRunningError(service.name, service.status.value)
            graph, order = self._plan([service.id])
            report = FleetReport(f"start:{service.name}", order=[graph.name_of(i) for i in order])
            self._start_sequence(graph, order, report, cancel, requested={service.id}, profile=self.active_profile)
            outcome = report.outcomes.get(service.name)
            if outcome is not None and outcome.status == OutcomeStatus.FAILED:
                raise ProcessSpawnError(service.name, outcome.message)
            return ServiceActionResult(service.summary(), f"Service {service.name} started successfully")

    def stop_one(self, key: str) -> ServiceActionResult:
        """
        :raises NotRunningError: If the service has no live process.
        """
        with self._fleet_lock.read_lock():
            service = self.registry.get(key)
            self.supervisor.stop(service)
            return ServiceActionResult(service.summary(), f"Service {service.name} stopped successfully")

    def restart(self, key: str) -> ServiceActionResult:
        with self._fleet_lock.read_lock():
            service = self.registry.get(key)
            self.supervisor.restart(service, self.active_profile)
            return ServiceActionResult(service.summary(), f"Service {service.name} restarted successfully")

    def check_health(self, key: str) -> ServiceActionResult:
        service = self.registry.get(key)
        result = self.health_checker.check(service)
        message = f"Health check completed: {result.status.value}"
        if result.message and not result.healthy:
            message = f"{message} ({result.message})"
        return ServiceActionResult(service.summary(), message)

    # Views

    def status(self) -> List[Dict[str, Any]]:
        return [service.summary() for service in self.registry.list()]

    def validate(self) -> ValidationResult:
        """Validates the dependency configuration without raising."""
        graph, _ = build_graph(self.registry.list())
        return self.validator.validate(graph)

    def startup_order(self) -> StartupOrder:
        """
        :raises CycleError: If the dependencies contain a cycle.
        """
        graph, _ = build_graph(self.registry.list())
        return self.resolver.startup_order(graph)

    def dependency_overview(self) -> Dict[str, Dict[str, Any]]:
        """
        Per service: its declared dependencies, the services that depend on
        it and its startup delay. Refreshes the registry's reverse index.
        """
        graph, _ = build_graph(self.registry.list())
        self.registry.index_dependents(graph.dependents_index())
        overview = {}
        for service in self.registry.list():
            with service.read_lock():
                overview[service.name] = {
                    "dependencies": [d.model_dump(mode="json", by_alias=True) for d in service.dependencies],
                    "dependentOn": list(service.dependent_on),
                    "startupDelay": service.startup_delay,
                }
        return overview

    def clear_logs(self, keys: Optional[Iterable[str]] = None) -> Dict[str, str]:
        return self.logs.clear(self._services(keys))

    def recent_logs(
        self, keys: Optional[Iterable[str]] = None, limit: int = 200, level: Optional[str] = None
    ) -> List[Tuple[str, LogEntry]]:
        return self.logs.recent(self._services(keys), limit=limit, level=level)

    def shutdown(self) -> FleetReport:
        """Stops the background monitor and every running service."""
        self.monitor.stop()
        return self.stop_all()

    # Internals

    def _services(self, keys: Optional[Iterable[str]]) -> List[Service]:
        if keys is None:
            return self.registry.list()
        return [self.registry.get(key) for key in keys]

    @contextmanager
    def _operation(self) -> Iterator[threading.Event]:
        cancel = threading.Event()
        with self._cancels_lock:
            self._cancels.add(cancel)
        try:
            yield cancel
        finally:
            with self._cancels_lock:
                self._cancels.discard(cancel)

    def _cancel_all(self) -> None:
        with self._cancels_lock:
            for cancel in self._cancels:
                cancel.set()

    def _plan(self, requested: Optional[List[str]] = None) -> Tuple[DependencyGraph, List[str]]:
        """
        Builds and validates the graph (restricted to the hard-dependency
        closure of ``requested`` when given) and resolves the start order.
        """
        graph, _ = build_graph(self.registry.list())
        self.registry.index_dependents(graph.dependents_index())
        if requested is not None:
            closure: Set[str] = set()
            for service_id in requested:
                closure |= self.resolver.hard_closure(graph, service_id)
            graph = graph.subgraph(closure)

        result = self.validator.validate(graph)
        for warning in result.warnings:
            logger.warning("%s", warning)
        if not result.valid:
            raise ValidationError(result.errors)
        return graph, self.resolver.resolve(graph)

    def _start_sequence(
        self,
        graph: DependencyGraph,
        order: List[str],
        report: FleetReport,
        cancel: threading.Event,
        requested: Optional[Set[str]] = None,
        profile: Optional[Profile] = None,
    ) -> None:
        for position, service_id in enumerate(order):
            service = self.registry.get(service_id)
            node = graph.nodes[service_id]

            if not node.enabled and (requested is None or service_id not in requested):
                report.record(node.name, OutcomeStatus.SKIPPED, "service is disabled")
                continue
            with service.read_lock():
                status = service.status
            if status in (ServiceStatus.STARTING, ServiceStatus.RUNNING):
                report.record(node.name, OutcomeStatus.ALREADY_RUNNING, f"service is {status.value}")
                continue

            try:
                for edge in graph.dependencies_of(service_id):
                    self._await_dependency(graph, edge, cancel)
                if node.startup_delay > 0:
                    logger.debug("Delaying start of %s by %ss", node.name, node.startup_delay)
                    if cancel.wait(node.startup_delay):
                        raise OrchestrationCancelledError(report.operation, node.name)
            except DependencyTimeoutError as e:
                report.record(node.name, OutcomeStatus.FAILED, str(e))
                self._abandon(graph, order[position + 1:], report)
                e.report = report
                raise
            except OrchestrationCancelledError:
                report.record(node.name, OutcomeStatus.NOT_STARTED, "cancelled")
                self._abandon(graph, order[position + 1:], report)
                logger.warning("%s cancelled before starting %s", report.operation, node.name)
                raise

            try:
                self.supervisor.start(service, profile)
                report.record(node.name, OutcomeStatus.STARTED)
            except AlreadyRunningError as e:
                report.record(node.name, OutcomeStatus.ALREADY_RUNNING, str(e))
            except ProcessSpawnError as e:
                report.record(node.name, OutcomeStatus.FAILED, str(e))

    @staticmethod
    def _abandon(graph: DependencyGraph, remaining: List[str], report: FleetReport) -> None:
        for service_id in remaining:
            report.record(graph.name_of(service_id), OutcomeStatus.NOT_STARTED, "aborted")

    def _await_dependency(self, graph: DependencyGraph, edge: Edge, cancel: threading.Event) -> None:
        """
        Blocks until the dependency of ``edge`` is satisfied.

        Hard edges raise DependencyTimeoutError when the wait fails; soft
        edges only log a warning. Optional edges are never waited on. No
        service lock is held between polls.
        """
        dep = edge.dependency
        if edge.type == DependencyType.OPTIONAL:
            return
        source = graph.name_of(edge.source)
        target = self.registry.get(edge.target)
        hard = edge.type == DependencyType.HARD
        with target.read_lock():
            need_health = dep.health_check and bool(target.health_url)
            target_status = target.status

        timeout = dep.timeout
        if "timeout" not in dep.model_fields_set:
            timeout = self.settings.default_dependency_timeout
        interval = dep.retry_interval
        if "retry_interval" not in dep.model_fields_set:
            interval = self.settings.default_retry_interval

        if not hard and target_status == ServiceStatus.STOPPED and not graph.nodes[edge.target].enabled:
            logger.warning("Service %s: soft dependency %s is disabled, not waiting", source, target.name)
            return

        logger.info(
            "Service %s waiting for %s to be %s (timeout %gs)",
            source,
            target.name,
            "healthy" if need_health else "running",
            timeout,
        )
        state = poll(
            lambda: self._dependency_state(target, need_health),
            lambda s: s != _PENDING,
            timeout,
            interval,
            cancel,
        )
        if state == _SATISFIED:
            return
        if state == _PENDING and cancel.is_set():
            raise OrchestrationCancelledError("dependency wait", source)

        with target.read_lock():
            reason = f"{target.name} is {target.status.value}, health {target.health_status.value}"
        if hard:
            raise DependencyTimeoutError(source, target.name, timeout, reason)
        logger.warning(
            "Soft dependency %s -> %s not satisfied within %gs (%s), continuing", source, target.name, timeout, reason
        )

    def _dependency_state(self, target: Service, need_health: bool) -> str:
        state = self._read_state(target, need_health)
        if state == _PENDING:
            with target.read_lock():
                probe = target.status in (ServiceStatus.STARTING, ServiceStatus.RUNNING)
            if probe:
                self.health_checker.check(target)
                state = self._read_state(target, need_health)
        return state

    @staticmethod
    def _read_state(target: Service, need_health: bool) -> str:
        with target.read_lock():
            status = target.status
            health = target.health_status
        if status == ServiceStatus.ERROR:
            return _FAILED
        if status != ServiceStatus.RUNNING:
            return _PENDING
        if need_health and health != HealthStatus.HEALTHY:
            return _PENDING
        return _SATISFIED

    def _stop_sequence(self, order: List[str], report: FleetReport) -> None:
        for service_id in order:
            service = self.registry.get(service_id)
            try:
                self.supervisor.stop(service)
                report.record(service.name, OutcomeStatus.STOPPED)
            except NotRunningError as e:
                report.record(service.name, OutcomeStatus.SKIPPED, str(e))
            except OSError as e:
                report.record(service.name, OutcomeStatus.FAILED, str(e))
