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
Lifecycle management for service processes.

The supervisor owns the live process handles in a side table keyed by
service id. Services only ever see the projection: status, PID, health and
captured log lines.
"""
import logging
import os
import threading
from functools import partial
from typing import Dict, List, Optional, Set

from ..exceptions import AlreadyRunningError, NotRunningError, ProcessExitError, ProcessSpawnError
from ..MODELS.configuration import GlobalConfig, Profile
from ..MODELS.service import HealthStatus, LogEntry, Service, ServiceStatus, utcnow
from ..RUNNERS.build_system import build_start_command, resolve_service_dir
from ..RUNNERS.process_runner import ProcessRunner
from ..UTILS.port_finder import is_port_in_use
from .config_store import ConfigStore
from .environment_manager import EnvironmentManager
from .log_aggregator import parse_log_line
from .uptime_tracker import UptimeTracker

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """
    Starts, stops and watches one OS process per service.

    States: stopped -> starting -> running -> stopping -> stopped. A spawn
    failure or an exit nobody asked for moves the service to error. Readiness
    (starting -> running) is decided by the health checker, not here.
    """

    def __init__(
        self,
        settings: Optional[GlobalConfig] = None,
        env_manager: Optional[EnvironmentManager] = None,
        config_store: Optional[ConfigStore] = None,
        uptime: Optional[UptimeTracker] = None,
    ):
        """
        :param settings: Global settings (projects dir, stop timeout, log dir).
        :param env_manager: Builds process environments.
        :param config_store: Source of global and stored per-service variables.
        :param uptime: Receives start/stop/crash events.
        """
        self.settings = settings or GlobalConfig()
        self.env_manager = env_manager or EnvironmentManager(
            self.settings.projects_dir, self.settings.java_home_override
        )
        self.config_store = config_store or ConfigStore()
        self.uptime = uptime or UptimeTracker()
        self._runners: Dict[str, ProcessRunner] = {}
        self._stopping: Set[str] = set()
        self._table_lock = threading.Lock()

    def start(self, service: Service, profile: Optional[Profile] = None) -> Service:
        """
        Spawns the service process and returns without waiting for readiness.

        :param service: The service to start.
        :param profile: Active profile, supplying env vars and directory overrides.
        :raises AlreadyRunningError: If the service is not stopped or in error.
        :raises ProcessSpawnError: If the process could not be spawned.
        """
        with service.read_lock():
            port = service.port
        if port and is_port_in_use(port):
            logger.warning("Port %s for service %s is already in use", port, service.name)

        with service.write_lock():
            if service.status not in (ServiceStatus.STOPPED, ServiceStatus.ERROR):
                raise AlreadyRunningError(service.name, service.status.value)

            projects_dir = self.settings.projects_dir
            if profile is not None and profile.projects_dir:
                projects_dir = profile.projects_dir
            service_dir = resolve_service_dir(service, projects_dir)
            if not os.path.isdir(service_dir):
                self._fail_spawn(service, f"service directory does not exist: {service_dir}")

            command, tool_env = build_start_command(service, service_dir)
            global_env = self.config_store.global_env()
            java_home = None
            if profile is not None:
                global_env.update(profile.env_vars)
                java_home = profile.java_home_override or None
            env = self.env_manager.get_merged_environment(
                service,
                global_env=global_env,
                stored_env=self.config_store.service_env(service.id),
                java_home_override=java_home,
            )
            env.update(tool_env)

            service.logs = []
            runner = ProcessRunner(
                service.name,
                on_output=partial(self._ingest, service),
                log_file=self._log_file(service),
            )
            try:
                runner.start(command, env=env, working_dir=service_dir)
            except OSError as e:
                self._fail_spawn(service, str(e))

            service.status = ServiceStatus.STARTING
            service.health_status = HealthStatus.STARTING
            service.pid = runner.pid
            service.last_started = utcnow()
            with self._table_lock:
                self._runners[service.id] = runner

        self.uptime.record(service.id, "start", "running")
        watcher = threading.Thread(
            target=self._watch, args=(service, runner), name=f"{service.name}-watch", daemon=True
        )
        watcher.start()
        logger.info("Started service %s with PID %s", service.name, runner.pid)
        return service

    def stop(self, service: Service) -> Service:
        """
        Terminates the service process: SIGTERM, then SIGKILL after the grace period.

        :raises NotRunningError: If there is no live process to stop.
        """
        with service.write_lock():
            with self._table_lock:
                runner = self._runners.get(service.id)
            if runner is None or service.status in (
                ServiceStatus.STOPPED,
                ServiceStatus.STOPPING,
                ServiceStatus.ERROR,
            ):
                raise NotRunningError(service.name, service.status.value)
            service.status = ServiceStatus.STOPPING
            with self._table_lock:
                self._stopping.add(service.id)

        logger.info("Stopping service %s (PID: %s)", service.name, runner.pid)
        try:
            exit_code = runner.stop(timeout=self.settings.stop_timeout)
        except OSError as e:
            with service.write_lock():
                with self._table_lock:
                    self._stopping.discard(service.id)
                service.status = ServiceStatus.ERROR
                service.append_log(LogEntry(level="ERROR", message=f"Failed to stop process: {e}"))
            raise

        with service.write_lock():
            with self._table_lock:
                if self._runners.get(service.id) is runner:
                    del self._runners[service.id]
                self._stopping.discard(service.id)
            service.status = ServiceStatus.STOPPED
            service.health_status = HealthStatus.UNKNOWN
            service.pid = None
            service.cpu_percent = 0.0
            service.memory_usage = 0
            service.memory_percent = 0.0

        self.uptime.record(service.id, "stop", "stopped")
        logger.info("Stopped service %s (exit code %s)", service.name, exit_code)
        return service

    def restart(self, service: Service, profile: Optional[Profile] = None) -> Service:
        """
        Stops then starts the service. A process that already exited does
        not fail the stop half.
        """
        try:
            self.stop(service)
        except NotRunningError:
            logger.info("Service %s was not running, starting it", service.name)
        return self.start(service, profile)

    def is_alive(self, service: Service) -> bool:
        with self._table_lock:
            runner = self._runners.get(service.id)
        return runner is not None and runner.is_running()

    def supervised(self) -> List[str]:
        """Ids of services that currently have a process handle."""
        with self._table_lock:
            return list(self._runners)

    def shutdown(self, services: List[Service]) -> None:
        """
        Stops every supervised process among ``services``.
        """
        for service in services:
            if service.id in self.supervised():
                try:
                    self.stop(service)
                except NotRunningError:
                    pass

    def _ingest(self, service: Service, line: str, stream: str) -> None:
        service.append_log(parse_log_line(line))

    def _log_file(self, service: Service) -> Optional[str]:
        if not self.settings.log_dir:
            return None
        return os.path.join(self.settings.log_dir, f"{service.name}.log")

    def _fail_spawn(self, service: Service, cause: str) -> None:
        # caller holds the service write lock
        service.status = ServiceStatus.ERROR
        service.health_status = HealthStatus.UNKNOWN
        service.pid = None
        service.append_log(LogEntry(level="ERROR", message=f"Failed to start: {cause}"))
        self.uptime.record(service.id, "crash", "error")
        logger.error("Failed to start service %s: %s", service.name, cause)
        raise ProcessSpawnError(service.name, cause)

    def _watch(self, service: Service, runner: ProcessRunner) -> None:
        exit_code = runner.wait()
        with service.write_lock():
            with self._table_lock:
                current = self._runners.get(service.id)
                requested = service.id in self._stopping
                if current is runner and not requested:
                    del self._runners[service.id]
            if current is not runner or requested:
                return
            error = ProcessExitError(service.name, exit_code)
            service.status = ServiceStatus.ERROR
            service.health_status = HealthStatus.UNHEALTHY
            service.pid = None
            service.append_log(LogEntry(level="ERROR", message=str(error)))
        self.uptime.record(service.id, "crash", "error")
        logger.error("%s", error)
