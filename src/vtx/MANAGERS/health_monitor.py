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
HTTP health checks for services, dependency-gated waits and the background
monitor that keeps health and resource figures fresh.
"""
import base64
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from http.client import HTTPException
from typing import Callable, List, Optional, Tuple, TypeVar
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import psutil
from tenacity import Retrying, retry_if_result, stop_after_delay, stop_when_event_set, wait_fixed

from ..exceptions import HealthCheckError, OrchestrationCancelledError
from ..MODELS.configuration import GlobalConfig
from ..MODELS.service import HealthStatus, ResponseTime, Service, ServiceStatus, utcnow
from .uptime_tracker import UptimeTracker

logger = logging.getLogger(__name__)

MIN_RETRY_INTERVAL = 0.05
MAX_RESPONSE_TIMES = 100
ERROR_RATE_WINDOW = 10
ACTUATOR_PATH = "/actuator/health"

T = TypeVar("T")


def poll(
    attempt: Callable[[], T],
    done: Callable[[T], bool],
    timeout: float,
    interval: float,
    cancel: Optional[threading.Event] = None,
) -> T:
    """
    Calls ``attempt`` every ``interval`` seconds until ``done`` accepts its
    result, ``timeout`` elapses or ``cancel`` is set.

    A zero timeout makes exactly one attempt. Exceptions raised by
    ``attempt`` propagate immediately.

    :return: The last result, accepted or not.
    """
    stop = stop_after_delay(max(timeout, 0))
    sleep = time.sleep
    if cancel is not None:
        stop = stop | stop_when_event_set(cancel)
        sleep = cancel.wait
    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(max(interval, MIN_RETRY_INTERVAL)),
        retry=retry_if_result(lambda result: not done(result)),
        sleep=sleep,
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(attempt)


@dataclass
class HealthResult:
    """Outcome of a single probe."""

    status: HealthStatus
    latency: float = 0.0
    http_status: int = 0
    message: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


def _pid_alive(service: Service) -> bool:
    with service.read_lock():
        pid = service.pid
    return bool(pid) and psutil.pid_exists(pid)


class HealthChecker:
    """
    Probes a service's ``health_url`` and folds the outcome into its status,
    health and metrics.
    """

    def __init__(
        self,
        settings: Optional[GlobalConfig] = None,
        is_alive: Optional[Callable[[Service], bool]] = None,
        uptime: Optional[UptimeTracker] = None,
    ):
        """
        :param settings: Supplies the probe timeout and the startup grace period.
        :param is_alive: Liveness test for services without a health URL.
        :param uptime: Receives health transitions.
        """
        self.settings = settings or GlobalConfig()
        self.is_alive = is_alive or _pid_alive
        self.uptime = uptime

    def check(self, service: Service) -> HealthResult:
        """
        Runs one probe and records it.

        A 2xx answer is healthy and promotes a starting service to running.
        Anything else is unhealthy, except for a starting service still inside
        the startup grace period, which stays starting. A service without a
        health URL is promoted to running once its process is alive.
        """
        with service.read_lock():
            name = service.name
            url = service.health_url
            status = service.status
            last_started = service.last_started

        if not url:
            return self._check_liveness(service)

        started = time.monotonic()
        try:
            http_status, body = self._probe(name, url)
            message = ""
        except HealthCheckError as e:
            http_status, body = 0, ""
            message = str(e)
            logger.debug("%s", e)
        latency = time.monotonic() - started

        if 200 <= http_status < 300 and self._body_ok(url, body):
            health = HealthStatus.HEALTHY
        else:
            health = HealthStatus.UNHEALTHY
            if not message:
                message = f"health check returned HTTP {http_status}"
            if status == ServiceStatus.STARTING and self._within_grace(last_started):
                health = HealthStatus.STARTING

        result = HealthResult(status=health, latency=latency, http_status=http_status, message=message)
        self._record(service, result, success=0 < http_status < 400)
        return result

    def wait_until_healthy(
        self,
        service: Service,
        timeout: float,
        retry_interval: float,
        cancel: Optional[threading.Event] = None,
    ) -> HealthResult:
        """
        Repeats ``check`` until the service is healthy or the timeout
        elapses. Gives up early once the service is stopped or in error.

        :raises OrchestrationCancelledError: If ``cancel`` was set before success.
        """

        def attempt() -> Tuple[HealthResult, bool]:
            with service.read_lock():
                dead = service.status in (ServiceStatus.STOPPED, ServiceStatus.ERROR)
                status = service.status
            if dead:
                return HealthResult(HealthStatus.UNHEALTHY, message=f"service is {status.value}"), True
            return self.check(service), False

        result, _ = poll(attempt, lambda r: r[0].healthy or r[1], timeout, retry_interval, cancel)
        if not result.healthy and cancel is not None and cancel.is_set():
            raise OrchestrationCancelledError("health wait", service.name)
        return result

    def _check_liveness(self, service: Service) -> HealthResult:
        started = time.monotonic()
        alive = self.is_alive(service)
        result = HealthResult(
            HealthStatus.UNKNOWN,
            latency=time.monotonic() - started,
            message="no health URL configured" if alive else "process is not alive",
        )
        with service.write_lock():
            if alive and service.status == ServiceStatus.STARTING:
                service.status = ServiceStatus.RUNNING
                service.health_status = HealthStatus.UNKNOWN
                logger.info("Service %s is running", service.name)
        self._record(service, result, success=alive, update_health=False)
        return result

    def _probe(self, name: str, url: str) -> Tuple[int, str]:
        try:
            request = Request(url, method="GET")
            if ACTUATOR_PATH in url:
                username = os.environ.get("CONFIG_USERNAME")
                password = os.environ.get("CONFIG_PASSWORD")
                if username and password:
                    token = base64.b64encode(f"{username}:{password}".encode()).decode()
                    request.add_header("Authorization", f"Basic {token}")
            with urlopen(request, timeout=self.settings.health_timeout) as response:
                return response.status, response.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            return e.code, ""
        except (URLError, OSError, HTTPException, ValueError) as e:
            # HTTPException covers non-HTTP peers, ValueError a malformed URL
            reason = getattr(e, "reason", e)
            raise HealthCheckError(name, str(reason)) from e

    @staticmethod
    def _body_ok(url: str, body: str) -> bool:
        if ACTUATOR_PATH not in url:
            return True
        try:
            return json.loads(body).get("status") == "UP"
        except (ValueError, AttributeError):
            return False

    def _within_grace(self, last_started) -> bool:
        if last_started is None:
            return False
        return (utcnow() - last_started).total_seconds() < self.settings.health_startup_grace

    def _record(self, service: Service, result: HealthResult, success: bool, update_health: bool = True) -> None:
        """
        Folds one probe into the metrics. Liveness-only probes pass
        ``update_health=False`` and leave the health status alone.
        """
        now = utcnow()
        with service.write_lock():
            previous = service.health_status
            if update_health and service.status != ServiceStatus.STOPPING:
                service.health_status = result.status
            if result.healthy and service.status == ServiceStatus.STARTING:
                service.status = ServiceStatus.RUNNING
                logger.info("Service %s is healthy", service.name)

            metrics = service.metrics
            metrics.response_times.append(
                ResponseTime(
                    timestamp=now,
                    duration_ms=result.latency * 1000.0,
                    status_code=result.http_status,
                    success=success,
                )
            )
            del metrics.response_times[:-MAX_RESPONSE_TIMES]
            metrics.request_count += 1
            metrics.last_checked = now
            window = metrics.response_times[-ERROR_RATE_WINDOW:]
            failures = sum(1 for r in window if not r.success)
            metrics.error_rate = failures / len(window)
            changed = service.health_status != previous
            service_id = service.id

        if changed and self.uptime is not None and result.status in (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY):
            self.uptime.record(service_id, "health", result.status.value, now)


class HealthMonitor:
    """
    Background thread that checks every started service on
    ``health_check_interval`` and samples resources on ``metrics_interval``.
    """

    def __init__(
        self,
        services: Callable[[], List[Service]],
        checker: HealthChecker,
        resources=None,
        uptime: Optional[UptimeTracker] = None,
        settings: Optional[GlobalConfig] = None,
    ):
        """
        :param services: Returns the current services to watch.
        :param checker: Performs the probes.
        :param resources: Optional ResourceMonitor.
        :param uptime: Source of the uptime statistics copied into metrics.
        :param settings: Supplies both intervals.
        """
        self.services = services
        self.checker = checker
        self.resources = resources
        self.uptime = uptime
        self.settings = settings or checker.settings
        self.thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self):
        """
        Starts the monitoring thread.
        """
        if self.running:
            return
        self._stop.clear()
        self.thread = threading.Thread(target=self._monitor_loop, name="vtx-health-monitor", daemon=True)
        self.thread.start()

    def stop(self, timeout: float = 5):
        """
        Stops the monitoring thread and waits for it to finish.
        """
        self._stop.set()
        if self.thread:
            self.thread.join(timeout=timeout)
            self.thread = None

    def check_all(self) -> None:
        for service in self.services():
            with service.read_lock():
                active = service.status in (ServiceStatus.STARTING, ServiceStatus.RUNNING)
            if active:
                self.checker.check(service)
            if self.uptime is not None:
                stats = self.uptime.statistics(service.id)
                with service.write_lock():
                    service.metrics.uptime_stats = stats

    def sample_all(self) -> None:
        if self.resources is not None:
            self.resources.sample_all(self.services())

    def _monitor_loop(self):
        next_check = next_sample = time.monotonic()
        while not self._stop.is_set():
            now = time.monotonic()
            if now >= next_check:
                self._guarded(self.check_all)
                next_check = now + max(self.settings.health_check_interval, MIN_RETRY_INTERVAL)
            if now >= next_sample:
                self._guarded(self.sample_all)
                next_sample = now + max(self.settings.metrics_interval, MIN_RETRY_INTERVAL)
            self._stop.wait(max(min(next_check, next_sample) - time.monotonic(), MIN_RETRY_INTERVAL))

    @staticmethod
    def _guarded(task: Callable[[], None]) -> None:
        # one bad round must not end the monitor thread
        try:
            task()
        except Exception:
            logger.exception("Background monitoring round failed")
