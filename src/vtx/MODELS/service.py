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
Models for managed services, their dependency edges, logs and metrics.

A Service holds only serialisable state. The live process handle belongs to
the ProcessSupervisor; status, PID, health and logs are a projection that the
supervisor and health checker update under the service's own lock.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel

from ..UTILS.durations import format_duration, parse_duration
from ..UTILS.rwlock import SyncRWLock

DEFAULT_MAX_LOG_ENTRIES = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceStatus(str, Enum):
    """Process lifecycle state."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class HealthStatus(str, Enum):
    """Result of the most recent health probe."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class BuildSystem(str, Enum):
    """Build tool used to run a service."""

    MAVEN = "maven"
    GRADLE = "gradle"
    AUTO = "auto"


class DependencyType(str, Enum):
    """
    How strongly a service depends on another one.

    hard: startup blocks and fails on timeout.
    soft: startup waits, then proceeds with a warning.
    optional: informational only, never waited on.
    """

    HARD = "hard"
    SOFT = "soft"
    OPTIONAL = "optional"


class VtxModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class EnvVar(VtxModel):
    """A single environment variable configured for a service."""

    name: str = ""
    value: str = ""
    description: str = ""
    is_required: bool = False


class LogEntry(VtxModel):
    """One line of captured service output."""

    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "INFO"
    message: str = ""


class ResponseTime(VtxModel):
    """
    Timing of one health probe. ``status_code`` is 0 when no response arrived
    or the probe was a plain liveness check.
    """

    timestamp: datetime = Field(default_factory=utcnow)
    duration_ms: float = 0.0
    status_code: int = 0
    success: bool = True


class UptimeStatistics(VtxModel):
    """Availability figures derived from the uptime event history."""

    total_restarts: int = 0
    uptime_percentage_24h: float = 100.0
    uptime_percentage_7d: float = 100.0
    mtbf: float = 0.0
    last_downtime: Optional[datetime] = None
    total_downtime_24h: float = 0.0
    total_downtime_7d: float = 0.0


class ServiceMetrics(VtxModel):
    """Health-probe metrics for a service."""

    response_times: List[ResponseTime] = []
    error_rate: float = 0.0
    request_count: int = 0
    last_checked: Optional[datetime] = None
    uptime_stats: UptimeStatistics = Field(default_factory=UptimeStatistics)


class ServiceDependency(VtxModel):
    """
    A directed edge from the owning (dependent) service to ``service_name``.

    Timeouts and retry intervals are stored in seconds and accept duration
    strings such as ``"30s"`` or ``"2m"``.
    """

    service_name: str
    type: DependencyType = DependencyType.HARD
    required: bool = True
    health_check: bool = False
    timeout: float = 60.0
    retry_interval: float = 2.0
    description: str = ""

    @field_validator("timeout", "retry_interval", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)


class Service(VtxModel):
    """
    A managed unit of deployment: one Java service run by its build tool.
    """

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str = ""

    # Process attributes
    dir: str = ""
    command: List[str] = []
    build_system: BuildSystem = BuildSystem.AUTO
    java_opts: str = ""
    verbose_logging: bool = False
    port: int = 0
    health_url: str = ""
    is_enabled: bool = True
    env_vars: Dict[str, EnvVar] = {}
    env_file: Optional[str] = None

    # Dependencies
    order: int = 0
    dependencies: List[ServiceDependency] = []
    dependent_on: List[str] = []
    startup_delay: float = 0.0

    # Runtime state
    status: ServiceStatus = ServiceStatus.STOPPED
    health_status: HealthStatus = HealthStatus.UNKNOWN
    pid: Optional[int] = None
    last_started: Optional[datetime] = None

    # Resources
    cpu_percent: float = 0.0
    memory_usage: int = 0
    memory_percent: float = 0.0
    disk_usage: int = 0

    # Observability
    logs: List[LogEntry] = []
    metrics: ServiceMetrics = Field(default_factory=ServiceMetrics)

    _lock: SyncRWLock = PrivateAttr(default=None)
    _log_capacity: int = PrivateAttr(default=DEFAULT_MAX_LOG_ENTRIES)

    @field_validator("startup_delay", mode="before")
    @classmethod
    def _parse_startup_delay(cls, value: Any) -> float:
        return parse_duration(value)

    def model_post_init(self, __context: Any) -> None:
        self._lock = SyncRWLock(name=self.name)

    def read_lock(self):
        """Shared lock for reading runtime state."""
        return self._lock.read_lock()

    def write_lock(self):
        """Exclusive lock for status, PID, health and log mutations."""
        return self._lock.write_lock()

    @property
    def log_capacity(self) -> int:
        return self._log_capacity

    def set_log_capacity(self, capacity: int) -> None:
        """
        Sets the maximum number of retained log entries, evicting the oldest.
        """
        with self.write_lock():
            self._log_capacity = max(int(capacity), 1)
            self._trim_logs()

    def append_log(self, entry: LogEntry) -> LogEntry:
        """Appends a log entry; the oldest entries are dropped past capacity."""
        with self.write_lock():
            self.logs.append(entry)
            self._trim_logs()
        return entry

    def clear_logs(self) -> None:
        with self.write_lock():
            self.logs = []

    def _trim_logs(self) -> None:
        overflow = len(self.logs) - self._log_capacity
        if overflow > 0:
            del self.logs[:overflow]

    @property
    def is_active(self) -> bool:
        """True while a process exists or is being stopped."""
        return self.status in (ServiceStatus.STARTING, ServiceStatus.RUNNING, ServiceStatus.STOPPING)

    @property
    def uptime(self) -> str:
        """Time since the last start, empty unless the service is up."""
        if self.last_started is None or self.status not in (ServiceStatus.STARTING, ServiceStatus.RUNNING):
            return ""
        return format_duration((utcnow() - self.last_started).total_seconds())

    def summary(self, include_logs: bool = False) -> Dict[str, Any]:
        """
        The serialisable projection handed to API and UI layers.
        """
        with self.read_lock():
            exclude = None if include_logs else {"logs"}
            data = self.model_dump(mode="json", by_alias=True, exclude=exclude)
            data["uptime"] = self.uptime
        return data
