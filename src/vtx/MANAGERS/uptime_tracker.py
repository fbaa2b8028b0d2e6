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
Uptime tracking: per-service state change history and availability statistics.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..MODELS.service import UptimeStatistics, utcnow

MAX_EVENTS_PER_SERVICE = 1000

DOWN_STATES = {"stopped", "unhealthy", "error"}
UP_STATES = {"running", "healthy"}


@dataclass
class UptimeEvent:
    """A single state change of a service."""

    service_id: str
    event_type: str  # start, stop, restart, crash, health
    status: str
    timestamp: datetime


class UptimeTracker:
    """
    Records state changes and derives uptime figures from them.
    """

    def __init__(self, max_events: int = MAX_EVENTS_PER_SERVICE):
        self.max_events = max_events
        self._events: Dict[str, List[UptimeEvent]] = {}
        self._lock = threading.Lock()

    def record(self, service_id: str, event_type: str, status: str, timestamp: Optional[datetime] = None) -> UptimeEvent:
        """
        Records a state change; only the newest ``max_events`` are kept per service.
        """
        event = UptimeEvent(service_id, event_type, status, timestamp or utcnow())
        with self._lock:
            events = self._events.setdefault(service_id, [])
            events.append(event)
            if len(events) > self.max_events:
                del events[: len(events) - self.max_events]
        return event

    def events(self, service_id: str) -> List[UptimeEvent]:
        with self._lock:
            return list(self._events.get(service_id, []))

    def forget(self, service_id: str) -> None:
        with self._lock:
            self._events.pop(service_id, None)

    def statistics(self, service_id: str, now: Optional[datetime] = None) -> UptimeStatistics:
        """
        Computes restarts, MTBF, uptime percentages and downtime over the
        last 24 hours and 7 days.
        """
        events = self.events(service_id)
        if not events:
            return UptimeStatistics()
        now = now or utcnow()

        restarts = 0
        failures: List[datetime] = []
        for event in events:
            if event.event_type == "restart" or (event.event_type == "start" and event.status == "running"):
                restarts += 1
            if event.status in DOWN_STATES:
                failures.append(event.timestamp)

        mtbf = 0.0
        if len(failures) > 1:
            gaps = [(b - a).total_seconds() for a, b in zip(failures, failures[1:])]
            mtbf = sum(gaps) / len(gaps)

        day_start = now - timedelta(hours=24)
        week_start = now - timedelta(days=7)
        downtime_24h = self._downtime(events, day_start, now)
        downtime_7d = self._downtime(events, week_start, now)

        return UptimeStatistics(
            total_restarts=restarts,
            uptime_percentage_24h=self._percentage(downtime_24h, day_start, now),
            uptime_percentage_7d=self._percentage(downtime_7d, week_start, now),
            mtbf=mtbf,
            last_downtime=max(failures) if failures else None,
            total_downtime_24h=downtime_24h,
            total_downtime_7d=downtime_7d,
        )

    @staticmethod
    def _percentage(downtime: float, start: datetime, end: datetime) -> float:
        total = (end - start).total_seconds()
        if total <= 0:
            return 100.0
        return min(max((total - downtime) / total * 100.0, 0.0), 100.0)

    @staticmethod
    def _downtime(events: List[UptimeEvent], start: datetime, end: datetime) -> float:
        down_since: Optional[datetime] = None
        before = [e for e in events if e.timestamp < start]
        if before and before[-1].status in DOWN_STATES:
            down_since = start

        downtime = 0.0
        for event in events:
            if event.timestamp < start:
                continue
            if event.timestamp > end:
                break
            if event.status in DOWN_STATES:
                if down_since is None:
                    down_since = event.timestamp
            elif event.status in UP_STATES and down_since is not None:
                downtime += (event.timestamp - down_since).total_seconds()
                down_since = None

        if down_since is not None:
            downtime += (end - down_since).total_seconds()
        return downtime
