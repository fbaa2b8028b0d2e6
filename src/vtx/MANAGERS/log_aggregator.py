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
Log parsing, aggregation and tailing for services.
"""
import os
import re
import time
from datetime import datetime
from typing import Callable, Dict, IO, Iterable, List, Optional, Tuple

from ..MODELS.service import LogEntry, Service, utcnow

_LEVEL = re.compile(r"(INFO|WARN(?:ING)?|ERROR|DEBUG|TRACE)", re.IGNORECASE)


def parse_log_line(line: str, timestamp: Optional[datetime] = None) -> LogEntry:
    """
    Turns one line of service output into a LogEntry.

    The level is the first of INFO, WARN, ERROR, DEBUG or TRACE found in the
    line; lines without one are INFO.
    """
    match = _LEVEL.search(line)
    level = "INFO"
    if match:
        level = match.group(1).upper()
        if level == "WARNING":
            level = "WARN"
    return LogEntry(timestamp=timestamp or utcnow(), level=level, message=line)


class LogAggregator:
    """
    Aggregates logs from multiple services, in memory and on disk.
    """

    def __init__(self, log_dir: Optional[str] = None):
        """
        Initializes the log aggregator.

        :param log_dir: The directory where per-service log files are stored.
        """
        self.log_dir = log_dir

    def recent(self, services: Iterable[Service], limit: int = 200, level: Optional[str] = None) -> List[Tuple[str, LogEntry]]:
        """
        Merges the buffered entries of several services in timestamp order.

        :param services: Services whose buffers are read.
        :param limit: Maximum number of entries returned (the newest ones).
        :param level: Only keep entries of this level.
        :return: (service name, entry) pairs, oldest first.
        """
        merged: List[Tuple[str, LogEntry]] = []
        for service in services:
            with service.read_lock():
                entries = list(service.logs)
            merged.extend((service.name, entry) for entry in entries)
        if level:
            merged = [item for item in merged if item[1].level == level.upper()]
        merged.sort(key=lambda item: item[1].timestamp)
        return merged[-limit:] if limit > 0 else merged

    def clear(self, services: Iterable[Service]) -> Dict[str, str]:
        """
        Empties the in-memory buffers of the given services.

        :return: Per-service result messages.
        """
        results = {}
        for service in services:
            service.clear_logs()
            results[service.name] = "Success"
        return results

    def log_path(self, service_name: str) -> str:
        return os.path.join(self.log_dir or ".", f"{service_name}.log")

    def tail_logs(
        self,
        service_names: List[str],
        emit: Callable[[str, str], None],
        should_stop: Callable[[], bool] = lambda: False,
        poll_interval: float = 0.1,
    ):
        """
        Follows the log files of the given services.

        :param service_names: Names of the services to tail.
        :param emit: Called with (service name, line) for each new line.
        :param should_stop: Polled between reads; tailing ends when it returns True.
        :param poll_interval: Seconds to sleep when no file had new data.
        """
        files: Dict[str, IO[str]] = {}
        try:
            while not should_stop():
                progressed = False
                for name in service_names:
                    if name not in files:
                        path = self.log_path(name)
                        if os.path.exists(path):
                            f = open(path, "r", encoding="utf-8", errors="replace")
                            f.seek(0, os.SEEK_END)
                            files[name] = f

                    if name in files:
                        line = files[name].readline()
                        if line:
                            emit(name, line.rstrip("\n"))
                            progressed = True

                if not progressed:
                    time.sleep(poll_interval)
        finally:
            for f in files.values():
                f.close()
