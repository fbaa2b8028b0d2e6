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
CPU, memory and I/O sampling for service processes.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import psutil

from ..MODELS.service import Service

logger = logging.getLogger(__name__)


@dataclass
class ResourceSample:
    """Resource usage of a service's whole process tree."""

    cpu_percent: float = 0.0
    memory_usage: int = 0
    memory_percent: float = 0.0
    disk_usage: int = 0


class ResourceMonitor:
    """
    Samples resource usage with psutil.

    ``cpu_percent`` is measured between two consecutive samples, so the
    first sample of a process reports 0. Process handles are cached per PID
    for that reason.
    """

    def __init__(self):
        self._processes: Dict[int, psutil.Process] = {}

    def sample(self, service: Service) -> Optional[ResourceSample]:
        """
        Samples the service's process and its children and stores the figures
        on the service.

        :return: The sample, or None when the service has no live process.
        """
        with service.read_lock():
            pid = service.pid
            name = service.name
        if not pid:
            return None

        try:
            root = self._process(pid)
            tree = [root] + root.children(recursive=True)
        except psutil.NoSuchProcess:
            self._processes.pop(pid, None)
            logger.warning("Process %s of service %s no longer exists", pid, name)
            return None
        except psutil.AccessDenied:
            logger.debug("Access denied sampling process %s of service %s", pid, name)
            return None

        result = ResourceSample()
        for proc in tree:
            try:
                proc = self._process(proc.pid)
                with proc.oneshot():
                    result.cpu_percent += proc.cpu_percent(interval=None)
                    result.memory_usage += proc.memory_info().rss
                    result.memory_percent += proc.memory_percent()
                    result.disk_usage += self._io_bytes(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                self._processes.pop(proc.pid, None)

        with service.write_lock():
            if service.pid == pid:
                service.cpu_percent = result.cpu_percent
                service.memory_usage = result.memory_usage
                service.memory_percent = result.memory_percent
                service.disk_usage = result.disk_usage
        return result

    def sample_all(self, services: List[Service]) -> Dict[str, ResourceSample]:
        samples = {}
        for service in services:
            sample = self.sample(service)
            if sample is not None:
                samples[service.name] = sample
        self._prune()
        return samples

    def _process(self, pid: int) -> psutil.Process:
        proc = self._processes.get(pid)
        if proc is None or not proc.is_running():
            proc = psutil.Process(pid)
            self._processes[pid] = proc
        return proc

    def _prune(self) -> None:
        for pid, proc in list(self._processes.items()):
            if not proc.is_running():
                del self._processes[pid]

    @staticmethod
    def _io_bytes(proc: psutil.Process) -> int:
        # io_counters is missing on macOS
        if not hasattr(proc, "io_counters"):
            return 0
        try:
            counters = proc.io_counters()
        except psutil.AccessDenied:
            return 0
        return counters.read_bytes + counters.write_bytes
