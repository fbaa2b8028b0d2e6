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
In-memory registry of services, the single source of truth for their state.
"""
import logging
from typing import Dict, Iterable, List, Optional

from ..exceptions import DuplicateServiceError, ServiceNotFoundError
from ..MODELS.service import DEFAULT_MAX_LOG_ENTRIES, Service
from ..UTILS.rwlock import SyncRWLock

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """
    Services keyed by id, with unique names.

    The registry lock only guards membership. Reading or changing a single
    service's state uses that service's own lock, so status polling does not
    contend on a global lock.
    """

    def __init__(self, services: Optional[Iterable[Service]] = None, max_log_entries: int = DEFAULT_MAX_LOG_ENTRIES):
        """
        :param services: Initial services.
        :param max_log_entries: Log buffer capacity applied to each added service.
        """
        self.max_log_entries = max_log_entries
        self._lock = SyncRWLock(name="registry")
        self._services: Dict[str, Service] = {}
        self._ids_by_name: Dict[str, str] = {}
        for service in services or []:
            self.add(service)

    def add(self, service: Service) -> Service:
        """
        Registers a service.

        :raises DuplicateServiceError: If the id or name is already taken.
        """
        with self._lock.write_lock():
            if service.name in self._ids_by_name or service.id in self._services:
                raise DuplicateServiceError(service.name)
            service.set_log_capacity(self.max_log_entries)
            self._services[service.id] = service
            self._ids_by_name[service.name] = service.id
        logger.debug("Registered service %s (%s)", service.name, service.id)
        return service

    def remove(self, key: str) -> Service:
        """
        Unregisters a service by id or name. The caller stops it first.
        """
        with self._lock.write_lock():
            service = self._lookup(key)
            del self._services[service.id]
            del self._ids_by_name[service.name]
        logger.debug("Removed service %s (%s)", service.name, service.id)
        return service

    def get(self, key: str) -> Service:
        """
        Looks a service up by id, falling back to its name.

        :raises ServiceNotFoundError: If neither matches.
        """
        with self._lock.read_lock():
            return self._lookup(key)

    def find(self, key: str) -> Optional[Service]:
        with self._lock.read_lock():
            try:
                return self._lookup(key)
            except ServiceNotFoundError:
                return None

    def _lookup(self, key: str) -> Service:
        service = self._services.get(key)
        if service is None:
            service_id = self._ids_by_name.get(key)
            service = self._services.get(service_id) if service_id else None
        if service is None:
            raise ServiceNotFoundError(key)
        return service

    def list(self) -> List[Service]:
        """All services sorted by (order, name)."""
        with self._lock.read_lock():
            services = list(self._services.values())
        return sorted(services, key=lambda s: (s.order, s.name))

    def names(self) -> List[str]:
        return [s.name for s in self.list()]

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._services)

    def __contains__(self, key: str) -> bool:
        return self.find(key) is not None

    def index_dependents(self, index: Dict[str, List[str]]) -> None:
        """
        Replaces every service's ``dependent_on`` list from a freshly built
        reverse index. Services missing from the index get an empty list.
        """
        for service in self.list():
            dependents = list(index.get(service.name, []))
            with service.write_lock():
                service.dependent_on = dependents
