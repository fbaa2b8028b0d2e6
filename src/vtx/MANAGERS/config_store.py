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
Read-only view of persisted configuration: profiles, global environment
variables and per-service environment variable maps.

Values are stored as JSON strings under string keys, the way the dashboard's
database keeps them; the store only decodes them.
"""
import json
import logging
from typing import Dict, List, Mapping, Optional

from pydantic import TypeAdapter

from ..exceptions import ProfileNotFoundError
from ..MODELS.configuration import FleetConfig, Profile
from ..MODELS.service import EnvVar

logger = logging.getLogger(__name__)

PROFILE_PREFIX = "profile:"
GLOBAL_ENV_KEY = "env:global"
SERVICE_ENV_PREFIX = "env:service:"

_ENV_MAP = TypeAdapter(Dict[str, EnvVar])


class ConfigStore:
    """
    Key-value configuration source injected into the orchestrator.
    """

    def __init__(self, data: Optional[Mapping[str, str]] = None):
        """
        :param data: Raw key -> JSON string mapping.
        """
        self._data: Dict[str, str] = dict(data or {})

    @classmethod
    def from_fleet(cls, fleet: FleetConfig) -> "ConfigStore":
        """Encodes a parsed fleet file into store entries."""
        data = {GLOBAL_ENV_KEY: json.dumps(fleet.global_env)}
        for name, profile in fleet.profiles.items():
            data[PROFILE_PREFIX + name] = profile.model_dump_json(by_alias=True)
        return cls(data)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def keys(self) -> List[str]:
        return sorted(self._data)

    def profile(self, name: str) -> Profile:
        """
        :raises ProfileNotFoundError: If the profile is not stored.
        """
        raw = self._data.get(PROFILE_PREFIX + name)
        if raw is None:
            raise ProfileNotFoundError(name)
        return Profile.model_validate_json(raw)

    def profiles(self) -> List[Profile]:
        names = [k[len(PROFILE_PREFIX):] for k in self.keys() if k.startswith(PROFILE_PREFIX)]
        return [self.profile(name) for name in names]

    def default_profile(self) -> Optional[Profile]:
        for profile in self.profiles():
            if profile.is_default:
                return profile
        return None

    def global_env(self) -> Dict[str, str]:
        raw = self._data.get(GLOBAL_ENV_KEY)
        if not raw:
            return {}
        return {str(k): str(v) for k, v in json.loads(raw).items()}

    def service_env(self, service_id: str) -> Dict[str, EnvVar]:
        """
        The stored environment variable map of a service; empty when absent.
        """
        raw = self._data.get(SERVICE_ENV_PREFIX + service_id)
        if not raw:
            return {}
        env = _ENV_MAP.validate_json(raw)
        for name, var in env.items():
            if not var.name:
                var.name = name
        return env
