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
Models for global settings, profiles and the fleet file as a whole.
"""
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator

from ..UTILS.durations import parse_duration
from .service import DEFAULT_MAX_LOG_ENTRIES, Service, VtxModel


class GlobalConfig(VtxModel):
    """
    Settings shared by every service in the fleet.
    """

    projects_dir: str = "."
    java_home_override: str = ""
    log_dir: Optional[str] = None
    max_log_entries: int = DEFAULT_MAX_LOG_ENTRIES

    stop_timeout: float = 10.0
    health_timeout: float = 5.0
    health_startup_grace: float = 120.0
    health_check_interval: float = 30.0
    metrics_interval: float = 10.0

    default_dependency_timeout: float = 60.0
    default_retry_interval: float = 2.0

    @field_validator(
        "stop_timeout",
        "health_timeout",
        "health_startup_grace",
        "health_check_interval",
        "metrics_interval",
        "default_dependency_timeout",
        "default_retry_interval",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides: Any) -> "GlobalConfig":
        """
        Builds settings from ``VTX_*`` environment variables.

        A ``.env`` file is loaded first (without overriding variables that are
        already set). Keyword overrides win over the environment.

        :param dotenv_path: Explicit path to a .env file.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            env_value = os.environ.get(f"VTX_{name.upper()}")
            if env_value is not None:
                values[name] = env_value
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class Profile(VtxModel):
    """
    A named set of services with its own environment overrides.
    ``services`` lists service names or ids in the order given by the user.
    """

    name: str
    description: str = ""
    services: List[str] = []
    env_vars: Dict[str, str] = {}
    projects_dir: str = ""
    java_home_override: str = ""
    is_default: bool = False


class FleetConfig(VtxModel):
    """
    Complete configuration for a fleet of services.
    Equivalent to a parsed fleet YAML file.
    """

    settings: GlobalConfig = Field(default_factory=GlobalConfig)
    services: List[Service] = []
    profiles: Dict[str, Profile] = {}
    global_env: Dict[str, str] = {}
