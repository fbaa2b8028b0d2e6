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
Managers for building the environment a service process runs with.
"""
import logging
import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from ..MODELS.service import EnvVar, Service

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Manages the merging of environment variables from multiple sources.
    """

    def __init__(self, base_dir: str = ".", java_home_override: str = ""):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param java_home_override: JAVA_HOME applied to services that do not set their own.
        """
        self.base_dir = base_dir
        self.java_home_override = java_home_override

    def get_merged_environment(
        self,
        service: Service,
        global_env: Optional[Mapping[str, str]] = None,
        stored_env: Optional[Mapping[str, EnvVar]] = None,
        java_home_override: Optional[str] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """
        Merges environment variables for a service process.

        Later sources override earlier ones: the current process environment,
        the service's .env file, global variables, the JAVA_HOME override,
        then the service's own variables (model first, stored map second).

        :param service: The service being started.
        :param global_env: Variables shared by all services (or the active profile).
        :param stored_env: The service's persisted variable map.
        :param java_home_override: Overrides the manager-level JAVA_HOME override.
        :param base_env: Starting environment, defaults to ``os.environ``.
        :return: A dictionary containing the merged environment variables.
        """
        merged_env = dict(os.environ if base_env is None else base_env)

        # 1. Service .env file
        if service.env_file:
            file_path = os.path.join(self.base_dir, service.env_file)
            if os.path.exists(file_path):
                file_env = dotenv_values(file_path)
                merged_env.update({k: v for k, v in file_env.items() if v is not None})
            else:
                logger.warning("Env file %s for service %s does not exist", file_path, service.name)

        service_env: Dict[str, str] = {name: var.value for name, var in service.env_vars.items()}
        for name, var in (stored_env or {}).items():
            service_env[name] = var.value

        # 2. Global variables, unless the service sets them
        for key, value in (global_env or {}).items():
            if key not in service_env:
                merged_env[key] = value

        # 3. JAVA_HOME override, unless the service sets JAVA_HOME
        java_home = java_home_override if java_home_override is not None else self.java_home_override
        if java_home and "JAVA_HOME" not in service_env:
            self._apply_java_home(merged_env, java_home)

        # 4. Service variables override everything
        for key, value in service_env.items():
            merged_env[key] = value
            if key == "JAVA_HOME":
                self._apply_java_home(merged_env, value)

        active_profile = merged_env.get("ACTIVE_PROFILE")
        if active_profile and "SPRING_PROFILES_ACTIVE" not in service_env:
            merged_env["SPRING_PROFILES_ACTIVE"] = active_profile

        missing = [name for name, var in service.env_vars.items() if var.is_required and not merged_env.get(name)]
        if missing:
            logger.warning("Service %s is missing required variables: %s", service.name, ", ".join(missing))

        return merged_env

    @staticmethod
    def _apply_java_home(env: Dict[str, str], java_home: str) -> None:
        env["JAVA_HOME"] = java_home
        env["PATH"] = os.path.join(java_home, "bin") + os.pathsep + env.get("PATH", "")
