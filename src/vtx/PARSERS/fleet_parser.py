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
Parser for vtx fleet files (YAML).

A fleet file looks like::

    settings:
      projectsDir: ~/projects
      stopTimeout: 15s
    globalEnv:
      SPRING_CLOUD_CONFIG_URI: http://localhost:8888
    services:
      eureka:
        dir: eureka-server
        port: 8761
        healthUrl: http://localhost:8761/actuator/health
      config-server:
        dependencies:
          - eureka
          - {service: vault, type: soft, timeout: 30s}
    profiles:
      core:
        services: [eureka, config-server]

Keys may be written in camelCase or snake_case.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError
from ..MODELS.configuration import FleetConfig, GlobalConfig, Profile
from ..MODELS.service import Service
from ..UTILS.string_interpolation import interpolate

logger = logging.getLogger(__name__)


class FleetParser:
    """
    Parser for fleet YAML files.
    """

    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables available to ``${VAR}`` placeholders; defaults to os.environ.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, fleet_path: str, **setting_overrides: Any) -> FleetConfig:
        """
        Parses a fleet file from a path. A relative ``projectsDir`` is taken
        relative to the file's directory.

        :param fleet_path: Path to the fleet file.
        :param setting_overrides: Values that win over the file's settings.
        :raises ConfigurationError: If the file cannot be read or is invalid.
        """
        try:
            with open(fleet_path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise ConfigurationError(fleet_path, str(e)) from e
        fleet = self.parse_from_string(content, source=fleet_path, **setting_overrides)
        projects_dir = os.path.expanduser(fleet.settings.projects_dir)
        if not os.path.isabs(projects_dir):
            projects_dir = os.path.join(os.path.dirname(os.path.abspath(fleet_path)), projects_dir)
        fleet.settings.projects_dir = os.path.normpath(projects_dir)
        return fleet

    def parse_from_string(self, content: str, source: str = "<string>", **setting_overrides: Any) -> FleetConfig:
        """
        Parses a fleet file from a string.

        :param content: YAML content of the fleet file.
        :param source: Name used in error messages.
        :raises ConfigurationError: If the YAML is malformed or a value is invalid.
        """
        content, missing = interpolate(content, self.context)
        for name in sorted(set(missing)):
            logger.warning("Variable %s is not set, substituting an empty string", name)

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(source, str(e)) from e
        if not isinstance(data, dict):
            raise ConfigurationError(source, "top level must be a mapping")

        try:
            settings = dict(data.get("settings") or {})
            for key, value in setting_overrides.items():
                if value is None:
                    continue
                settings.pop(key, None)
                settings[GlobalConfig.model_fields[key].alias or key] = value
            return FleetConfig(
                settings=GlobalConfig.model_validate(settings),
                services=self._parse_services(data.get("services") or {}),
                profiles=self._parse_profiles(data.get("profiles") or {}),
                global_env={str(k): self._to_str(v) for k, v in (data.get("globalEnv") or data.get("global_env") or {}).items()},
            )
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise ConfigurationError(source, str(e)) from e

    def _parse_services(self, section: Any) -> List[Service]:
        if isinstance(section, dict):
            items = []
            for name, body in section.items():
                body = dict(body or {})
                body.setdefault("name", name)
                items.append(body)
        elif isinstance(section, list):
            items = [dict(body) for body in section]
        else:
            raise TypeError("services must be a mapping or a list")
        return [self._parse_service(item) for item in items]

    def _parse_service(self, definition: Dict[str, Any]) -> Service:
        """
        Parses a single service definition.

        Dependencies may be plain names (hard, required) or mappings with
        ``service``/``serviceName``, ``type``, ``required``, ``healthCheck``,
        ``timeout`` and ``retryInterval``. Environment values may be plain
        strings or mappings with ``value``, ``description`` and ``isRequired``.
        """
        definition = dict(definition)
        definition["dependencies"] = [self._parse_dependency(d) for d in definition.get("dependencies") or []]

        env_section = definition.pop("envVars", None) or definition.pop("env_vars", None) or {}
        env_vars = {}
        for name, value in env_section.items():
            if isinstance(value, dict):
                env_vars[name] = dict(value, name=name)
            else:
                env_vars[name] = {"name": name, "value": self._to_str(value)}
        definition["env_vars"] = env_vars

        command = definition.get("command")
        if isinstance(command, str):
            definition["command"] = command.split()
        return Service.model_validate(definition)

    @staticmethod
    def _parse_dependency(dep: Any) -> Dict[str, Any]:
        if isinstance(dep, str):
            return {"service_name": dep}
        if not isinstance(dep, dict):
            raise TypeError(f"invalid dependency entry: {dep!r}")
        dep = dict(dep)
        if "service" in dep:
            dep["service_name"] = dep.pop("service")
        return dep

    def _parse_profiles(self, section: Dict[str, Any]) -> Dict[str, Profile]:
        profiles = {}
        for name, body in section.items():
            body = dict(body or {})
            body.setdefault("name", name)
            if isinstance(body.get("services"), str):
                body["services"] = [body["services"]]
            env = body.pop("envVars", None) or body.pop("env_vars", None) or {}
            body["env_vars"] = {str(k): self._to_str(v) for k, v in env.items()}
            profiles[name] = Profile.model_validate(body)
        return profiles

    @staticmethod
    def _to_str(value: Any) -> str:
        # YAML turns true/1 into bool/int; environment values are strings
        if isinstance(value, bool):
            return "true" if value else "false"
        return "" if value is None else str(value)
