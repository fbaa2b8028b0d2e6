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
Unit tests for the fleet file parser.
"""
import os

import pytest

from vtx.exceptions import ConfigurationError
from vtx.MODELS.service import DependencyType
from vtx.PARSERS.fleet_parser import FleetParser

FLEET = """
settings:
  projectsDir: ${PROJECTS:-projects}
  stopTimeout: 15s
  health_timeout: 2
globalEnv:
  SPRING_CLOUD_CONFIG_URI: http://localhost:8888
  FEATURE_FLAG: true
services:
  eureka:
    dir: eureka-server
    port: 8761
    healthUrl: http://localhost:8761/actuator/health
    order: 1
  config-server:
    dir: config-server
    dependencies:
      - eureka
    envVars:
      GIT_URI: https://example.com/config.git
      DB_PASSWORD:
        value: secret
        isRequired: true
  gateway:
    command: java -jar gateway.jar
    startupDelay: 5s
    dependencies:
      - service: config-server
        healthCheck: true
        timeout: 2m
      - {service: metrics, type: optional}
profiles:
  core:
    services: [eureka, config-server]
    envVars:
      ACTIVE_PROFILE: dev
    isDefault: true
"""


class TestFleetParser:
    """Tests for FleetParser."""

    def test_parse_services(self):
        fleet = FleetParser(context={}).parse_from_string(FLEET)
        names = [s.name for s in fleet.services]
        assert names == ["eureka", "config-server", "gateway"]

        eureka = fleet.services[0]
        assert eureka.port == 8761
        assert eureka.order == 1

        config_server = fleet.services[1]
        assert config_server.dependencies[0].service_name == "eureka"
        assert config_server.dependencies[0].type == DependencyType.HARD
        assert config_server.env_vars["GIT_URI"].value == "https://example.com/config.git"
        assert config_server.env_vars["DB_PASSWORD"].is_required

        gateway = fleet.services[2]
        assert gateway.command == ["java", "-jar", "gateway.jar"]
        assert gateway.startup_delay == 5.0
        assert gateway.dependencies[0].health_check
        assert gateway.dependencies[0].timeout == 120.0
        assert gateway.dependencies[1].type == DependencyType.OPTIONAL

    def test_parse_settings_profiles_and_globals(self):
        fleet = FleetParser(context={}).parse_from_string(FLEET)
        assert fleet.settings.stop_timeout == 15.0
        assert fleet.settings.health_timeout == 2.0
        assert fleet.settings.projects_dir == "projects"
        assert fleet.global_env["FEATURE_FLAG"] == "true"
        core = fleet.profiles["core"]
        assert core.services == ["eureka", "config-server"]
        assert core.env_vars == {"ACTIVE_PROFILE": "dev"}
        assert core.is_default

    def test_interpolation(self):
        fleet = FleetParser(context={"PROJECTS": "/srv/java"}).parse_from_string(FLEET)
        assert fleet.settings.projects_dir == "/srv/java"

    def test_setting_overrides(self):
        fleet = FleetParser(context={}).parse_from_string(FLEET, stop_timeout="1m", log_dir=None)
        assert fleet.settings.stop_timeout == 60.0
        assert fleet.settings.log_dir is None

    def test_parse_file_resolves_projects_dir(self, tmp_path):
        path = tmp_path / "vtx.yml"
        path.write_text(FLEET)
        fleet = FleetParser(context={}).parse(str(path))
        assert fleet.settings.projects_dir == os.path.normpath(str(tmp_path / "projects"))

    def test_services_as_list(self):
        fleet = FleetParser(context={}).parse_from_string(
            "services:\n  - name: a\n  - name: b\n    dependencies: [a]\n"
        )
        assert [s.name for s in fleet.services] == ["a", "b"]

    def test_empty_document(self):
        fleet = FleetParser(context={}).parse_from_string("")
        assert fleet.services == []

    @pytest.mark.parametrize(
        "content",
        [
            "services: [unclosed",
            "- just\n- a list\n",
            "services:\n  api:\n    port: not-a-number\n",
            "services:\n  api:\n    dependencies:\n      - service: db\n        timeout: soon\n",
        ],
    )
    def test_invalid_documents(self, content):
        with pytest.raises(ConfigurationError):
            FleetParser(context={}).parse_from_string(content)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            FleetParser().parse(str(tmp_path / "missing.yml"))
