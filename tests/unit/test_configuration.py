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
Unit tests for environment merging, the configuration store and
build-system command construction.
"""
import json
import os

import pytest

from conftest import make_service
from vtx.exceptions import ProfileNotFoundError
from vtx.MANAGERS.config_store import ConfigStore
from vtx.MANAGERS.environment_manager import EnvironmentManager
from vtx.MODELS.configuration import FleetConfig, GlobalConfig, Profile
from vtx.MODELS.service import BuildSystem, EnvVar
from vtx.RUNNERS.build_system import build_start_command, detect_build_system, resolve_service_dir


class TestEnvironmentManager:
    """Tests for EnvironmentManager."""

    def test_precedence(self, tmp_path):
        (tmp_path / "api.env").write_text("FROM_FILE=file\nSHARED=file\nBASE=file\n")
        service = make_service(
            "api",
            env_file="api.env",
            env_vars={"SHARED": EnvVar(name="SHARED", value="service")},
        )
        manager = EnvironmentManager(base_dir=str(tmp_path))
        env = manager.get_merged_environment(
            service,
            global_env={"SHARED": "global", "GLOBAL_ONLY": "global", "BASE": "global"},
            base_env={"BASE": "os", "PATH": "/usr/bin"},
        )
        assert env["FROM_FILE"] == "file"
        assert env["BASE"] == "global"
        assert env["GLOBAL_ONLY"] == "global"
        assert env["SHARED"] == "service"

    def test_stored_env_wins_over_model(self):
        service = make_service("api", env_vars={"A": EnvVar(name="A", value="model")})
        env = EnvironmentManager().get_merged_environment(
            service, stored_env={"A": EnvVar(name="A", value="stored")}, base_env={}
        )
        assert env["A"] == "stored"

    def test_java_home_override(self):
        service = make_service("api")
        env = EnvironmentManager(java_home_override="/opt/jdk17").get_merged_environment(
            service, base_env={"PATH": "/usr/bin"}
        )
        assert env["JAVA_HOME"] == "/opt/jdk17"
        assert env["PATH"].startswith(os.path.join("/opt/jdk17", "bin") + os.pathsep)

    def test_service_java_home_beats_override(self):
        service = make_service("api", env_vars={"JAVA_HOME": EnvVar(name="JAVA_HOME", value="/opt/jdk21")})
        env = EnvironmentManager(java_home_override="/opt/jdk17").get_merged_environment(service, base_env={})
        assert env["JAVA_HOME"] == "/opt/jdk21"
        assert "/opt/jdk17" not in env["PATH"]

    def test_active_profile_sets_spring_profile(self):
        service = make_service("api")
        env = EnvironmentManager().get_merged_environment(
            service, global_env={"ACTIVE_PROFILE": "dev"}, base_env={}
        )
        assert env["SPRING_PROFILES_ACTIVE"] == "dev"

    def test_missing_required_variable_is_logged(self, caplog):
        service = make_service("api", env_vars={"DB_URL": EnvVar(name="DB_URL", is_required=True)})
        EnvironmentManager().get_merged_environment(service, base_env={})
        assert "DB_URL" in caplog.text


class TestConfigStore:
    """Tests for ConfigStore."""

    def test_from_fleet(self):
        fleet = FleetConfig(
            profiles={"core": Profile(name="core", services=["eureka"], is_default=True)},
            global_env={"A": "1"},
        )
        store = ConfigStore.from_fleet(fleet)
        assert store.profile("core").services == ["eureka"]
        assert store.default_profile().name == "core"
        assert store.global_env() == {"A": "1"}
        assert [p.name for p in store.profiles()] == ["core"]

    def test_unknown_profile(self):
        with pytest.raises(ProfileNotFoundError):
            ConfigStore().profile("missing")

    def test_service_env_is_decoded(self):
        store = ConfigStore({
            "env:service:abc": json.dumps({"DB_URL": {"value": "jdbc:h2:mem", "isRequired": True}}),
        })
        env = store.service_env("abc")
        assert env["DB_URL"].value == "jdbc:h2:mem"
        assert env["DB_URL"].name == "DB_URL"
        assert env["DB_URL"].is_required
        assert store.service_env("other") == {}


class TestGlobalConfig:
    """Tests for GlobalConfig."""

    def test_durations_and_env(self, monkeypatch):
        monkeypatch.setenv("VTX_STOP_TIMEOUT", "30s")
        monkeypatch.setenv("VTX_PROJECTS_DIR", "/srv/projects")
        config = GlobalConfig.from_env(dotenv_path=os.devnull, health_timeout="250ms")
        assert config.stop_timeout == 30.0
        assert config.projects_dir == "/srv/projects"
        assert config.health_timeout == 0.25
        assert config.health_check_interval == 30.0


class TestBuildSystem:
    """Tests for build-system detection and commands."""

    def test_detection(self, tmp_path):
        assert detect_build_system(str(tmp_path)) == BuildSystem.MAVEN
        (tmp_path / "build.gradle.kts").write_text("")
        assert detect_build_system(str(tmp_path)) == BuildSystem.GRADLE
        (tmp_path / "pom.xml").write_text("<project/>")
        assert detect_build_system(str(tmp_path)) == BuildSystem.MAVEN

    def test_maven_command(self, tmp_path):
        (tmp_path / "mvnw").write_text("")
        service = make_service("api", java_opts="-Xmx512m", verbose_logging=True)
        command, env = build_start_command(service, str(tmp_path))
        assert command == ["./mvnw", "spring-boot:run", "-Dspring-boot.run.jvmArguments=-Xmx512m", "-X"]
        assert env == {"MAVEN_OPTS": "-Xmx512m"}

    def test_gradle_command(self, tmp_path):
        (tmp_path / "gradlew").write_text("")
        service = make_service("api", java_opts="-Xmx512m")
        command, env = build_start_command(service, str(tmp_path))
        assert command == ["./gradlew", "bootRun", "--args=-Xmx512m"]
        assert env == {"GRADLE_OPTS": "-Xmx512m"}

    def test_explicit_command_wins(self, tmp_path):
        (tmp_path / "pom.xml").write_text("")
        service = make_service("api", command=["java", "-jar", "app.jar"], java_opts="-Xmx1g")
        assert build_start_command(service, str(tmp_path)) == (["java", "-jar", "app.jar"], {})

    def test_resolve_service_dir(self, tmp_path):
        service = make_service("api", dir="api-service")
        assert resolve_service_dir(service, str(tmp_path)) == str(tmp_path / "api-service")
        absolute = make_service("api", dir=str(tmp_path))
        assert resolve_service_dir(absolute, "/elsewhere") == str(tmp_path)
