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
Build-system detection and start-command construction for Java services.
"""
import os
import shutil
from typing import Dict, List, Optional, Tuple

from ..MODELS.service import BuildSystem, Service

MAVEN_MARKERS = ("pom.xml", "mvnw", "mvnw.cmd")
GRADLE_MARKERS = (
    "build.gradle",
    "build.gradle.kts",
    "gradlew",
    "gradlew.bat",
    "settings.gradle",
    "settings.gradle.kts",
)


def detect_build_system(service_dir: str) -> BuildSystem:
    """
    Detects the build system of a project directory.
    Maven wins when both are present; Maven is also the fallback.
    """
    for marker in MAVEN_MARKERS:
        if os.path.exists(os.path.join(service_dir, marker)):
            return BuildSystem.MAVEN
    for marker in GRADLE_MARKERS:
        if os.path.exists(os.path.join(service_dir, marker)):
            return BuildSystem.GRADLE
    return BuildSystem.MAVEN


def effective_build_system(service_dir: str, build_system: Optional[BuildSystem]) -> BuildSystem:
    if build_system is None or build_system == BuildSystem.AUTO:
        return detect_build_system(service_dir)
    return BuildSystem(build_system)


def _launcher(service_dir: str, wrapper: str, windows_wrapper: str, fallback: str) -> str:
    name = windows_wrapper if os.name == "nt" else wrapper
    if os.path.exists(os.path.join(service_dir, name)):
        return os.path.join(".", name) if os.name != "nt" else name
    return shutil.which(fallback) or fallback


def resolve_service_dir(service: Service, projects_dir: str) -> str:
    """Absolute working directory of a service."""
    if not service.dir:
        return os.path.abspath(projects_dir)
    if os.path.isabs(service.dir):
        return service.dir
    return os.path.abspath(os.path.join(projects_dir, service.dir))


def build_start_command(service: Service, service_dir: str) -> Tuple[List[str], Dict[str, str]]:
    """
    Builds the argv used to run a service plus the environment variables the
    build tool needs.

    An explicit ``service.command`` is used as is. Otherwise Maven services
    run ``spring-boot:run`` and Gradle services run ``bootRun``; JVM options
    go both on the command line and into ``MAVEN_OPTS``/``GRADLE_OPTS``.

    :param service: The service to run.
    :param service_dir: Its resolved working directory.
    :return: Command and extra environment.
    """
    if service.command:
        return list(service.command), {}

    env: Dict[str, str] = {}
    system = effective_build_system(service_dir, service.build_system)
    if system == BuildSystem.GRADLE:
        command = [_launcher(service_dir, "gradlew", "gradlew.bat", "gradle"), "bootRun"]
        if service.java_opts:
            command.append(f"--args={service.java_opts}")
            env["GRADLE_OPTS"] = service.java_opts
        if service.verbose_logging:
            command.append("--debug")
    else:
        command = [_launcher(service_dir, "mvnw", "mvnw.cmd", "mvn"), "spring-boot:run"]
        if service.java_opts:
            command.append(f"-Dspring-boot.run.jvmArguments={service.java_opts}")
            env["MAVEN_OPTS"] = service.java_opts
        if service.verbose_logging:
            command.append("-X")
    return command, env
