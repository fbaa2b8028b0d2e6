import os
import sys
import time

import pytest

from vtx.exceptions import ConfigurationError
from vtx.PARSERS.fleet_parser import FleetParser
from vtx.RUNNERS.process_runner import ProcessRunner


def test_command_injection_attempt(tmp_path):
    """
    Shell operators in a service command must stay literal arguments.
    """
    runner = ProcessRunner(name="test_injection")
    injected_file = tmp_path / "injected.txt"

    command = [sys.executable, "-c", "import sys; print(sys.argv)", ";", "touch", str(injected_file)]
    runner.start(command=command, env=dict(os.environ), working_dir=str(tmp_path))
    runner.wait(timeout=10)
    time.sleep(0.1)

    assert not injected_file.exists(), "Command injection successful! Security vulnerability found."


def test_yaml_tags_are_not_executed(tmp_path):
    """
    The fleet parser uses safe_load: python-specific tags are rejected.
    """
    marker = tmp_path / "pwned"
    content = f"services: !!python/object/apply:os.system ['touch {marker}']\n"
    with pytest.raises(ConfigurationError):
        FleetParser(context={}).parse_from_string(content)
    assert not marker.exists()


def test_missing_fleet_file():
    with pytest.raises(ConfigurationError):
        FleetParser().parse("non_existent_file_12345.yml")
