import random
import string

import pytest

from vtx.exceptions import ConfigurationError
from vtx.MANAGERS.log_aggregator import parse_log_line
from vtx.PARSERS.fleet_parser import FleetParser
from vtx.UTILS.durations import parse_duration
from vtx.UTILS.string_interpolation import interpolate


def random_string(length):
    return ''.join(random.choice(string.printable) for _ in range(length))


def test_fuzz_fleet_parser():
    parser = FleetParser(context={})
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        # Random junk either parses or fails with ConfigurationError, nothing else
        try:
            parser.parse_from_string(content)
        except ConfigurationError:
            pass


def test_fuzz_duration_parser():
    for _ in range(500):
        text = random_string(random.randint(0, 12))
        try:
            assert parse_duration(text) >= 0.0
        except ValueError:
            pass


def test_fuzz_log_lines():
    for _ in range(500):
        line = random_string(random.randint(0, 200))
        entry = parse_log_line(line)
        assert entry.level in {"INFO", "WARN", "ERROR", "DEBUG", "TRACE"}


def test_fuzz_interpolation():
    for _ in range(200):
        text = random_string(random.randint(0, 200))
        result, missing = interpolate(text, {})
        assert isinstance(result, str)
        assert all(isinstance(name, str) for name in missing)


def test_edge_cases_parsers():
    parser = FleetParser(context={})

    # Empty string
    parser.parse_from_string("")

    # Only whitespace
    parser.parse_from_string("   \n\t  ")

    # Very long dependency chain
    content = "services:\n" + "".join(
        f"  s{i}:\n    dependencies: [s{i - 1}]\n" if i else "  s0: {}\n" for i in range(500)
    )
    fleet = parser.parse_from_string(content)
    assert len(fleet.services) == 500

    with pytest.raises(ConfigurationError):
        parser.parse_from_string("services: " + "[" * 200)
