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
Parsing and formatting of durations used by dependency timeouts and uptime.
"""
import math
import re
from datetime import timedelta
from typing import Union

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)")


def parse_duration(value: Union[int, float, str, timedelta, None]) -> float:
    """
    Converts a duration into seconds.

    Numbers are taken as seconds. Strings may combine units, e.g. ``"1m30s"``
    or ``"500ms"``; a bare numeric string is seconds. Negative values clamp
    to zero.

    :param value: The duration to convert.
    :return: The duration in seconds.
    :raises ValueError: If a string cannot be parsed.
    """
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    elif isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower()
        if not text:
            return 0.0
        sign = 1.0
        if text[0] in "+-":
            sign = -1.0 if text[0] == "-" else 1.0
            text = text[1:]
        try:
            seconds = sign * float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _PART.finditer(text):
                if match.start() != pos:
                    raise ValueError(f"invalid duration: {value!r}")
                seconds += float(match.group(1)) * _UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text) or pos == 0:
                raise ValueError(f"invalid duration: {value!r}")
            seconds *= sign
    if math.isnan(seconds):
        raise ValueError(f"invalid duration: {value!r}")
    return max(seconds, 0.0)


def format_duration(seconds: float) -> str:
    """
    Formats an uptime the way the dashboard shows it: ``42s``, ``5m``,
    ``3h 12m`` or ``2d 4h``.
    """
    seconds = max(int(seconds), 0)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"
