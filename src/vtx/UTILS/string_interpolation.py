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
``${VAR}`` substitution for fleet files.
"""
import re
from typing import List, Mapping, Tuple

# ${NAME}, ${NAME:-fallback} or ${NAME:+replacement}
_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-+])([^}]*))?\}")


def interpolate(template: str, context: Mapping[str, str]) -> Tuple[str, List[str]]:
    """
    Replaces placeholders with values from ``context``.

    ``${NAME:-fallback}`` uses the fallback when NAME is unset or empty and
    ``${NAME:+replacement}`` yields the replacement only when NAME is set.
    A bare ``${NAME}`` that is unset becomes an empty string.

    :return: The substituted text and the names of unset bare placeholders.
    """
    missing: List[str] = []

    def replace(match):
        name, modifier, alternative = match.group(1), match.group(2), match.group(3)
        value = context.get(name)
        if modifier == "-":
            return value if value else alternative
        if modifier == "+":
            return alternative if value else ""
        if value is None:
            missing.append(name)
            return ""
        return value

    return _PLACEHOLDER.sub(replace, template), missing
