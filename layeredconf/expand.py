"""Expansion of ``${NAME||default}`` environment references in values."""

from __future__ import annotations

import os
import re

# A variable name holds letters, digits or underscores and does not start
# with a digit. ``^^`` upper-cases the value, ``,,`` lower-cases it.
_VARIABLE_RE = re.compile(r"\$\{([a-zA-Z_][\w]+)((?:,,|\^\^)?)\|\|(.*?)\}", re.ASCII)


def expand_value_env(value: str) -> str:
    """Replace every ``${NAME||default}`` with the environment value or the default.

    ``addr:${IP||127.0.0.1}:${PORT||8080}`` becomes ``addr:0.0.0.0:443`` when
    ``IP=0.0.0.0`` and ``PORT=443`` are set, and ``addr:127.0.0.1:8080`` when not.
    """
    value = value.strip()
    matches = list(_VARIABLE_RE.finditer(value))
    if not matches:
        return value

    result = value
    for match in matches:
        name, case, default = match.groups()
        item = os.environ.get(name, "")
        if not item:
            item = default
        elif case == "^^":
            item = item.upper()
        elif case == ",,":
            item = item.lower()
        result = result.replace(match.group(0), item)
    return result