from __future__ import annotations

import re
from typing import Any

_FALSE = {"0", "false", "no", "off"}


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    """Read a YAML flag that may arrive as a bool, missing, or a string like "false"."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE
    return bool(value)


def is_env_var_name(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", (value or "").strip()))
