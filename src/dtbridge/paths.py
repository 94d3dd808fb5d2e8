from __future__ import annotations

import os
from pathlib import Path


def dtbridge_home() -> Path:
    env = os.environ.get("DTBRIDGE_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".dtbridge").resolve()


def default_config_path() -> Path:
    return dtbridge_home() / "config.yaml"
