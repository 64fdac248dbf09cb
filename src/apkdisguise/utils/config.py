"""User configuration: ~/.apkdisguise/config.json plus APKDISGUISE_* overrides."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

CONFIG_DIR = Path.home() / ".apkdisguise"
CONFIG_FILE = CONFIG_DIR / "config.json"

ENV_PREFIX = "APKDISGUISE_"


@lru_cache(maxsize=1)
def load_config() -> dict[str, Any]:
    """Read the config file once; a missing or broken file counts as empty."""

    try:
        data = json.loads(CONFIG_FILE.read_text())
    except (OSError, ValueError):
        return {}

    return data if isinstance(data, dict) else {}


def get_config_value(key: str, default: Any | None = None) -> Any | None:
    """Fetch a configuration value by key.

    An environment variable named ``APKDISGUISE_<KEY>`` (upper-cased) wins
    over the config file.
    """

    env_value = os.environ.get(ENV_PREFIX + key.upper())
    if env_value:
        return env_value

    return load_config().get(key, default)


def get_config_str(key: str, default: str | None = None) -> str | None:
    """Fetch a configuration value, ignoring anything that is not a string."""

    value = get_config_value(key)
    if isinstance(value, str) and value:
        return value
    return default


def reload_config() -> None:
    """Force the cached configuration to be reloaded on next access."""

    load_config.cache_clear()
