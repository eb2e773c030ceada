"""
Settings store utilities.

Persists small preferences to ~/.homechat/config.json (last-used model,
database URLs) so they survive across sessions, and bridges env <-> config
for one-time setup.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

CONFIG_DIR = Path.home() / ".homechat"
CONFIG_PATH = CONFIG_DIR / "config.json"

TARGET_DB_KEY = "target_database_url"
SYSTEM_DB_KEY = "system_database_url"
LAST_MODEL_KEY = "llm_model"

_ENV_KEYS = {
    "DATABASE_URL": TARGET_DB_KEY,
    "SYSTEM_DATABASE_URL": SYSTEM_DB_KEY,
}


def _ensure_dir() -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True, mode=0o700)


def load_config() -> dict[str, Any]:
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
            return json.load(handle)
    return {}


def save_config(config: dict[str, Any]) -> None:
    _ensure_dir()
    try:
        with open(CONFIG_PATH, "w", encoding="utf-8") as handle:
            json.dump(config, handle, indent=2)
    except PermissionError:
        return


def set_value(key: str, value: str | None) -> None:
    if not value:
        return
    config = load_config()
    config[key] = value
    save_config(config)


def get_value(key: str) -> str | None:
    return load_config().get(key)


def get_last_model() -> str | None:
    """Return the persisted model name, or None if none was saved."""
    return get_value(LAST_MODEL_KEY)


def put_last_model(model: str) -> None:
    set_value(LAST_MODEL_KEY, model)


def apply_config_defaults() -> None:
    """
    Persist env values into config (one-time) and apply config to env when missing.
    """
    config = load_config()
    changed = False
    for env_name, key in _ENV_KEYS.items():
        env_value = os.getenv(env_name)
        if env_value and key not in config:
            config[key] = env_value
            changed = True
    if changed:
        save_config(config)

    for env_name, key in _ENV_KEYS.items():
        if not os.getenv(env_name) and config.get(key):
            os.environ[env_name] = str(config[key])


def clear_config() -> None:
    """Remove persisted config file."""
    try:
        if CONFIG_PATH.exists():
            CONFIG_PATH.unlink()
    except OSError:
        return
