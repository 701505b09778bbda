"""Configuration loading: optional TOML config file plus env overrides."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel

DEFAULT_CONFIG_PATHS = [
    Path.home() / ".config" / "keycypher" / "config.toml",
    Path("keycypher.toml"),
]

DEFAULT_SETTLE_DELAY = 0.25


class Settings(BaseModel):
    """Resolved runtime settings."""

    home: Path
    catalog_path: Path
    backup_dir: Path
    settle_delay: float = DEFAULT_SETTLE_DELAY


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from a TOML file.

    Searches default paths if no explicit path is given.
    Returns an empty dict if no config file is found.
    """
    paths = [path] if path is not None else DEFAULT_CONFIG_PATHS

    for p in paths:
        if p.exists():
            with open(p, "rb") as f:
                return tomllib.load(f)

    return {}


def _data_dir(home: Path) -> Path:
    return home / ".local" / "share" / "keycypher"


def get_settings(config_path: Path | None = None) -> Settings:
    """Resolve settings: KCY_* env vars → config.toml → defaults."""
    config = load_config(config_path)

    home_value = os.environ.get("KCY_HOME") or config.get("home")
    home = Path(home_value).expanduser() if home_value else Path.home()

    catalog_value = os.environ.get("KCY_CATALOG") or config.get("catalog_path")
    catalog_path = (
        Path(catalog_value).expanduser() if catalog_value else _data_dir(home) / "catalog.json"
    )

    backup_value = os.environ.get("KCY_BACKUP_DIR") or config.get("backup_dir")
    backup_dir = Path(backup_value).expanduser() if backup_value else _data_dir(home) / "backups"

    delay_value = os.environ.get("KCY_SETTLE_DELAY")
    if delay_value is not None:
        try:
            settle_delay = float(delay_value)
        except ValueError:
            settle_delay = DEFAULT_SETTLE_DELAY
    else:
        settle_delay = float(config.get("settle_delay", DEFAULT_SETTLE_DELAY))

    return Settings(
        home=home,
        catalog_path=catalog_path,
        backup_dir=backup_dir,
        settle_delay=max(0.0, settle_delay),
    )
