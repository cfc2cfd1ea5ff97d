"""Config file discovery for the API server and the CLI.

Environment variables (``MYAMORI_*``) still win over anything read here;
see ``Config.settings_customise_sources``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from myamori.core.config.schema import Config

CONFIG_ENV = "MYAMORI_CONFIG"
SEARCH_PATHS = (
    Path("config.yaml"),
    Path("myamori.yaml"),
    Path.home() / ".myamori" / "config.yaml",
)


class ConfigFileError(ValueError):
    """The config file exists but does not hold a YAML mapping."""


def load_config(config_path: str | Path | None = None) -> Config:
    """Build the Config from the first config file found, then env.

    Lookup: ``config_path``, then ``$MYAMORI_CONFIG``, then ``SEARCH_PATHS``
    in order. A named file that does not exist yields defaults.
    """
    path = find_config_file(config_path)
    if path is None:
        logger.debug("No config file found, using defaults and environment")
        return Config()

    data = read_config_file(path)
    logger.debug(f"Loaded config file {path} ({', '.join(sorted(data)) or 'empty'})")
    return Config(**data)


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    named = config_path or os.environ.get(CONFIG_ENV)
    if named:
        path = Path(named).expanduser()
        return path if path.is_file() else None
    return next((p for p in SEARCH_PATHS if p.is_file()), None)


def read_config_file(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(f"{path}: expected a mapping of config sections")
    return data
