from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

ENVVAULT_HOME_ENV = "ENVVAULT_HOME"
CONFIG_FILE_NAME = "config.toml"
CREDENTIALS_FILE_NAME = "credentials.json"
STORE_FILE_NAME = "env_records.json"


@dataclass(frozen=True)
class ClientPaths:
    config_dir: Path
    config_file: Path
    credentials_file: Path


def default_config_dir(home: Path | None = None, environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    configured = str(env.get(ENVVAULT_HOME_ENV) or "").strip()
    if configured:
        return Path(configured).expanduser()
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / ".config" / "envvault"


def default_hub_data_dir(home: Path | None = None) -> Path:
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / ".local" / "share" / "envvault"


def resolve_client_paths(
    paths_values: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ClientPaths:
    config_dir = default_config_dir(environ=environ)
    credentials_file = config_dir / CREDENTIALS_FILE_NAME
    if paths_values is not None:
        configured = str(paths_values.get("credentials_file") or "").strip()
        if configured:
            credentials_file = Path(configured).expanduser()
    return ClientPaths(
        config_dir=config_dir,
        config_file=config_dir / CONFIG_FILE_NAME,
        credentials_file=credentials_file,
    )


def resolve_store_file(configured: Any = None) -> Path:
    configured_text = str(configured or "").strip()
    if configured_text:
        return Path(configured_text).expanduser().resolve()
    return default_hub_data_dir() / STORE_FILE_NAME
