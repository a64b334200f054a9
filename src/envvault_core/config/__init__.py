from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

from envvault_core.errors import ConfigError


_SECTION_KEYS = ("client", "hub", "github", "logging")

DEFAULT_BACKEND_URL = "http://localhost:8000"
DEFAULT_FRONTEND_URL = "http://localhost:5173"
DEFAULT_CALLBACK_PORT = 3456
DEFAULT_LOGIN_TIMEOUT_SECONDS = 300.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_HUB_HOST = "0.0.0.0"
DEFAULT_HUB_PORT = 8000
DEFAULT_GITHUB_API_BASE_URL = "https://api.github.com"
DEFAULT_GITHUB_WEB_BASE_URL = "https://github.com"

BACKEND_URL_ENV = "ENVVAULT_BACKEND_URL"
BACKEND_URL_FALLBACK_ENV = "BACKEND_URL"
FRONTEND_URL_ENV = "ENVVAULT_FRONTEND_URL"
FRONTEND_URL_FALLBACK_ENV = "FRONTEND_URL"
GITHUB_CLIENT_ID_ENV = "GITHUB_CLIENT_ID"
GITHUB_CLIENT_SECRET_ENV = "GITHUB_CLIENT_SECRET"
GITHUB_CALLBACK_URL_ENV = "GITHUB_CALLBACK_URL"
GITHUB_API_BASE_URL_ENV = "ENVVAULT_GITHUB_API_BASE_URL"
GITHUB_WEB_BASE_URL_ENV = "ENVVAULT_GITHUB_WEB_BASE_URL"
ENCRYPTION_KEY_ENV = "ENVVAULT_ENCRYPTION_KEY"
STORE_FILE_ENV = "ENVVAULT_STORE_FILE"


def _ensure_dict(value: object, *, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a table/object.")
    return dict(value)


def _copy_section_values(raw: object, *, section: str) -> dict[str, Any]:
    return _ensure_dict(raw, label=f"section '{section}'")


def normalize_absolute_http_base_url(raw_value: Any, field_name: str) -> str:
    value = str(raw_value or "").strip()
    parsed = urllib.parse.urlsplit(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError(f"{field_name} must be an absolute http(s) URL, got {value!r}.")
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, parsed.path.rstrip("/"), "", ""))


def _parse_positive_number(raw_value: Any, *, label: str, default: float) -> float:
    if raw_value is None or raw_value == "":
        return float(default)
    if isinstance(raw_value, bool):
        raise ConfigError(f"{label} must be a positive number.")
    try:
        value = float(raw_value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be a positive number.") from exc
    if value <= 0:
        raise ConfigError(f"{label} must be a positive number.")
    return value


def _parse_port(raw_value: Any, *, label: str, default: int) -> int:
    if raw_value is None or raw_value == "":
        return int(default)
    if isinstance(raw_value, bool):
        raise ConfigError(f"{label} must be an integer between 0 and 65535.")
    try:
        port = int(str(raw_value).strip())
    except ValueError as exc:
        raise ConfigError(f"{label} must be an integer between 0 and 65535.") from exc
    if port < 0 or port > 65535:
        raise ConfigError(f"{label} must be an integer between 0 and 65535.")
    return port


def _first_env(environ: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = str(environ.get(name) or "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class ClientConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HubConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GithubConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EnvVaultConfig:
    client: ClientConfig = field(default_factory=ClientConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    github: GithubConfig = field(default_factory=GithubConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | dict[str, Any]) -> "EnvVaultConfig":
        if not isinstance(payload, Mapping):
            raise ConfigError("Config payload root must be a table/object.")

        raw = dict(payload)
        extras = {k: v for k, v in raw.items() if k not in _SECTION_KEYS}
        return cls(
            client=ClientConfig(values=_copy_section_values(raw.get("client"), section="client")),
            hub=HubConfig(values=_copy_section_values(raw.get("hub"), section="hub")),
            github=GithubConfig(values=_copy_section_values(raw.get("github"), section="github")),
            logging=LoggingConfig(values=_copy_section_values(raw.get("logging"), section="logging")),
            extras=extras,
        )

    @classmethod
    def from_toml_path(cls, path: str | Path) -> "EnvVaultConfig":
        config_path = Path(path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc
        try:
            parsed = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        return cls.from_dict(parsed)

    def log_level(self) -> str:
        return str(self.logging.values.get("level") or "").strip()


@dataclass(frozen=True)
class ClientSettings:
    backend_url: str = DEFAULT_BACKEND_URL
    frontend_url: str = DEFAULT_FRONTEND_URL
    callback_port: int = DEFAULT_CALLBACK_PORT
    login_timeout_seconds: float = DEFAULT_LOGIN_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(frozen=True)
class HubSettings:
    github_client_id: str = ""
    github_client_secret: str = ""
    github_callback_url: str = ""
    github_api_base_url: str = DEFAULT_GITHUB_API_BASE_URL
    github_web_base_url: str = DEFAULT_GITHUB_WEB_BASE_URL
    frontend_url: str = DEFAULT_FRONTEND_URL
    encryption_key: str = ""
    store_file: str = ""
    host: str = DEFAULT_HUB_HOST
    port: int = DEFAULT_HUB_PORT
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    def oauth_configured(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)

    def resolved_callback_url(self, origin: str) -> str:
        if self.github_callback_url:
            return self.github_callback_url
        return f"{origin.rstrip('/')}/api/auth/github/callback"


def resolve_client_settings(
    config: EnvVaultConfig | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    backend_url: str | None = None,
) -> ClientSettings:
    env = os.environ if environ is None else environ
    values = config.client.values if config is not None else {}
    raw_backend = (
        str(backend_url or "").strip()
        or _first_env(env, BACKEND_URL_ENV, BACKEND_URL_FALLBACK_ENV)
        or str(values.get("backend_url") or "").strip()
        or DEFAULT_BACKEND_URL
    )
    raw_frontend = (
        _first_env(env, FRONTEND_URL_ENV, FRONTEND_URL_FALLBACK_ENV)
        or str(values.get("frontend_url") or "").strip()
        or DEFAULT_FRONTEND_URL
    )
    return ClientSettings(
        backend_url=normalize_absolute_http_base_url(raw_backend, "client.backend_url"),
        frontend_url=normalize_absolute_http_base_url(raw_frontend, "client.frontend_url"),
        callback_port=_parse_port(
            values.get("callback_port"),
            label="client.callback_port",
            default=DEFAULT_CALLBACK_PORT,
        ),
        login_timeout_seconds=_parse_positive_number(
            values.get("login_timeout_seconds"),
            label="client.login_timeout_seconds",
            default=DEFAULT_LOGIN_TIMEOUT_SECONDS,
        ),
        request_timeout_seconds=_parse_positive_number(
            values.get("request_timeout_seconds"),
            label="client.request_timeout_seconds",
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ),
    )


def resolve_hub_settings(
    config: EnvVaultConfig | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    host: str | None = None,
    port: int | None = None,
    store_file: str | None = None,
) -> HubSettings:
    env = os.environ if environ is None else environ
    hub_values = config.hub.values if config is not None else {}
    github_values = config.github.values if config is not None else {}

    callback_url = _first_env(env, GITHUB_CALLBACK_URL_ENV) or str(github_values.get("callback_url") or "").strip()
    if callback_url:
        callback_url = normalize_absolute_http_base_url(callback_url, "github.callback_url")
    api_base = (
        _first_env(env, GITHUB_API_BASE_URL_ENV)
        or str(github_values.get("api_base_url") or "").strip()
        or DEFAULT_GITHUB_API_BASE_URL
    )
    web_base = (
        _first_env(env, GITHUB_WEB_BASE_URL_ENV)
        or str(github_values.get("web_base_url") or "").strip()
        or DEFAULT_GITHUB_WEB_BASE_URL
    )
    frontend = (
        _first_env(env, FRONTEND_URL_ENV, FRONTEND_URL_FALLBACK_ENV)
        or str(hub_values.get("frontend_url") or "").strip()
        or DEFAULT_FRONTEND_URL
    )
    return HubSettings(
        github_client_id=_first_env(env, GITHUB_CLIENT_ID_ENV) or str(github_values.get("client_id") or "").strip(),
        github_client_secret=(
            _first_env(env, GITHUB_CLIENT_SECRET_ENV) or str(github_values.get("client_secret") or "").strip()
        ),
        github_callback_url=callback_url,
        github_api_base_url=normalize_absolute_http_base_url(api_base, "github.api_base_url"),
        github_web_base_url=normalize_absolute_http_base_url(web_base, "github.web_base_url"),
        frontend_url=normalize_absolute_http_base_url(frontend, "hub.frontend_url"),
        encryption_key=_first_env(env, ENCRYPTION_KEY_ENV) or str(hub_values.get("encryption_key") or "").strip(),
        store_file=(
            str(store_file or "").strip()
            or _first_env(env, STORE_FILE_ENV)
            or str(hub_values.get("store_file") or "").strip()
        ),
        host=str(host or hub_values.get("host") or DEFAULT_HUB_HOST).strip(),
        port=_parse_port(port if port is not None else hub_values.get("port"), label="hub.port", default=DEFAULT_HUB_PORT),
        request_timeout_seconds=_parse_positive_number(
            hub_values.get("request_timeout_seconds"),
            label="hub.request_timeout_seconds",
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ),
    )


def load_config(path: str | Path | None, *, missing_ok: bool = False) -> EnvVaultConfig:
    if path is None:
        return EnvVaultConfig()
    config_path = Path(path)
    if missing_ok and not config_path.exists():
        return EnvVaultConfig()
    return EnvVaultConfig.from_toml_path(config_path)


def load_config_dict(payload: Mapping[str, Any] | dict[str, Any]) -> EnvVaultConfig:
    return EnvVaultConfig.from_dict(payload)


__all__ = [
    "ClientConfig",
    "ClientSettings",
    "EnvVaultConfig",
    "GithubConfig",
    "HubConfig",
    "HubSettings",
    "LoggingConfig",
    "DEFAULT_BACKEND_URL",
    "DEFAULT_CALLBACK_PORT",
    "DEFAULT_FRONTEND_URL",
    "DEFAULT_HUB_HOST",
    "DEFAULT_HUB_PORT",
    "DEFAULT_LOGIN_TIMEOUT_SECONDS",
    "load_config",
    "load_config_dict",
    "normalize_absolute_http_base_url",
    "resolve_client_settings",
    "resolve_hub_settings",
]
