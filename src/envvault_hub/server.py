from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any

import click
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from envvault_core import logging as core_logging
from envvault_core.config import STORE_FILE_ENV, EnvVaultConfig, HubSettings, load_config, resolve_hub_settings
from envvault_core.errors import ConfigError, TypedEnvVaultError, typed_error_payload
from envvault_core.paths import default_config_dir, resolve_store_file
from envvault_hub.api.routes import register_hub_routes
from envvault_hub.domains import AuthDomain, EnvDomain
from envvault_hub.integrations import GithubClient
from envvault_hub.services.auth_service import AuthService
from envvault_hub.services.env_service import EnvService
from envvault_hub.store import EnvRecordStore

LOGGER = logging.getLogger("envvault_hub")
HUB_LOG_LEVEL_CHOICES = core_logging.LOG_LEVEL_CHOICES
REQUEST_ID_HEADER = "x-request-id"
HUB_CONFIG_FILE_ENV = "ENVVAULT_HUB_CONFIG_FILE"
HUB_LOG_LEVEL_ENV = "ENVVAULT_HUB_LOG_LEVEL"


class HubState:
    def __init__(
        self,
        *,
        settings: HubSettings,
        store: Any = None,
        github: Any = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else EnvRecordStore(state_file=resolve_store_file(settings.store_file))
        self.github = github if github is not None else GithubClient(
            api_base_url=settings.github_api_base_url,
            web_base_url=settings.github_web_base_url,
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            timeout_seconds=settings.request_timeout_seconds,
        )
        self.auth_domain = AuthDomain(github=self.github, settings=settings, logger=logging.getLogger("envvault_hub.auth"))
        self.env_domain = EnvDomain(store=self.store, github=self.github, logger=logging.getLogger("envvault_hub.env"))
        self.auth_service = AuthService(domain=self.auth_domain)
        self.env_service = EnvService(domain=self.env_domain, encryption_key=settings.encryption_key)


def _core_error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    typed_payload = typed_error_payload(exc)
    if typed_payload is not None:
        status_by_code = {
            "UNAUTHENTICATED": 401,
            "AUTHENTICATION_REQUIRED": 401,
            "PERMISSION_DENIED": 403,
            "NOT_FOUND": 404,
            "FILE_NOT_FOUND": 404,
            "VALIDATION_ERROR": 400,
            "UPSTREAM_ERROR": 502,
            "CONFIG_ERROR": 503,
        }
        status = status_by_code.get(str(typed_payload.get("error_code") or ""), 500)
        return status, typed_payload
    return 500, {"error_code": "INTERNAL_ERROR", "detail": str(exc)}


_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "UNPROCESSABLE_ENTITY",
}


def _http_error_code(status_code: int) -> str:
    status = int(status_code or 500)
    if status in _HTTP_ERROR_CODES:
        return _HTTP_ERROR_CODES[status]
    if status >= 500:
        return "UPSTREAM_ERROR"
    return f"HTTP_{status}"


def _uvicorn_log_level(hub_level: str) -> str:
    normalized = core_logging.normalize_log_level(hub_level)
    if normalized == "debug":
        return "info"
    return normalized


def _resolve_hub_log_level(cli_value: str | None, config: EnvVaultConfig) -> str:
    if cli_value:
        return core_logging.normalize_log_level(cli_value)
    return core_logging.normalize_log_level(config.log_level())


def _configure_hub_logging(level: str, config: EnvVaultConfig) -> None:
    core_logging.configure_structured_logger(LOGGER, level=level)
    core_logging.configure_domain_log_levels(
        domains=config.logging.values.get("domains"),
        logger_prefix="envvault_hub",
        normalize_level=core_logging.normalize_log_level,
    )


def create_app(settings: HubSettings, *, store: Any = None, github: Any = None) -> FastAPI:
    state = HubState(settings=settings, store=store, github=github)
    app = FastAPI(title="envvault hub")
    app.state.hub_state = state

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        request_id = str(request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid.uuid4().hex[:12]
        started = time.monotonic()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        LOGGER.info(
            "%s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "component": "http",
                "operation": "request",
                "result": str(response.status_code),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return response

    @app.exception_handler(TypedEnvVaultError)
    async def _handle_typed_error(_request: Request, exc: TypedEnvVaultError) -> JSONResponse:
        status, payload = _core_error_payload(exc)
        if status >= 500:
            LOGGER.warning(
                "Request failed: %s",
                exc,
                extra={"component": "http", "operation": "error", "result": str(status), "error_class": type(exc).__name__},
            )
        return JSONResponse(status_code=status, content=payload)

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=int(exc.status_code or 500),
            content={"error_code": _http_error_code(int(exc.status_code or 500)), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    register_hub_routes(app, state=state, logger=LOGGER)
    return app


def _default_config_file() -> Path:
    return default_config_dir() / "hub.toml"


def app_from_environment() -> FastAPI:
    """Uvicorn factory for ``--reload``: every worker rebuilds settings from the environment."""
    config_file = Path(os.environ.get(HUB_CONFIG_FILE_ENV) or _default_config_file())
    config = load_config(config_file, missing_ok=True)
    settings = resolve_hub_settings(config)
    _configure_hub_logging(_resolve_hub_log_level(os.environ.get(HUB_LOG_LEVEL_ENV), config), config)
    return create_app(settings)


@click.command(help="Run the envvault hub server.")
@click.option(
    "--config-file",
    default=str(_default_config_file()),
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Hub TOML config file. A missing default file is ignored.",
)
@click.option("--host", default=None, show_default="config hub.host or 0.0.0.0")
@click.option("--port", default=None, type=int, show_default="config hub.port or 8000")
@click.option(
    "--store-file",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    show_default="ENVVAULT_STORE_FILE or hub data dir",
    help="JSON file holding stored env records.",
)
@click.option(
    "--log-level",
    default=None,
    show_default="config logging.level or info",
    type=click.Choice(HUB_LOG_LEVEL_CHOICES, case_sensitive=False),
    help="Hub logging verbosity (applies to hub logs and Uvicorn).",
)
@click.option("--reload", is_flag=True, default=False)
def main(
    config_file: Path,
    host: str | None,
    port: int | None,
    store_file: Path | None,
    log_level: str | None,
    reload: bool,
) -> None:
    missing_ok = Path(config_file) == _default_config_file()
    if not missing_ok and not Path(config_file).exists():
        raise click.ClickException(f"Missing config file: {config_file}")
    try:
        config = load_config(config_file, missing_ok=missing_ok)
        settings = resolve_hub_settings(
            config,
            host=host,
            port=port,
            store_file=str(store_file) if store_file else None,
        )
    except ConfigError as exc:
        click.echo(
            json.dumps(
                {"event": "envvault_hub_config_load_error", "config_path": str(config_file), "error": str(exc)},
                sort_keys=True,
            ),
            err=True,
        )
        raise click.ClickException(str(exc)) from exc

    normalized_log_level = _resolve_hub_log_level(log_level, config)
    _configure_hub_logging(normalized_log_level, config)
    if not settings.oauth_configured():
        LOGGER.warning(
            "GitHub OAuth client id/secret are not configured; login will fail.",
            extra={"component": "startup", "operation": "hub_start", "result": "oauth_unconfigured"},
        )
    if not settings.encryption_key:
        LOGGER.warning(
            "Encryption key is not configured; clients cannot push or pull.",
            extra={"component": "startup", "operation": "hub_start", "result": "encryption_key_missing"},
        )
    LOGGER.info(
        "Starting envvault hub host=%s port=%s log_level=%s reload=%s",
        settings.host,
        settings.port,
        normalized_log_level,
        reload,
        extra={"component": "startup", "operation": "hub_start", "result": "started"},
    )
    uvicorn_level = _uvicorn_log_level(normalized_log_level)
    if reload:
        os.environ[HUB_CONFIG_FILE_ENV] = str(config_file)
        os.environ[HUB_LOG_LEVEL_ENV] = normalized_log_level
        if settings.store_file:
            os.environ[STORE_FILE_ENV] = settings.store_file
        uvicorn.run(
            "envvault_hub.server:app_from_environment",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=True,
            log_level=uvicorn_level,
        )
        return
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=uvicorn_level)


if __name__ == "__main__":
    main()
