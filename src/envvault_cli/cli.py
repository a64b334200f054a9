from __future__ import annotations

import functools
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import click

from envvault_cli.auth_broker import AuthBroker
from envvault_cli.credentials import CredentialStore
from envvault_cli.remote import EncryptionKeyProvider, RemoteEnvClient
from envvault_cli.sync import DEFAULT_ENV_FILE, SyncOrchestrator, format_listing
from envvault_core import logging as core_logging
from envvault_core.config import ClientSettings, EnvVaultConfig, load_config, resolve_client_settings
from envvault_core.errors import (
    AuthenticationRequired,
    ConfigError,
    HandshakeFailed,
    TransportError,
    TypedEnvVaultError,
)
from envvault_core.paths import ClientPaths, resolve_client_paths

LOGGER = logging.getLogger("envvault_cli")
CLI_DEFAULT_LOG_LEVEL = "warning"


class EnvVaultCliError(click.ClickException):
    """One red line on stderr, exit status 1."""

    def show(self, file: Any = None) -> None:
        click.echo(click.style(f"Error: {self.format_message()}", fg="red"), err=True)


def _hint_for(exc: TypedEnvVaultError) -> str:
    if isinstance(exc, AuthenticationRequired):
        return "Run `envvault login` to sign in with GitHub."
    if isinstance(exc, HandshakeFailed):
        return "Check that the hub is reachable and the callback port is free, then run `envvault login` again."
    if isinstance(exc, TransportError):
        return "Check --backend-url or ENVVAULT_BACKEND_URL."
    return ""


def handle_typed_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except TypedEnvVaultError as exc:
            LOGGER.debug(
                "Command failed: %s",
                exc,
                extra={"component": "cli", "operation": func.__name__, "result": "failed", "error_class": type(exc).__name__},
            )
            message = str(exc) or exc.user_message
            hint = _hint_for(exc)
            if hint and hint not in message:
                message = f"{message} {hint}"
            raise EnvVaultCliError(message) from exc

    return wrapper


@dataclass
class CliContext:
    settings: ClientSettings
    paths: ClientPaths
    interactive: bool

    def credentials(self) -> CredentialStore:
        return CredentialStore(self.paths.credentials_file)

    def client(self) -> RemoteEnvClient:
        return RemoteEnvClient(base_url=self.settings.backend_url, timeout_seconds=self.settings.request_timeout_seconds)

    def orchestrator(self) -> SyncOrchestrator:
        client = self.client()
        return SyncOrchestrator(
            credentials=self.credentials(),
            client=client,
            key_provider=EncryptionKeyProvider(client),
            interactive=self.interactive,
        )


def _load_cli_config(config_file: Path | None, paths: ClientPaths) -> EnvVaultConfig:
    if config_file is not None:
        if not Path(config_file).exists():
            raise EnvVaultCliError(f"Missing config file: {config_file}")
        return load_config(config_file)
    return load_config(paths.config_file, missing_ok=True)


@click.group(help="Store and retrieve encrypted .env files for your GitHub repositories.")
@click.option(
    "--config-file",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    show_default="$ENVVAULT_HOME/config.toml or ~/.config/envvault/config.toml",
    help="Client TOML config file.",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(core_logging.LOG_LEVEL_CHOICES, case_sensitive=False),
    show_default="config logging.level or warning",
    help="Logging verbosity for diagnostics on stderr.",
)
@click.option("--backend-url", default=None, help="envvault hub base URL (overrides ENVVAULT_BACKEND_URL).")
@click.option("--no-input", is_flag=True, default=False, help="Never prompt; use flags and defaults only.")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    backend_url: str | None,
    no_input: bool,
) -> None:
    try:
        paths = resolve_client_paths()
        config = _load_cli_config(config_file, paths)
        paths = resolve_client_paths(config.client.values)
        settings = resolve_client_settings(config, backend_url=backend_url)
    except ConfigError as exc:
        raise EnvVaultCliError(str(exc)) from exc

    level = core_logging.normalize_log_level(log_level or config.log_level(), default=CLI_DEFAULT_LOG_LEVEL)
    core_logging.configure_structured_logger(LOGGER, level=level)
    core_logging.configure_domain_log_levels(
        domains=config.logging.values.get("domains"),
        logger_prefix="envvault_cli",
        normalize_level=core_logging.normalize_log_level,
    )
    ctx.obj = CliContext(
        settings=settings,
        paths=paths,
        interactive=not no_input and sys.stdin.isatty(),
    )


@main.command(help="Sign in with GitHub through your browser.")
@click.pass_obj
@handle_typed_errors
def login(obj: CliContext) -> None:
    settings = obj.settings
    broker = AuthBroker(
        backend_url=settings.backend_url,
        frontend_url=settings.frontend_url,
        port=settings.callback_port,
        timeout_seconds=settings.login_timeout_seconds,
    )
    result = broker.login()
    credential = obj.credentials().save(result.user_id, result.user_name, result.token)
    click.echo(click.style(f"Logged in as {credential.user_name} (ID: {credential.user_id})", fg="green"))


@main.command(help="Forget the stored GitHub credential.")
@click.pass_obj
@handle_typed_errors
def logout(obj: CliContext) -> None:
    obj.credentials().clear()
    click.echo(click.style("Logged out.", fg="green"))


@main.command(help="Show the signed-in GitHub account.")
@click.pass_obj
@handle_typed_errors
def whoami(obj: CliContext) -> None:
    credential = obj.credentials().load()
    if credential is None:
        raise AuthenticationRequired("Not logged in.")
    click.echo(f"{credential.user_name} (ID: {credential.user_id})")


@main.command(help="Encrypt a local env file and store it for a repository.")
@click.option("-f", "--file", "file_path", default=DEFAULT_ENV_FILE, show_default=True, help="Path to the env file.")
@click.option("-o", "--owner", default=None, help="Repository owner.")
@click.option("-r", "--repo", default=None, help="Repository name.")
@click.option("-d", "--directory", default=None, help="Directory inside the repository (empty for root).")
@click.option("-n", "--name", default=None, help="Stored env file name (default .env.<YYYY-MM-DD>).")
@click.pass_obj
@handle_typed_errors
def push(
    obj: CliContext,
    file_path: str,
    owner: str | None,
    repo: str | None,
    directory: str | None,
    name: str | None,
) -> None:
    outcome = obj.orchestrator().push(file_path=file_path, owner=owner, repo=repo, directory=directory, name=name)
    location = f"/{outcome.target.directory}" if outcome.target.directory else "/"
    click.echo(
        click.style(
            f"Encrypted and pushed {outcome.env_name} to {outcome.target.full_name} ({location})",
            fg="green",
        )
    )


@main.command(help="Fetch, decrypt and write an env file stored for a repository.")
@click.option("-o", "--owner", default=None, help="Repository owner.")
@click.option("-r", "--repo", default=None, help="Repository name.")
@click.option("-d", "--directory", default=None, help="Directory inside the repository (empty for root).")
@click.option("--output", default=None, type=click.Path(dir_okay=False), help="Output file path.")
@click.pass_obj
@handle_typed_errors
def pull(
    obj: CliContext,
    owner: str | None,
    repo: str | None,
    directory: str | None,
    output: str | None,
) -> None:
    outcome = obj.orchestrator().pull(owner=owner, repo=repo, directory=directory, output=output)
    if outcome is None:
        return
    click.echo(click.style(f"Environment variables saved to {outcome.path}", fg="green"))


@main.command(name="list", help="List env files you can access, grouped by repository.")
@click.option("-o", "--owner", default=None, help="Repository owner.")
@click.option("-r", "--repo", default=None, help="Repository name.")
@click.pass_obj
@handle_typed_errors
def list_command(obj: CliContext, owner: str | None, repo: str | None) -> None:
    records = obj.orchestrator().list(owner=owner, repo=repo)
    if not records:
        click.echo(click.style("No environment files found.", fg="yellow"))
        return
    for line in format_listing(records):
        if line.startswith(" "):
            click.echo(line)
        else:
            click.echo(click.style(line, fg="cyan"))


if __name__ == "__main__":
    main()
