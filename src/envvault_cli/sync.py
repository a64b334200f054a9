from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

import click

from envvault_cli.credentials import Credential, CredentialStore
from envvault_cli.git import GitRemote, origin_remote
from envvault_core.codec import SecretCodec
from envvault_core.envfile import require_valid_env_format
from envvault_core.errors import (
    AuthenticationRequired,
    EnvFileNotFound,
    LocalFileError,
    PermissionDenied,
    ValidationError,
)
from envvault_core.models import EnvRecord, newest_first

LOGGER = logging.getLogger("envvault_cli.sync")

DEFAULT_ENV_FILE = ".env"
_UNSAFE_FILENAME_CHARS = set('/\\:*?"<>|') | {chr(code) for code in range(32)} | {"\x7f"}


def sanitize_filename(name: str) -> str:
    cleaned = "".join("_" if char in _UNSAFE_FILENAME_CHARS else char for char in str(name or "").strip())
    if cleaned in {"", ".", ".."}:
        return DEFAULT_ENV_FILE
    return cleaned


def default_env_name(today: date | None = None) -> str:
    return f".env.{(today or date.today()).isoformat()}"


def _display_timestamp(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    return parsed.strftime("%Y-%m-%d %H:%M UTC")


@dataclass(frozen=True)
class RepoTarget:
    owner: str
    name: str
    directory: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class PushOutcome:
    record_id: str
    target: RepoTarget
    env_name: str


@dataclass(frozen=True)
class PullOutcome:
    record: EnvRecord
    path: Path


def format_listing(records: list[EnvRecord]) -> list[str]:
    """Render records grouped by repository, in first-seen order."""
    grouped: dict[str, list[EnvRecord]] = {}
    for record in records:
        grouped.setdefault(record.repo_full_name, []).append(record)
    lines: list[str] = []
    for repo_full_name, repo_records in grouped.items():
        lines.append(repo_full_name)
        for record in repo_records:
            directory = f"/{record.directory}" if record.directory else "/root"
            lines.append(f"   └─ {record.env_name} ({directory}) - {_display_timestamp(record.updated_at)}")
    return lines


class SyncOrchestrator:
    def __init__(
        self,
        *,
        credentials: CredentialStore,
        client: Any,
        key_provider: Any,
        interactive: bool = True,
        prompt: Callable[..., Any] | None = None,
        echo: Callable[..., None] | None = None,
        git_remote: Callable[[], GitRemote | None] | None = None,
        cwd: Path | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._credentials = credentials
        self._client = client
        self._key_provider = key_provider
        self.interactive = bool(interactive)
        self._prompt = prompt or click.prompt
        self._echo = echo or click.echo
        self._git_remote = git_remote or origin_remote
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self._today = today or date.today

    def require_credential(self) -> Credential:
        credential = self._credentials.load()
        if credential is None:
            raise AuthenticationRequired("Not authenticated. Run `envvault login` first.")
        return credential

    def resolve_target(
        self,
        credential: Credential,
        *,
        owner: str | None,
        repo: str | None,
        directory: str | None,
    ) -> RepoTarget:
        remote = self._git_remote()
        default_owner = str(owner or "").strip() or (remote.owner if remote else "") or credential.user_name
        default_repo = str(repo or "").strip() or (remote.name if remote else "")
        default_directory = str(directory or "").strip()

        resolved_owner = default_owner
        resolved_repo = default_repo
        resolved_directory = default_directory
        if self.interactive:
            if not owner:
                resolved_owner = self._ask("Repository owner", default_owner)
            if not repo:
                resolved_repo = self._ask("Repository name", default_repo)
            if directory is None:
                resolved_directory = self._ask("Directory path (leave empty for root)", default_directory)

        if not resolved_owner or not resolved_repo:
            raise ValidationError("Repository owner and name are required; pass --owner and --repo.")
        if "/" in resolved_owner or "/" in resolved_repo:
            raise ValidationError("Repository owner and name must not contain '/'.")
        return RepoTarget(owner=resolved_owner, name=resolved_repo, directory=resolved_directory.strip("/"))

    def push(
        self,
        *,
        file_path: str | Path = DEFAULT_ENV_FILE,
        owner: str | None = None,
        repo: str | None = None,
        directory: str | None = None,
        name: str | None = None,
    ) -> PushOutcome:
        credential = self.require_credential()
        source = Path(file_path)
        if not source.is_absolute():
            source = self.cwd / source
        if not source.is_file():
            raise EnvFileNotFound(f"File {file_path} not found.")
        try:
            content = source.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"File {file_path} is not valid UTF-8.") from exc
        except OSError as exc:
            raise LocalFileError(f"Unable to read {file_path}: {exc.strerror or exc}") from exc
        report = require_valid_env_format(content, source=str(file_path))
        for warning in report.warnings:
            self._echo(click.style(f"warning: {warning}", fg="yellow"), err=True)

        target = self.resolve_target(credential, owner=owner, repo=repo, directory=directory)
        env_name = str(name or "").strip()
        if not env_name:
            env_name = default_env_name(self._today())
            if self.interactive:
                env_name = self._ask("Environment file name", env_name)

        started = time.monotonic()
        codec = SecretCodec(self._key_provider.get())
        try:
            record_id = self._client.push(
                token=credential.token,
                repo_full_name=target.full_name,
                repo_name=target.name,
                directory=target.directory,
                env_name=env_name,
                content=codec.encrypt(content),
            )
        except PermissionDenied as exc:
            raise PermissionDenied(
                f"{exc} You need push access to {target.full_name} (owner or collaborator) to store env files."
            ) from exc
        LOGGER.info(
            "Pushed env file variables=%s",
            report.variable_count,
            extra={
                "user": credential.user_name,
                "repo": target.full_name,
                "component": "sync",
                "operation": "push",
                "result": "stored",
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return PushOutcome(record_id=record_id, target=target, env_name=env_name)

    def pull(
        self,
        *,
        owner: str | None = None,
        repo: str | None = None,
        directory: str | None = None,
        output: str | Path | None = None,
    ) -> PullOutcome | None:
        credential = self.require_credential()
        target = self.resolve_target(credential, owner=owner, repo=repo, directory=directory)
        records = newest_first(
            self._client.pull(token=credential.token, repo_full_name=target.full_name, directory=target.directory)
        )
        if not records:
            self._echo(click.style(f"No environment files found for {target.full_name}.", fg="yellow"))
            return None

        record = self._choose(records)
        content = record.content
        if record.is_encrypted:
            content = SecretCodec(self._key_provider.get()).decrypt(record.content)

        destination = self._output_path(record, output)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise LocalFileError(f"Unable to write {destination}: {exc.strerror or exc}") from exc
        LOGGER.info(
            "Pulled env file record=%s",
            record.id,
            extra={
                "user": credential.user_name,
                "repo": target.full_name,
                "component": "sync",
                "operation": "pull",
                "result": "written",
            },
        )
        return PullOutcome(record=record, path=destination)

    def list(self, *, owner: str | None = None, repo: str | None = None) -> list[EnvRecord]:
        credential = self.require_credential()
        repo_full_name = None
        if owner or repo:
            if not owner or not repo:
                raise ValidationError("Pass both --owner and --repo to scope the listing to one repository.")
            repo_full_name = f"{owner}/{repo}"
        return self._client.list(token=credential.token, repo_full_name=repo_full_name)

    def _choose(self, records: list[EnvRecord]) -> EnvRecord:
        if len(records) == 1 or not self.interactive:
            return records[0]
        self._echo("Several environment files match:")
        for index, record in enumerate(records, start=1):
            self._echo(f"  {index}. {record.env_name} (updated: {_display_timestamp(record.updated_at)})")
        selected = self._prompt(
            "Select environment file",
            default=1,
            type=click.IntRange(1, len(records)),
        )
        return records[int(selected) - 1]

    def _output_path(self, record: EnvRecord, output: str | Path | None) -> Path:
        if output:
            path = Path(output)
        else:
            filename = sanitize_filename(record.env_name)
            if filename != record.env_name and self.interactive:
                filename = self._ask("Save as", filename)
            path = Path(filename)
        if not path.is_absolute():
            path = self.cwd / path
        return path

    def _ask(self, text: str, default: str) -> str:
        return str(self._prompt(text, default=default, show_default=True) or "").strip()
