from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Sequence
from typing import Any

from envvault_core.errors import NotFound, PermissionDenied, ValidationError
from envvault_core.models import EnvRecord, newest_first, split_repo_full_name
from envvault_hub.integrations.github import GithubIdentity
from envvault_hub.store import MAX_IN_CLAUSE

_CONTROL_CHARS = {chr(code) for code in range(32)} | {"\x7f"}
ENV_NAME_MAX_CHARS = 255
DIRECTORY_MAX_CHARS = 1024


def chunked(values: Sequence[str], size: int) -> Iterator[list[str]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(values), size):
        yield list(values[start:start + size])


def normalize_repo_full_name(raw_value: Any) -> str:
    value = str(raw_value or "").strip()
    if not value:
        raise ValidationError("repoFullName is required.")
    try:
        owner, name = split_repo_full_name(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return f"{owner}/{name}"


def normalize_directory(raw_value: Any) -> str:
    value = str(raw_value or "").strip().replace("\\", "/").strip("/")
    if any(char in _CONTROL_CHARS for char in value):
        raise ValidationError("directory must not contain control characters.")
    if len(value) > DIRECTORY_MAX_CHARS:
        raise ValidationError(f"directory must be {DIRECTORY_MAX_CHARS} characters or fewer.")
    segments = [segment for segment in value.split("/") if segment]
    if any(segment == ".." for segment in segments):
        raise ValidationError("directory must not contain '..' segments.")
    return "/".join(segment for segment in segments if segment != ".")


def normalize_env_name(raw_value: Any) -> str:
    value = str(raw_value or "").strip()
    if not value:
        raise ValidationError("envName is required.")
    if any(char in _CONTROL_CHARS for char in value):
        raise ValidationError("envName must not contain control characters.")
    if len(value) > ENV_NAME_MAX_CHARS:
        raise ValidationError(f"envName must be {ENV_NAME_MAX_CHARS} characters or fewer.")
    return value


def normalize_content(raw_value: Any) -> str:
    if not isinstance(raw_value, str) or not raw_value:
        raise ValidationError("content is required.")
    return raw_value


class EnvDomain:
    def __init__(self, *, store: Any, github: Any, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._github = github
        self._logger = logger or logging.getLogger("envvault_hub.env")

    def push(
        self,
        *,
        token: str,
        repo_full_name: Any,
        repo_name: Any,
        directory: Any,
        env_name: Any,
        content: Any,
    ) -> EnvRecord:
        started = time.monotonic()
        full_name = normalize_repo_full_name(repo_full_name)
        normalized_directory = normalize_directory(directory)
        normalized_env_name = normalize_env_name(env_name)
        normalized_content = normalize_content(content)
        resolved_repo_name = str(repo_name or "").strip() or split_repo_full_name(full_name)[1]

        identity = self._github.current_user(token)
        self._require_push_access(token, identity, full_name, operation="push")

        record = self._store.add(
            owner_user_id=identity.id,
            owner_user_name=identity.login,
            repo_full_name=full_name,
            repo_name=resolved_repo_name,
            directory=normalized_directory,
            env_name=normalized_env_name,
            content=normalized_content,
            is_encrypted=True,
        )
        self._logger.info(
            "Stored env record id=%s env_name=%s directory=%s",
            record.id,
            normalized_env_name,
            normalized_directory or "/",
            extra={
                "user": identity.login,
                "repo": full_name,
                "component": "env",
                "operation": "push",
                "result": "stored",
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error_class": "none",
            },
        )
        return record

    def pull(self, *, token: str, repo_full_name: Any, directory: Any) -> list[EnvRecord]:
        full_name = normalize_repo_full_name(repo_full_name)
        normalized_directory = normalize_directory(directory)
        self._github.current_user(token)
        return newest_first(self._store.query([full_name], directory=normalized_directory))

    def list(self, *, token: str, repo_full_name: Any = None) -> list[EnvRecord]:
        identity = self._github.current_user(token)
        if str(repo_full_name or "").strip():
            return newest_first(self._store.query([normalize_repo_full_name(repo_full_name)]))

        started = time.monotonic()
        repo_names = self.gather_accessible_repo_names(token)
        records = self.batched_lookup(repo_names)
        self._logger.info(
            "Aggregated env records repositories=%s records=%s",
            len(repo_names),
            len(records),
            extra={
                "user": identity.login,
                "component": "env",
                "operation": "list_all",
                "result": "ok",
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error_class": "none",
            },
        )
        return records

    def gather_accessible_repo_names(self, token: str) -> list[str]:
        names: list[str] = []
        seen: set[str] = set()
        for repository in self._github.accessible_repositories(token):
            full_name = str(repository.full_name or "").strip()
            if not full_name or full_name in seen:
                continue
            seen.add(full_name)
            names.append(full_name)
        return names

    def batched_lookup(self, repo_names: Sequence[str]) -> list[EnvRecord]:
        records: list[EnvRecord] = []
        for batch in chunked(list(repo_names), MAX_IN_CLAUSE):
            records.extend(self._store.query(batch))
        return newest_first(records)

    def update_content(self, *, token: str, record_id: str, content: Any) -> EnvRecord:
        normalized_content = normalize_content(content)
        identity = self._github.current_user(token)
        record = self._require_record(record_id)
        self._require_push_access(token, identity, record.repo_full_name, operation="update")
        updated = self._store.update_content(record.id, normalized_content)
        if updated is None:
            raise NotFound(f"Env record {record_id} not found.")
        return updated

    def delete(self, *, token: str, record_id: str) -> str:
        identity = self._github.current_user(token)
        record = self._require_record(record_id)
        self._require_push_access(token, identity, record.repo_full_name, operation="delete")
        if not self._store.delete(record.id):
            raise NotFound(f"Env record {record_id} not found.")
        return record.id

    def _require_record(self, record_id: str) -> EnvRecord:
        record = self._store.get(str(record_id or "").strip())
        if record is None:
            raise NotFound(f"Env record {record_id} not found.")
        return record

    def _require_push_access(self, token: str, identity: GithubIdentity, repo_full_name: str, *, operation: str) -> None:
        repository = self._github.repository(token, repo_full_name)
        if repository.can_push:
            return
        self._logger.warning(
            "Rejected %s without push access",
            operation,
            extra={
                "user": identity.login,
                "repo": repo_full_name,
                "component": "env",
                "operation": operation,
                "result": "forbidden",
                "error_class": "PermissionDenied",
            },
        )
        raise PermissionDenied(f"{identity.login} does not have push access to {repo_full_name}.")
