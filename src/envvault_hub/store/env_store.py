from __future__ import annotations

import json
import os
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from envvault_core.errors import UpstreamError
from envvault_core.models import EnvRecord, iso_now

# Largest "repoFullName IN (...)" list a single query accepts.
MAX_IN_CLAUSE = 30
STORE_SCHEMA_VERSION = 1


def _new_state() -> dict[str, Any]:
    return {"version": STORE_SCHEMA_VERSION, "envFiles": {}}


class EnvRecordStore:
    """Document store for EnvRecords.

    Backed by a JSON file when ``state_file`` is given, otherwise kept in
    memory. Queries mirror a document database: equality on ``directory`` and
    an IN filter on ``repoFullName`` capped at :data:`MAX_IN_CLAUSE` values.
    """

    def __init__(
        self,
        *,
        state_file: Path | None = None,
        lock: Lock | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], str] = iso_now,
    ) -> None:
        self.state_file = Path(state_file) if state_file is not None else None
        self._lock = lock or Lock()
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._clock = clock
        self._memory_state = _new_state()

    def add(
        self,
        *,
        owner_user_id: int,
        owner_user_name: str,
        repo_full_name: str,
        repo_name: str,
        directory: str,
        env_name: str,
        content: str,
        is_encrypted: bool = True,
    ) -> EnvRecord:
        now = self._clock()
        record = EnvRecord(
            id=self._id_factory(),
            owner_user_id=int(owner_user_id),
            owner_user_name=str(owner_user_name),
            repo_full_name=str(repo_full_name),
            repo_name=str(repo_name),
            directory=str(directory),
            env_name=str(env_name),
            content=str(content),
            is_encrypted=bool(is_encrypted),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            state = self._load_locked()
            state["envFiles"][record.id] = record.to_payload()
            self._save_locked(state)
        return record

    def get(self, record_id: str) -> EnvRecord | None:
        with self._lock:
            payload = self._load_locked()["envFiles"].get(str(record_id))
        if not isinstance(payload, dict):
            return None
        return EnvRecord.from_payload(payload)

    def update_content(self, record_id: str, content: str) -> EnvRecord | None:
        with self._lock:
            state = self._load_locked()
            payload = state["envFiles"].get(str(record_id))
            if not isinstance(payload, dict):
                return None
            payload["content"] = str(content)
            payload["updatedAt"] = self._clock()
            self._save_locked(state)
        return EnvRecord.from_payload(payload)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            state = self._load_locked()
            if str(record_id) not in state["envFiles"]:
                return False
            del state["envFiles"][str(record_id)]
            self._save_locked(state)
        return True

    def query(self, repo_full_names: Sequence[str], *, directory: str | None = None) -> list[EnvRecord]:
        wanted = {str(name) for name in repo_full_names}
        if len(wanted) > MAX_IN_CLAUSE:
            raise ValueError(f"IN filter accepts at most {MAX_IN_CLAUSE} values, got {len(wanted)}.")
        if not wanted:
            return []
        with self._lock:
            payloads = list(self._load_locked()["envFiles"].values())
        records: list[EnvRecord] = []
        for payload in payloads:
            if not isinstance(payload, dict):
                continue
            if str(payload.get("repoFullName") or "") not in wanted:
                continue
            if directory is not None and str(payload.get("directory") or "") != directory:
                continue
            records.append(EnvRecord.from_payload(payload))
        return records

    def _load_locked(self) -> dict[str, Any]:
        if self.state_file is None:
            return self._memory_state
        if not self.state_file.exists():
            return _new_state()
        try:
            loaded = json.loads(self.state_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            preserved_state_path = self._preserve_corrupt_state_file_locked()
            raise UpstreamError(f"Record store is corrupt JSON and was moved to {preserved_state_path}.") from exc
        if not isinstance(loaded, dict) or not isinstance(loaded.get("envFiles"), dict):
            preserved_state_path = self._preserve_corrupt_state_file_locked()
            raise UpstreamError(
                f"Record store must contain an 'envFiles' object and was moved to {preserved_state_path}."
            )
        return loaded

    def _save_locked(self, state: dict[str, Any]) -> None:
        if self.state_file is None:
            self._memory_state = state
            return
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.parent / f".{self.state_file.name}.{uuid.uuid4().hex}.tmp"
        try:
            with tmp_path.open("w", encoding="utf-8") as fp:
                json.dump(state, fp, indent=2)
            os.replace(tmp_path, self.state_file)
        except OSError as exc:
            raise UpstreamError(f"Failed to write record store {self.state_file}: {exc}") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    def _preserve_corrupt_state_file_locked(self) -> Path:
        assert self.state_file is not None
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base_name = f"{self.state_file.name}.corrupt-{timestamp}"
        preserved_path = self.state_file.with_name(base_name)
        suffix = 1
        while preserved_path.exists():
            preserved_path = self.state_file.with_name(f"{base_name}.{suffix}")
            suffix += 1
        try:
            self.state_file.replace(preserved_path)
        except OSError as exc:
            raise UpstreamError(f"Failed to preserve corrupt record store {self.state_file}: {exc}") from exc
        return preserved_path
