from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def split_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    owner, sep, name = str(repo_full_name or "").strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError(f"Repository must be in 'owner/name' form, got {repo_full_name!r}.")
    return owner, name


@dataclass(frozen=True)
class EnvRecord:
    id: str
    owner_user_id: int
    owner_user_name: str
    repo_full_name: str
    repo_name: str
    directory: str
    env_name: str
    content: str
    is_encrypted: bool
    created_at: str
    updated_at: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.owner_user_id,
            "userName": self.owner_user_name,
            "repoFullName": self.repo_full_name,
            "repoName": self.repo_name,
            "directory": self.directory,
            "envName": self.env_name,
            "content": self.content,
            "isEncrypted": self.is_encrypted,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EnvRecord":
        raw_user_id = payload.get("userId")
        try:
            user_id = int(raw_user_id) if raw_user_id not in (None, "") else 0
        except (TypeError, ValueError):
            user_id = 0
        return cls(
            id=str(payload.get("id") or ""),
            owner_user_id=user_id,
            owner_user_name=str(payload.get("userName") or ""),
            repo_full_name=str(payload.get("repoFullName") or ""),
            repo_name=str(payload.get("repoName") or ""),
            directory=str(payload.get("directory") or ""),
            env_name=str(payload.get("envName") or ""),
            content=str(payload.get("content") or ""),
            is_encrypted=bool(payload.get("isEncrypted", True)),
            created_at=str(payload.get("createdAt") or ""),
            updated_at=str(payload.get("updatedAt") or ""),
        )


def newest_first(records: list[EnvRecord]) -> list[EnvRecord]:
    return sorted(records, key=lambda record: (record.updated_at, record.created_at), reverse=True)
