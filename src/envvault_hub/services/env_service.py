from __future__ import annotations

from typing import Any

from envvault_core.errors import ConfigError


class EnvService:
    def __init__(self, *, domain: Any, encryption_key: str) -> None:
        self._domain = domain
        self._encryption_key = str(encryption_key or "")

    def push(self, *, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = self._domain.push(
            token=token,
            repo_full_name=payload.get("repoFullName"),
            repo_name=payload.get("repoName"),
            directory=payload.get("directory"),
            env_name=payload.get("envName"),
            content=payload.get("content"),
        )
        return {"id": record.id}

    def pull(self, *, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        records = self._domain.pull(
            token=token,
            repo_full_name=payload.get("repoFullName"),
            directory=payload.get("directory"),
        )
        return {"envFiles": [record.to_payload() for record in records]}

    def list(self, *, token: str, payload: dict[str, Any]) -> dict[str, Any]:
        records = self._domain.list(token=token, repo_full_name=payload.get("repoFullName"))
        return {"envFiles": [record.to_payload() for record in records]}

    def update_content(self, *, token: str, record_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = self._domain.update_content(token=token, record_id=record_id, content=payload.get("content"))
        return {"envFile": record.to_payload()}

    def delete(self, *, token: str, record_id: str) -> dict[str, Any]:
        return {"deleted": self._domain.delete(token=token, record_id=record_id)}

    def encryption_key_payload(self) -> dict[str, Any]:
        if not self._encryption_key:
            raise ConfigError("Encryption key is not configured on this server.")
        return {"encryptionKey": self._encryption_key}
