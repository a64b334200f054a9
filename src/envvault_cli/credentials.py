from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from envvault_core.errors import CredentialResolutionError, ValidationError


@dataclass(frozen=True)
class Credential:
    user_id: int
    user_name: str
    token: str

    def to_payload(self) -> dict[str, Any]:
        return {"userId": self.user_id, "userName": self.user_name, "token": self.token}


def coerce_user_id(raw_value: Any) -> int | None:
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value if raw_value > 0 else None
    text = str(raw_value or "").strip()
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if value > 0 else None


def _credential_from_payload(payload: Any) -> Credential | None:
    if not isinstance(payload, dict):
        return None
    user_id = coerce_user_id(payload.get("userId"))
    user_name = str(payload.get("userName") or "").strip()
    token = str(payload.get("token") or "").strip()
    if user_id is None or not user_name or not token:
        return None
    return Credential(user_id=user_id, user_name=user_name, token=token)


def _write_private_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.parent / f".{path.name}.{uuid.uuid4().hex}.tmp"
    fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write(content)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


class CredentialStore:
    """Persists the signed-in GitHub identity between CLI invocations."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, user_id: Any, user_name: Any, token: Any) -> Credential:
        resolved_id = coerce_user_id(user_id)
        if resolved_id is None:
            raise ValidationError("user id must be a positive integer.")
        resolved_name = str(user_name or "").strip()
        resolved_token = str(token or "").strip()
        if not resolved_name:
            raise ValidationError("user name is required.")
        if not resolved_token:
            raise ValidationError("token is required.")
        credential = Credential(user_id=resolved_id, user_name=resolved_name, token=resolved_token)
        try:
            _write_private_file(self.path, json.dumps(credential.to_payload(), indent=2) + "\n")
        except OSError as exc:
            raise CredentialResolutionError(f"Unable to write credentials to {self.path}: {exc}") from exc
        return credential

    def load(self) -> Credential | None:
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            return None
        except OSError as exc:
            raise CredentialResolutionError(f"Unable to read credentials from {self.path}: {exc}") from exc
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError:
            return None
        return _credential_from_payload(payload)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CredentialResolutionError(f"Unable to remove credentials at {self.path}: {exc}") from exc

    def is_authenticated(self) -> bool:
        return self.load() is not None
