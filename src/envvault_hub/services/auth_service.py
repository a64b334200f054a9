from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from envvault_core.errors import Unauthenticated


class AuthService:
    def __init__(self, *, domain: Any) -> None:
        self._domain = domain

    def resolve_token(self, headers: Mapping[str, Any]) -> str:
        raw_value = str(headers.get("authorization") or "").strip()
        scheme, _, token = raw_value.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthenticated("Missing or malformed bearer token.")
        return token.strip()

    def github_authorize_payload(self, *, origin: str) -> dict[str, Any]:
        return {"url": self._domain.web_authorize_url(origin=origin)}

    def cli_authorize_url(self, *, origin: str, redirect_uri: Any) -> str:
        return self._domain.cli_authorize_url(origin=origin, redirect_uri=redirect_uri)

    def complete_callback(self, *, origin: str, code: Any, state_value: Any, error: Any) -> str:
        return self._domain.complete_callback(origin=origin, code=code, state_value=state_value, error=error)

    def user_payload(self, *, token: str) -> dict[str, Any]:
        return {"user": self._domain.identity_payload(token)}

    def repositories_payload(self, *, token: str) -> dict[str, Any]:
        return {"repositories": self._domain.repositories_payload(token)}
