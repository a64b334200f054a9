from __future__ import annotations

import base64
import binascii
import json
import logging
import urllib.parse
from typing import Any

from envvault_core.errors import TypedEnvVaultError, ValidationError

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def normalize_cli_redirect_uri(raw_value: Any) -> str:
    value = str(raw_value or "").strip()
    if not value:
        raise ValidationError("redirect_uri is required.")
    parsed = urllib.parse.urlsplit(value)
    try:
        port = parsed.port
    except ValueError as exc:
        raise ValidationError("redirect_uri has an invalid port.") from exc
    if parsed.scheme != "http" or (parsed.hostname or "") not in LOOPBACK_HOSTS or port is None:
        raise ValidationError("redirect_uri must be an http://localhost:<port>/... loopback URL.")
    if parsed.username or parsed.password or parsed.fragment:
        raise ValidationError("redirect_uri must not contain credentials or a fragment.")
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, parsed.path or "/", parsed.query, ""))


def encode_state(redirect_uri: str) -> str:
    return base64.urlsafe_b64encode(redirect_uri.encode("utf-8")).decode("ascii")


def decode_state(state_value: Any) -> str:
    """Return the CLI callback URL carried in ``state`` or "" for the web flow."""
    raw = str(state_value or "").strip()
    if not raw:
        return ""
    try:
        decoded = base64.urlsafe_b64decode(raw.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return ""
    try:
        return normalize_cli_redirect_uri(decoded)
    except ValidationError:
        return ""


def _with_query(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlsplit(url)
    existing = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    query = urllib.parse.urlencode(existing + list(params.items()))
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, parsed.path, query, ""))


class AuthDomain:
    def __init__(self, *, github: Any, settings: Any, logger: logging.Logger | None = None) -> None:
        self._github = github
        self._settings = settings
        self._logger = logger or logging.getLogger("envvault_hub.auth")

    def callback_url(self, origin: str) -> str:
        return self._settings.resolved_callback_url(origin)

    def web_authorize_url(self, *, origin: str) -> str:
        return self._github.authorize_url(redirect_uri=self.callback_url(origin))

    def cli_authorize_url(self, *, origin: str, redirect_uri: Any) -> str:
        cli_callback = normalize_cli_redirect_uri(redirect_uri)
        return self._github.authorize_url(redirect_uri=self.callback_url(origin), state=encode_state(cli_callback))

    def complete_callback(self, *, origin: str, code: Any, state_value: Any, error: Any = "") -> str:
        """Finish the provider round trip and return where to send the browser."""
        cli_callback = decode_state(state_value)
        frontend = self._settings.frontend_url
        denied = str(error or "").strip()
        code_text = str(code or "").strip()
        if denied or not code_text:
            reason = denied or "no_code"
            return self._failure_redirect(cli_callback, reason, state_value)

        try:
            token = self._github.exchange_code(code=code_text, redirect_uri=self.callback_url(origin))
            identity = self._github.current_user(token)
        except TypedEnvVaultError as exc:
            self._logger.warning(
                "GitHub OAuth callback failed",
                extra={
                    "component": "auth",
                    "operation": "oauth_callback",
                    "result": "failed",
                    "error_class": type(exc).__name__,
                },
            )
            reason = "no_token" if exc.error_code == "UNAUTHENTICATED" else "auth_failed"
            return self._failure_redirect(cli_callback, reason, state_value)

        self._logger.info(
            "GitHub OAuth callback completed flow=%s",
            "cli" if cli_callback else "web",
            extra={"user": identity.login, "component": "auth", "operation": "oauth_callback", "result": "ok"},
        )
        params = {
            "user": json.dumps(identity.to_payload(), separators=(",", ":")),
            "token": token,
        }
        if cli_callback:
            params["state"] = str(state_value)
            return _with_query(cli_callback, params)
        return _with_query(f"{frontend}/auth/callback", params)

    def identity_payload(self, token: str) -> dict[str, Any]:
        return self._github.current_user(token).to_payload()

    def repositories_payload(self, token: str) -> list[dict[str, Any]]:
        return [repository.to_payload() for repository in self._github.accessible_repositories(token)]

    def _failure_redirect(self, cli_callback: str, reason: str, state_value: Any) -> str:
        if cli_callback:
            return _with_query(cli_callback, {"error": reason, "state": str(state_value)})
        return _with_query(f"{self._settings.frontend_url}/auth", {"error": reason})
