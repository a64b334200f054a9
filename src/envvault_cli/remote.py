from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Callable

from envvault_core.errors import (
    AuthenticationRequired,
    NotFound,
    PermissionDenied,
    TransportError,
    UpstreamError,
    ValidationError,
)
from envvault_core.models import EnvRecord

LOGGER = logging.getLogger("envvault_cli.remote")

USER_AGENT = "envvault-cli/1.0"


def _error_detail(body_text: str, status: int) -> str:
    try:
        payload = json.loads(body_text) if body_text.strip() else {}
    except json.JSONDecodeError:
        payload = {}
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, str) and detail.strip():
            return detail.strip()
        if detail:
            return json.dumps(detail, sort_keys=True)
    return body_text.strip() or f"HTTP {status}"


def _raise_for_status(status: int, body_text: str) -> None:
    detail = _error_detail(body_text, status)
    if status == 401:
        raise AuthenticationRequired(f"{detail} Run `envvault login` again.")
    if status == 403:
        raise PermissionDenied(detail)
    if status == 404:
        raise NotFound(detail)
    if status in {400, 422}:
        raise ValidationError(detail)
    raise UpstreamError(f"Hub request failed with status {status}: {detail}")


class RemoteEnvClient:
    """JSON-over-HTTP client for the envvault hub."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 15.0,
        urlopen: Callable[..., Any] | None = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self._urlopen = urlopen or urllib.request.urlopen

    def fetch_encryption_key(self) -> str:
        payload = self._request("GET", "/api/encryption-key")
        key = str(payload.get("encryptionKey") or "")
        if not key:
            raise UpstreamError("Hub returned an empty encryption key.")
        return key

    def push(
        self,
        *,
        token: str,
        repo_full_name: str,
        repo_name: str,
        directory: str,
        env_name: str,
        content: str,
    ) -> str:
        payload = self._request(
            "POST",
            "/api/env/push",
            token=token,
            body={
                "repoFullName": repo_full_name,
                "repoName": repo_name,
                "directory": directory,
                "envName": env_name,
                "content": content,
            },
        )
        return str(payload.get("id") or "")

    def pull(self, *, token: str, repo_full_name: str, directory: str) -> list[EnvRecord]:
        payload = self._request(
            "POST",
            "/api/env/pull",
            token=token,
            body={"repoFullName": repo_full_name, "directory": directory},
        )
        return self._records(payload)

    def list(self, *, token: str, repo_full_name: str | None = None) -> list[EnvRecord]:
        body: dict[str, Any] = {}
        if repo_full_name:
            body["repoFullName"] = repo_full_name
        return self._records(self._request("POST", "/api/env/list", token=token, body=body))

    @staticmethod
    def _records(payload: dict[str, Any]) -> list[EnvRecord]:
        raw_records = payload.get("envFiles")
        if not isinstance(raw_records, list):
            raise UpstreamError("Hub returned an invalid env file listing.")
        return [EnvRecord.from_payload(item) for item in raw_records if isinstance(item, dict)]

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str = "",
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(url, headers=headers, method=method, data=data)
        started = time.monotonic()
        try:
            with self._urlopen(request, timeout=self.timeout_seconds) as response:
                body_text = response.read().decode("utf-8", errors="ignore")
        except urllib.error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            LOGGER.debug(
                "Hub request rejected method=%s path=%s status=%s",
                method,
                path,
                exc.code,
                extra={
                    "component": "remote",
                    "operation": "request",
                    "result": str(exc.code),
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
            _raise_for_status(int(exc.code or 0), body_text)
            raise
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise TransportError(f"Could not reach the envvault hub at {self.base_url}: {exc}") from exc
        LOGGER.debug(
            "Hub request method=%s path=%s",
            method,
            path,
            extra={
                "component": "remote",
                "operation": "request",
                "result": "ok",
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        if not body_text.strip():
            return {}
        try:
            parsed = json.loads(body_text)
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"Hub returned invalid JSON for {method} {path}.") from exc
        if not isinstance(parsed, dict):
            raise UpstreamError(f"Hub returned unexpected data for {method} {path}.")
        return parsed


class EncryptionKeyProvider:
    """Fetches the shared key once per provider and hands out the cached value."""

    def __init__(self, client: RemoteEnvClient, *, cache: dict[str, str] | None = None) -> None:
        self._client = client
        self._cache = cache if cache is not None else {}

    def get(self) -> str:
        cached = self._cache.get(self._client.base_url)
        if cached:
            return cached
        key = self._client.fetch_encryption_key()
        self._cache[self._client.base_url] = key
        return key
