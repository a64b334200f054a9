from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable

from envvault_core.errors import NotFound, Unauthenticated, UpstreamError, ValidationError

LOGGER = logging.getLogger("envvault_hub.github")

GITHUB_API_TIMEOUT_SECONDS = 8.0
GITHUB_OAUTH_SCOPES = "read:user repo user:email"
GITHUB_REPOS_PAGE_SIZE = 100
GITHUB_REPOS_MAX_PAGES = 50
GITHUB_REPO_AFFILIATION = "owner,collaborator,organization_member"


def github_api_error_message(body_text: str) -> str:
    try:
        payload = json.loads(body_text) if body_text else {}
    except json.JSONDecodeError:
        return ""
    if not isinstance(payload, dict):
        return ""
    message = str(payload.get("message") or payload.get("error_description") or payload.get("error") or "").strip()
    return message


@dataclass(frozen=True)
class GithubIdentity:
    id: int
    login: str
    name: str = ""
    avatar_url: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "login": self.login, "name": self.name, "avatar_url": self.avatar_url}


@dataclass(frozen=True)
class GithubRepository:
    full_name: str
    name: str
    private: bool = False
    permissions: dict[str, bool] = field(default_factory=dict)

    @property
    def can_push(self) -> bool:
        return bool(self.permissions.get("push"))

    def to_payload(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "name": self.name,
            "private": self.private,
            "permissions": dict(self.permissions),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GithubRepository":
        raw_permissions = payload.get("permissions")
        permissions = (
            {str(key): bool(value) for key, value in raw_permissions.items()}
            if isinstance(raw_permissions, dict)
            else {}
        )
        return cls(
            full_name=str(payload.get("full_name") or ""),
            name=str(payload.get("name") or ""),
            private=bool(payload.get("private")),
            permissions=permissions,
        )


class GithubClient:
    def __init__(
        self,
        *,
        api_base_url: str,
        web_base_url: str,
        client_id: str = "",
        client_secret: str = "",
        timeout_seconds: float = GITHUB_API_TIMEOUT_SECONDS,
        urlopen: Callable[..., Any] | None = None,
    ) -> None:
        self.api_base_url = str(api_base_url).rstrip("/")
        self.web_base_url = str(web_base_url).rstrip("/")
        self.client_id = str(client_id or "")
        self.client_secret = str(client_secret or "")
        self.timeout_seconds = float(timeout_seconds)
        self._urlopen = urlopen or urllib.request.urlopen

    def authorize_url(self, *, redirect_uri: str, state: str = "") -> str:
        if not self.client_id:
            raise ValidationError("GitHub OAuth client id is not configured on this server.")
        query = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": GITHUB_OAUTH_SCOPES,
        }
        if state:
            query["state"] = state
        return f"{self.web_base_url}/login/oauth/authorize?{urllib.parse.urlencode(query)}"

    def exchange_code(self, *, code: str, redirect_uri: str) -> str:
        status, body_text = self._request(
            "POST",
            f"{self.web_base_url}/login/oauth/access_token",
            body={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            accept="application/json",
        )
        if not (200 <= status < 300):
            raise UpstreamError(self._failure_detail("GitHub OAuth code exchange", status, body_text))
        payload = self._json_object(body_text, label="OAuth token")
        access_token = str(payload.get("access_token") or "").strip()
        if not access_token:
            message = github_api_error_message(body_text)
            raise Unauthenticated(f"GitHub did not return an access token. {message}".strip())
        return access_token

    def current_user(self, token: str) -> GithubIdentity:
        status, body_text = self._api("GET", "/user", token=token)
        if status == 401:
            raise Unauthenticated("GitHub rejected the bearer token.")
        if not (200 <= status < 300):
            raise UpstreamError(self._failure_detail("GitHub user lookup", status, body_text))
        payload = self._json_object(body_text, label="user")
        raw_id = payload.get("id")
        login = str(payload.get("login") or "").strip()
        if not isinstance(raw_id, int) or isinstance(raw_id, bool) or raw_id <= 0 or not login:
            raise UpstreamError("GitHub returned an incomplete user payload.")
        return GithubIdentity(
            id=raw_id,
            login=login,
            name=str(payload.get("name") or ""),
            avatar_url=str(payload.get("avatar_url") or ""),
        )

    def repository(self, token: str, repo_full_name: str) -> GithubRepository:
        path = "/repos/" + urllib.parse.quote(repo_full_name, safe="/")
        status, body_text = self._api("GET", path, token=token)
        if status == 401:
            raise Unauthenticated("GitHub rejected the bearer token.")
        if status == 404:
            raise NotFound(f"Repository {repo_full_name} not found or not visible to you.")
        if not (200 <= status < 300):
            raise UpstreamError(self._failure_detail(f"GitHub repository lookup for {repo_full_name}", status, body_text))
        return GithubRepository.from_payload(self._json_object(body_text, label="repository"))

    def accessible_repositories(self, token: str) -> list[GithubRepository]:
        repositories: list[GithubRepository] = []
        for page in range(1, GITHUB_REPOS_MAX_PAGES + 1):
            query = urllib.parse.urlencode(
                {
                    "affiliation": GITHUB_REPO_AFFILIATION,
                    "per_page": GITHUB_REPOS_PAGE_SIZE,
                    "sort": "updated",
                    "direction": "desc",
                    "page": page,
                }
            )
            status, body_text = self._api("GET", f"/user/repos?{query}", token=token)
            if status == 401:
                raise Unauthenticated("GitHub rejected the bearer token.")
            if not (200 <= status < 300):
                raise UpstreamError(self._failure_detail("GitHub repository listing", status, body_text))
            try:
                payload = json.loads(body_text) if body_text else []
            except json.JSONDecodeError as exc:
                raise UpstreamError("GitHub returned invalid repository listing data.") from exc
            if not isinstance(payload, list):
                raise UpstreamError("GitHub returned invalid repository listing data.")
            repositories.extend(GithubRepository.from_payload(item) for item in payload if isinstance(item, dict))
            if len(payload) < GITHUB_REPOS_PAGE_SIZE:
                break
        return repositories

    def _api(self, method: str, path: str, *, token: str) -> tuple[int, str]:
        resolved_token = str(token or "").strip()
        if not resolved_token:
            raise Unauthenticated("Missing bearer token.")
        return self._request(method, f"{self.api_base_url}{path}", token=resolved_token)

    def _request(
        self,
        method: str,
        url: str,
        *,
        token: str = "",
        body: dict[str, Any] | None = None,
        accept: str = "application/vnd.github+json",
    ) -> tuple[int, str]:
        headers = {
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "envvault-hub",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        raw_data = None
        if body is not None:
            raw_data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = urllib.request.Request(url, data=raw_data, headers=headers, method=method)
        started = time.monotonic()
        try:
            with self._urlopen(request, timeout=self.timeout_seconds) as response:
                status = int(response.getcode() or 0)
                body_text = response.read().decode("utf-8", errors="ignore")
        except urllib.error.HTTPError as exc:
            status = int(exc.code or 0)
            body_text = exc.read().decode("utf-8", errors="ignore")
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            LOGGER.warning(
                "GitHub request failed method=%s path=%s",
                method,
                urllib.parse.urlsplit(url).path,
                extra={
                    "component": "github",
                    "operation": "request",
                    "result": "network_error",
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "error_class": type(exc).__name__,
                },
            )
            raise UpstreamError("GitHub API request failed due to a network error.") from exc
        LOGGER.debug(
            "GitHub request method=%s path=%s status=%s",
            method,
            urllib.parse.urlsplit(url).path,
            status,
            extra={
                "component": "github",
                "operation": "request",
                "result": str(status),
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error_class": "none",
            },
        )
        return status, body_text

    @staticmethod
    def _json_object(body_text: str, *, label: str) -> dict[str, Any]:
        try:
            payload = json.loads(body_text) if body_text else {}
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"GitHub returned invalid {label} data.") from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"GitHub returned invalid {label} data.")
        return payload

    @staticmethod
    def _failure_detail(operation: str, status: int, body_text: str) -> str:
        detail = f"{operation} failed with status {status}."
        message = github_api_error_message(body_text)
        if message:
            detail = f"{detail} {message}"
        return detail
