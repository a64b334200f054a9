from __future__ import annotations

import io
import json
import unittest
import urllib.error
import urllib.parse
from typing import Any

from envvault_core.errors import NotFound, Unauthenticated, UpstreamError, ValidationError
from envvault_hub.integrations.github import GithubClient


class _FakeResponse:
    def __init__(self, *, code: int, body: Any) -> None:
        self._code = code
        self._body = body if isinstance(body, str) else json.dumps(body)

    def getcode(self) -> int:
        return self._code

    def read(self) -> bytes:
        return self._body.encode("utf-8")

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


def _http_error(url: str, code: int, body: Any) -> urllib.error.HTTPError:
    raw = (body if isinstance(body, str) else json.dumps(body)).encode("utf-8")
    return urllib.error.HTTPError(url, code, "error", {}, io.BytesIO(raw))


class _Recorder:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.requests: list[Any] = []

    def __call__(self, request: Any, timeout: float = 0.0) -> Any:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def _client(recorder: _Recorder, **kwargs: Any) -> GithubClient:
    return GithubClient(
        api_base_url="https://api.github.test",
        web_base_url="https://github.test",
        client_id=kwargs.pop("client_id", "cid"),
        client_secret="secret",
        urlopen=recorder,
        **kwargs,
    )


class GithubClientTests(unittest.TestCase):
    def test_authorize_url_carries_scope_and_state(self) -> None:
        url = _client(_Recorder([])).authorize_url(redirect_uri="http://hub/api/auth/github/callback", state="abc")
        parsed = urllib.parse.urlsplit(url)
        query = urllib.parse.parse_qs(parsed.query)
        self.assertEqual(f"{parsed.scheme}://{parsed.netloc}{parsed.path}", "https://github.test/login/oauth/authorize")
        self.assertEqual(query["client_id"], ["cid"])
        self.assertEqual(query["scope"], ["read:user repo user:email"])
        self.assertEqual(query["state"], ["abc"])

    def test_authorize_url_requires_client_id(self) -> None:
        with self.assertRaises(ValidationError):
            _client(_Recorder([]), client_id="").authorize_url(redirect_uri="http://hub/cb")

    def test_exchange_code_returns_access_token(self) -> None:
        recorder = _Recorder([_FakeResponse(code=200, body={"access_token": "gho_123", "token_type": "bearer"})])
        token = _client(recorder).exchange_code(code="code-1", redirect_uri="http://hub/cb")
        self.assertEqual(token, "gho_123")
        request = recorder.requests[0]
        self.assertEqual(request.full_url, "https://github.test/login/oauth/access_token")
        self.assertEqual(json.loads(request.data.decode("utf-8"))["code"], "code-1")

    def test_exchange_code_without_token_is_unauthenticated(self) -> None:
        recorder = _Recorder([_FakeResponse(code=200, body={"error": "bad_verification_code"})])
        with self.assertRaises(Unauthenticated) as ctx:
            _client(recorder).exchange_code(code="stale", redirect_uri="http://hub/cb")
        self.assertIn("bad_verification_code", str(ctx.exception))

    def test_current_user_parses_identity_and_sends_bearer(self) -> None:
        recorder = _Recorder([_FakeResponse(code=200, body={"id": 7, "login": "alice", "name": "Alice"})])
        identity = _client(recorder).current_user("gho_abc")
        self.assertEqual((identity.id, identity.login, identity.name), (7, "alice", "Alice"))
        self.assertEqual(recorder.requests[0].get_header("Authorization"), "Bearer gho_abc")

    def test_current_user_rejected_token_is_unauthenticated(self) -> None:
        recorder = _Recorder([_http_error("https://api.github.test/user", 401, {"message": "Bad credentials"})])
        with self.assertRaises(Unauthenticated):
            _client(recorder).current_user("gho_bad")

    def test_missing_token_never_reaches_github(self) -> None:
        recorder = _Recorder([])
        with self.assertRaises(Unauthenticated):
            _client(recorder).current_user("")
        self.assertEqual(recorder.requests, [])

    def test_repository_reports_push_permission(self) -> None:
        recorder = _Recorder(
            [_FakeResponse(code=200, body={"full_name": "octo/app", "name": "app", "permissions": {"push": True}})]
        )
        repository = _client(recorder).repository("gho_abc", "octo/app")
        self.assertTrue(repository.can_push)
        self.assertTrue(recorder.requests[0].full_url.endswith("/repos/octo/app"))

    def test_repository_not_found(self) -> None:
        recorder = _Recorder([_http_error("https://api.github.test/repos/octo/gone", 404, {"message": "Not Found"})])
        with self.assertRaises(NotFound):
            _client(recorder).repository("gho_abc", "octo/gone")

    def test_accessible_repositories_follows_pages(self) -> None:
        first_page = [{"full_name": f"octo/r{index}", "name": f"r{index}"} for index in range(100)]
        second_page = [{"full_name": "octo/last", "name": "last"}]
        recorder = _Recorder([_FakeResponse(code=200, body=first_page), _FakeResponse(code=200, body=second_page)])
        repositories = _client(recorder).accessible_repositories("gho_abc")

        self.assertEqual(len(repositories), 101)
        self.assertEqual(repositories[-1].full_name, "octo/last")
        query = urllib.parse.parse_qs(urllib.parse.urlsplit(recorder.requests[1].full_url).query)
        self.assertEqual(query["page"], ["2"])
        self.assertEqual(query["per_page"], ["100"])
        self.assertEqual(query["affiliation"], ["owner,collaborator,organization_member"])

    def test_network_failure_is_upstream_error(self) -> None:
        recorder = _Recorder([urllib.error.URLError("connection refused")])
        with self.assertRaises(UpstreamError):
            _client(recorder).current_user("gho_abc")


if __name__ == "__main__":
    unittest.main()
