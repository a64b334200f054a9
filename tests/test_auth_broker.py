from __future__ import annotations

import http.client
import json
import socket
import tempfile
import threading
import unittest
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path

from envvault_cli.auth_broker import (
    AuthBroker,
    HandshakeResult,
    HandshakeState,
    expected_state_token,
    parse_callback_query,
)
from envvault_cli.credentials import CredentialStore
from envvault_core.errors import HandshakeFailed, HandshakeTimeout

FRONTEND = "https://app.example"


class _BrowserDouble:
    """Plays the hub: hits the broker's listener once the login URL is opened."""

    def __init__(self, broker: AuthBroker, paths: list[str], host: str = "127.0.0.1") -> None:
        self.broker = broker
        self.host = host
        self.paths = paths
        self.opened: list[str] = []
        self.responses: list[tuple[int, str]] = []
        self._thread: threading.Thread | None = None

    def __call__(self, url: str) -> bool:
        self.opened.append(url)
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return True

    def _run(self) -> None:
        for path in self.paths:
            conn = http.client.HTTPConnection(self.host, self.broker.port, timeout=5)
            try:
                conn.request("GET", path)
                response = conn.getresponse()
                self.responses.append((response.status, response.getheader("Location") or ""))
                response.read()
            finally:
                conn.close()

    def join(self) -> None:
        if self._thread is not None:
            self._thread.join(timeout=5)


def _broker(**kwargs: object) -> AuthBroker:
    options: dict[str, object] = {
        "backend_url": "http://hub.local:8000",
        "frontend_url": FRONTEND,
        "port": 0,
        "timeout_seconds": 5.0,
        "grace_seconds": 0.01,
        "echo": lambda *args, **kw: None,
    }
    options.update(kwargs)
    return AuthBroker(**options)  # type: ignore[arg-type]


def _callback(user: object, token: str = "abc", **extra: str) -> str:
    params = {"user": json.dumps(user), "token": token, **extra}
    if not token:
        params.pop("token")
    return "/callback?" + urllib.parse.urlencode(params)


def _ipv6_loopback_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        candidate = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
    except OSError:
        return False
    try:
        candidate.bind(("::1", 0))
    except OSError:
        return False
    finally:
        candidate.close()
    return True


class AuthBrokerTests(unittest.TestCase):
    def _login_with(
        self, paths: list[str], host: str = "127.0.0.1", **kwargs: object
    ) -> tuple[AuthBroker, _BrowserDouble, object]:
        broker = _broker(**kwargs)
        browser = _BrowserDouble(broker, paths, host=host)
        broker._open_browser = browser  # type: ignore[assignment]
        try:
            outcome: object = broker.login()
        except HandshakeFailed as exc:
            outcome = exc
        browser.join()
        return broker, browser, outcome

    def test_successful_callback_yields_identity_and_redirects(self) -> None:
        broker, browser, outcome = self._login_with([_callback({"id": 1, "login": "alice"})])

        self.assertEqual(outcome, HandshakeResult(user_id=1, user_name="alice", token="abc"))
        self.assertEqual(broker.state, HandshakeState.SUCCEEDED)
        self.assertEqual(browser.responses, [(302, f"{FRONTEND}/?auth=success")])
        opened = urllib.parse.urlsplit(browser.opened[0])
        self.assertEqual(opened.path, "/api/auth/github/cli")
        self.assertEqual(
            urllib.parse.parse_qs(opened.query)["redirect_uri"],
            [f"http://localhost:{broker.port}/callback"],
        )

    def test_missing_token_fails_and_leaves_credentials_untouched(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = CredentialStore(Path(tmp) / "credentials.json")
            store.save(9, "previous", "old-token")
            before = store.path.read_text(encoding="utf-8")

            broker, browser, outcome = self._login_with([_callback({"id": 1, "login": "alice"}, token="")])

            self.assertIsInstance(outcome, HandshakeFailed)
            self.assertEqual(broker.state, HandshakeState.FAILED)
            self.assertEqual(browser.responses, [(302, f"{FRONTEND}/?auth=failed")])
            self.assertEqual(store.path.read_text(encoding="utf-8"), before)

    def test_unrelated_paths_get_404_without_ending_handshake(self) -> None:
        broker, browser, outcome = self._login_with(
            ["/favicon.ico", _callback({"id": 5, "login": "carol"}, token="tok")]
        )
        self.assertEqual(browser.responses[0][0], 404)
        self.assertEqual(outcome, HandshakeResult(user_id=5, user_name="carol", token="tok"))

    def test_state_mismatch_fails(self) -> None:
        _broker_obj, _browser, outcome = self._login_with(
            [_callback({"id": 1, "login": "alice"}, state="forged")]
        )
        self.assertIsInstance(outcome, HandshakeFailed)

    def test_timeout_raises_and_frees_port(self) -> None:
        broker = _broker(timeout_seconds=0.2, open_browser=lambda url: True)
        with self.assertRaises(HandshakeTimeout):
            broker.login()
        self.assertEqual(broker.state, HandshakeState.TIMED_OUT)

        server = HTTPServer(("127.0.0.1", broker.port), BaseHTTPRequestHandler)
        server.server_close()
        broker.teardown()

    def test_ipv6_loopback_callback_is_accepted(self) -> None:
        if not _ipv6_loopback_available():
            self.skipTest("IPv6 loopback is not available")
        broker, browser, outcome = self._login_with([_callback({"id": 2, "login": "bob"})], host="::1")
        self.assertEqual(outcome, HandshakeResult(user_id=2, user_name="bob", token="abc"))
        self.assertEqual(browser.responses, [(302, f"{FRONTEND}/?auth=success")])
        self.assertTrue(broker.login_url().endswith(urllib.parse.quote(f"http://localhost:{broker.port}/callback", safe="")))

    def test_port_in_use_fails_fast(self) -> None:
        occupied = HTTPServer(("127.0.0.1", 0), BaseHTTPRequestHandler)
        try:
            broker = _broker(port=occupied.server_address[1], open_browser=lambda url: True)
            with self.assertRaises(HandshakeFailed) as ctx:
                broker.login()
            self.assertNotIsInstance(ctx.exception, HandshakeTimeout)
            self.assertIn("try again", str(ctx.exception))
            self.assertEqual(broker.state, HandshakeState.FAILED)
        finally:
            occupied.server_close()

    def test_browser_failure_is_not_fatal(self) -> None:
        messages: list[str] = []

        def broken_browser(url: str) -> bool:
            raise OSError("no display")

        broker = _broker(timeout_seconds=0.2, open_browser=broken_browser, echo=messages.append)
        with self.assertRaises(HandshakeTimeout):
            broker.login()
        self.assertTrue(any("/api/auth/github/cli?" in message for message in messages))

    def test_broker_is_single_use(self) -> None:
        broker = _broker(timeout_seconds=0.1, open_browser=lambda url: True)
        with self.assertRaises(HandshakeTimeout):
            broker.login()
        with self.assertRaises(HandshakeFailed):
            broker.login()


class ParseCallbackQueryTests(unittest.TestCase):
    def test_accepts_expected_state(self) -> None:
        state = expected_state_token("http://localhost:3456/callback")
        query = urllib.parse.urlencode({"user": '{"id": 3, "login": "dan"}', "token": "t", "state": state})
        self.assertEqual(parse_callback_query(query, expected_state=state), HandshakeResult(3, "dan", "t"))

    def test_rejects_bad_user_payloads(self) -> None:
        for user in ('{"id": 0, "login": "x"}', '{"id": 1}', "not json", "[1]"):
            query = urllib.parse.urlencode({"user": user, "token": "t"})
            with self.assertRaises(HandshakeFailed):
                parse_callback_query(query, expected_state="s")

    def test_error_parameter_fails(self) -> None:
        with self.assertRaises(HandshakeFailed):
            parse_callback_query("error=auth_failed", expected_state="s")


if __name__ == "__main__":
    unittest.main()
