"""Local listener side of the GitHub OAuth login.

The broker binds a loopback HTTP listener, sends the user's browser to the hub
(which forwards to GitHub), and waits for the hub to redirect the browser back
to ``/callback`` with the signed-in identity and token.

    IDLE -> LISTENING -> AWAITING_CALLBACK -> SUCCEEDED | FAILED | TIMED_OUT

Every terminal state goes through the same teardown, so the callback port is
free again once :meth:`AuthBroker.login` returns or raises.
"""

from __future__ import annotations

import base64
import concurrent.futures
import enum
import json
import logging
import socket
import threading
import time
import urllib.parse
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable

import click

from envvault_cli.credentials import coerce_user_id
from envvault_core.errors import HandshakeFailed, HandshakeTimeout

LOGGER = logging.getLogger("envvault_cli.auth")

CALLBACK_PATH = "/callback"
CALLBACK_HOST = "127.0.0.1"
CALLBACK_HOST_V6 = "::1"
TEARDOWN_GRACE_SECONDS = 0.1
SERVE_POLL_INTERVAL_SECONDS = 0.05
REQUEST_TIMEOUT_SECONDS = 5


class HandshakeState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_CALLBACK = "awaiting_callback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class HandshakeResult:
    user_id: int
    user_name: str
    token: str


def expected_state_token(callback_url: str) -> str:
    return base64.urlsafe_b64encode(callback_url.encode("utf-8")).decode("ascii")


def parse_callback_query(query: str, *, expected_state: str) -> HandshakeResult:
    """Turn the callback query string into a result or raise HandshakeFailed."""
    params = urllib.parse.parse_qs(query, keep_blank_values=True)

    def _first(name: str) -> str:
        values = params.get(name) or [""]
        return str(values[0] or "").strip()

    error = _first("error")
    if error:
        raise HandshakeFailed(f"GitHub login failed: {error}.")
    state_value = _first("state")
    if state_value and state_value != expected_state:
        raise HandshakeFailed("Login callback state did not match this login attempt.")

    raw_user = _first("user")
    token = _first("token")
    if not raw_user or not token:
        raise HandshakeFailed("Login callback is missing the user or token.")
    try:
        user = json.loads(raw_user)
    except json.JSONDecodeError as exc:
        raise HandshakeFailed("Login callback carried malformed user data.") from exc
    if not isinstance(user, dict):
        raise HandshakeFailed("Login callback carried malformed user data.")
    user_id = coerce_user_id(user.get("id"))
    user_name = str(user.get("login") or "").strip()
    if user_id is None or not user_name:
        raise HandshakeFailed("Login callback user data has no valid id or login.")
    return HandshakeResult(user_id=user_id, user_name=user_name, token=token)


class _IPv6HTTPServer(HTTPServer):
    address_family = socket.AF_INET6


class AuthBroker:
    """Runs one browser-based GitHub login. Not reusable after :meth:`login`."""

    def __init__(
        self,
        *,
        backend_url: str,
        frontend_url: str,
        port: int = 3456,
        timeout_seconds: float = 300.0,
        grace_seconds: float = TEARDOWN_GRACE_SECONDS,
        open_browser: Callable[[str], Any] | None = None,
        echo: Callable[..., None] | None = None,
    ) -> None:
        self.backend_url = str(backend_url).rstrip("/")
        self.frontend_url = str(frontend_url).rstrip("/")
        self.requested_port = int(port)
        self.timeout_seconds = float(timeout_seconds)
        self.grace_seconds = float(grace_seconds)
        self._open_browser = open_browser or webbrowser.open
        self._echo = echo or click.echo
        self._state = HandshakeState.IDLE
        self._state_lock = threading.Lock()
        self._future: concurrent.futures.Future[HandshakeResult] = concurrent.futures.Future()
        self._servers: list[HTTPServer] = []
        self._threads: list[threading.Thread] = []
        self._torn_down = False
        self.callback_url = ""
        self.expected_state = ""

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def port(self) -> int:
        if not self._servers:
            return self.requested_port
        return int(self._servers[0].server_address[1])

    def login_url(self) -> str:
        query = urllib.parse.urlencode({"redirect_uri": self.callback_url})
        return f"{self.backend_url}/api/auth/github/cli?{query}"

    def login(self) -> HandshakeResult:
        with self._state_lock:
            if self._state is not HandshakeState.IDLE:
                raise HandshakeFailed("This login attempt has already been used; start a new one.")
            self._state = HandshakeState.LISTENING
        started = time.monotonic()
        self._listen()
        try:
            self._launch_browser()
            result = self._await_callback()
        except HandshakeFailed as exc:
            LOGGER.info(
                "Login handshake ended without a credential",
                extra={
                    "component": "auth",
                    "operation": "login",
                    "result": self._state.value,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "error_class": type(exc).__name__,
                },
            )
            raise
        finally:
            self.teardown()
        LOGGER.info(
            "Login handshake succeeded",
            extra={
                "user": result.user_name,
                "component": "auth",
                "operation": "login",
                "result": self._state.value,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    def teardown(self) -> None:
        with self._state_lock:
            if self._torn_down or not self._servers:
                self._torn_down = True
                return
            self._torn_down = True
            servers = list(self._servers)
            threads = list(self._threads)
        time.sleep(self.grace_seconds)
        for server in servers:
            server.shutdown()
            server.server_close()
        for thread in threads:
            thread.join(timeout=REQUEST_TIMEOUT_SECONDS)
        LOGGER.debug("Callback listener closed port=%s", self.port, extra={"component": "auth", "operation": "teardown"})

    def _listen(self) -> None:
        try:
            server = HTTPServer((CALLBACK_HOST, self.requested_port), self._handler_class())
        except OSError as exc:
            with self._state_lock:
                self._state = HandshakeState.FAILED
                self._torn_down = True
            raise HandshakeFailed(
                f"Could not listen on port {self.requested_port} for the login callback ({exc}). "
                "Free the port and try again."
            ) from exc
        self._servers.append(server)
        # "localhost" may resolve to ::1 first; listen there too when the host has IPv6.
        try:
            self._servers.append(_IPv6HTTPServer((CALLBACK_HOST_V6, self.port), self._handler_class()))
        except OSError as exc:
            LOGGER.debug(
                "IPv6 loopback listener unavailable: %s",
                exc,
                extra={"component": "auth", "operation": "listen", "error_class": type(exc).__name__},
            )
        self.callback_url = f"http://localhost:{self.port}{CALLBACK_PATH}"
        self.expected_state = expected_state_token(self.callback_url)
        for server in self._servers:
            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": SERVE_POLL_INTERVAL_SECONDS},
                name="envvault-login-callback",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        LOGGER.debug("Callback listener bound port=%s", self.port, extra={"component": "auth", "operation": "listen"})

    def _launch_browser(self) -> None:
        with self._state_lock:
            self._state = HandshakeState.AWAITING_CALLBACK
        url = self.login_url()
        self._echo("Opening your browser to sign in with GitHub.")
        self._echo(f"If it does not open, visit: {url}")
        try:
            self._open_browser(url)
        except (webbrowser.Error, OSError) as exc:
            LOGGER.warning(
                "Unable to open a browser: %s",
                exc,
                extra={"component": "auth", "operation": "open_browser", "error_class": type(exc).__name__},
            )

    def _await_callback(self) -> HandshakeResult:
        try:
            return self._future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError:
            with self._state_lock:
                if self._future.cancel():
                    self._state = HandshakeState.TIMED_OUT
            if self._state is HandshakeState.TIMED_OUT:
                raise HandshakeTimeout(
                    f"No login callback arrived within {int(self.timeout_seconds)} seconds."
                ) from None
            return self._future.result()

    def _resolve(self, outcome: HandshakeResult | HandshakeFailed) -> None:
        with self._state_lock:
            if self._future.done():
                return
            if isinstance(outcome, HandshakeResult):
                self._state = HandshakeState.SUCCEEDED
                self._future.set_result(outcome)
            else:
                self._state = HandshakeState.FAILED
                self._future.set_exception(outcome)

    def _handler_class(self) -> type[BaseHTTPRequestHandler]:
        broker = self

        class CallbackHandler(BaseHTTPRequestHandler):
            timeout = REQUEST_TIMEOUT_SECONDS

            def do_GET(self):
                parsed = urllib.parse.urlsplit(self.path)
                if parsed.path != CALLBACK_PATH:
                    self.send_error(404, "Not found")
                    return
                outcome: HandshakeResult | HandshakeFailed
                try:
                    outcome = parse_callback_query(parsed.query, expected_state=broker.expected_state)
                except HandshakeFailed as exc:
                    outcome = exc
                status = "success" if isinstance(outcome, HandshakeResult) else "failed"
                self.send_response(302)
                self.send_header("Location", f"{broker.frontend_url}/?auth={status}")
                self.send_header("Content-Length", "0")
                self.end_headers()
                broker._resolve(outcome)

            def log_message(self, format, *args):
                LOGGER.debug("Callback listener: %s", format % args)

        return CallbackHandler
