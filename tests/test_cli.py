from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from envvault_cli import cli
from envvault_cli.auth_broker import HandshakeResult
from envvault_core.codec import encrypt
from envvault_core.errors import HandshakeTimeout, PermissionDenied
from envvault_core.models import EnvRecord

KEY = "shared-key"


class CliCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.home = Path(self._tmp.name) / "home"
        self.credentials_file = self.home / "credentials.json"
        self.runner = CliRunner()
        self.env = {"ENVVAULT_HOME": str(self.home), "ENVVAULT_BACKEND_URL": "http://hub.test"}

        client_patch = patch.object(cli, "RemoteEnvClient")
        self.client_cls = client_patch.start()
        self.addCleanup(client_patch.stop)
        self.client = self.client_cls.return_value
        self.client.base_url = "http://hub.test"
        self.client.fetch_encryption_key.return_value = KEY

    def _invoke(self, *args: str):
        return self.runner.invoke(cli.main, ["--no-input", *args], env=self.env)

    def _login(self) -> None:
        self.credentials_file.parent.mkdir(parents=True, exist_ok=True)
        self.credentials_file.write_text(
            json.dumps({"userId": 7, "userName": "alice", "token": "gho_abc"}),
            encoding="utf-8",
        )

    def test_login_saves_credential(self) -> None:
        with patch.object(cli, "AuthBroker") as broker_cls:
            broker_cls.return_value.login.return_value = HandshakeResult(user_id=7, user_name="alice", token="gho_abc")
            result = self._invoke("login")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Logged in as alice (ID: 7)", result.output)
        self.assertEqual(broker_cls.call_args.kwargs["backend_url"], "http://hub.test")
        stored = json.loads(self.credentials_file.read_text(encoding="utf-8"))
        self.assertEqual(stored, {"userId": 7, "userName": "alice", "token": "gho_abc"})

    def test_failed_login_keeps_existing_credential(self) -> None:
        self._login()
        before = self.credentials_file.read_text(encoding="utf-8")
        with patch.object(cli, "AuthBroker") as broker_cls:
            broker_cls.return_value.login.side_effect = HandshakeTimeout("Login timed out after 300 seconds.")
            result = self._invoke("login")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: Login timed out", result.output)
        self.assertEqual(self.credentials_file.read_text(encoding="utf-8"), before)

    def test_whoami_and_logout(self) -> None:
        self._login()
        result = self._invoke("whoami")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("alice (ID: 7)", result.output)

        result = self._invoke("logout")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertFalse(self.credentials_file.exists())

        result = self._invoke("whoami")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: Not logged in.", result.output)
        self.assertIn("envvault login", result.output)

    def test_push_requires_login(self) -> None:
        with self.runner.isolated_filesystem(temp_dir=self._tmp.name):
            Path(".env").write_text("A=1\n", encoding="utf-8")
            result = self._invoke("push", "-o", "octo", "-r", "app")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error:", result.output)
        self.client.push.assert_not_called()

    def test_push_encrypts_and_reports(self) -> None:
        self._login()
        self.client.push.return_value = "rec-1"
        with self.runner.isolated_filesystem(temp_dir=self._tmp.name):
            Path("prod.env").write_text("API_KEY=abc\n", encoding="utf-8")
            result = self._invoke("push", "-f", "prod.env", "-o", "octo", "-r", "app", "-d", "api", "-n", ".env.prod")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Encrypted and pushed .env.prod to octo/app (/api)", result.output)
        kwargs = self.client.push.call_args.kwargs
        self.assertEqual(kwargs["repo_full_name"], "octo/app")
        self.assertEqual(kwargs["directory"], "api")
        self.assertNotIn("API_KEY", kwargs["content"])

    def test_push_permission_denied_exits_with_hint(self) -> None:
        self._login()
        self.client.push.side_effect = PermissionDenied("alice does not have push access to octo/app.")
        with self.runner.isolated_filesystem(temp_dir=self._tmp.name):
            Path(".env").write_text("A=1\n", encoding="utf-8")
            result = self._invoke("push", "-o", "octo", "-r", "app", "-d", "")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("You need push access to octo/app", result.output)

    def test_pull_writes_decrypted_file(self) -> None:
        self._login()
        self.client.pull.return_value = [
            EnvRecord(
                id="rec-1",
                owner_user_id=7,
                owner_user_name="alice",
                repo_full_name="octo/app",
                repo_name="app",
                directory="",
                env_name=".env.prod",
                content=encrypt("API_KEY=abc\n", KEY),
                is_encrypted=True,
                created_at="2026-01-01T00:00:00Z",
                updated_at="2026-01-01T00:00:00Z",
            )
        ]
        with self.runner.isolated_filesystem(temp_dir=self._tmp.name):
            result = self._invoke("pull", "-o", "octo", "-r", "app", "-d", "", "--output", "out.env")
            written = Path("out.env").read_text(encoding="utf-8")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Environment variables saved to", result.output)
        self.assertEqual(written, "API_KEY=abc\n")

    def test_unwritable_pull_output_exits_with_error_line(self) -> None:
        self._login()
        self.client.pull.return_value = [
            EnvRecord(
                id="rec-1",
                owner_user_id=7,
                owner_user_name="alice",
                repo_full_name="octo/app",
                repo_name="app",
                directory="",
                env_name=".env",
                content=encrypt("A=1\n", KEY),
                is_encrypted=True,
                created_at="2026-01-01T00:00:00Z",
                updated_at="2026-01-01T00:00:00Z",
            )
        ]
        with self.runner.isolated_filesystem(temp_dir=self._tmp.name):
            Path("target").write_text("not a directory", encoding="utf-8")
            result = self._invoke("pull", "-o", "octo", "-r", "app", "-d", "", "--output", "target/.env")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: Unable to write", result.output)

    def test_list_without_records(self) -> None:
        self._login()
        self.client.list.return_value = []
        result = self._invoke("list")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No environment files found.", result.output)
        self.client.list.assert_called_once_with(token="gho_abc", repo_full_name=None)

    def test_invalid_backend_url_is_a_clean_error(self) -> None:
        result = self.runner.invoke(cli.main, ["--backend-url", "not-a-url", "whoami"], env=self.env)
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error:", result.output)


if __name__ == "__main__":
    unittest.main()
