from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from envvault_core.config import (
    DEFAULT_BACKEND_URL,
    DEFAULT_CALLBACK_PORT,
    EnvVaultConfig,
    load_config,
    load_config_dict,
    resolve_client_settings,
    resolve_hub_settings,
)
from envvault_core.errors import ConfigError
from envvault_core.paths import default_config_dir, resolve_client_paths, resolve_store_file


class EnvVaultConfigTests(unittest.TestCase):
    def test_missing_sections_default_to_empty_and_extras_are_kept(self) -> None:
        config = load_config_dict({"client": {"backend_url": "https://hub.example"}, "custom": {"a": 1}})
        self.assertEqual(config.client.values, {"backend_url": "https://hub.example"})
        self.assertEqual(config.hub.values, {})
        self.assertEqual(config.extras, {"custom": {"a": 1}})

    def test_non_table_section_raises_config_error(self) -> None:
        with self.assertRaises(ConfigError):
            EnvVaultConfig.from_dict({"hub": "not-a-table"})

    def test_load_config_reads_toml_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.toml"
            path.write_text('[logging]\nlevel = "debug"\n\n[client]\ncallback_port = 4000\n', encoding="utf-8")
            config = load_config(path)
        self.assertEqual(config.log_level(), "debug")
        self.assertEqual(config.client.values["callback_port"], 4000)

    def test_invalid_toml_raises_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.toml"
            path.write_text("[client\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)

    def test_missing_file_is_allowed_when_requested(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = load_config(Path(tmp) / "absent.toml", missing_ok=True)
        self.assertEqual(config, EnvVaultConfig())


class ClientSettingsTests(unittest.TestCase):
    def test_defaults_without_config_or_environment(self) -> None:
        settings = resolve_client_settings(environ={})
        self.assertEqual(settings.backend_url, DEFAULT_BACKEND_URL)
        self.assertEqual(settings.callback_port, DEFAULT_CALLBACK_PORT)
        self.assertEqual(settings.login_timeout_seconds, 300.0)

    def test_precedence_is_option_then_environment_then_file(self) -> None:
        config = load_config_dict({"client": {"backend_url": "https://file.example/"}})
        from_file = resolve_client_settings(config, environ={})
        from_env = resolve_client_settings(config, environ={"BACKEND_URL": "https://env.example"})
        from_option = resolve_client_settings(
            config,
            environ={"ENVVAULT_BACKEND_URL": "https://env.example"},
            backend_url="https://option.example",
        )
        self.assertEqual(from_file.backend_url, "https://file.example")
        self.assertEqual(from_env.backend_url, "https://env.example")
        self.assertEqual(from_option.backend_url, "https://option.example")

    def test_relative_backend_url_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_client_settings(environ={"ENVVAULT_BACKEND_URL": "hub.example"})

    def test_invalid_callback_port_is_rejected(self) -> None:
        config = load_config_dict({"client": {"callback_port": 70000}})
        with self.assertRaises(ConfigError):
            resolve_client_settings(config, environ={})


class HubSettingsTests(unittest.TestCase):
    def test_environment_supplies_oauth_and_key(self) -> None:
        settings = resolve_hub_settings(
            environ={
                "GITHUB_CLIENT_ID": "cid",
                "GITHUB_CLIENT_SECRET": "secret",
                "ENVVAULT_ENCRYPTION_KEY": "shared-key",
                "FRONTEND_URL": "https://app.example/",
            }
        )
        self.assertTrue(settings.oauth_configured())
        self.assertEqual(settings.encryption_key, "shared-key")
        self.assertEqual(settings.frontend_url, "https://app.example")

    def test_callback_url_defaults_to_request_origin(self) -> None:
        settings = resolve_hub_settings(environ={})
        self.assertFalse(settings.oauth_configured())
        self.assertEqual(
            settings.resolved_callback_url("http://hub.local:8000/"),
            "http://hub.local:8000/api/auth/github/callback",
        )

    def test_explicit_options_override_config(self) -> None:
        config = load_config_dict({"hub": {"host": "127.0.0.1", "port": 9000, "store_file": "/tmp/a.json"}})
        settings = resolve_hub_settings(config, environ={}, port=9100, store_file="/tmp/b.json")
        self.assertEqual(settings.host, "127.0.0.1")
        self.assertEqual(settings.port, 9100)
        self.assertEqual(settings.store_file, "/tmp/b.json")


class PathsTests(unittest.TestCase):
    def test_envvault_home_overrides_config_dir(self) -> None:
        self.assertEqual(default_config_dir(environ={"ENVVAULT_HOME": "/opt/envvault"}), Path("/opt/envvault"))

    def test_default_config_dir_is_under_home(self) -> None:
        self.assertEqual(
            default_config_dir(home=Path("/home/dev"), environ={}),
            Path("/home/dev/.config/envvault"),
        )

    def test_client_paths_honor_configured_credentials_file(self) -> None:
        paths = resolve_client_paths(
            {"credentials_file": "/srv/creds.json"},
            environ={"ENVVAULT_HOME": "/opt/envvault"},
        )
        self.assertEqual(paths.config_file, Path("/opt/envvault/config.toml"))
        self.assertEqual(paths.credentials_file, Path("/srv/creds.json"))

    def test_store_file_resolution(self) -> None:
        self.assertEqual(resolve_store_file("/srv/records.json"), Path("/srv/records.json").resolve())
        self.assertEqual(resolve_store_file().name, "env_records.json")


if __name__ == "__main__":
    unittest.main()
