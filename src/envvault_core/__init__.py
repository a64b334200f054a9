from __future__ import annotations

from .config import (
    ClientSettings,
    EnvVaultConfig,
    HubSettings,
    load_config,
    load_config_dict,
    resolve_client_settings,
    resolve_hub_settings,
)
from .errors import (
    AuthenticationRequired,
    ConfigError,
    CredentialResolutionError,
    DecryptionError,
    DecryptionFailed,
    EnvFileNotFound,
    HandshakeFailed,
    HandshakeTimeout,
    LocalFileError,
    NotFound,
    PermissionDenied,
    TransportError,
    TypedEnvVaultError,
    Unauthenticated,
    UpstreamError,
    ValidationError,
)
from .models import EnvRecord
from .paths import ClientPaths, default_config_dir, resolve_client_paths, resolve_store_file

__all__ = [
    "AuthenticationRequired",
    "ClientPaths",
    "ClientSettings",
    "ConfigError",
    "CredentialResolutionError",
    "DecryptionError",
    "DecryptionFailed",
    "EnvFileNotFound",
    "EnvRecord",
    "EnvVaultConfig",
    "HandshakeFailed",
    "HandshakeTimeout",
    "HubSettings",
    "LocalFileError",
    "NotFound",
    "PermissionDenied",
    "TransportError",
    "TypedEnvVaultError",
    "Unauthenticated",
    "UpstreamError",
    "ValidationError",
    "default_config_dir",
    "load_config",
    "load_config_dict",
    "resolve_client_paths",
    "resolve_client_settings",
    "resolve_hub_settings",
    "resolve_store_file",
]
