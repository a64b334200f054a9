from __future__ import annotations


class TypedEnvVaultError(RuntimeError):
    """Base class for typed operational errors surfaced to users."""

    error_code = "INTERNAL_ERROR"
    failure_class = "internal"
    user_message = "An internal error occurred."

    def metadata(self) -> dict[str, str]:
        return {
            "error_code": self.error_code,
            "failure_class": self.failure_class,
            "user_message": self.user_message,
        }

    def payload(self, *, detail: str | None = None) -> dict[str, str]:
        payload = self.metadata()
        payload["detail"] = str(self) if detail is None else str(detail)
        return payload


def typed_error_metadata(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedEnvVaultError):
        return exc.metadata()
    return None


def typed_error_payload(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedEnvVaultError):
        return exc.payload()
    return None


class ConfigError(TypedEnvVaultError):
    """Configuration parsing or validation error."""

    error_code = "CONFIG_ERROR"
    failure_class = "configuration"
    user_message = "Configuration is invalid."


class CredentialResolutionError(TypedEnvVaultError):
    """Local credential file could not be read or written."""

    error_code = "CREDENTIAL_RESOLUTION_ERROR"
    failure_class = "credentials"
    user_message = "Credential resolution failed."


class AuthenticationRequired(TypedEnvVaultError):
    """No usable local credential; the user has to log in first."""

    error_code = "AUTHENTICATION_REQUIRED"
    failure_class = "authentication"
    user_message = "Not authenticated. Run `envvault login` first."


class Unauthenticated(TypedEnvVaultError):
    """Bearer token missing or rejected by GitHub."""

    error_code = "UNAUTHENTICATED"
    failure_class = "authentication"
    user_message = "Missing or invalid bearer token."


class HandshakeFailed(TypedEnvVaultError):
    """OAuth handshake completed without a usable identity."""

    error_code = "HANDSHAKE_FAILED"
    failure_class = "handshake"
    user_message = "GitHub login did not complete."


class HandshakeTimeout(HandshakeFailed):
    """No OAuth callback arrived within the login window."""

    error_code = "HANDSHAKE_TIMEOUT"
    failure_class = "handshake"
    user_message = "GitHub login timed out."


class PermissionDenied(TypedEnvVaultError):
    """Caller lacks push access to the target repository."""

    error_code = "PERMISSION_DENIED"
    failure_class = "authorization"
    user_message = "You do not have push access to this repository."


class NotFound(TypedEnvVaultError):
    """Repository or env record does not exist."""

    error_code = "NOT_FOUND"
    failure_class = "not_found"
    user_message = "The requested resource was not found."


class EnvFileNotFound(NotFound):
    """Local env file to push does not exist."""

    error_code = "FILE_NOT_FOUND"
    failure_class = "not_found"
    user_message = "Local env file not found."


class LocalFileError(TypedEnvVaultError):
    """A local env file could not be read or written."""

    error_code = "LOCAL_FILE_ERROR"
    failure_class = "filesystem"
    user_message = "A local file could not be read or written."


class ValidationError(TypedEnvVaultError):
    """Bad or missing input, or a malformed env file."""

    error_code = "VALIDATION_ERROR"
    failure_class = "validation"
    user_message = "Input is invalid."


class TransportError(TypedEnvVaultError):
    """Network, DNS or TLS failure talking to the remote service."""

    error_code = "TRANSPORT_ERROR"
    failure_class = "network"
    user_message = "The envvault service is not reachable."


class UpstreamError(TypedEnvVaultError):
    """GitHub API or the record store is unavailable."""

    error_code = "UPSTREAM_ERROR"
    failure_class = "upstream"
    user_message = "An upstream service failed."


class DecryptionFailed(TypedEnvVaultError):
    """Ciphertext could not be authenticated with the given key."""

    error_code = "DECRYPTION_FAILED"
    failure_class = "decryption"
    user_message = "Decryption failed: wrong key or corrupted data."


DecryptionError = DecryptionFailed
