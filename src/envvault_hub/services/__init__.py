"""Envvault hub service modules."""

__all__ = [
    "auth_service",
    "env_service",
]
