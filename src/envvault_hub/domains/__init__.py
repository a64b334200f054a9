from envvault_hub.domains.auth_domain import AuthDomain
from envvault_hub.domains.env_domain import EnvDomain

__all__ = [
    "AuthDomain",
    "EnvDomain",
]
