from envvault_hub.integrations.github import GithubClient, GithubIdentity, GithubRepository

__all__ = ["GithubClient", "GithubIdentity", "GithubRepository"]
