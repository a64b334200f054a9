from __future__ import annotations

import re
import subprocess
import urllib.parse
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class GitRemote:
    owner: str
    name: str


def _git_repo_path(repo_url: str) -> str:
    candidate = str(repo_url or "").strip()
    if not candidate:
        return ""

    parsed = urllib.parse.urlsplit(candidate)
    if parsed.hostname:
        return str(parsed.path or "").strip()

    scp_match = re.match(r"^[^@]+@[^:]+:(.+)$", candidate)
    if scp_match:
        return str(scp_match.group(1) or "").strip()
    return ""


def parse_remote_url(repo_url: str) -> GitRemote | None:
    """Extract owner and repository name from an HTTPS or SSH remote URL."""
    parts = [part for part in _git_repo_path(repo_url).split("/") if part]
    if len(parts) < 2:
        return None
    owner = parts[-2]
    name = parts[-1]
    if name.endswith(".git"):
        name = name[:-4]
    if not owner or not name:
        return None
    return GitRemote(owner=owner, name=name)


def origin_remote(cwd: Path | None = None) -> GitRemote | None:
    try:
        result = subprocess.run(
            ["git", "config", "--get", "remote.origin.url"],
            cwd=str(cwd) if cwd is not None else None,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return parse_remote_url(result.stdout.strip())
