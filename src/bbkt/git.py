"""Infer the Bitbucket workspace and repository from local git remotes."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from bbkt.exceptions import LocalRepoError

logger = logging.getLogger(__name__)

# Tried in order for every remote URL.
REMOTE_PATTERNS = [
    re.compile(r"git@bitbucket\.org:([^/]+)/([^/]+)\.git"),
    re.compile(r"https://.*bitbucket\.org/([^/]+)/([^/]+)\.git"),
    re.compile(r"git@bitbucket\.org:([^/]+)/([^/]+)"),
    re.compile(r"https://.*bitbucket\.org/([^/]+)/([^/]+)"),
]

OTHER_HOSTS = {
    "github.com": "GitHub",
    "gitlab.com": "GitLab",
}


def parse_remote_url(url: str) -> tuple[str, str] | None:
    """Return ``(workspace, repo_slug)`` for a Bitbucket remote URL."""
    for pattern in REMOTE_PATTERNS:
        match = pattern.search(url)
        if match is not None:
            return match.group(1), match.group(2)
    return None


def parse_remotes(output: str) -> tuple[str, str]:
    """Pick the first Bitbucket remote from ``git remote -v`` output."""
    other_hosts: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        url = fields[1]
        parsed = parse_remote_url(url)
        if parsed is not None:
            return parsed
        for host, label in OTHER_HOSTS.items():
            if host in url:
                other_hosts.append(label)
                break

    if other_hosts:
        raise LocalRepoError(
            f"Detected a {other_hosts[0]} repository. "
            "bbkt only supports Bitbucket Cloud repositories."
        )
    raise LocalRepoError("No Bitbucket remotes found in the local repository.")


def get_local_repo_info(cwd: Path | None = None) -> tuple[str, str]:
    """Read ``git remote -v`` in ``cwd`` and return ``(workspace, repo_slug)``."""
    try:
        result = subprocess.run(
            ["git", "remote", "-v"],
            cwd=str(cwd) if cwd else None,
            check=True,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except FileNotFoundError as e:
        raise LocalRepoError("git is not installed.") from e
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        raise LocalRepoError("Not a git repository or no remotes configured.") from e
    return parse_remotes(result.stdout)


def detect_context_workspace(cwd: Path | None = None) -> str | None:
    """Workspace slug of the local repository, or None outside one."""
    try:
        workspace, _repo = get_local_repo_info(cwd)
    except LocalRepoError as e:
        logger.debug("No local repository context: %s", e)
        return None
    return workspace
