"""Git helpers: repository detection and commit history."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path

from powerlevel.core.models import RepoContext

GIT_TIMEOUT = 10

HTTPS_REMOTE = re.compile(r"^https://(?:[^@/]+@)?github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
SSH_REMOTE = re.compile(r"^(?:ssh://)?git@github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


class RepoDetectionError(Exception):
    """The working directory is not a git repo with a GitHub remote."""


def parse_remote_url(url: str) -> RepoContext | None:
    """Parse a GitHub remote URL (HTTPS or SSH) into a RepoContext.

    Returns:
        RepoContext, or None if the URL is not a GitHub repository URL.
    """
    url = url.strip()
    for pattern in (HTTPS_REMOTE, SSH_REMOTE):
        match = pattern.match(url)
        if match:
            return RepoContext(owner=match.group(1), name=match.group(2))
    return None


def run_git(args: list[str], cwd: Path | None = None) -> str | None:
    """Run a git command and return its stdout.

    Returns:
        Stripped stdout, or None if git fails, is missing or times out.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd or Path.cwd(),
            timeout=GIT_TIMEOUT,
            check=False,
        )
    except FileNotFoundError:
        # Git not installed
        return None
    except subprocess.TimeoutExpired:
        return None

    if result.returncode != 0:
        return None
    return result.stdout.strip()


def detect_repo(cwd: Path | None = None, remote: str = "origin") -> RepoContext:
    """Detect the GitHub repository of a working directory.

    Args:
        cwd: Directory inside the repository. Defaults to current directory.
        remote: Git remote to read.

    Raises:
        RepoDetectionError: If there is no such remote or it is not on GitHub.
    """
    url = run_git(["config", "--get", f"remote.{remote}.url"], cwd)
    if not url:
        raise RepoDetectionError(f"No git remote '{remote}' found (is this a git repository?)")

    context = parse_remote_url(url)
    if context is None:
        raise RepoDetectionError(f"Unable to parse GitHub URL from remote '{remote}': {url}")
    return context
