"""GitHub issue and project board synchronization."""

from powerlevel.sync.github_client import (
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubValidationError,
)
from powerlevel.sync.labels import LabelManager

__all__ = [
    "GitHubAuthError",
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubValidationError",
    "LabelManager",
]
