"""GitHub API client using httpx for epic synchronization.

This module provides an async HTTP client for the GitHub REST and GraphQL
APIs: issue creation and edits, sub-issue links, comments, labels and
project board items. Uses GITHUB_TOKEN environment variable for
authentication.

Rate-limit responses and transport failures are retried with exponential
backoff. Every other error surfaces immediately so callers can apply
their own partial-failure policy.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
GITHUB_GRAPHQL_PATH = "/graphql"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
MAX_BACKOFF = 60.0
PAGE_SIZE = 100


class GitHubClientError(Exception):
    """Base exception for GitHub client errors."""


class GitHubAuthError(GitHubClientError):
    """Authentication with GitHub failed."""


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, message: str, reset_at: int | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at  # Unix timestamp when rate limit resets


class GitHubNotFoundError(GitHubClientError):
    """Requested resource not found."""


class GitHubValidationError(GitHubClientError):
    """GitHub rejected the request payload (HTTP 422)."""

    @property
    def already_exists(self) -> bool:
        """Check if the rejection means the resource is already there."""
        text = str(self).lower()
        return "already_exists" in text or "already exists" in text or "already added" in text


@dataclass
class GitHubIssue:
    """Represents a GitHub issue."""

    number: int
    title: str
    state: str  # "open" or "closed"
    labels: list[str] = field(default_factory=list)
    url: str = ""
    body: str = ""
    id: int | None = None  # REST database id, used for sub-issue links
    node_id: str | None = None  # GraphQL id, used for project boards

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> GitHubIssue:
        """Build an issue from a REST API payload."""
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            state=str(data.get("state", "open")).lower(),
            labels=[label["name"] if isinstance(label, dict) else str(label) for label in data.get("labels", [])],
            url=data.get("html_url", ""),
            body=data.get("body") or "",
            id=data.get("id"),
            node_id=data.get("node_id"),
        )


@dataclass
class GitHubLabel:
    """Represents a GitHub label."""

    name: str
    color: str
    description: str = ""


@dataclass
class ProjectBoard:
    """A GitHub Projects (v2) board."""

    id: str
    number: int
    title: str
    url: str = ""


@dataclass
class BoardField:
    """A single-select field on a project board."""

    id: str
    name: str
    options: dict[str, str] = field(default_factory=dict)  # lowercased option name -> option id

    def option_id(self, name: str) -> str | None:
        """Look up an option id by case-insensitive name."""
        return self.options.get(name.lower())


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    if "Retry-After" in response.headers:
        return True
    return "rate limit" in response.text.lower()


def _retry_wait(response: httpx.Response | None, backoff: float, attempt: int) -> float:
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), MAX_BACKOFF)
    return min(backoff * (2**attempt), MAX_BACKOFF)


class GitHubClient:
    """Async GitHub API client for epic synchronization.

    Uses GITHUB_TOKEN environment variable for authentication.
    Implements rate limit detection and retry logic with exponential backoff.
    Holds no state besides its connection pool, so one instance may serve
    concurrent calls.
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        dry_run: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            repo: Repository in 'owner/repo' format.
            token: GitHub token. If None, reads from GITHUB_TOKEN env var.
            dry_run: If True, log write operations without executing.
            timeout: Request timeout in seconds.
            max_retries: Attempts per request for rate-limit and transport errors.
            initial_backoff: Base delay in seconds for exponential backoff.

        Raises:
            GitHubAuthError: If no token is provided or found in environment.
        """
        self.repo = repo
        self.dry_run = dry_run
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_backoff = initial_backoff

        self._token = token or os.getenv("GITHUB_TOKEN")
        if not self._token:
            raise GitHubAuthError("No GitHub token provided. Set GITHUB_TOKEN environment variable or pass token parameter.")

        # The token must never reach a log line
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            headers=self._headers,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitHubClient must be used as async context manager")
        return self._client

    @property
    def owner(self) -> str:
        """Owner part of the repository."""
        return self.repo.split("/", 1)[0]

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, etc.).
            endpoint: API endpoint (e.g., "/repos/owner/repo/issues/1").
            **kwargs: Additional arguments passed to httpx request.

        Returns:
            httpx.Response object.

        Raises:
            GitHubAuthError: If authentication fails.
            GitHubRateLimitError: If rate limit is exceeded after retries.
            GitHubNotFoundError: If resource is not found.
            GitHubValidationError: If the payload is rejected.
            GitHubClientError: For other API errors.
        """
        backoff = self.initial_backoff

        for attempt in range(self.max_retries):
            try:
                response = await self.client.request(method, endpoint, **kwargs)
            except httpx.TimeoutException as e:
                if attempt < self.max_retries - 1:
                    wait_time = _retry_wait(None, backoff, attempt)
                    logger.warning(f"Request timeout, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"Request timeout after {self.max_retries} attempts") from e
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    wait_time = _retry_wait(None, backoff, attempt)
                    logger.warning(f"Network error: {e}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"Network error after {self.max_retries} attempts: {e}") from e

            # Handle rate limiting (primary and secondary)
            if _is_rate_limited(response):
                reset_at = int(response.headers.get("X-RateLimit-Reset", "0") or 0)
                if attempt < self.max_retries - 1:
                    wait_time = _retry_wait(response, backoff, attempt)
                    logger.warning(f"Rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries})")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubRateLimitError(
                    f"GitHub API rate limit exceeded. Resets at {reset_at}",
                    reset_at=reset_at,
                )

            # Handle auth errors
            if response.status_code == 401:
                raise GitHubAuthError("GitHub authentication failed. Check your token.")

            # Handle not found
            if response.status_code == 404:
                raise GitHubNotFoundError(f"Resource not found: {endpoint}")

            if response.status_code == 422:
                raise GitHubValidationError(f"GitHub rejected {method} {endpoint}: {response.text[:500]}")

            # Handle other errors
            if response.status_code >= 400:
                error_body = response.text
                logger.error(f"GitHub API error {response.status_code}: {error_body}")
                raise GitHubClientError(f"GitHub API error {response.status_code}: {error_body[:200]}")

            return response

        # Only reached when every attempt raised and was retried
        raise GitHubClientError("Max retries exceeded")

    # =========================================================================
    # Issue Operations
    # =========================================================================

    async def get_issue(self, issue_number: int) -> GitHubIssue:
        """Get a single issue by number.

        Args:
            issue_number: The issue number.

        Returns:
            GitHubIssue object.
        """
        response = await self._request("GET", f"/repos/{self.repo}/issues/{issue_number}")
        return GitHubIssue.from_payload(response.json())

    async def get_issue_node_id(self, issue_number: int) -> str:
        """Get the GraphQL node id of an issue."""
        issue = await self.get_issue(issue_number)
        if not issue.node_id:
            raise GitHubClientError(f"Issue #{issue_number} has no node id")
        return issue.node_id

    async def create_issue(
        self,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> GitHubIssue:
        """Create an issue.

        Args:
            title: Issue title.
            body: Issue body markdown.
            labels: Label names to apply.

        Returns:
            The created GitHubIssue.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would create issue '{title}' with labels {labels or []}")
            return GitHubIssue(number=0, title=title, state="open", labels=labels or [], body=body)

        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        response = await self._request("POST", f"/repos/{self.repo}/issues", json=payload)
        return GitHubIssue.from_payload(response.json())

    async def create_sub_issue(
        self,
        parent: int,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> GitHubIssue:
        """Create an issue and link it as a sub-issue of ``parent``.

        The body is prefixed with a "Part of #parent" reference so the link
        is visible even where sub-issues are not rendered.
        """
        issue = await self.create_issue(title, f"Part of #{parent}\n\n{body}", labels)
        if self.dry_run or issue.id is None:
            return issue
        await self.add_sub_issue(parent, issue.id)
        return issue

    async def add_sub_issue(self, parent: int, sub_issue_id: int) -> bool:
        """Link an existing issue (by REST id) as a sub-issue of ``parent``.

        Returns:
            True if linked, including when the link already existed.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would link issue id {sub_issue_id} under #{parent}")
            return True

        try:
            await self._request(
                "POST",
                f"/repos/{self.repo}/issues/{parent}/sub_issues",
                json={"sub_issue_id": sub_issue_id},
            )
        except GitHubValidationError as e:
            if not e.already_exists:
                raise
            logger.debug(f"Issue id {sub_issue_id} already linked under #{parent}")
        return True

    async def list_sub_issues(self, parent: int) -> list[GitHubIssue]:
        """List the sub-issues of an issue."""
        response = await self._request(
            "GET",
            f"/repos/{self.repo}/issues/{parent}/sub_issues",
            params={"per_page": PAGE_SIZE},
        )
        return [GitHubIssue.from_payload(item) for item in response.json()]

    async def update_issue(
        self,
        issue_number: int,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> GitHubIssue | None:
        """Update body, labels and/or state of an issue in one call.

        Returns:
            The updated issue, or None in dry-run mode.
        """
        payload: dict[str, Any] = {}
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = labels
        if state is not None:
            payload["state"] = state
        if not payload:
            return None

        if self.dry_run:
            logger.info(f"[DRY RUN] Would update #{issue_number}: {sorted(payload)}")
            return None

        response = await self._request("PATCH", f"/repos/{self.repo}/issues/{issue_number}", json=payload)
        return GitHubIssue.from_payload(response.json())

    async def edit_issue_body(self, issue_number: int, body: str) -> None:
        """Replace the body of an issue."""
        await self.update_issue(issue_number, body=body)

    async def close_issue(
        self,
        issue_number: int,
        comment: str | None = None,
    ) -> bool:
        """Close an issue with optional comment.

        Args:
            issue_number: The issue number.
            comment: Optional comment to add before closing.

        Returns:
            True if closed successfully.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would close #{issue_number}" + (f" with comment: {comment}" if comment else ""))
            return True

        # Add comment first if provided
        if comment:
            await self.add_comment(issue_number, comment)

        await self.update_issue(issue_number, state="closed")
        return True

    async def add_comment(
        self,
        issue_number: int,
        body: str,
    ) -> int:
        """Add a comment to an issue.

        Args:
            issue_number: The issue number.
            body: Comment body text.

        Returns:
            Comment ID.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add comment to #{issue_number}: {body[:50]}...")
            return 0

        response = await self._request(
            "POST",
            f"/repos/{self.repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return response.json()["id"]

    async def list_open_issues(
        self,
        repo: str | None = None,
        label: str | None = None,
        limit: int = PAGE_SIZE,
    ) -> list[GitHubIssue]:
        """List open issues (not pull requests) of a repository.

        Args:
            repo: Repository in 'owner/repo' format. Defaults to this client's repo.
            label: Optional label filter.
            limit: Maximum number of issues to return.

        Returns:
            Open issues in the order GitHub returns them (newest first).
        """
        target = repo or self.repo
        params: dict[str, Any] = {"state": "open", "per_page": min(limit, PAGE_SIZE)}
        if label:
            params["labels"] = label

        issues: list[GitHubIssue] = []
        page = 1
        while len(issues) < limit:
            params["page"] = page
            response = await self._request("GET", f"/repos/{target}/issues", params=params)
            data = response.json()
            if not data:
                break
            issues.extend(GitHubIssue.from_payload(item) for item in data if "pull_request" not in item)
            if len(data) < params["per_page"]:
                break
            page += 1

        return issues[:limit]

    # =========================================================================
    # Label Operations
    # =========================================================================

    async def get_label(self, name: str) -> GitHubLabel | None:
        """Get a label by name.

        Args:
            name: Label name.

        Returns:
            GitHubLabel if found, None otherwise.
        """
        try:
            response = await self._request("GET", f"/repos/{self.repo}/labels/{name}")
        except GitHubNotFoundError:
            return None
        data = response.json()
        return GitHubLabel(
            name=data["name"],
            color=data["color"],
            description=data.get("description") or "",
        )

    async def ensure_label(
        self,
        name: str,
        color: str,
        description: str = "",
    ) -> GitHubLabel:
        """Ensure a label exists, creating it if necessary.

        A concurrent creation reported as "already exists" counts as success.
        """
        existing = await self.get_label(name)
        if existing:
            return existing

        if self.dry_run:
            logger.info(f"[DRY RUN] Would create label '{name}' with color {color}")
            return GitHubLabel(name=name, color=color, description=description)

        try:
            response = await self._request(
                "POST",
                f"/repos/{self.repo}/labels",
                json={"name": name, "color": color, "description": description},
            )
        except GitHubValidationError as e:
            if not e.already_exists:
                raise
            return GitHubLabel(name=name, color=color, description=description)

        data = response.json()
        return GitHubLabel(
            name=data["name"],
            color=data["color"],
            description=data.get("description") or "",
        )

    # =========================================================================
    # Project Board Operations (GraphQL)
    # =========================================================================

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object.

        GraphQL reports rate limits inside a 200 response, so RATE_LIMITED
        errors are retried here with the same backoff as ``_request``.

        Raises:
            GitHubRateLimitError: If GitHub still reports RATE_LIMITED after retries.
            GitHubClientError: If the response carries any other errors.
        """
        backoff = self.initial_backoff

        for attempt in range(self.max_retries):
            response = await self._request(
                "POST",
                GITHUB_GRAPHQL_PATH,
                json={"query": query, "variables": variables or {}},
            )
            payload = response.json()
            errors = payload.get("errors") or []
            if not errors:
                return payload.get("data") or {}

            messages = "; ".join(str(err.get("message", err)) for err in errors)
            if not any(err.get("type") == "RATE_LIMITED" for err in errors):
                raise GitHubClientError(f"GraphQL error: {messages}")
            if attempt < self.max_retries - 1:
                wait_time = _retry_wait(None, backoff, attempt)
                logger.warning(
                    f"GraphQL rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(wait_time)
                continue
            raise GitHubRateLimitError(f"GraphQL rate limit: {messages}")

        raise GitHubClientError("Max retries exceeded")

    async def find_project_board(self, number: int | None = None) -> ProjectBoard | None:
        """Find the project board for this repository.

        Args:
            number: Explicit board number owned by the repository owner.
                When None, the first board linked to the repository is used.

        Returns:
            ProjectBoard if one is found, None otherwise.
        """
        owner, name = self.repo.split("/", 1)
        if number is not None:
            data = await self.graphql(FIND_OWNER_BOARD_QUERY, {"owner": owner, "number": number})
            board = (data.get("repositoryOwner") or {}).get("projectV2")
        else:
            data = await self.graphql(FIND_REPO_BOARD_QUERY, {"owner": owner, "name": name})
            nodes = ((data.get("repository") or {}).get("projectsV2") or {}).get("nodes") or []
            board = nodes[0] if nodes else None

        if not board:
            return None
        return ProjectBoard(id=board["id"], number=board["number"], title=board["title"], url=board.get("url", ""))

    async def get_board_fields(self, project_id: str) -> dict[str, BoardField]:
        """Get single-select fields of a board, keyed by lowercased field name."""
        data = await self.graphql(BOARD_FIELDS_QUERY, {"projectId": project_id})
        nodes = (((data.get("node") or {}).get("fields")) or {}).get("nodes") or []
        fields: dict[str, BoardField] = {}
        for node in nodes:
            if not node or "options" not in node:
                continue
            fields[node["name"].lower()] = BoardField(
                id=node["id"],
                name=node["name"],
                options={opt["name"].lower(): opt["id"] for opt in node["options"]},
            )
        return fields

    async def add_item_to_board(self, project_id: str, content_id: str) -> str:
        """Add an issue (by node id) to a board. Returns the board item id.

        GitHub returns the existing item when the issue is already on the
        board, so repeating the call is harmless.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add {content_id} to board {project_id}")
            return ""

        data = await self.graphql(ADD_BOARD_ITEM_MUTATION, {"projectId": project_id, "contentId": content_id})
        return data["addProjectV2ItemById"]["item"]["id"]

    async def update_board_item_field(
        self,
        project_id: str,
        item_id: str,
        field_id: str,
        option_id: str,
    ) -> None:
        """Set a single-select field value on a board item."""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would set field {field_id} on item {item_id}")
            return

        await self.graphql(
            UPDATE_BOARD_FIELD_MUTATION,
            {"projectId": project_id, "itemId": item_id, "fieldId": field_id, "optionId": option_id},
        )


FIND_REPO_BOARD_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    projectsV2(first: 10) { nodes { id number title url } }
  }
}
"""

FIND_OWNER_BOARD_QUERY = """
query($owner: String!, $number: Int!) {
  repositoryOwner(login: $owner) {
    ... on User { projectV2(number: $number) { id number title url } }
    ... on Organization { projectV2(number: $number) { id number title url } }
  }
}
"""

BOARD_FIELDS_QUERY = """
query($projectId: ID!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      fields(first: 50) {
        nodes { ... on ProjectV2SingleSelectField { id name options { id name } } }
      }
    }
  }
}
"""

ADD_BOARD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) { item { id } }
}
"""

UPDATE_BOARD_FIELD_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(
    input: {projectId: $projectId, itemId: $itemId, fieldId: $fieldId, value: {singleSelectOptionId: $optionId}}
  ) { projectV2Item { id } }
}
"""
