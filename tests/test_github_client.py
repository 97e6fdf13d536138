"""Tests for the GitHub API client.

Tests cover:
- GitHubClient: auth, context management, retries and error mapping
- Issue, sub-issue, label and project board operations
- Dry-run mode
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, call, patch

import httpx
import pytest

from powerlevel.sync.github_client import (
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubValidationError,
)


def _response(status_code: int, json_data: object = None, headers: dict[str, str] | None = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.json = MagicMock(return_value=json_data)
    return response


# =============================================================================
# Construction
# =============================================================================


class TestGitHubClientAuth:
    """Test GitHub client authentication."""

    def test_init_with_token_param(self) -> None:
        """Test initialization with explicit token."""
        client = GitHubClient("owner/repo", token="test-token")
        assert client._token == "test-token"
        assert client.repo == "owner/repo"
        assert client.owner == "owner"

    def test_init_with_env_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test initialization with GITHUB_TOKEN env var."""
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        client = GitHubClient("owner/repo")
        assert client._token == "env-token"

    def test_init_missing_token_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that missing token raises GitHubAuthError."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with pytest.raises(GitHubAuthError, match="No GitHub token provided"):
            GitHubClient("owner/repo")

    def test_max_retries_at_least_one(self) -> None:
        """Test that retry count never drops below a single attempt."""
        assert GitHubClient("owner/repo", token="t", max_retries=0).max_retries == 1


class TestGitHubClientContext:
    """Test GitHub client context manager."""

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self) -> None:
        """Test async context manager creates and closes client."""
        client = GitHubClient("owner/repo", token="test")

        assert client._client is None

        async with client:
            assert client._client is not None
            assert isinstance(client._client, httpx.AsyncClient)

        assert client._client is None

    def test_client_property_outside_context_raises(self) -> None:
        """Test accessing client outside context raises RuntimeError."""
        client = GitHubClient("owner/repo", token="test")
        with pytest.raises(RuntimeError, match="must be used as async context manager"):
            _ = client.client


# =============================================================================
# Request handling
# =============================================================================


class TestGitHubClientErrorHandling:
    """Test GitHub client error handling."""

    @pytest.mark.asyncio
    async def test_auth_error_401(self) -> None:
        """Test 401 response raises GitHubAuthError."""
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(401)

            client = GitHubClient("owner/repo", token="bad-token")
            async with client:
                with pytest.raises(GitHubAuthError, match="authentication failed"):
                    await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_not_found_404(self) -> None:
        """Test 404 response raises GitHubNotFoundError."""
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(404)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubNotFoundError, match="not found"):
                    await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self) -> None:
        """Test that a 500 raises immediately without retrying."""
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(500, text="oops")

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubClientError, match="500"):
                    await client._request("GET", "/test")

            assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_403(self) -> None:
        """Test rate limit response raises GitHubRateLimitError after retries."""
        headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1234567890"}

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_request.return_value = _response(403, headers=headers)

            client = GitHubClient("owner/repo", token="test", max_retries=3, initial_backoff=1.0)
            async with client:
                with pytest.raises(GitHubRateLimitError, match="rate limit") as exc_info:
                    await client._request("GET", "/test")

            assert exc_info.value.reset_at == 1234567890
            assert mock_request.call_count == 3
            assert mock_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_secondary_rate_limit_honors_retry_after(self) -> None:
        """Test that Retry-After sets the wait and the retry succeeds."""
        limited = _response(403, headers={"Retry-After": "7"}, text="You have exceeded a secondary rate limit")
        ok = _response(200, json_data={"ok": True})

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_request.side_effect = [limited, ok]

            client = GitHubClient("owner/repo", token="test")
            async with client:
                response = await client._request("GET", "/test")

            assert response is ok
            mock_sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_429_is_rate_limit(self) -> None:
        """Test that 429 responses are retried."""
        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_request.side_effect = [_response(429), _response(200, json_data={})]

            client = GitHubClient("owner/repo", token="test")
            async with client:
                await client._request("GET", "/test")

            assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self) -> None:
        """Test that timeouts are retried and then surfaced as GitHubClientError."""
        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_request.side_effect = httpx.ReadTimeout("slow")

            client = GitHubClient("owner/repo", token="test", max_retries=2)
            async with client:
                with pytest.raises(GitHubClientError, match="timeout after 2 attempts"):
                    await client._request("GET", "/test")

            assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_connection_error_recovers(self) -> None:
        """Test that a transient network error is retried."""
        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock),
        ):
            mock_request.side_effect = [httpx.ConnectError("reset"), _response(200, json_data={})]

            client = GitHubClient("owner/repo", token="test")
            async with client:
                await client._request("GET", "/test")

            assert mock_request.call_count == 2


# =============================================================================
# Issue operations
# =============================================================================


class TestGitHubClientIssues:
    """Test issue operations."""

    @pytest.mark.asyncio
    async def test_get_issue(self) -> None:
        """Test fetching a single issue."""
        payload = {
            "id": 9001,
            "node_id": "I_abc",
            "number": 42,
            "title": "Test Issue",
            "state": "open",
            "labels": [{"name": "type/epic"}, {"name": "status/planning"}],
            "html_url": "https://github.com/owner/repo/issues/42",
            "body": None,
        }

        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: payload)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                issue = await client.get_issue(42)

            mock_request.assert_called_once_with("GET", "/repos/owner/repo/issues/42")
            assert issue.number == 42
            assert issue.labels == ["type/epic", "status/planning"]
            assert issue.url == "https://github.com/owner/repo/issues/42"
            assert issue.body == ""
            assert issue.id == 9001
            assert issue.node_id == "I_abc"

    @pytest.mark.asyncio
    async def test_update_issue_single_patch(self) -> None:
        """Test that body and labels go out in one PATCH."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: {"number": 5, "title": "E", "state": "open"})

            client = GitHubClient("owner/repo", token="test")
            async with client:
                await client.update_issue(5, body="## Goal", labels=["status/review"])

            mock_request.assert_called_once_with(
                "PATCH",
                "/repos/owner/repo/issues/5",
                json={"body": "## Goal", "labels": ["status/review"]},
            )

    @pytest.mark.asyncio
    async def test_update_issue_nothing_to_send(self) -> None:
        """Test that an empty update makes no request."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            client = GitHubClient("owner/repo", token="test")
            async with client:
                assert await client.update_issue(5) is None
            mock_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_sub_issue_links_parent(self) -> None:
        """Test that a sub-issue is created then linked by REST id."""
        created = {"id": 777, "number": 124, "title": "Task 1: Build it", "state": "open"}

        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: created)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                issue = await client.create_sub_issue(123, "Task 1: Build it", "Build it", ["type/task"])

            assert issue.number == 124
            first, second = mock_request.call_args_list
            assert first.kwargs["json"]["body"].startswith("Part of #123")
            assert second == call("POST", "/repos/owner/repo/issues/123/sub_issues", json={"sub_issue_id": 777})

    @pytest.mark.asyncio
    async def test_add_sub_issue_already_linked(self) -> None:
        """Test that an existing link is treated as success."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = GitHubValidationError('{"errors":[{"code":"already_exists"}]}')

            client = GitHubClient("owner/repo", token="test")
            async with client:
                assert await client.add_sub_issue(123, 777) is True

    @pytest.mark.asyncio
    async def test_add_sub_issue_other_validation_error(self) -> None:
        """Test that other 422s propagate."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = GitHubValidationError("Validation Failed: invalid id")

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubValidationError):
                    await client.add_sub_issue(123, 777)

    @pytest.mark.asyncio
    async def test_close_issue_with_comment(self) -> None:
        """Test closing an issue with comment."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: {"id": 1, "number": 42, "title": "", "state": "closed"})

            client = GitHubClient("owner/repo", token="test")
            async with client:
                result = await client.close_issue(42, comment="Done!")

            assert result is True
            assert mock_request.call_count == 2
            assert mock_request.call_args_list[1] == call(
                "PATCH", "/repos/owner/repo/issues/42", json={"state": "closed"}
            )

    @pytest.mark.asyncio
    async def test_list_open_issues_skips_pull_requests(self) -> None:
        """Test listing open issues with a label filter."""
        page = [
            {"number": 1, "title": "Bug", "state": "open", "html_url": "u1"},
            {"number": 2, "title": "PR", "state": "open", "pull_request": {}},
        ]

        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: page)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                issues = await client.list_open_issues("org/other", label="epic")

            assert [i.number for i in issues] == [1]
            args, kwargs = mock_request.call_args
            assert args == ("GET", "/repos/org/other/issues")
            assert kwargs["params"]["labels"] == "epic"
            assert kwargs["params"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_list_open_issues_paginates(self) -> None:
        """Test that full pages trigger a request for the next page."""
        full = [{"number": n, "title": f"#{n}", "state": "open"} for n in range(1, 3)]

        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = [MagicMock(json=lambda: full), MagicMock(json=lambda: [])]

            client = GitHubClient("owner/repo", token="test")
            async with client:
                issues = await client.list_open_issues(limit=2)

            assert len(issues) == 2
            assert mock_request.call_count == 1


class TestGitHubClientDryRun:
    """Test dry-run mode."""

    @pytest.mark.asyncio
    async def test_writes_skipped(self) -> None:
        """Test that dry run mode logs but doesn't execute writes."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            client = GitHubClient("owner/repo", token="test", dry_run=True)
            async with client:
                issue = await client.create_issue("Epic", "body", ["type/epic"])
                await client.update_issue(1, body="x")
                await client.add_comment(1, "hello")
                assert await client.close_issue(1) is True
                await client.add_item_to_board("P_1", "I_1")

            assert issue.number == 0
            mock_request.assert_not_called()


# =============================================================================
# Labels and project boards
# =============================================================================


class TestGitHubClientLabels:
    """Test label operations."""

    @pytest.mark.asyncio
    async def test_ensure_label_already_exists(self) -> None:
        """Test that a label creation conflict counts as success."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.side_effect = [
                GitHubNotFoundError("Resource not found: /repos/owner/repo/labels/type/epic"),
                GitHubValidationError('{"errors":[{"code":"already_exists"}]}'),
            ]

            client = GitHubClient("owner/repo", token="test")
            async with client:
                label = await client.ensure_label("type/epic", "5319e7", "Epic issue")

            assert label.name == "type/epic"
            assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_ensure_label_existing_not_recreated(self) -> None:
        """Test that an existing label is returned without a POST."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: {"name": "type/epic", "color": "5319e7"})

            client = GitHubClient("owner/repo", token="test")
            async with client:
                label = await client.ensure_label("type/epic", "5319e7")

            assert label.color == "5319e7"
            mock_request.assert_called_once()


class TestGitHubClientBoards:
    """Test project board operations."""

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self) -> None:
        """Test that GraphQL error payloads raise GitHubClientError."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: {"errors": [{"message": "bad field"}]})

            client = GitHubClient("owner/repo", token="test")
            async with client:
                with pytest.raises(GitHubClientError, match="bad field"):
                    await client.graphql("query { viewer { login } }")

            mock_request.assert_called_once()

    @pytest.mark.asyncio
    async def test_graphql_rate_limit_retried(self) -> None:
        """Test that a RATE_LIMITED payload is retried with backoff and then succeeds."""
        limited = _response(200, json_data={"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded"}]})
        ok = _response(200, json_data={"data": {"viewer": {"login": "bot"}}})

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_request.side_effect = [limited, ok]

            client = GitHubClient("owner/repo", token="test", max_retries=3, initial_backoff=1.0)
            async with client:
                data = await client.graphql("query { viewer { login } }")

            assert data == {"viewer": {"login": "bot"}}
            assert mock_request.call_count == 2
            assert mock_sleep.await_args_list == [call(1.0)]

    @pytest.mark.asyncio
    async def test_graphql_rate_limit_exhausted(self) -> None:
        """Test that a persistent RATE_LIMITED payload raises after max retries."""
        limited = _response(200, json_data={"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded"}]})

        with (
            patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request,
            patch("powerlevel.sync.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            mock_request.return_value = limited

            client = GitHubClient("owner/repo", token="test", max_retries=3, initial_backoff=1.0)
            async with client:
                with pytest.raises(GitHubRateLimitError, match="GraphQL rate limit"):
                    await client.graphql("query { viewer { login } }")

            assert mock_request.call_count == 3
            assert mock_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_find_repo_board(self) -> None:
        """Test detecting the first board linked to the repository."""
        data = {
            "data": {
                "repository": {
                    "projectsV2": {"nodes": [{"id": "PVT_1", "number": 3, "title": "Roadmap", "url": "https://x"}]}
                }
            }
        }
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: data)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                board = await client.find_project_board()

            assert board is not None
            assert (board.id, board.number, board.title) == ("PVT_1", 3, "Roadmap")

    @pytest.mark.asyncio
    async def test_no_board(self) -> None:
        """Test that a repository without boards returns None."""
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: {"data": {"repository": {"projectsV2": {"nodes": []}}}})

            client = GitHubClient("owner/repo", token="test")
            async with client:
                assert await client.find_project_board() is None

    @pytest.mark.asyncio
    async def test_board_fields_keyed_by_lowercase(self) -> None:
        """Test that single-select fields are indexed case-insensitively."""
        data = {
            "data": {
                "node": {
                    "fields": {
                        "nodes": [
                            {"id": "F_title", "name": "Title"},
                            {
                                "id": "F_status",
                                "name": "Status",
                                "options": [{"id": "O_todo", "name": "Todo"}, {"id": "O_done", "name": "Done"}],
                            },
                        ]
                    }
                }
            }
        }
        with patch.object(GitHubClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = MagicMock(json=lambda: data)

            client = GitHubClient("owner/repo", token="test")
            async with client:
                fields = await client.get_board_fields("PVT_1")

            assert list(fields) == ["status"]
            assert fields["status"].option_id("done") == "O_done"
