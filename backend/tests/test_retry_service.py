"""
Tests for retry/backoff and the per-change sync result.
"""
import pytest
from unittest.mock import AsyncMock

from services.jira_service import JiraAPIError, RateLimitError, TransientJiraError
from services.retry_service import SyncResult, retry_async, format_user_friendly_error


class TestRetryAsync:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        func = AsyncMock(side_effect=[TransientJiraError("Jira API request timed out"), "ok"])

        result = await retry_async(
            func, "arg", max_retries=2, initial_delay=0, retryable_exceptions=(TransientJiraError,)
        )

        assert result == "ok"
        assert func.await_count == 2
        func.assert_awaited_with("arg")

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        func = AsyncMock(side_effect=JiraAPIError("Jira API error 400: bad field", status_code=400))

        with pytest.raises(JiraAPIError):
            await retry_async(
                func, max_retries=3, initial_delay=0,
                retryable_exceptions=(TransientJiraError,), retry_on_message=False
            )

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_retry_after(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr("services.retry_service.asyncio.sleep", fake_sleep)
        func = AsyncMock(side_effect=[RateLimitError("rate limit", retry_after=7), "ok"])

        await retry_async(func, max_retries=1, initial_delay=1.0, retryable_exceptions=(TransientJiraError,))

        assert sleeps == [7]

    @pytest.mark.asyncio
    async def test_gives_up_with_last_error(self):
        func = AsyncMock(side_effect=TransientJiraError("Jira API error 503: unavailable", status_code=503))

        with pytest.raises(TransientJiraError):
            await retry_async(func, max_retries=2, initial_delay=0, retryable_exceptions=(TransientJiraError,))

        assert func.await_count == 3


class TestSyncResult:

    def test_status_transitions(self):
        result = SyncResult()
        assert result.status == "success"

        result.add_failed("create-1", 1, "create", "boom")
        assert result.status == "failed"

        result.add_created("create-2", 2, "PROJ-1")
        assert result.status == "partial"
        assert result.synced_count == 1

    def test_warnings_are_deduplicated(self):
        result = SyncResult()
        result.add_warning("No subtask issue type")
        result.add_warning("No subtask issue type")

        assert result.warnings == ["No subtask issue type"]

    def test_summary_after_finalize(self):
        result = SyncResult()
        result.add_updated("update-1", 1, "PROJ-1", ["title"])
        result.add_soft_deleted("soft-delete-PROJ-2", "PROJ-2")
        result.add_skipped("create-3", 3, "Already synced")
        result.finalize()

        summary = result.to_dict()["summary"]
        assert summary["updated"] == 1
        assert summary["soft_deleted"] == 1
        assert summary["skipped"] == 1
        assert summary["duration_ms"] >= 0


class TestFormatUserFriendlyError:

    @pytest.mark.parametrize("message,expected", [
        ("Jira API rate limit exceeded", "rate limit"),
        ("Jira authentication failed. Please reconnect.", "reconnect"),
        ("Jira API error 403: forbidden", "permission"),
        ("Jira API error 503: unavailable", "temporarily unavailable"),
        ("Jira API request timed out", "timed out"),
    ])
    def test_messages(self, message, expected):
        assert expected in format_user_friendly_error(Exception(message))

    def test_unknown_error_is_truncated(self):
        message = format_user_friendly_error(Exception("x" * 500))
        assert message.startswith("An error occurred while syncing with Jira")
        assert len(message) < 200
