"""
Integration Retry Utilities

Provides retry mechanisms and result bookkeeping for the Jira sync.
Handles transient failures, rate limiting, and partial sync recovery.
"""
import asyncio
import logging
from typing import Any, Callable, TypeVar, Optional, List, Dict
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SyncResult:
    """Per-change outcome of a sync execution."""

    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []
        self.soft_deleted: List[Dict[str, Any]] = []
        self.failed: List[Dict[str, Any]] = []
        self.skipped: List[Dict[str, Any]] = []
        self.warnings: List[str] = []
        self.started_at: datetime = datetime.now(timezone.utc)
        self.ended_at: Optional[datetime] = None

    def add_created(self, change_id: str, ticket_id: int, remote_id: str):
        self.created.append({
            "change_id": change_id,
            "ticket_id": ticket_id,
            "remote_id": remote_id
        })

    def add_updated(self, change_id: str, ticket_id: int, remote_id: str, fields: List[str]):
        self.updated.append({
            "change_id": change_id,
            "ticket_id": ticket_id,
            "remote_id": remote_id,
            "fields": fields
        })

    def add_soft_deleted(self, change_id: str, remote_id: str):
        self.soft_deleted.append({
            "change_id": change_id,
            "remote_id": remote_id
        })

    def add_failed(self, change_id: str, ticket_id: int, change_type: str, error: str):
        self.failed.append({
            "change_id": change_id,
            "ticket_id": ticket_id,
            "change_type": change_type,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    def add_skipped(self, change_id: str, ticket_id: int, reason: str):
        self.skipped.append({
            "change_id": change_id,
            "ticket_id": ticket_id,
            "reason": reason
        })

    def add_warning(self, message: str):
        if message not in self.warnings:
            self.warnings.append(message)

    def finalize(self):
        self.ended_at = datetime.now(timezone.utc)

    @property
    def synced_count(self) -> int:
        return len(self.created) + len(self.updated) + len(self.soft_deleted)

    @property
    def is_success(self) -> bool:
        return len(self.failed) == 0

    @property
    def is_partial(self) -> bool:
        return len(self.failed) > 0 and self.synced_count > 0

    @property
    def status(self) -> str:
        return "success" if self.is_success else ("partial" if self.is_partial else "failed")

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "soft_deleted": len(self.soft_deleted),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "status": self.status,
            "duration_ms": int((self.ended_at - self.started_at).total_seconds() * 1000) if self.ended_at else None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced_count": self.synced_count,
            "created": self.created,
            "updated": self.updated,
            "soft_deleted": self.soft_deleted,
            "failed": self.failed,
            "skipped": self.skipped,
            "warnings": self.warnings,
            "summary": self.summary
        }


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error is retryable."""
    retryable_messages = [
        "timeout",
        "timed out",
        "rate limit",
        "too many requests",
        "503",
        "502",
        "504",
        "connection",
        "temporarily unavailable",
        "internal server error"
    ]

    error_str = str(error).lower()
    return any(msg in error_str for msg in retryable_messages)


async def retry_async(
    func: Callable[..., T],
    *args,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    retryable_exceptions: tuple = (Exception,),
    retry_on_message: bool = True,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    **kwargs
) -> T:
    """
    Retry an async function with exponential backoff.

    Exceptions listed in retryable_exceptions are always retried; any other
    exception type is retried only when retry_on_message is set and
    is_retryable_error() recognises it.
    An exception carrying a retry_after attribute (rate limiting) stretches
    the delay to that value, capped at max_delay.

    Raises:
        Last exception if all retries fail
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not isinstance(e, retryable_exceptions) and not (retry_on_message and is_retryable_error(e)):
                raise

            if attempt >= max_retries:
                if max_retries:
                    logger.error(f"All {max_retries} retries failed. Last error: {e}")
                raise

            if on_retry:
                on_retry(attempt + 1, e)

            wait = min(max(delay, getattr(e, "retry_after", 0) or 0), max_delay)
            logger.warning(
                f"Retry {attempt + 1}/{max_retries} after error: {e}. "
                f"Waiting {wait:.1f}s"
            )
            await asyncio.sleep(wait)
            delay = min(delay * backoff_factor, max_delay)


def format_user_friendly_error(error: Exception, provider: str = "Jira") -> str:
    """Convert technical error into user-friendly message."""
    error_str = str(error).lower()

    if "rate limit" in error_str or "too many requests" in error_str:
        return f"{provider} rate limit reached. Please wait a few minutes and try again."

    if "unauthorized" in error_str or "401" in error_str or "authentication" in error_str or "reconnect" in error_str:
        return f"Your {provider} connection has expired. Please reconnect in Settings."

    if "forbidden" in error_str or "403" in error_str or "permission" in error_str:
        return f"You don't have permission to perform this action in {provider}."

    if "not found" in error_str or "404" in error_str:
        return f"The {provider} project or resource was not found. Please check your settings."

    if any(x in error_str for x in ["500", "502", "503", "504", "internal server"]):
        return f"{provider} is temporarily unavailable. Please try again in a few minutes."

    if "timeout" in error_str or "timed out" in error_str:
        return f"Request to {provider} timed out. Please try again."

    if "connection" in error_str:
        return f"Could not connect to {provider}. Please check your internet connection."

    return f"An error occurred while syncing with {provider}: {str(error)[:100]}"
