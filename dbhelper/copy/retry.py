"""Failure classification and retry policy.

Transient failures (the server was unreachable, the connection dropped, a
timeout expired) are retried with exponential backoff. Fatal failures
(syntax errors, permission problems, constraint violations, missing
objects) are not: running the same command again would fail the same way.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from .models import DEFAULT_MAX_ATTEMPTS, FailureClass
from .runner import ToolResult

TRANSIENT_PATTERNS = (
    r"could not connect to server",
    r"connection to server .* failed",
    r"connection refused",
    r"connection reset",
    r"server closed the connection unexpectedly",
    r"terminating connection due to administrator command",
    r"the database system is starting up",
    r"the database system is shutting down",
    r"the database system is in recovery mode",
    r"too many clients already",
    r"remaining connection slots are reserved",
    r"could not receive data from server",
    r"could not send data to server",
    r"timeout expired",
    r"canceling statement due to statement timeout",
    r"deadlock detected",
    r"could not serialize access",
    r"is being accessed by other users",
)

_TRANSIENT_RE = re.compile("|".join(TRANSIENT_PATTERNS), re.IGNORECASE)


def classify_failure(result: ToolResult) -> FailureClass:
    """Classify a failed tool run as transient or fatal."""
    if result.timed_out:
        return FailureClass.TRANSIENT
    if result.returncode == 127:
        return FailureClass.FATAL
    if _TRANSIENT_RE.search(result.stderr or ""):
        return FailureClass.TRANSIENT
    return FailureClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff retry policy.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry, in seconds
        factor: Multiplier applied per retry
        max_delay: Upper bound for a single delay
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 60.0
    is_retryable: Callable[[FailureClass], bool] = field(
        default=lambda failure: failure == FailureClass.TRANSIENT, compare=False
    )

    def delay(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (1-based)."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    def should_retry(self, failure: FailureClass, attempt: int) -> bool:
        return attempt < self.max_attempts and self.is_retryable(failure)

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)
