# state.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import InvalidTransitionError
from .model import FailureKind, RetryPolicy


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


@dataclass
class JobRun:
    """
    Run state of one job as a CI backend observes it.

        Pending -> Running -> Succeeded
                           -> Failed --(retryable kind, retries left)--> Pending
        any non-terminal   -> Cancelled

    A non-retryable failure goes terminal without consuming a retry.
    """
    job_id: str
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    state: JobState = JobState.PENDING
    attempts: int = 0
    retries_used: int = 0
    failures: List[Tuple[FailureKind, str]] = field(default_factory=list)
    reason: Optional[str] = None

    def _require(self, event: str, *allowed: JobState) -> None:
        if self.state not in allowed:
            raise InvalidTransitionError(self.job_id, self.state.value, event)

    def start(self) -> JobState:
        self._require("start", JobState.PENDING)
        self.state = JobState.RUNNING
        self.attempts += 1
        return self.state

    def succeed(self) -> JobState:
        self._require("succeed", JobState.RUNNING)
        self.state = JobState.SUCCEEDED
        return self.state

    def fail(self, kind: FailureKind, message: str = "") -> JobState:
        """Record a failed attempt; returns PENDING when a retry is due."""
        self._require("fail", JobState.RUNNING)
        kind = FailureKind(kind)
        self.failures.append((kind, message))
        if self.retry.allows(kind) and self.retries_used < self.retry.max_retries:
            self.retries_used += 1
            self.state = JobState.PENDING
        else:
            self.state = JobState.FAILED
            self.reason = message or kind.value
        return self.state

    def cancel(self, reason: str = "cancelled") -> JobState:
        if self.state.terminal:
            raise InvalidTransitionError(self.job_id, self.state.value, "cancel")
        self.state = JobState.CANCELLED
        self.reason = reason
        return self.state

    @property
    def last_failure(self) -> Optional[FailureKind]:
        return self.failures[-1][0] if self.failures else None
