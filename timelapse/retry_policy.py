"""
Retry policy for per-point rendering.

Purely decisional: no I/O, no sleeping. The scheduler asks the policy
what state it is in and how long to wait; it does the waiting itself.

States:
    attempting(k)  -- attempt k (1-indexed) is about to run
    succeeded      -- the last attempt rendered
    exhausted      -- max_attempts failed; skip the point
"""

from __future__ import annotations

from dataclasses import dataclass


ATTEMPTING = "attempting"
SUCCEEDED = "succeeded"
EXHAUSTED = "exhausted"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


@dataclass(frozen=True)
class RetryState:
    status: str
    attempt: int

    @property
    def done(self) -> bool:
        return self.status != ATTEMPTING


@dataclass
class RetryPolicy:
    """Bounded attempts with exponential backoff between them."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY

    def start(self) -> RetryState:
        return RetryState(ATTEMPTING, 1)

    def on_success(self, state: RetryState) -> RetryState:
        return RetryState(SUCCEEDED, state.attempt)

    def on_failure(self, state: RetryState) -> RetryState:
        """Advance after a failed attempt; exhausted once the cap is reached."""
        if state.attempt >= self.max_attempts:
            return RetryState(EXHAUSTED, state.attempt)
        return RetryState(ATTEMPTING, state.attempt + 1)

    def backoff_delay(self, failed_attempt: int) -> float:
        """Wait after failed attempt k: base * 2^(k-1)."""
        return self.base_delay * (2 ** (failed_attempt - 1))


__all__ = [
    "ATTEMPTING",
    "SUCCEEDED",
    "EXHAUSTED",
    "RetryPolicy",
    "RetryState",
]
