"""
Cancellation -- request deadlines for long-running reads.

Report builders page through the ledger and call ``raise_if_cancelled()`` at
every page boundary. Writes never consult a token: a posting either commits
whole or rolls back.
"""

from datetime import datetime, timedelta

from hotel_kernel.domain.clock import Clock
from hotel_kernel.exceptions import OperationCancelledError


class CancellationToken:
    """Deadline plus an explicit cancel flag, checked cooperatively."""

    def __init__(self, clock: Clock, deadline: datetime | None = None):
        self._clock = clock
        self._deadline = deadline
        self._cancelled = False

    @classmethod
    def with_timeout(cls, clock: Clock, seconds: float) -> "CancellationToken":
        return cls(clock, clock.now() + timedelta(seconds=seconds))

    @classmethod
    def none(cls, clock: Clock) -> "CancellationToken":
        return cls(clock)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and self._clock.now() >= self._deadline

    def raise_if_cancelled(self, operation: str) -> None:
        if self._cancelled:
            raise OperationCancelledError(operation, "cancelled by caller")
        if self._deadline is not None and self._clock.now() >= self._deadline:
            raise OperationCancelledError(operation, "deadline exceeded")
