"""
Cancellation and deadline control.

A CancelToken is threaded through every suspension point of an operation
chain (backoff sleeps, inter-provider pauses, outbound calls) so a caller
can bound how long the whole chain may run.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_relay.errors import OperationCancelledError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Cancellation token with an optional overall deadline.

    Example:
        >>> token = CancelToken(timeout=90.0)
        >>> result = await orchestrator.run(request, providers, call, cancel_token=token)
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize cancellation token.

        Args:
            timeout: Optional deadline in seconds from now
        """
        self._state = CancelState()
        self._event = asyncio.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)
        self._event.set()
        return True

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested or the deadline passed."""
        if not self._state.cancelled and self._deadline is not None:
            if time.monotonic() >= self._deadline:
                self.cancel(CancelReason.TIMEOUT)
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancelled.

        Raises:
            OperationCancelledError: If cancellation was requested
        """
        if self.is_cancelled:
            raise self._cancelled_error()

    def _cancelled_error(self) -> OperationCancelledError:
        reason = self._state.reason
        return OperationCancelledError(
            "Operation deadline exceeded"
            if reason == CancelReason.TIMEOUT
            else "Operation cancelled",
            reason=reason.value if reason else None,
        )

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The awaited work is cancelled if the token fires or the deadline
        passes before it completes.

        Raises:
            OperationCancelledError: If cancelled before completion
        """
        task = asyncio.ensure_future(awaitable)
        if self.is_cancelled:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise self._cancelled_error()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task in done:
            return task.result()

        if not done:
            self.cancel(CancelReason.TIMEOUT)
        raise self._cancelled_error()

    async def sleep(self, delay: float) -> None:
        """Suspend for ``delay`` seconds, waking early on cancellation."""
        await self.run(asyncio.sleep(delay))


async def guarded(awaitable: Awaitable[T], token: CancelToken | None) -> T:
    """Await ``awaitable`` under ``token`` when one is given."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)


async def pause(delay: float, token: CancelToken | None) -> None:
    """Sleep for ``delay`` seconds under ``token`` when one is given."""
    if delay <= 0:
        if token is not None:
            token.raise_if_cancelled()
        return
    await guarded(asyncio.sleep(delay), token)
