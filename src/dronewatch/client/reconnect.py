"""Observer reconnection state machine.

    DISCONNECTED → CONNECTING → CONNECTED
    CONNECTING / CONNECTED → DISCONNECTED   (close or error)
    DISCONNECTED → FAILED                   (attempt budget spent)

Every connection attempt increments the attempt counter before it starts;
a successful connect resets it.  After a close or error the controller
schedules exactly one retry after a fixed delay while the counter is below
the budget, and otherwise parks in ``FAILED`` until :meth:`reconnect` is
called.  At most one retry is ever pending: scheduling cancels the
previous timer handle first.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from dronewatch.errors import ReconnectExhaustedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class ReconnectController:
    """Drives *connect* with bounded automatic retry.

    Parameters:
        connect: Coroutine function that opens the connection or raises.
        delay: Seconds between a failure and the next attempt.
        max_attempts: Consecutive attempts allowed before ``FAILED``.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        *,
        delay: float = 5.0,
        max_attempts: int = 5,
    ) -> None:
        self._connect = connect
        self._delay = delay
        self._max_attempts = max_attempts
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._pending: asyncio.TimerHandle | None = None
        self._attempt_task: asyncio.Task[None] | None = None
        self._closed = False
        self._failed = asyncio.Event()
        self._listeners: list[Callable[[ConnectionState], None]] = []

    # -- Introspection -------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        """Consecutive attempts since the last successful connect."""
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def has_pending_retry(self) -> bool:
        return self._pending is not None

    def add_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback invoked on every state transition."""
        self._listeners.append(callback)

    # -- Triggers ------------------------------------------------------------

    async def start(self) -> None:
        """First connection attempt."""
        self._closed = False
        await self._attempt()

    async def reconnect(self) -> None:
        """Manual trigger: reset the budget and try right away.

        This is the only way out of ``FAILED``.
        """
        logger.info("Manual reconnect requested")
        self._cancel_pending()
        self._closed = False
        self._attempts = 0
        self._failed.clear()
        await self._attempt()

    def notify_connected(self) -> None:
        self._cancel_pending()
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)

    def notify_disconnected(self, exc: BaseException | None = None) -> None:
        """Report a close or error on the current connection."""
        if self._closed or self._state is ConnectionState.FAILED:
            return
        if exc is not None:
            logger.warning("Connection lost: %s", exc)
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule()

    async def wait_failed(self) -> None:
        """Block until the controller gives up; raises :class:`ReconnectExhaustedError`."""
        await self._failed.wait()
        raise ReconnectExhaustedError(self._attempts)

    async def close(self) -> None:
        """Stop for good: cancel any pending retry or in-flight attempt."""
        self._closed = True
        self._cancel_pending()
        task = self._attempt_task
        self._attempt_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)

    # -- Internals -------------------------------------------------------------

    async def _attempt(self) -> None:
        if self._closed:
            return
        self._attempts += 1
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting (attempt %d/%d)", self._attempts, self._max_attempts)
        try:
            await self._connect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Connection attempt %d failed: %s", self._attempts, exc)
            self.notify_disconnected()
            return
        self.notify_connected()

    def _schedule(self) -> None:
        self._cancel_pending()
        if self._attempts >= self._max_attempts:
            logger.error(
                "Maximum reconnection attempts (%d) reached — manual reconnect required",
                self._max_attempts,
            )
            self._set_state(ConnectionState.FAILED)
            self._failed.set()
            return
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self._delay, self._fire)
        logger.info("Scheduling reconnect in %.1f seconds", self._delay)

    def _fire(self) -> None:
        self._pending = None
        self._attempt_task = asyncio.ensure_future(self._attempt())

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        for callback in self._listeners:
            try:
                callback(state)
            except Exception:
                logger.warning("State listener %s failed", callback, exc_info=True)
