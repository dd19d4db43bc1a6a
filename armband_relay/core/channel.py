from __future__ import annotations

"""
Per-channel rate limiter.

A Channel emits the first value of a burst immediately, then holds at most
one pending value (last write wins) until its cooldown expires, at which
point the pending value is flushed and a new cooldown starts.

    IDLE --publish--> emit, COOLDOWN
    COOLDOWN --publish--> PENDING (slot overwritten)
    PENDING --publish--> PENDING (slot overwritten)
    COOLDOWN --expire--> IDLE
    PENDING --expire--> emit, COOLDOWN
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelState(str, Enum):
    IDLE = "idle"
    COOLDOWN = "cooldown"
    PENDING = "pending"
    CANCELLED = "cancelled"


class Channel(Generic[T]):
    def __init__(
        self,
        name: str,
        interval_ms: Optional[int],
        emit: Callable[[T], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.name = name
        self._interval_s = (interval_ms or 0) / 1000.0
        self._emit = emit
        self._loop = loop

        self._state = ChannelState.IDLE
        self._pending: Optional[T] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def interval_ms(self) -> int:
        return int(round(self._interval_s * 1000))

    def publish(self, value: T) -> None:
        if self._state == ChannelState.CANCELLED:
            return

        # No interval: pass-through
        if self._interval_s <= 0:
            self._emit(value)
            return

        if self._state == ChannelState.IDLE:
            self._start_cooldown()
            self._emit(value)
            return

        self._pending = value
        self._state = ChannelState.PENDING

    def cancel(self) -> None:
        """Drop any pending value and stop the cooldown timer for good."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        self._state = ChannelState.CANCELLED

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _start_cooldown(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._state = ChannelState.COOLDOWN
        self._timer = loop.call_later(self._interval_s, self._on_cooldown_expired)

    def _on_cooldown_expired(self) -> None:
        self._timer = None
        if self._state == ChannelState.PENDING:
            value = self._pending
            self._pending = None
            self._start_cooldown()
            self._emit(value)
        elif self._state == ChannelState.COOLDOWN:
            self._state = ChannelState.IDLE

    def __repr__(self) -> str:
        return f"Channel({self.name!r}, interval_ms={self.interval_ms}, state={self._state.value})"
