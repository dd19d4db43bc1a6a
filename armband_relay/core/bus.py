from __future__ import annotations

"""
In-process event bus and the outbound envelope.

The device client publishes raw armband events on an EventBus; the relay
controller subscribes to it. Normalized telemetry leaves the relay as
OutboundEnvelope values handed to the relay sink.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Mapping, Tuple, TypeVar

log = logging.getLogger(__name__)

BROADCAST = "*"

E = TypeVar("E")


@dataclass(frozen=True)
class OutboundEnvelope:
    payload: Mapping[str, Any]
    devices: Tuple[str, ...] = (BROADCAST,)

    @property
    def channel(self) -> str:
        # Canonical payloads are keyed by their channel name first
        return next(iter(self.payload), "")

    def to_message(self) -> Dict[str, Any]:
        return {"devices": list(self.devices), "payload": dict(self.payload)}


RelaySink = Callable[[OutboundEnvelope], None]


class EventBus(Generic[E]):
    """
    In-process pub/sub.
    - subscribe() returns an unsubscribe function
    - publish() calls subscribers (safe snapshot)
    """

    def __init__(self) -> None:
        self._subs: List[Callable[[E], None]] = []

    def subscribe(self, fn: Callable[[E], None]) -> Callable[[], None]:
        self._subs.append(fn)

        def unsubscribe() -> None:
            try:
                self._subs.remove(fn)
            except ValueError:
                pass

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, ev: E) -> None:
        # Snapshot to avoid modification during iteration
        subs = list(self._subs)
        for fn in subs:
            try:
                fn(ev)
            except Exception:
                # Do not let subscriber failures kill the reader
                log.exception("Event subscriber %r failed", fn)
