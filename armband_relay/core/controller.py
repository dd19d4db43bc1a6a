from __future__ import annotations

"""
RelayController
---------------

Core of the armband relay:
- Owns the active Options and swaps them wholesale on reconfiguration.
- Listens to raw armband events (via the device client's EventBus).
- Normalizes them and pushes sensor streams through one rate-limited
  Channel each; everything else goes to the relay sink immediately.
- Routes inbound bus commands to the CommandDispatcher.
"""

import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from armband_relay.config import STREAM_NAMES, Options
from armband_relay.core.bus import EventBus, OutboundEnvelope, RelaySink
from armband_relay.core.channel import Channel
from armband_relay.core.dispatcher import CommandDispatcher
from armband_relay.core.normalizer import EventNormalizer
from armband_relay.device.myo_client import MyoEvent

log = logging.getLogger(__name__)


class RelayController:
    def __init__(
        self,
        device: Any,
        sink: RelaySink,
        options: Optional[Options] = None,
        bus: Optional[EventBus[MyoEvent]] = None,
    ) -> None:
        self._device = device
        self._sink = sink
        self._bus = bus if bus is not None else device.bus

        self.dispatcher = CommandDispatcher(device)
        self._normalizer = EventNormalizer(
            device, offset_source=lambda: self.dispatcher.orientation_offset
        )

        self._options: Optional[Options] = None
        self._channels: Dict[str, Channel[OutboundEnvelope]] = {}
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

        self._install(options or Options())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def options(self) -> Options:
        return self._options

    @property
    def channels(self) -> Mapping[str, Channel[OutboundEnvelope]]:
        return MappingProxyType(self._channels)

    def apply_options(self, raw: Optional[Mapping[str, Any]]) -> Options:
        """
        Replace the active Options from a configuration payload.

        Channels are rebuilt from scratch: pending values of the old
        generation are dropped and their cooldown timers cancelled.
        """
        options = Options.from_config(raw, fallback=self._options)
        self._install(options)
        log.info(
            "Options applied: device=%s interval=%sms streams=%s",
            options.device_id,
            options.interval_ms,
            [name for name in STREAM_NAMES if options.streams.enabled(name)],
        )
        return options

    def handle_command(self, message: Any) -> bool:
        return self.dispatcher.dispatch(message)

    def close(self) -> None:
        self._teardown()
        self._generation += 1

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _install(self, options: Options) -> None:
        previous = self._options
        self._teardown()

        self._generation += 1
        generation = self._generation

        self._options = options
        self._channels = {
            name: Channel(name, options.interval_ms, self._emit) for name in STREAM_NAMES
        }
        self._unsubscribe = self._bus.subscribe(
            lambda ev: self._on_device_event(ev, generation)
        )

        if previous is not None and (
            previous.ip_address != options.ip_address
            or previous.device_id != options.device_id
        ):
            retarget = getattr(self._device, "retarget", None)
            if callable(retarget):
                retarget(options.ip_address, options.device_id)

    def _teardown(self) -> None:
        for channel in self._channels.values():
            channel.cancel()
        self._channels = {}
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_device_event(self, ev: MyoEvent, generation: int) -> None:
        # A handler from a replaced generation must stay silent
        if generation != self._generation:
            return

        envelope = self._normalizer.normalize(ev, self._options)
        if envelope is None:
            return

        channel = self._channels.get(envelope.channel)
        if channel is None:
            self._emit(envelope)
        else:
            channel.publish(envelope)

    def _emit(self, envelope: OutboundEnvelope) -> None:
        try:
            self._sink(envelope)
        except Exception:
            # Sink errors should not stall the channels
            log.exception("Relay sink failed for %s", envelope.channel)
