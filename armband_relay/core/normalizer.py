from __future__ import annotations

"""
Raw armband event -> canonical outbound payload.

Lifecycle and pose events always pass; the four sensor streams pass only
when enabled in the active Options. Orientation readings are shifted by the
current orientation offset.
"""

import logging
from typing import Any, Callable, Dict, Optional

from armband_relay.config import Options
from armband_relay.core.bus import OutboundEnvelope
from armband_relay.device.models import Quaternion
from armband_relay.device.myo_client import MyoEvent, MyoEventType

log = logging.getLogger(__name__)

CONNECT_VIBRATION = "short"

_LIFECYCLE_EVENTS = {
    MyoEventType.CONNECTED,
    MyoEventType.DISCONNECTED,
    MyoEventType.ARM_SYNCED,
    MyoEventType.ARM_UNSYNCED,
    MyoEventType.LOCKED,
    MyoEventType.UNLOCKED,
}

OffsetSource = Callable[[], Optional[Quaternion]]


class EventNormalizer:
    def __init__(self, device: Any, offset_source: OffsetSource) -> None:
        self._device = device
        self._offset_source = offset_source

    def normalize(self, ev: MyoEvent, options: Options) -> Optional[OutboundEnvelope]:
        """Return the envelope for `ev`, or None when it is filtered out or unknown."""
        if ev.myo != options.device_id:
            return None

        payload = self._payload(ev, options)
        if payload is None:
            return None
        return OutboundEnvelope(payload=payload)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _payload(self, ev: MyoEvent, options: Options) -> Optional[Dict[str, Any]]:
        streams = options.streams

        if ev.type in _LIFECYCLE_EVENTS:
            if ev.type == MyoEventType.CONNECTED:
                self._greet()
            return {"event": ev.type.value}

        if ev.type == MyoEventType.POSE:
            return {"pose": ev.pose, "edge": ev.edge}

        if ev.type == MyoEventType.RSSI:
            return {"bluetoothStrength": ev.value}

        if ev.type == MyoEventType.BATTERY_LEVEL:
            return {"batteryLevel": ev.value}

        if ev.type == MyoEventType.ACCELEROMETER:
            if not streams.accelerometer or ev.accelerometer is None:
                return None
            return {"accelerometer": ev.accelerometer.as_dict()}

        if ev.type == MyoEventType.GYROSCOPE:
            if not streams.gyroscope or ev.gyroscope is None:
                return None
            return {"gyroscope": ev.gyroscope.as_dict()}

        if ev.type == MyoEventType.ORIENTATION:
            if not streams.orientation or ev.quaternion is None:
                return None
            return {"orientation": self._adjusted(ev.quaternion).as_dict()}

        if ev.type == MyoEventType.IMU:
            if not streams.imu or None in (ev.quaternion, ev.accelerometer, ev.gyroscope):
                return None
            return {
                "imu": {
                    "orientation": self._adjusted(ev.quaternion).as_dict(),
                    "accelerometer": ev.accelerometer.as_dict(),
                    "gyroscope": ev.gyroscope.as_dict(),
                }
            }

        return None

    def _adjusted(self, quat: Quaternion) -> Quaternion:
        # Single read per event: a concurrent zeroOrientation swaps the reference
        offset = self._offset_source()
        return quat if offset is None else quat + offset

    def _greet(self) -> None:
        """Haptic feedback on connect, then keep the armband unlocked for poses."""
        # Feedback errors should not hold up telemetry, nor each other
        try:
            self._device.vibrate(CONNECT_VIBRATION)
        except Exception as e:
            log.warning("Connect vibration failed: %s", e)
        try:
            self._device.unlock()
        except Exception as e:
            log.warning("Connect unlock failed: %s", e)
