from __future__ import annotations

"""
Inbound bus command -> armband action.

    { command: { action: "vibrate" | "requestBluetoothStrength" | "zeroOrientation",
                 vibrationLength?: "short" | "medium" | "long" } }

Dispatch never raises: unknown actions, a disconnected armband and failing
actions are logged and dropped.
"""

import logging
from enum import Enum
from typing import Any, Mapping, Optional

from armband_relay.device.models import Quaternion
from armband_relay.device.myo_client import VIBRATION_LENGTHS, DeviceUnavailableError

log = logging.getLogger(__name__)

DEFAULT_VIBRATION = "short"


class CommandAction(str, Enum):
    VIBRATE = "vibrate"
    REQUEST_BLUETOOTH_STRENGTH = "requestBluetoothStrength"
    ZERO_ORIENTATION = "zeroOrientation"


class CommandDispatcher:
    def __init__(self, device: Any) -> None:
        self._device = device
        self._orientation_offset: Optional[Quaternion] = None

    @property
    def orientation_offset(self) -> Optional[Quaternion]:
        return self._orientation_offset

    def dispatch(self, message: Any) -> bool:
        """
        Run the command carried by `message`.

        Accepts the full bus message ({"command": {...}}) or the bare command
        object. Returns True when an armband action was issued.
        """
        command = _command_of(message)
        if command is None:
            log.debug("Ignoring message without command: %r", message)
            return False

        try:
            action = CommandAction(command.get("action"))
        except ValueError:
            log.debug("Ignoring unknown action %r", command.get("action"))
            return False

        if not getattr(self._device, "is_connected", False):
            log.info("Armband not connected, dropping %s", action.value)
            return False

        try:
            if action == CommandAction.VIBRATE:
                length = command.get("vibrationLength")
                if length not in VIBRATION_LENGTHS:
                    length = DEFAULT_VIBRATION
                self._device.vibrate(length)

            elif action == CommandAction.REQUEST_BLUETOOTH_STRENGTH:
                # value comes back later as an RSSI event
                self._device.request_bluetooth_strength()

            elif action == CommandAction.ZERO_ORIENTATION:
                reading = self._device.zero_orientation()
                if reading is None:
                    log.info("No orientation reading yet, offset unchanged")
                    return False
                self._orientation_offset = reading
                log.info("Orientation offset set to %s", reading)

        except DeviceUnavailableError as e:
            log.info("Armband unavailable for %s: %s", action.value, e)
            return False
        except Exception as e:
            log.warning("Armband action %s failed: %s", action.value, e)
            return False

        return True


def _command_of(message: Any) -> Optional[Mapping[str, Any]]:
    if not isinstance(message, Mapping):
        return None
    command = message.get("command", message)
    if not isinstance(command, Mapping) or "action" not in command:
        return None
    return command
