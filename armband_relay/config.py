from __future__ import annotations
from dataclasses import dataclass, field, replace

import json
import logging
from typing import Any, Dict, Mapping, Optional

log = logging.getLogger(__name__)

DEFAULT_DEVICE_ID = 0
DEFAULT_INTERVAL_MS = 500
DEFAULT_IP_ADDRESS = "127.0.0.1"

STREAM_NAMES = ("accelerometer", "gyroscope", "orientation", "imu")


@dataclass(frozen=True)
class RelayConfig:
    # Socket.IO bus server
    socket_host: str = "0.0.0.0"
    socket_port: int = 5000

    # Myo Connect websocket
    myo_port: int = 10138
    myo_api_version: int = 3
    reconnect_backoff_s: float = 1.0
    open_timeout_s: float = 5.0

    # Initial runtime options (see Options.from_config)
    options_file: str = "relay_options.json"


@dataclass(frozen=True)
class StreamOptions:
    accelerometer: bool = False
    gyroscope: bool = False
    orientation: bool = False
    imu: bool = False

    def enabled(self, name: str) -> bool:
        return bool(getattr(self, name, False))


@dataclass(frozen=True)
class Options:
    """
    Runtime options of the relay.

    Never mutated: a reconfiguration builds a new value with
    from_config() and the owner swaps its reference.
    """

    device_id: int = DEFAULT_DEVICE_ID
    interval_ms: int = DEFAULT_INTERVAL_MS
    streams: StreamOptions = field(default_factory=StreamOptions)
    ip_address: str = DEFAULT_IP_ADDRESS

    @classmethod
    def from_config(
        cls,
        raw: Optional[Mapping[str, Any]],
        fallback: Optional["Options"] = None,
    ) -> "Options":
        """
        Build Options from the device configuration surface:

            { id, interval, ipAddress,
              accelerometer: {enabled}, gyroscope: {enabled},
              orientation: {enabled}, imu: {enabled} }

        Absent fields take their defaults. An invalid id or interval falls
        back to the value in `fallback` (or the default) and is logged.
        """
        prior = fallback or cls()
        raw = raw if isinstance(raw, Mapping) else {}

        device_id = DEFAULT_DEVICE_ID
        if "id" in raw:
            device_id = _as_int(raw.get("id"))
            if device_id is None or device_id < 0:
                log.warning("Invalid device id %r, keeping %s", raw.get("id"), prior.device_id)
                device_id = prior.device_id

        interval_ms = DEFAULT_INTERVAL_MS
        if "interval" in raw:
            interval_ms = _as_int(raw.get("interval"))
            if interval_ms is None or interval_ms <= 0:
                log.warning("Invalid interval %r, keeping %s ms", raw.get("interval"), prior.interval_ms)
                interval_ms = prior.interval_ms

        streams = StreamOptions(**{name: _stream_enabled(raw.get(name)) for name in STREAM_NAMES})

        ip_address = raw.get("ipAddress") or DEFAULT_IP_ADDRESS
        if not isinstance(ip_address, str):
            ip_address = prior.ip_address

        return cls(
            device_id=device_id,
            interval_ms=interval_ms,
            streams=streams,
            ip_address=ip_address,
        )

    def to_config(self) -> Dict[str, Any]:
        """Inverse of from_config: the configuration surface bus clients send."""
        config: Dict[str, Any] = {
            "id": self.device_id,
            "interval": self.interval_ms,
            "ipAddress": self.ip_address,
        }
        for name in STREAM_NAMES:
            config[name] = {"enabled": self.streams.enabled(name)}
        return config

    def with_streams(self, **enabled: bool) -> "Options":
        return replace(self, streams=replace(self.streams, **enabled))


def _as_int(value: Any) -> Optional[int]:
    # bool is an int subclass; "true" is not an interval
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _stream_enabled(value: Any) -> bool:
    if isinstance(value, Mapping):
        return value.get("enabled") is True
    return False


def read_json_file(filename):
    """
    Reads a JSON file and handles cases where the file does not exist.

    Args:
        filename (str): The path to the JSON file.

    Returns:
        dict: The data from the JSON file if successful, otherwise empty dict.
    """
    try:
        with open(filename, 'r') as file:
            data = json.load(file)
        return data if isinstance(data, dict) else {}

    except FileNotFoundError:
        return {}

    except json.JSONDecodeError:
        log.warning("Ignoring malformed options file %s", filename)
        return {}
