from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Set

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from armband_relay.core.bus import EventBus
from armband_relay.device.models import Quaternion, Vector3

log = logging.getLogger(__name__)

VIBRATION_LENGTHS = ("short", "medium", "long")
REST_POSE = "rest"


class DeviceUnavailableError(RuntimeError):
    pass


class MyoEventType(str, Enum):
    """Raw armband events. Myo Connect sends ["event", {"type": ...}] frames."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ARM_SYNCED = "arm_synced"
    ARM_UNSYNCED = "arm_unsynced"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    POSE = "pose"
    # One Myo Connect "orientation" frame fans out into these four
    ORIENTATION = "orientation"
    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"
    IMU = "imu"
    RSSI = "rssi"
    BATTERY_LEVEL = "battery_level"
    RAW = "raw"                # anything else (paired, emg, warmup_completed...)
    LINK_UP = "link_up"        # websocket to Myo Connect opened
    LINK_DOWN = "link_down"
    ERROR = "error"


@dataclass(frozen=True)
class MyoEvent:
    type: MyoEventType
    ts: float  # time.monotonic()
    raw: Any   # decoded frame data (or message)
    myo: int = 0
    quaternion: Optional[Quaternion] = None
    accelerometer: Optional[Vector3] = None
    gyroscope: Optional[Vector3] = None
    pose: Optional[str] = None
    edge: Optional[str] = None      # "on" / "off" for POSE
    value: Optional[float] = None   # RSSI (dBm) or battery level (%)


# Subscriber signature
MyoSubscriber = Callable[[MyoEvent], None]

_LIFECYCLE = {
    "connected": MyoEventType.CONNECTED,
    "disconnected": MyoEventType.DISCONNECTED,
    "arm_synced": MyoEventType.ARM_SYNCED,
    "arm_unsynced": MyoEventType.ARM_UNSYNCED,
    "locked": MyoEventType.LOCKED,
    "unlocked": MyoEventType.UNLOCKED,
}


@dataclass
class MyoConnectStatus:
    url: str
    link_open: bool
    connected: bool
    last_err: str
    seconds_since_last_rx: Optional[float]
    rx_frames: int
    tx_frames: int
    tx_queue_size: int
    supervisor_running: bool


class MyoConnectClient:
    """
    Myo Connect websocket client: the armband's event source and action interface.

    - Myo Connect streams ["event", {...}] frames for every paired armband.
    - Actions are sent as ["command", {"command": ..., "myo": <id>, ...}].
    - Actions are synchronous: they enqueue a frame for the writer task and
      raise DeviceUnavailableError while no armband is connected.

    Key behaviors:
    - start(): launches the supervisor task until stop()
    - the supervisor reconnects after reconnect_backoff_s on any link failure
    - retarget(): switch host / armband id; the link is reopened if needed
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 10138,
        api_version: int = 3,
        app_id: str = "com.armband-relay.default",
        device_id: int = 0,
        reconnect_backoff_s: float = 1.0,
        open_timeout_s: float = 5.0,
        bus: Optional[EventBus[MyoEvent]] = None,
    ):
        self._host = host
        self._port = port
        self._api_version = api_version
        self._app_id = app_id
        self._device_id = device_id
        self._reconnect_backoff_s = reconnect_backoff_s
        self._open_timeout_s = open_timeout_s

        self.bus: EventBus[MyoEvent] = bus or EventBus()

        self._stop_evt = asyncio.Event()
        self._tx_q: "asyncio.Queue[str]" = asyncio.Queue()

        self._ws: Optional[ClientConnection] = None
        self._t_sup: Optional[asyncio.Task] = None
        self._lock_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

        # state, per armband index (Myo Connect multiplexes every paired armband)
        self._connected: Set[int] = set()
        self._last_err = ""
        self._last_rx_at = 0.0
        self._rx_frames = 0
        self._tx_frames = 0
        self._last_pose: Dict[int, str] = {}
        self._last_orientation: Dict[int, Quaternion] = {}

    # --------------------
    # Public API
    # --------------------
    @property
    def url(self) -> str:
        return f"ws://{self._host}:{self._port}/myo/{self._api_version}?appid={self._app_id}"

    @property
    def is_connected(self) -> bool:
        """True while the followed armband itself is connected (not just the websocket)."""
        return self._device_id in self._connected

    def start(self) -> None:
        """
        Start supervisor task (idempotent).
        Keeps running until stop().
        """
        if self._t_sup and not self._t_sup.done():
            return
        self._stop_evt.clear()
        self._t_sup = asyncio.get_running_loop().create_task(
            self._supervisor_loop(), name="myo-connect-supervisor"
        )

    async def stop(self) -> None:
        """
        Stop everything and close the websocket. Safe to call multiple times.
        """
        self._stop_evt.set()
        self._cancel_lock_timer()

        ws = self._ws
        if ws is not None:
            await ws.close()

        if self._t_sup and not self._t_sup.done():
            self._t_sup.cancel()
            try:
                await self._t_sup
            except asyncio.CancelledError:
                pass
        self._t_sup = None

        # drain tx queue
        while not self._tx_q.empty():
            self._tx_q.get_nowait()

        self._connected.clear()
        self._last_pose.clear()

    def retarget(self, host: str, device_id: int) -> None:
        """Follow another armband id and/or Myo Connect host."""
        self._device_id = device_id
        if host == self._host:
            return
        log.info("Retargeting Myo Connect link %s -> %s", self._host, host)
        self._host = host
        ws = self._ws
        if ws is not None:
            # reader loop ends; supervisor reconnects to the new url
            task = asyncio.ensure_future(ws.close())
            self._tasks.add(task)
            task.add_done_callback(self._on_close_done)

    def vibrate(self, length: str = "short") -> None:
        if length not in VIBRATION_LENGTHS:
            raise ValueError(f"unknown vibration length: {length!r}")
        self._send_command("vibrate", type=length)

    def request_bluetooth_strength(self) -> None:
        """RSSI arrives later as an RSSI event."""
        self._send_command("request_rssi")

    def unlock(self, timeout_ms: Optional[int] = None) -> None:
        """
        Unlock the armband so poses are reported.

        Without a timeout it stays unlocked until locked again; with one, a
        lock command follows after timeout_ms.
        """
        self._send_command("unlock", type="hold")
        self._cancel_lock_timer()
        if timeout_ms is not None and timeout_ms > 0:
            loop = asyncio.get_running_loop()
            self._lock_timer = loop.call_later(timeout_ms / 1000.0, self._lock_quietly)

    def zero_orientation(self) -> Optional[Quaternion]:
        """Return the latest raw orientation reading to be used as the new reference."""
        if not self.is_connected:
            raise DeviceUnavailableError("DISCONNECTED")
        return self._last_orientation.get(self._device_id)

    def get_status(self) -> MyoConnectStatus:
        now = time.monotonic()
        return MyoConnectStatus(
            url=self.url,
            link_open=self._ws is not None,
            connected=self.is_connected,
            last_err=self._last_err,
            seconds_since_last_rx=None if self._last_rx_at == 0.0 else (now - self._last_rx_at),
            rx_frames=self._rx_frames,
            tx_frames=self._tx_frames,
            tx_queue_size=self._tx_q.qsize(),
            supervisor_running=bool(self._t_sup and not self._t_sup.done()),
        )

    # --------------------
    # Supervisor
    # --------------------
    async def _supervisor_loop(self) -> None:
        while not self._stop_evt.is_set():
            url = self.url
            try:
                async with connect(url, open_timeout=self._open_timeout_s) as ws:
                    self._ws = ws
                    self._last_err = ""
                    log.info("Myo Connect link established (%s)", url)
                    self.bus.publish(MyoEvent(MyoEventType.LINK_UP, time.monotonic(), url))
                    await self._run_link(ws)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self._last_err = f"link failed: {e}"
                log.warning("Myo Connect %s: %s", url, self._last_err)
                self.bus.publish(MyoEvent(MyoEventType.ERROR, time.monotonic(), self._last_err))
            finally:
                was_open = self._ws is not None
                self._ws = None
                if was_open:
                    self._on_link_down()

            if self._stop_evt.is_set():
                break

            await asyncio.sleep(self._reconnect_backoff_s)

    async def _run_link(self, ws: ClientConnection) -> None:
        writer = asyncio.ensure_future(self._writer_loop(ws))
        try:
            await self._reader_loop(ws)
        finally:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    def _on_link_down(self) -> None:
        # Myo Connect gone means the armband is gone too
        for myo in sorted(self._connected):
            self.bus.publish(MyoEvent(MyoEventType.DISCONNECTED, time.monotonic(), "LINK_DOWN", myo=myo))
        self._connected.clear()
        self._last_pose.clear()
        log.info("Myo Connect link lost")
        self.bus.publish(MyoEvent(MyoEventType.LINK_DOWN, time.monotonic(), "LINK_DOWN"))

    def _on_close_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Closing Myo Connect link failed: %s", task.exception())

    # --------------------
    # Worker loops
    # --------------------
    async def _writer_loop(self, ws: ClientConnection) -> None:
        while True:
            out = await self._tx_q.get()
            await ws.send(out)
            self._tx_frames += 1

    async def _reader_loop(self, ws: ClientConnection) -> None:
        async for message in ws:
            self._last_rx_at = time.monotonic()
            self._rx_frames += 1
            self._route_message(message)

    # --------------------
    # Commands
    # --------------------
    def _send_command(self, command: str, **fields: Any) -> None:
        if not self.is_connected:
            raise DeviceUnavailableError("DISCONNECTED")
        body = {"command": command, "myo": self._device_id}
        body.update(fields)
        self._tx_q.put_nowait(json.dumps(["command", body]))

    def _lock_quietly(self) -> None:
        self._lock_timer = None
        try:
            self._send_command("lock")
        except DeviceUnavailableError:
            pass

    def _cancel_lock_timer(self) -> None:
        if self._lock_timer is not None:
            self._lock_timer.cancel()
            self._lock_timer = None

    # --------------------
    # Routing
    # --------------------
    def _route_message(self, message: Any) -> None:
        now = time.monotonic()
        try:
            frame = json.loads(message)
        except (TypeError, ValueError) as e:
            log.warning("Dropping malformed Myo Connect frame: %s", e)
            self.bus.publish(MyoEvent(MyoEventType.ERROR, now, f"bad frame: {e}"))
            return

        # ["event", {...}]: the payload is always the last element
        if not isinstance(frame, list) or not frame or not isinstance(frame[-1], Mapping):
            self.bus.publish(MyoEvent(MyoEventType.RAW, now, frame))
            return
        data = frame[-1]
        kind = data.get("type")
        try:
            myo = int(data.get("myo", 0))
        except (TypeError, ValueError):
            myo = 0

        lifecycle = _LIFECYCLE.get(kind)
        if lifecycle is not None:
            if lifecycle == MyoEventType.CONNECTED:
                self._connected.add(myo)
            elif lifecycle == MyoEventType.DISCONNECTED:
                self._connected.discard(myo)
                self._last_pose.pop(myo, None)
            self.bus.publish(MyoEvent(lifecycle, now, data, myo=myo))
            return

        if kind == "orientation":
            self._route_orientation(data, myo, now)
            return

        if kind == "pose":
            self._route_pose(data, myo, now)
            return

        if kind in ("rssi", "battery_level"):
            value = data.get(kind)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                ev_type = MyoEventType.RSSI if kind == "rssi" else MyoEventType.BATTERY_LEVEL
                self.bus.publish(MyoEvent(ev_type, now, data, myo=myo, value=value))
                return

        self.bus.publish(MyoEvent(MyoEventType.RAW, now, data, myo=myo))

    def _route_orientation(self, data: Mapping[str, Any], myo: int, now: float) -> None:
        quat = Quaternion.parse(data.get("orientation"))
        accel = Vector3.parse(data.get("accelerometer"))
        gyro = Vector3.parse(data.get("gyroscope"))

        if quat is not None:
            self._last_orientation[myo] = quat
            self.bus.publish(MyoEvent(MyoEventType.ORIENTATION, now, data, myo=myo, quaternion=quat))
        if accel is not None:
            self.bus.publish(MyoEvent(MyoEventType.ACCELEROMETER, now, data, myo=myo, accelerometer=accel))
        if gyro is not None:
            self.bus.publish(MyoEvent(MyoEventType.GYROSCOPE, now, data, myo=myo, gyroscope=gyro))
        if quat is not None and accel is not None and gyro is not None:
            self.bus.publish(
                MyoEvent(
                    MyoEventType.IMU,
                    now,
                    data,
                    myo=myo,
                    quaternion=quat,
                    accelerometer=accel,
                    gyroscope=gyro,
                )
            )

    def _route_pose(self, data: Mapping[str, Any], myo: int, now: float) -> None:
        pose = data.get("pose")
        if not isinstance(pose, str):
            self.bus.publish(MyoEvent(MyoEventType.RAW, now, data, myo=myo))
            return

        # Myo Connect only reports the new pose; derive the off edge of the previous one
        previous = self._last_pose.get(myo)
        self._last_pose[myo] = pose
        if previous == pose:
            return
        if previous and previous != REST_POSE:
            self.bus.publish(MyoEvent(MyoEventType.POSE, now, data, myo=myo, pose=previous, edge="off"))
        if pose != REST_POSE:
            self.bus.publish(MyoEvent(MyoEventType.POSE, now, data, myo=myo, pose=pose, edge="on"))
