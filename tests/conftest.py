"""Shared fixtures: a fake armband and a recording relay sink."""

from typing import List, Optional

import pytest

from armband_relay.core.bus import EventBus, OutboundEnvelope
from armband_relay.device.models import Quaternion, Vector3
from armband_relay.device.myo_client import (
    DeviceUnavailableError,
    MyoConnectStatus,
    MyoEvent,
    MyoEventType,
)


class FakeArmband:
    """Stands in for MyoConnectClient: records actions instead of sending them."""

    def __init__(self, connected: bool = True) -> None:
        self.bus: EventBus[MyoEvent] = EventBus()
        self.is_connected = connected
        self.orientation: Optional[Quaternion] = Quaternion(w=1.0, x=0.0, y=0.0, z=0.0)
        self.fail_with: Optional[Exception] = None
        self.calls: List[tuple] = []

    def _record(self, *call) -> None:
        if not self.is_connected:
            raise DeviceUnavailableError("DISCONNECTED")
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append(call)

    def vibrate(self, length: str = "short") -> None:
        self._record("vibrate", length)

    def unlock(self, timeout_ms: Optional[int] = None) -> None:
        self._record("unlock", timeout_ms)

    def request_bluetooth_strength(self) -> None:
        self._record("request_bluetooth_strength")

    def zero_orientation(self) -> Optional[Quaternion]:
        self._record("zero_orientation")
        return self.orientation

    def retarget(self, host: str, device_id: int) -> None:
        self.calls.append(("retarget", host, device_id))

    def get_status(self) -> MyoConnectStatus:
        return MyoConnectStatus(
            url="ws://127.0.0.1:10138/myo/3",
            link_open=True,
            connected=self.is_connected,
            last_err="",
            seconds_since_last_rx=None,
            rx_frames=0,
            tx_frames=0,
            tx_queue_size=0,
            supervisor_running=True,
        )


def lifecycle(kind: MyoEventType, myo: int = 0) -> MyoEvent:
    return MyoEvent(kind, 0.0, {"type": kind.value}, myo=myo)


def orientation(w=1.0, x=0.0, y=0.0, z=0.0, myo: int = 0) -> MyoEvent:
    return MyoEvent(
        MyoEventType.ORIENTATION, 0.0, None, myo=myo, quaternion=Quaternion(w=w, x=x, y=y, z=z)
    )


def gyroscope(x=0.0, y=0.0, z=0.0, myo: int = 0) -> MyoEvent:
    return MyoEvent(MyoEventType.GYROSCOPE, 0.0, None, myo=myo, gyroscope=Vector3(x, y, z))


def accelerometer(x=0.0, y=0.0, z=0.0, myo: int = 0) -> MyoEvent:
    return MyoEvent(MyoEventType.ACCELEROMETER, 0.0, None, myo=myo, accelerometer=Vector3(x, y, z))


def imu(quat: Quaternion, accel: Vector3, gyro: Vector3, myo: int = 0) -> MyoEvent:
    return MyoEvent(
        MyoEventType.IMU,
        0.0,
        None,
        myo=myo,
        quaternion=quat,
        accelerometer=accel,
        gyroscope=gyro,
    )


@pytest.fixture
def armband() -> FakeArmband:
    return FakeArmband()


@pytest.fixture
def sent() -> List[OutboundEnvelope]:
    return []
