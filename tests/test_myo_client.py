"""Tests for Myo Connect frame routing and command framing (no network)."""

import asyncio
import json

import pytest

from armband_relay.device.models import Quaternion, Vector3
from armband_relay.device.myo_client import (
    DeviceUnavailableError,
    MyoConnectClient,
    MyoEventType,
)


def frame(**data):
    return json.dumps(["event", data])


def queued(client):
    out = []
    while not client._tx_q.empty():
        out.append(json.loads(client._tx_q.get_nowait()))
    return out


@pytest.fixture
def client():
    return MyoConnectClient(host="127.0.0.1")


@pytest.fixture
def events(client):
    received = []
    client.bus.subscribe(received.append)
    return received


def connect(client):
    client._route_message(frame(type="connected", myo=0, name="Myo", version=[1, 5, 1970, 2]))


def test_url(client):
    assert client.url == "ws://127.0.0.1:10138/myo/3?appid=com.armband-relay.default"


def test_orientation_frame_fans_out(client, events):
    client._route_message(
        frame(
            type="orientation",
            myo=0,
            orientation={"w": 0.9, "x": 0.1, "y": 0.2, "z": 0.3},
            accelerometer=[0.0, 0.1, 0.98],
            gyroscope=[1.5, -2.0, 0.25],
        )
    )

    assert [ev.type for ev in events] == [
        MyoEventType.ORIENTATION,
        MyoEventType.ACCELEROMETER,
        MyoEventType.GYROSCOPE,
        MyoEventType.IMU,
    ]
    assert events[0].quaternion == Quaternion(w=0.9, x=0.1, y=0.2, z=0.3)
    assert events[1].accelerometer == Vector3(0.0, 0.1, 0.98)
    assert events[2].gyroscope == Vector3(1.5, -2.0, 0.25)
    assert events[3].quaternion == events[0].quaternion


def test_partial_orientation_frame_has_no_imu(client, events):
    client._route_message(frame(type="orientation", myo=0, orientation={"w": 1, "x": 0, "y": 0, "z": 0}))

    assert [ev.type for ev in events] == [MyoEventType.ORIENTATION]


def test_pose_changes_produce_edges(client, events):
    for pose in ("fist", "fist", "wave_in", "rest", "double_tap"):
        client._route_message(frame(type="pose", myo=0, pose=pose))

    assert [(ev.pose, ev.edge) for ev in events] == [
        ("fist", "on"),
        ("fist", "off"),
        ("wave_in", "on"),
        ("wave_in", "off"),
        ("double_tap", "on"),
    ]


def test_rssi_and_battery(client, events):
    client._route_message(frame(type="rssi", myo=0, rssi=-58))
    client._route_message(frame(type="battery_level", myo=0, battery_level=74))

    assert [(ev.type, ev.value) for ev in events] == [
        (MyoEventType.RSSI, -58),
        (MyoEventType.BATTERY_LEVEL, 74),
    ]


def test_unknown_and_malformed_frames(client, events):
    client._route_message(frame(type="emg", myo=0, emg=[1, 2, 3, 4, 5, 6, 7, 8]))
    client._route_message("not json")
    client._route_message(json.dumps({"type": "connected"}))

    assert [ev.type for ev in events] == [MyoEventType.RAW, MyoEventType.ERROR, MyoEventType.RAW]
    assert not client.is_connected


def test_connection_state_follows_lifecycle(client, events):
    connect(client)
    assert client.is_connected
    assert events[-1].type == MyoEventType.CONNECTED

    client._route_message(frame(type="disconnected", myo=0))
    assert not client.is_connected


def test_other_armband_does_not_change_state(client):
    client._route_message(frame(type="connected", myo=1))

    assert not client.is_connected


def test_actions_require_connection(client):
    with pytest.raises(DeviceUnavailableError):
        client.vibrate("short")
    with pytest.raises(DeviceUnavailableError):
        client.request_bluetooth_strength()
    with pytest.raises(DeviceUnavailableError):
        client.zero_orientation()

    assert queued(client) == []


def test_commands_are_framed_for_myo_connect(client):
    connect(client)

    client.vibrate("medium")
    client.request_bluetooth_strength()
    client.unlock()

    assert queued(client) == [
        ["command", {"command": "vibrate", "myo": 0, "type": "medium"}],
        ["command", {"command": "request_rssi", "myo": 0}],
        ["command", {"command": "unlock", "myo": 0, "type": "hold"}],
    ]


def test_vibrate_rejects_unknown_length(client):
    connect(client)

    with pytest.raises(ValueError):
        client.vibrate("forever")


def test_zero_orientation_returns_latest_reading(client):
    connect(client)
    assert client.zero_orientation() is None

    client._route_message(frame(type="orientation", myo=0, orientation={"w": 0.5, "x": 0.5, "y": 0.5, "z": 0.5}))
    client._route_message(frame(type="orientation", myo=1, orientation={"w": 1, "x": 0, "y": 0, "z": 0}))

    assert client.zero_orientation() == Quaternion(w=0.5, x=0.5, y=0.5, z=0.5)


@pytest.mark.asyncio
async def test_timed_unlock_locks_again(client):
    connect(client)

    client.unlock(timeout_ms=20)
    await asyncio.sleep(0.06)

    assert [cmd[1]["command"] for cmd in queued(client)] == ["unlock", "lock"]


def test_retarget_addresses_new_armband(client):
    client.retarget("127.0.0.1", 2)
    client._route_message(frame(type="connected", myo=2))
    client.vibrate()

    assert queued(client) == [["command", {"command": "vibrate", "myo": 2, "type": "short"}]]


def test_retarget_changes_url(client):
    client.retarget("10.1.1.4", 0)

    assert client.url.startswith("ws://10.1.1.4:10138/")


@pytest.mark.asyncio
async def test_stop_without_start_is_safe(client):
    await client.stop()
    await client.stop()

    assert client.get_status().supervisor_running is False


def test_retarget_to_unconnected_armband_blocks_actions(client):
    connect(client)
    client._route_message(frame(type="orientation", myo=0, orientation={"w": 0.5, "x": 0.5, "y": 0.5, "z": 0.5}))

    client.retarget("127.0.0.1", 1)

    assert not client.is_connected
    with pytest.raises(DeviceUnavailableError):
        client.zero_orientation()
    with pytest.raises(DeviceUnavailableError):
        client.vibrate()


def test_retarget_to_already_connected_armband(client):
    client._route_message(frame(type="connected", myo=1))
    client._route_message(frame(type="orientation", myo=1, orientation={"w": 0.0, "x": 1.0, "y": 0.0, "z": 0.0}))
    assert not client.is_connected

    client.retarget("127.0.0.1", 1)

    assert client.is_connected
    assert client.zero_orientation() == Quaternion(w=0.0, x=1.0, y=0.0, z=0.0)


def test_pose_edges_are_tracked_per_armband(client, events):
    client._route_message(frame(type="pose", myo=0, pose="fist"))
    client._route_message(frame(type="pose", myo=1, pose="wave_out"))
    client._route_message(frame(type="pose", myo=0, pose="rest"))

    assert [(ev.myo, ev.pose, ev.edge) for ev in events] == [
        (0, "fist", "on"),
        (1, "wave_out", "on"),
        (0, "fist", "off"),
    ]


def test_link_down_disconnects_every_armband(client, events):
    connect(client)
    client._route_message(frame(type="connected", myo=1))
    del events[:]

    client._on_link_down()

    assert [(ev.type, ev.myo) for ev in events] == [
        (MyoEventType.DISCONNECTED, 0),
        (MyoEventType.DISCONNECTED, 1),
        (MyoEventType.LINK_DOWN, 0),
    ]
    assert not client.is_connected


class FakeLink:
    def __init__(self, error=None):
        self.closed = False
        self._error = error

    async def close(self):
        self.closed = True
        if self._error is not None:
            raise self._error


@pytest.mark.asyncio
async def test_retarget_host_closes_link(client):
    link = FakeLink()
    client._ws = link

    client.retarget("10.1.1.4", 0)
    await asyncio.sleep(0.01)

    assert link.closed
    assert client._tasks == set()


@pytest.mark.asyncio
async def test_failed_link_close_is_logged(client, caplog):
    client._ws = FakeLink(error=OSError("reset by peer"))

    client.retarget("10.1.1.4", 0)
    await asyncio.sleep(0.01)

    assert client._tasks == set()
    assert "reset by peer" in caplog.text
