"""
Socket.IO side of the relay.

Bus clients connect to the ASGI app and exchange three events:
- "message": inbound {command: {...}} for the armband; outbound envelopes
  {devices: ["*"], payload: {...}} are emitted under the same name
- "config": replace the relay options
- "status": ack with the Myo Connect link status and active options
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, Optional, Set

import socketio

from armband_relay.core.bus import OutboundEnvelope
from armband_relay.core.controller import RelayController

log = logging.getLogger(__name__)

MESSAGE_EVENT = "message"


class SocketIOSink:
    """Relay sink publishing envelopes to every connected bus client."""

    def __init__(self, sio: socketio.AsyncServer) -> None:
        self._sio = sio
        self._tasks: Set[asyncio.Task] = set()

    def __call__(self, envelope: OutboundEnvelope) -> None:
        task = asyncio.ensure_future(self._sio.emit(MESSAGE_EVENT, envelope.to_message()))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Emit failed: %s", task.exception())


class RelayServer:
    def __init__(self, sio: socketio.AsyncServer, controller: RelayController, device: Any) -> None:
        self._sio = sio
        self._controller = controller
        self._device = device

        sio.on("connect", self.on_connect)
        sio.on("disconnect", self.on_disconnect)
        sio.on(MESSAGE_EVENT, self.on_message)
        sio.on("config", self.on_config)
        sio.on("status", self.on_status)

    async def on_connect(self, sid: str, environ: Dict[str, Any], auth: Optional[Any] = None) -> None:
        log.info("Bus client %s connected", sid)

    async def on_disconnect(self, sid: str, *args: Any) -> None:
        log.info("Bus client %s disconnected", sid)

    async def on_message(self, sid: str, data: Any) -> None:
        self._controller.handle_command(data)

    async def on_config(self, sid: str, data: Any) -> Dict[str, Any]:
        options = self._controller.apply_options(data)
        return options.to_config()

    async def on_status(self, sid: str, data: Any = None) -> Dict[str, Any]:
        status = dataclasses.asdict(self._device.get_status())
        status["options"] = self._controller.options.to_config()
        return status
