"""
Armband relay entry point.

Runs on one asyncio loop:
- Myo Connect websocket client (armband events in, actions out)
- Socket.IO bus server (envelopes out, commands and config in)
"""
from __future__ import annotations

import argparse
import asyncio
import logging

import socketio
import uvicorn

from armband_relay.config import Options, RelayConfig, read_json_file
from armband_relay.core.controller import RelayController
from armband_relay.device.myo_client import MyoConnectClient
from armband_relay.server import RelayServer, SocketIOSink

log = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # per-frame websocket chatter
    logging.getLogger("websockets").setLevel(logging.WARNING)


async def run(config: RelayConfig, options: Options) -> None:
    device = MyoConnectClient(
        host=options.ip_address,
        port=config.myo_port,
        api_version=config.myo_api_version,
        device_id=options.device_id,
        reconnect_backoff_s=config.reconnect_backoff_s,
        open_timeout_s=config.open_timeout_s,
    )

    sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins="*")
    controller = RelayController(device, SocketIOSink(sio), options)
    RelayServer(sio, controller, device)
    app = socketio.ASGIApp(sio)

    server = uvicorn.Server(
        uvicorn.Config(app, host=config.socket_host, port=config.socket_port, log_level="info")
    )

    device.start()
    try:
        await server.serve()
    finally:
        controller.close()
        await device.stop()


def main():
    """Main entry point."""
    default_config = RelayConfig()

    parser = argparse.ArgumentParser(
        description='Myo armband <-> Socket.IO message bus relay'
    )
    parser.add_argument(
        '--host',
        default=default_config.socket_host,
        help=f'Bus server host (default: {default_config.socket_host})'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=default_config.socket_port,
        help=f'Bus server port (default: {default_config.socket_port})'
    )
    parser.add_argument(
        '--myo-port',
        type=int,
        default=default_config.myo_port,
        help=f'Myo Connect websocket port (default: {default_config.myo_port})'
    )
    parser.add_argument(
        '--reconnect-backoff',
        type=float,
        default=default_config.reconnect_backoff_s,
        help=f'Seconds between Myo Connect reconnect attempts (default: {default_config.reconnect_backoff_s})'
    )
    parser.add_argument(
        '--options',
        default=default_config.options_file,
        help=f'JSON file with the initial relay options (default: {default_config.options_file})'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        help='Logging level (default: INFO)'
    )

    args = parser.parse_args()
    setup_logging(args.log_level)

    config = RelayConfig(
        socket_host=args.host,
        socket_port=args.port,
        myo_port=args.myo_port,
        reconnect_backoff_s=args.reconnect_backoff,
        options_file=args.options,
    )
    options = Options.from_config(read_json_file(config.options_file))

    log.info("Relaying armband %s via %s on %s:%s", options.device_id, options.ip_address, config.socket_host, config.socket_port)
    try:
        asyncio.run(run(config, options))
    except KeyboardInterrupt:
        log.info("Shutting down")


if __name__ == '__main__':
    main()
