#!/usr/bin/env python
"""
Camera relay entrypoint.

    python main.py relay    # HTTP + Socket.IO relay backed by the state directory
    python main.py agent    # camera agent next to the camera (gphoto2)
    python main.py client   # headless viewer: live view on, capture on demand

Configuration comes from CAMRELAY_* environment variables; LOG_LEVEL sets
logging verbosity.
"""
import argparse
import logging
import os
import signal
import threading

from controller.camera_agent import CameraAgent
from controller.client import CameraClient
from controller.config import load_agent_config, load_client_config, load_relay_config
from controller.gphoto_camera import GPhotoCamera
from controller.state_store import SharedStateStore
from web.app import create_app

logger = logging.getLogger("camrelay")


def _wait_for_signal() -> None:
    stop = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop.set())
    stop.wait()


def run_relay(_args) -> None:
    config = load_relay_config()
    app = create_app(config)
    logger.info("Relay listening on %s:%d (state in %s)", config.host, config.port, config.state_dir)
    app.socketio.run(app, host=config.host, port=config.port, allow_unsafe_werkzeug=True)


def run_agent(_args) -> None:
    config = load_agent_config()
    camera = GPhotoCamera(timeout=config.capture_timeout)
    if not camera.health_check():
        logger.warning("No camera detected yet; the agent keeps publishing telemetry")
    agent = CameraAgent(camera, SharedStateStore(config.state_dir), config)
    agent.start()
    logger.info("Camera agent running (state in %s)", config.state_dir)
    _wait_for_signal()
    agent.stop()


def run_client(args) -> None:
    client = CameraClient(load_client_config())
    client.run_forever()
    if args.quality:
        client.set_quality(args.quality)
    if args.live:
        client.start_live()
    if args.capture:
        client.capture()
    _wait_for_signal()
    client.stop()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Shared camera relay")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("relay", help="run the relay server").set_defaults(func=run_relay)
    sub.add_parser("agent", help="run the camera agent").set_defaults(func=run_agent)

    client = sub.add_parser("client", help="run a headless client")
    client.add_argument("--live", action="store_true", help="turn live view on")
    client.add_argument("--capture", action="store_true", help="take one capture")
    client.add_argument("--quality", choices=["very-low", "low", "medium", "high"])
    client.set_defaults(func=run_client)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
