"""
WSGI entrypoint for production (gunicorn/systemd).

This module should have no side effects beyond creating the Flask app (which starts the relay watch).
Configuration comes from CAMRELAY_* environment variables.
"""
from controller.config import load_relay_config
from web.app import create_app

app = create_app(load_relay_config())
socketio = app.socketio
