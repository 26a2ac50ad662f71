"""coiotd - CoIoT status engine, main entry point.

Loads the device list from config.yaml, opens the SQLite store, starts the
shared CoIoT listener on UDP 5683 with one protocol session per device and
runs the FastAPI inspection API on port 9090.

This script is the single process that handles everything:
  - CoAP/CoIoT over UDP (one shared listener, multicast status broadcasts)
  - Per-device description/status sessions and channel mapping
  - FastAPI inspection API (HTTP + WebSocket on port 9090)
"""

import logging
import os
import signal
import threading

import yaml

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def load_config(path: str) -> dict:
    """Load config.yaml (an empty file yields an empty config)."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger("coiotd")

    # Late imports to avoid circular dependencies at module level
    from api.app import create_app
    from api.websocket_hub import WebSocketHub
    from coiotip import constants as C
    from coiotip.server import CoIoTListener
    from core.device_manager import DeviceManager
    from core.message_inspector import MessageInspector
    from persistence.db import Database

    # Load configuration
    config_path = os.environ.get("COIOTD_CONFIG", "/app/config.yaml")
    if not os.path.exists(config_path):
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    logger.info("Loading config from %s", config_path)
    config = load_config(config_path)

    # Initialize database
    db_path = os.environ.get("COIOTD_DB", "/app/data/coiotd.db")
    db = Database(db_path=db_path)
    db.connect()

    # Shared UDP listener
    listener_cfg = config.get("listener") or {}
    listener = CoIoTListener(
        host=listener_cfg.get("host", "0.0.0.0"),
        port=int(listener_cfg.get("port", C.COIOT_PORT)),
        multicast=bool(listener_cfg.get("multicast", True)),
        request_timeout=float(listener_cfg.get("request_timeout", C.DEFAULT_REQUEST_TIMEOUT)),
    )
    listener.start()

    # Create real-time infrastructure
    ws_hub = WebSocketHub()
    message_inspector = MessageInspector(max_size=500)

    def on_event(device_id, group, event):
        """Called when a device raises an alarm or a button event."""
        logger.info("Event from %s: %s (%s)", device_id, event, group)
        ws_hub.push_event(device_id, group, event)

    manager = DeviceManager(
        db=db,
        listener=listener,
        inspector=message_inspector,
        on_channel_update=ws_hub.push_channel_update,
        on_event=on_event,
    )
    manager.bootstrap_from_config(config)
    logger.info("DeviceManager ready: %d device(s)", len(manager.sessions))

    # Create FastAPI app
    app = create_app(manager, ws_hub=ws_hub, message_inspector=message_inspector)

    # Start uvicorn in a background thread
    api_port = int(os.environ.get("COIOTD_API_PORT", "9090"))
    _start_api_server(app, api_port, logger)

    logger.info("coiotd fully started")
    logger.info("  CoIoT listener: udp/%d", listener.port)
    logger.info("  Inspection API: http://0.0.0.0:%d", api_port)
    logger.info("  Health: http://0.0.0.0:%d/api/v1/health", api_port)

    # Wait for shutdown signal
    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d - shutting down", signum)
        shutdown.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    shutdown.wait()

    # Cleanup
    logger.info("Stopping all sessions...")
    manager.stop_all()
    listener.stop()
    db.close()
    logger.info("Shutdown complete")


def _start_api_server(app, port: int, logger):
    """Start uvicorn in a daemon thread."""
    import uvicorn

    config = uvicorn.Config(
        app=app,
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, name="uvicorn", daemon=True)
    thread.start()
    logger.info("Uvicorn started on port %d (daemon thread)", port)
    return thread


if __name__ == "__main__":
    main()
