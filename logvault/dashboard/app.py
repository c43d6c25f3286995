"""Flask application for the backup dashboard.

Serves the REST API under /api (see ``api/routes.py``) and a WebSocket
endpoint at /ws/live that pushes setting changes and backup results.
"""

import logging
import os

from flask import Flask, jsonify
from flask_sock import Sock

from logvault.backup.backup_controller import BackupController
from logvault.config.settings import DEFAULT_CONFIG_PATH, SettingsStore, resolve_path
from logvault.dashboard.api.routes import api, init_routes
from logvault.dashboard.websocket_handler import WebSocketHandler
from logvault.database.backup_history import BackupHistory
from logvault.monitor.logs_monitor import LogsFolderMonitor

logger = logging.getLogger(__name__)


def create_app(
    config_path: str = None,
    controller: BackupController = None,
    history: BackupHistory = None,
    settings_store: SettingsStore = None,
) -> Flask:
    """Application factory.

    Accepts pre-built service instances (for testing) or constructs
    defaults from config.
    """
    if settings_store is None:
        settings_store = SettingsStore.from_file(config_path or DEFAULT_CONFIG_PATH)
    settings = settings_store.settings

    if history is None:
        history = BackupHistory(resolve_path(settings.history_db_path))

    if controller is None:
        logs_root = lambda: resolve_path(settings_store.settings.logs_folder_path)
        monitor = LogsFolderMonitor(logs_root, extensions=settings.file_extensions)
        controller = BackupController.from_settings(
            settings,
            storage_root=logs_root,
            candidate_provider=monitor.scan,
            source_resolver=monitor.resolve_source_path,
            history=history,
        )
        controller.populate_lists()
        controller.process_new_entries()

    ws_handler = WebSocketHandler()
    settings_store.subscribe(controller.on_setting_changed)
    settings_store.subscribe(ws_handler.on_setting_changed)

    app = Flask(__name__)
    sock = Sock(app)

    init_routes(
        controller=controller,
        history=history,
        settings_store=settings_store,
        ws_handler=ws_handler,
    )
    app.register_blueprint(api)

    @sock.route("/ws/live")
    def ws_live(ws):
        ws_handler.register(ws)
        try:
            while True:
                # Keep connection alive; client can send pings
                data = ws.receive(timeout=60)
                if data is None:
                    break
        except Exception:
            logger.debug("WebSocket connection closed")
        finally:
            ws_handler.unregister(ws)

    @app.route("/")
    def index():
        return jsonify({"service": "logvault", "status": "/api/status"})

    # Store references for test access
    app.controller = controller
    app.history = history
    app.settings_store = settings_store
    app.ws_handler = ws_handler

    return app


def main():
    import argparse

    parser = argparse.ArgumentParser(description="LogVault - Backup Dashboard")
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config.json",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=5000,
        type=int,
        help="Port to listen on (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = create_app(config_path=args.config)
    logger.info("Dashboard starting on http://%s:%d", args.host, args.port)
    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
