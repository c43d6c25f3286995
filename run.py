"""Unified launcher for LogVault.

Runs the startup backup pass, then keeps watching the logs folder while
the Flask dashboard serves on the main thread.

Usage:
    python run.py
    python run.py --config config/config.json --port 5000
    python run.py --once
    python run.py --no-dashboard
"""

import argparse
import logging
import os
import signal
import threading

from logvault.backup.backup_controller import BackupController
from logvault.config.settings import DEFAULT_CONFIG_PATH, SettingsStore, resolve_path
from logvault.database.backup_history import BackupHistory
from logvault.monitor.logs_monitor import LogsFolderMonitor

logger = logging.getLogger("logvault")


def build_services(config_path: str):
    """Create the settings store, history, monitor and controller."""
    store = SettingsStore.from_file(config_path)
    settings = store.settings
    history = BackupHistory(resolve_path(settings.history_db_path))

    def logs_root():
        return resolve_path(store.settings.logs_folder_path)

    controller = None

    def on_moved_away(identity, dest_path):
        controller.backup(identity, replacement_path=dest_path)

    monitor = LogsFolderMonitor(
        logs_root,
        extensions=settings.file_extensions,
        on_moved_away=on_moved_away,
    )
    controller = BackupController.from_settings(
        settings,
        storage_root=logs_root,
        candidate_provider=monitor.candidate_identities,
        source_resolver=monitor.resolve_source_path,
        history=history,
    )

    def on_setting_changed(change):
        if change.key == "file_extensions":
            monitor.extensions = tuple(e.lower() for e in change.new)
        if change.key in ("logs_folder_path", "file_extensions"):
            if monitor.running:
                monitor.restart()
            else:
                monitor.scan()
            controller.process_new_entries()

    store.subscribe(on_setting_changed)
    return store, history, monitor, controller


def make_signal_handler(stop_event: threading.Event, interrupt: bool = False):
    """SIGINT/SIGTERM handler that sets ``stop_event``.

    With ``interrupt`` it also raises KeyboardInterrupt so a blocking
    server loop unwinds into the launcher's cleanup.
    """
    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        stop_event.set()
        if interrupt:
            raise KeyboardInterrupt

    return handle_signal


def main():
    parser = argparse.ArgumentParser(
        description="LogVault - rotating log file backups",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config.json (default: config/config.json)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Dashboard host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=5000,
        type=int,
        help="Dashboard port (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the startup backup pass and exit",
    )
    parser.add_argument(
        "--no-watch",
        action="store_true",
        help="Do not watch the logs folder for changes",
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Run without the web dashboard",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    store, history, monitor, controller = build_services(args.config)

    monitor.scan()
    controller.populate_lists()
    results = controller.backup_from_folder()
    for name, status in sorted(results.items()):
        logger.info("  %s: %s", name, status)

    if args.once:
        controller.close()
        history.close()
        return

    stop_event = threading.Event()
    # The dashboard blocks in app.run(), so it has to be interrupted
    handle_signal = make_signal_handler(stop_event, interrupt=not args.no_dashboard)
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if not args.no_watch:
        monitor.start()

    try:
        if args.no_dashboard:
            controller.bind_settings(store)
            logger.info("Watching for log changes (no dashboard)...")
            while not stop_event.is_set():
                stop_event.wait(timeout=1.0)
        else:
            from logvault.dashboard.app import create_app
            app = create_app(
                settings_store=store,
                controller=controller,
                history=history,
            )
            logger.info("Dashboard: http://%s:%d", args.host, args.port)
            app.run(host=args.host, port=args.port, debug=False)
    except KeyboardInterrupt:
        pass
    finally:
        monitor.stop()
        controller.close()
        history.close()
        logger.info("LogVault stopped.")


if __name__ == "__main__":
    main()
