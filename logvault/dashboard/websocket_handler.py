"""Push channel for the backup dashboard.

Every client connected to /ws/live gets a JSON object
``{"type": <event>, "data": <payload>}`` for each of these events:

    setting_changed   a SettingsStore value changed (key, old, new)
    entries_changed   allow/deny edits were applied (the entry list)
    backup_pass       a backup pass finished (name -> outcome)
    backups_deleted   the Backup folder was cleared
"""

import json
import logging
import threading

logger = logging.getLogger(__name__)


class WebSocketHandler:
    """Connected dashboard clients; dead ones are dropped on the next send."""

    def __init__(self):
        self._clients: list = []
        self._lock = threading.Lock()

    def register(self, ws):
        with self._lock:
            self._clients.append(ws)
            count = len(self._clients)
        logger.debug("WebSocket client connected (%d total)", count)

    def unregister(self, ws):
        with self._lock:
            if ws in self._clients:
                self._clients.remove(ws)
            count = len(self._clients)
        logger.debug("WebSocket client disconnected (%d remaining)", count)

    def broadcast(self, event_type: str, data) -> int:
        """Send to every client; clients that fail are dropped.

        Returns the number of clients the message reached.
        """
        message = json.dumps({"type": event_type, "data": data})
        delivered = 0
        with self._lock:
            alive = []
            for ws in self._clients:
                try:
                    ws.send(message)
                except Exception:
                    logger.debug("Dropping unreachable WebSocket client")
                    continue
                alive.append(ws)
                delivered += 1
            self._clients = alive
        return delivered

    def on_setting_changed(self, change):
        """SettingsStore listener."""
        self.broadcast("setting_changed", {
            "key": change.key,
            "old": change.old,
            "new": change.new,
        })

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)
