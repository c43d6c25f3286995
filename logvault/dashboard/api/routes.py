"""API route handlers for the dashboard.

    GET    /api/status           - Backup controller status
    GET    /api/entries          - Entry snapshot (name, enabled, folder)
    PUT    /api/entries          - Mirrored entry list from the UI
    POST   /api/entries/changes  - Explicit enable/disable edits
    POST   /api/backups/run      - Run a reconcile + backup pass
    GET    /api/backups          - Existing backup slots
    DELETE /api/backups          - Delete the backup folder
    GET    /api/history          - Backup outcome journal
    GET    /api/config           - Current settings
    PUT    /api/config           - Update settings
"""

import logging
import os
from datetime import datetime

from flask import Blueprint, jsonify, request

from logvault.backup.entries import resolve_token
from logvault.backup.errors import SettingsError

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

# These are set by app.py at init time via init_routes()
_controller = None
_history = None
_settings_store = None
_ws_handler = None


def init_routes(controller, history, settings_store, ws_handler):
    """Wire up shared application state into the route handlers."""
    global _controller, _history, _settings_store, _ws_handler
    _controller = controller
    _history = history
    _settings_store = settings_store
    _ws_handler = ws_handler


def _broadcast(event_type: str, data):
    if _ws_handler:
        _ws_handler.broadcast(event_type, data)


def _entries_payload() -> list[dict]:
    return [
        {
            "name": record.name,
            "enabled": record.enabled,
            "folder": record.identity.folder,
        }
        for record in _controller.entries
    ]


# ------------------------------------------------------------------
# GET /api/status
# ------------------------------------------------------------------

@api.route("/status", methods=["GET"])
def get_status():
    status = _controller.status()
    status["timestamp"] = datetime.now().isoformat()
    status["websocket_clients"] = _ws_handler.client_count if _ws_handler else 0
    return jsonify(status)


# ------------------------------------------------------------------
# Entries
# ------------------------------------------------------------------

@api.route("/entries", methods=["GET"])
def get_entries():
    return jsonify({"entries": _entries_payload()})


@api.route("/entries", methods=["PUT"])
def put_entries():
    """Accept the UI's copy of the entry list and apply what differs.

    Body: ``{"entries": [{"name": str, "enabled": bool}, ...]}`` in the
    same order as GET /api/entries returned them.
    """
    data = request.get_json(silent=True) or {}
    entries = data.get("entries")
    if not isinstance(entries, list):
        return jsonify({"error": "entries must be a list"}), 400

    try:
        mirrored = [(str(e["name"]), bool(e["enabled"])) for e in entries]
    except (KeyError, TypeError):
        return jsonify({"error": "each entry needs name and enabled"}), 400

    managed = [record.name for record in _controller.entries]
    if [name for name, _ in mirrored] != managed:
        _controller.detect_changes(mirrored)
        return jsonify({"error": "Entry list does not match managed entries"}), 409

    changes = _controller.detect_changes(mirrored)
    if changes:
        _controller.process_changes(changes)
        _broadcast("entries_changed", _entries_payload())

    return jsonify({
        "changed": [identity.name for identity, _ in changes],
        "entries": _entries_payload(),
    })


@api.route("/entries/changes", methods=["POST"])
def post_entry_changes():
    """Body: ``{"changes": [{"name": str, "enabled": bool}, ...]}``"""
    data = request.get_json(silent=True) or {}
    raw = data.get("changes")
    if not isinstance(raw, list) or not raw:
        return jsonify({"error": "changes must be a non-empty list"}), 400

    changes = []
    for item in raw:
        if not isinstance(item, dict) or "enabled" not in item:
            return jsonify({"error": "each change needs name and enabled"}), 400
        identity = resolve_token(str(item.get("name", "")))
        if identity is None:
            return jsonify({"error": f"Invalid entry name: {item.get('name')}"}), 400
        changes.append((identity, bool(item["enabled"])))

    _controller.process_changes(changes)
    _broadcast("entries_changed", _entries_payload())
    return jsonify({"entries": _entries_payload()})


# ------------------------------------------------------------------
# Backups
# ------------------------------------------------------------------

@api.route("/backups/run", methods=["POST"])
def run_backups():
    try:
        results = _controller.backup_from_folder()
    except Exception as exc:
        logger.exception("Backup pass failed")
        return jsonify({"error": f"Backup pass failed: {exc}"}), 500

    _broadcast("backup_pass", {"results": results})
    return jsonify({"results": results, "entries": _entries_payload()})


@api.route("/backups", methods=["GET"])
def get_backups():
    name = request.args.get("name")
    names = [name] if name else [record.name for record in _controller.entries]

    backups = {}
    for entry_name in names:
        slots = _controller.find_existing_backups(entry_name)
        backups[entry_name] = [
            {"slot": s.slot, "path": s.path, "size": _size(s.path)} for s in slots
        ]
    return jsonify({"backups": backups, "backup_path": _controller.backup_path})


def _size(path: str) -> int | None:
    try:
        return os.path.getsize(path)
    except OSError:
        return None


@api.route("/backups", methods=["DELETE"])
def delete_backups():
    ok = _controller.delete_all_backups()
    _broadcast("backups_deleted", {"success": ok})
    return jsonify({"deleted": ok}), 200 if ok else 500


# ------------------------------------------------------------------
# GET /api/history
# ------------------------------------------------------------------

@api.route("/history", methods=["GET"])
def get_history():
    if not _history:
        return jsonify({"events": [], "total": 0})

    try:
        events = _history.get_events(
            identity=request.args.get("name"),
            status=request.args.get("status"),
            limit=request.args.get("limit", 50, type=int),
        )
    except Exception as exc:
        logger.exception("Database error fetching history")
        return jsonify({"error": f"Database error: {exc}"}), 500

    return jsonify({"events": events, "total": len(events)})


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------

@api.route("/config", methods=["GET"])
def get_config():
    if _settings_store is None:
        return jsonify({"error": "Configuration not loaded"}), 503
    return jsonify(_settings_store.settings.to_dict())


@api.route("/config", methods=["PUT"])
def update_config():
    """Validate and apply setting changes; listeners are notified."""
    data = request.get_json(silent=True) or {}
    if not data:
        return jsonify({"error": "No data provided"}), 400

    if _settings_store is None:
        return jsonify({"error": "Configuration not loaded"}), 503

    try:
        changes = _settings_store.update(data)
    except SettingsError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({
        "changed": [change.key for change in changes],
        "config": _settings_store.settings.to_dict(),
    })
