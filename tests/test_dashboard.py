"""Tests for the dashboard API.

Endpoints tested:
    GET    /api/status
    GET    /api/entries
    PUT    /api/entries
    POST   /api/entries/changes
    POST   /api/backups/run
    GET    /api/backups
    DELETE /api/backups
    GET    /api/history
    GET    /api/config
    PUT    /api/config
    WS     /ws/live (broadcast handler)
"""

import json

import pytest

from logvault.backup.backup_controller import BackupController
from logvault.backup.entries import LogIdentity
from logvault.config.settings import Settings, SettingsStore
from logvault.dashboard.app import create_app
from logvault.dashboard.websocket_handler import WebSocketHandler
from logvault.database.backup_history import BackupHistory
from logvault.monitor.logs_monitor import LogsFolderMonitor


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def services(tmp_path):
    """Real services backed by temp directories."""
    logs = tmp_path / "logs"
    logs.mkdir()
    (logs / "console.log").write_text("console output")
    (logs / "exception.log").write_text("traceback")
    (logs / "mods.log").write_text("mod list")

    config_path = str(tmp_path / "config.json")
    settings = Settings(
        logs_folder_path=str(logs),
        lists_path=str(tmp_path / "data"),
        history_db_path=str(tmp_path / "history.db"),
        allow_backups=True,
    )
    store = SettingsStore(settings, config_path=config_path)
    history = BackupHistory(settings.history_db_path)
    monitor = LogsFolderMonitor(lambda: str(logs))
    controller = BackupController.from_settings(
        settings,
        candidate_provider=monitor.scan,
        history=history,
        retry_delay=0,
    )
    controller.populate_lists()
    controller.process_new_entries()

    yield {
        "logs": logs,
        "store": store,
        "history": history,
        "controller": controller,
        "config_path": config_path,
    }

    history.close()


@pytest.fixture
def app(services):
    app = create_app(
        settings_store=services["store"],
        controller=services["controller"],
        history=services["history"],
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, message):
        if self.fail:
            raise ConnectionError("closed")
        self.sent.append(json.loads(message))


# ---------------------------------------------------------------------------
# Status & entries
# ---------------------------------------------------------------------------

class TestStatus:
    def test_status(self, client, services):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["enabled"] is True
        assert data["entries"] == 3
        assert data["enabled_entries"] == 2
        assert data["storage_root"] == str(services["logs"])
        assert "timestamp" in data

    def test_index(self, client):
        assert client.get("/").get_json()["service"] == "logvault"


class TestEntries:
    def test_get_entries(self, client):
        entries = client.get("/api/entries").get_json()["entries"]
        assert [(e["name"], e["enabled"]) for e in entries] == [
            ("console", True), ("exception", True), ("mods", False),
        ]

    def test_put_entries_applies_differences(self, client, services):
        resp = client.put("/api/entries", json={"entries": [
            {"name": "console", "enabled": False},
            {"name": "exception", "enabled": True},
            {"name": "mods", "enabled": True},
        ]})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["changed"] == ["console", "mods"]

        controller = services["controller"]
        assert not controller.is_backup_allowed(LogIdentity("console"))
        assert controller.is_backup_allowed(LogIdentity("mods"))

    def test_put_entries_count_mismatch(self, client, services):
        resp = client.put("/api/entries", json={"entries": [
            {"name": "console", "enabled": False},
        ]})
        assert resp.status_code == 409
        assert services["controller"].is_backup_allowed(LogIdentity("console"))

    def test_put_entries_name_mismatch(self, client, services):
        resp = client.put("/api/entries", json={"entries": [
            {"name": "mods", "enabled": True},
            {"name": "exception", "enabled": True},
            {"name": "console", "enabled": True},
        ]})
        assert resp.status_code == 409
        assert not services["controller"].is_backup_allowed(LogIdentity("mods"))

    def test_put_entries_bad_body(self, client):
        assert client.put("/api/entries", json={"entries": "nope"}).status_code == 400
        assert client.put("/api/entries", json={"entries": [{"name": "x"}]}).status_code == 400

    def test_post_changes(self, client, services):
        resp = client.post("/api/entries/changes", json={"changes": [
            {"name": "newlog", "enabled": True},
        ]})
        assert resp.status_code == 200
        names = [e["name"] for e in resp.get_json()["entries"]]
        assert names == ["console", "exception", "mods", "newlog"]
        assert LogIdentity("newlog") in services["controller"].enabled_list

    @pytest.mark.parametrize("body", [
        {},
        {"changes": []},
        {"changes": [{"name": "a/b", "enabled": True}]},
        {"changes": [{"name": "console"}]},
    ])
    def test_post_changes_invalid(self, client, body):
        assert client.post("/api/entries/changes", json=body).status_code == 400


# ---------------------------------------------------------------------------
# Backups & history
# ---------------------------------------------------------------------------

class TestBackups:
    def test_run_pass(self, client, services):
        resp = client.post("/api/backups/run")
        assert resp.status_code == 200
        assert resp.get_json()["results"] == {"console": "copied", "exception": "copied"}
        backup = services["logs"] / "Backup"
        assert (backup / "console_bkp[1].log").read_text() == "console output"
        assert not (backup / "mods_bkp[1].log").exists()

    def test_list_backups(self, client):
        client.post("/api/backups/run")
        client.post("/api/backups/run")

        data = client.get("/api/backups").get_json()
        assert [s["slot"] for s in data["backups"]["console"]] == [1, 2]
        assert data["backups"]["mods"] == []

        only = client.get("/api/backups?name=exception").get_json()["backups"]
        assert list(only) == ["exception"]
        assert only["exception"][0]["size"] == len("traceback")

    def test_delete_backups(self, client, services):
        client.post("/api/backups/run")
        resp = client.delete("/api/backups")
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] is True
        assert list((services["logs"] / "Backup").iterdir()) == []

    def test_history(self, client):
        client.post("/api/backups/run")
        data = client.get("/api/history").get_json()
        assert data["total"] == 2
        assert {e["identity"] for e in data["events"]} == {"console", "exception"}

        filtered = client.get("/api/history?name=console").get_json()
        assert filtered["total"] == 1


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfig:
    def test_get_config(self, client):
        data = client.get("/api/config").get_json()
        assert data["allow_backups"] is True
        assert data["backups_per_file"] == 2

    def test_update_config_reaches_controller(self, client, services):
        resp = client.put("/api/config", json={
            "allow_backups": False, "backups_per_file": 4,
        })
        assert resp.status_code == 200
        assert sorted(resp.get_json()["changed"]) == ["allow_backups", "backups_per_file"]

        controller = services["controller"]
        assert controller.enabled is False
        assert controller.allowed_backups_per_file == 4

        with open(services["config_path"]) as f:
            assert json.load(f)["backups_per_file"] == 4

    def test_enabling_applies_pending(self, client, services):
        client.put("/api/config", json={"allow_backups": False})
        services["controller"].backup(LogIdentity("console"))
        assert not (services["logs"] / "Backup" / "console_bkp[1].log").exists()

        client.put("/api/config", json={"allow_backups": True})
        assert (services["logs"] / "Backup" / "console_bkp[1].log").exists()

    def test_invalid_config(self, client):
        resp = client.put("/api/config", json={"backups_per_file": 10})
        assert resp.status_code == 400
        assert "backups_per_file" in resp.get_json()["error"]

    def test_empty_config(self, client):
        assert client.put("/api/config", json={}).status_code == 400


# ---------------------------------------------------------------------------
# WebSocket broadcast
# ---------------------------------------------------------------------------

class TestWebSocket:
    def test_broadcast_drops_dead_clients(self):
        handler = WebSocketHandler()
        good, dead = FakeWebSocket(), FakeWebSocket(fail=True)
        handler.register(good)
        handler.register(dead)

        assert handler.broadcast("ping", {"n": 1}) == 1
        assert handler.client_count == 1
        assert good.sent == [{"type": "ping", "data": {"n": 1}}]

    def test_unregister(self):
        handler = WebSocketHandler()
        ws = FakeWebSocket()
        handler.register(ws)
        handler.unregister(ws)
        handler.unregister(ws)
        assert handler.client_count == 0

    def test_setting_change_broadcast(self, app, client):
        ws = FakeWebSocket()
        app.ws_handler.register(ws)
        client.put("/api/config", json={"allow_progressive_backups": True})
        assert ws.sent == [{
            "type": "setting_changed",
            "data": {"key": "allow_progressive_backups", "old": False, "new": True},
        }]

    def test_entry_change_broadcast(self, app, client):
        ws = FakeWebSocket()
        app.ws_handler.register(ws)
        client.post("/api/entries/changes", json={"changes": [
            {"name": "mods", "enabled": True},
        ]})
        assert ws.sent[-1]["type"] == "entries_changed"

    def test_backup_events_broadcast(self, app, client):
        ws = FakeWebSocket()
        app.ws_handler.register(ws)
        client.post("/api/backups/run")
        client.delete("/api/backups")
        assert [m["type"] for m in ws.sent] == ["backup_pass", "backups_deleted"]
        assert ws.sent[0]["data"]["results"]["console"] == "copied"
        assert ws.sent[1]["data"] == {"success": True}
