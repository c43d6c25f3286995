"""Tests for slot rotation planning and execution.

Covers:
- Shift/evict planning for contiguous, gapped and over-cap slot sets
- Planning twice without a new backup produces nothing
- Failed operations do not abort the batch
"""

import os

import pytest

from logvault.backup import file_ops
from logvault.backup.retention import (
    DELETE,
    MOVE,
    RetentionOp,
    apply_retention,
    make_room_for_new_backup,
)
from logvault.backup.slot_index import format_backup_path, scan_slots


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def backup_dir(tmp_path):
    d = tmp_path / "Backup"
    d.mkdir()
    return d


def make_backups(backup_dir, slots, name="console", ext=".log"):
    for slot in slots:
        (backup_dir / f"{name}_bkp[{slot}]{ext}").write_text(f"slot {slot}")
    return scan_slots([str(p) for p in backup_dir.iterdir()], name)


def plan(backup_dir, existing, max_allowed, name="console", ext=".log"):
    return make_room_for_new_backup(existing, max_allowed, str(backup_dir), name, ext)


def slot_path(backup_dir, slot, name="console", ext=".log"):
    return format_backup_path(str(backup_dir), name, ext, slot)


def slots_on_disk(backup_dir, name="console"):
    return [s.slot for s in scan_slots([str(p) for p in backup_dir.iterdir()], name)]


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

class TestPlanning:
    def test_no_existing_backups(self, backup_dir):
        assert plan(backup_dir, [], 2) == []

    def test_shift_within_cap(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2])
        ops = plan(backup_dir, existing, 3)
        assert ops == [
            RetentionOp(MOVE, slot_path(backup_dir, 2), slot_path(backup_dir, 3)),
            RetentionOp(MOVE, slot_path(backup_dir, 1), slot_path(backup_dir, 2)),
        ]

    def test_oldest_deleted_at_cap(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2])
        ops = plan(backup_dir, existing, 2)
        assert ops == [
            RetentionOp(DELETE, slot_path(backup_dir, 2)),
            RetentionOp(MOVE, slot_path(backup_dir, 1), slot_path(backup_dir, 2)),
        ]

    def test_max_one_deletes_previous(self, backup_dir):
        existing = make_backups(backup_dir, [1])
        assert plan(backup_dir, existing, 1) == [
            RetentionOp(DELETE, slot_path(backup_dir, 1)),
        ]

    def test_shrunk_cap_evicts_excess(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2, 3, 4, 5])
        ops = plan(backup_dir, existing, 2)
        deletes = [op.path for op in ops if op.action == DELETE]
        moves = [op for op in ops if op.action == MOVE]
        assert sorted(deletes) == sorted(slot_path(backup_dir, n) for n in (2, 3, 4, 5))
        assert moves == [RetentionOp(MOVE, slot_path(backup_dir, 1), slot_path(backup_dir, 2))]

    def test_deletes_come_first(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2, 3])
        ops = plan(backup_dir, existing, 2)
        actions = [op.action for op in ops]
        assert actions == [DELETE, DELETE, MOVE]

    def test_gap_is_compacted(self, backup_dir):
        existing = make_backups(backup_dir, [1, 5])
        ops = plan(backup_dir, existing, 3)
        assert ops == [
            RetentionOp(MOVE, slot_path(backup_dir, 5), slot_path(backup_dir, 3)),
            RetentionOp(MOVE, slot_path(backup_dir, 1), slot_path(backup_dir, 2)),
        ]

    def test_planning_twice_is_idempotent(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2])
        apply_retention(plan(backup_dir, existing, 3), delay=0)

        again = scan_slots([str(p) for p in backup_dir.iterdir()], "console")
        assert plan(backup_dir, again, 3) == []


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------

class TestApply:
    def test_slot_one_freed(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2])
        summary = apply_retention(plan(backup_dir, existing, 3), delay=0)

        assert summary.ok
        assert slots_on_disk(backup_dir) == [2, 3]
        assert (backup_dir / "console_bkp[2].log").read_text() == "slot 1"
        assert (backup_dir / "console_bkp[3].log").read_text() == "slot 2"

    def test_cap_respected(self, backup_dir):
        existing = make_backups(backup_dir, [1, 2, 3, 4])
        apply_retention(plan(backup_dir, existing, 3), delay=0)
        assert slots_on_disk(backup_dir) == [2, 3]

    def test_gap_moving_down_does_not_overwrite(self, backup_dir):
        existing = make_backups(backup_dir, [3, 4])
        apply_retention(plan(backup_dir, existing, 5), delay=0)

        assert slots_on_disk(backup_dir) == [2, 3]
        assert (backup_dir / "console_bkp[2].log").read_text() == "slot 3"
        assert (backup_dir / "console_bkp[3].log").read_text() == "slot 4"

    def test_malformed_files_untouched(self, backup_dir):
        (backup_dir / "console_bkp[old].log").write_text("keep me")
        (backup_dir / "notes.txt").write_text("keep me too")
        existing = make_backups(backup_dir, [1])
        apply_retention(plan(backup_dir, existing, 1), delay=0)

        assert (backup_dir / "console_bkp[old].log").read_text() == "keep me"
        assert (backup_dir / "notes.txt").exists()

    def test_failed_op_does_not_abort_batch(self, backup_dir, monkeypatch):
        existing = make_backups(backup_dir, [1, 2, 3])
        ops = plan(backup_dir, existing, 2)
        blocked = slot_path(backup_dir, 3)

        real_remove = os.remove

        def remove(path):
            if path == blocked:
                raise PermissionError("file in use")
            real_remove(path)

        monkeypatch.setattr(file_ops.os, "remove", remove)
        monkeypatch.setattr(file_ops, "find_file_holders", lambda path: [])

        summary = apply_retention(ops, attempts=3, delay=0)

        assert not summary.ok
        assert [op.path for op in summary.failed] == [blocked]
        assert len(summary.applied) == 2
        assert (backup_dir / "console_bkp[3].log").exists()
        assert not (backup_dir / "console_bkp[1].log").exists()
