"""Slot rotation for a single log file.

Before a new backup is written to slot 1, existing backups are shifted
one slot up and anything that would exceed the cap is deleted. Planning
and applying are separate steps so the plan can be inspected (and
tested) without touching the disk.
"""

import logging
import os
from dataclasses import dataclass, field

from logvault.backup.backup_config import DEFAULT_IO_ATTEMPTS, RETRY_DELAY_SECONDS
from logvault.backup.file_ops import safe_delete, safe_move
from logvault.backup.slot_index import BackupSlot, format_backup_path

logger = logging.getLogger(__name__)

DELETE = "delete"
MOVE = "move"


@dataclass(frozen=True)
class RetentionOp:
    """A single filesystem operation required to free slot 1."""
    action: str  # "delete" or "move"
    path: str
    dest: str | None = None


@dataclass
class RetentionSummary:
    applied: list[RetentionOp] = field(default_factory=list)
    failed: list[RetentionOp] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def make_room_for_new_backup(
    existing: list[BackupSlot],
    max_allowed: int,
    backup_dir: str,
    name: str,
    ext: str,
) -> list[RetentionOp]:
    """Plan the operations that free slot 1 for ``name``.

    ``existing`` must be ascending by slot (see ``scan_slots``). The walk
    goes from the oldest backup to the newest. A backup at rank ``r``
    (1-based position) moves to slot ``r + 1``, so gaps on disk are
    compacted and the result always fits in ``1..max_allowed``.

    Returned order is safe to apply sequentially: deletes first, then
    backups moving down into a gap (lowest first), then backups moving
    up (highest first). No move overwrites a backup that has not moved
    yet.
    """
    max_allowed = max(1, max_allowed)
    overflow = max(0, len(existing) - max_allowed)
    deletes: list[RetentionOp] = []
    moves_down: list[RetentionOp] = []
    moves_up: list[RetentionOp] = []

    for rank in range(len(existing), 0, -1):
        backup = existing[rank - 1]

        if overflow > 0:
            deletes.append(RetentionOp(DELETE, backup.path))
            overflow -= 1
            continue

        if rank < max_allowed:
            dest = format_backup_path(backup_dir, name, ext, rank + 1)
            if _same_path(dest, backup.path):
                continue
            if rank + 1 > backup.slot:
                moves_up.append(RetentionOp(MOVE, backup.path, dest))
            else:
                moves_down.append(RetentionOp(MOVE, backup.path, dest))
        else:
            # Would exceed the cap after shifting
            deletes.append(RetentionOp(DELETE, backup.path))

    moves_down.reverse()
    return deletes + moves_down + moves_up


def _same_path(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def apply_retention(
    ops: list[RetentionOp],
    attempts: int = DEFAULT_IO_ATTEMPTS,
    delay: float = RETRY_DELAY_SECONDS,
) -> RetentionSummary:
    """Execute planned operations in order.

    A failed operation is recorded and skipped; the rest of the batch
    still runs. The next pass re-plans from whatever is on disk.
    """
    summary = RetentionSummary()
    for op in ops:
        if op.action == DELETE:
            ok = safe_delete(op.path, attempts=attempts, delay=delay)
        else:
            ok = safe_move(op.path, op.dest, attempts=attempts, delay=delay)
        (summary.applied if ok else summary.failed).append(op)

    if summary.failed:
        logger.warning("Retention: %d of %d operation(s) failed",
                       len(summary.failed), len(ops))
    return summary
