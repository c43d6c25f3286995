"""Backup file naming and slot discovery.

Backups for a log file live side by side in the backup folder::

    Backup/
    +-- console_bkp[1].log     <- newest
    +-- console_bkp[2].log
    +-- exception_bkp[1].log

Anything in the folder that does not match this pattern exactly is
left alone.
"""

import os
import re
from dataclasses import dataclass

from logvault.backup.backup_config import BACKUP_MARKER, BACKUP_NAME_FORMAT

_SLOT_RE = re.compile(r"\[(\d+)\]$")


@dataclass(frozen=True)
class BackupSlot:
    """One physical backup file and its slot number (1 = newest)."""
    path: str
    slot: int


def format_backup_filename(name: str, ext: str, slot: int) -> str:
    """``console``, ``.log``, 2  ->  ``console_bkp[2].log``"""
    return BACKUP_NAME_FORMAT.format(name=name, slot=slot, ext=ext)


def format_backup_path(backup_dir: str, name: str, ext: str, slot: int) -> str:
    return os.path.join(backup_dir, format_backup_filename(name, ext, slot))


def parse_slot(stem: str) -> int | None:
    """Return the bracketed slot number at the end of a backup stem.

    Reads the whole number, so ``console_bkp[12]`` gives 12. Returns None
    for anything that does not end in ``[<digits>]`` or for slot 0.
    """
    match = _SLOT_RE.search(stem)
    if not match:
        return None
    slot = int(match.group(1))
    return slot if slot >= 1 else None


def _insert_sorted(slots: list[BackupSlot], item: BackupSlot):
    """Insert keeping ``slots`` ascending; equal slots keep encounter order.

    New entries usually carry the highest slot seen so far, so check the
    tail first and only walk backwards when needed.
    """
    index = len(slots)
    while index > 0 and slots[index - 1].slot > item.slot:
        index -= 1
    slots.insert(index, item)


def scan_slots(listing, name: str) -> list[BackupSlot]:
    """Find the backups of ``name`` in a directory listing, oldest slot last.

    ``listing`` is an iterable of file paths (only the base names matter).
    Returns an empty list when no backup exists.
    """
    prefix = name + BACKUP_MARKER
    found: list[BackupSlot] = []
    for path in listing:
        stem, _ = os.path.splitext(os.path.basename(path))
        if not stem.startswith(prefix):
            continue
        # Exact pattern only: <name>_bkp[<n>]
        if not re.fullmatch(re.escape(prefix) + r"\[\d+\]", stem):
            continue
        slot = parse_slot(stem)
        if slot is None:
            continue
        _insert_sorted(found, BackupSlot(path=path, slot=slot))
    return found
