"""Backup entries: which log files are allowed to be backed up.

Two persisted lists decide this: the allow list (backup-whitelist.txt)
and the deny list (backup-blacklist.txt). Each reconciliation pass merges
them with the log files currently observed on disk and produces the
ordered entry list shown to the user.
"""

import logging
import os
from dataclasses import dataclass, field

from logvault.backup.backup_config import (
    ALTERNATE_ROOT_NAME,
    COMMENT_PREFIXES,
    PRIMARY_ROOT_NAME,
)
from logvault.backup.errors import ReconcileStateError
from logvault.backup.file_ops import safe_write_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogIdentity:
    """Stable key for a backable log file: its filename without extension.

    ``ext`` and ``folder`` describe where the file currently lives; they
    do not take part in equality or hashing.
    """
    name: str
    ext: str = field(default=".log", compare=False)
    folder: str | None = field(default=None, compare=False)

    @classmethod
    def from_path(cls, path: str) -> "LogIdentity":
        stem, ext = os.path.splitext(os.path.basename(path))
        return cls(name=stem, ext=ext, folder=os.path.dirname(os.path.abspath(path)))

    @property
    def filename(self) -> str:
        return self.name + self.ext

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class EntryRecord:
    identity: LogIdentity
    enabled: bool

    @property
    def name(self) -> str:
        return self.identity.name


def resolve_token(token: str) -> LogIdentity | None:
    """Turn a list-file token into an identity, or None if it is unusable."""
    token = token.strip()
    if not token or "/" in token or "\\" in token:
        return None
    return LogIdentity(name=token)


# ------------------------------------------------------------------
# Persisted lists
# ------------------------------------------------------------------

def read_identity_list(path: str, resolver=resolve_token) -> list[LogIdentity]:
    """Read one identity per line, skipping comments and blank lines.

    A missing file reads as an empty list. Duplicates are collapsed.
    """
    if not os.path.isfile(path):
        return []

    identities: list[LogIdentity] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            entry = line.strip()
            if not entry or entry.startswith(COMMENT_PREFIXES):
                continue
            identity = resolver(entry)
            if identity is not None and identity not in identities:
                identities.append(identity)
    return identities


def write_identity_list(path: str, identities) -> bool:
    return safe_write_lines(path, [identity.name for identity in identities])


# ------------------------------------------------------------------
# Ordering
# ------------------------------------------------------------------

def folder_sort_key(folder: str | None,
                    primary_root: str = PRIMARY_ROOT_NAME,
                    alternate_root: str = ALTERNATE_ROOT_NAME) -> tuple:
    """Sort key for entries that share a name.

    The alternate root (or an unknown folder) sorts first, the primary
    root second, and any other folder by case-insensitive path.
    """
    if not folder:
        return (0, "")
    last = os.path.basename(os.path.normpath(folder)).casefold()
    if last == alternate_root.casefold():
        return (0, "")
    if last == primary_root.casefold():
        return (1, "")
    return (2, os.path.normcase(folder).casefold())


def entry_sort_key(record: EntryRecord,
                   primary_root: str = PRIMARY_ROOT_NAME,
                   alternate_root: str = ALTERNATE_ROOT_NAME) -> tuple:
    return (record.identity.name.casefold(),
            folder_sort_key(record.identity.folder, primary_root, alternate_root))


def sort_entries(records: list[EntryRecord],
                 primary_root: str = PRIMARY_ROOT_NAME,
                 alternate_root: str = ALTERNATE_ROOT_NAME):
    records.sort(key=lambda r: entry_sort_key(r, primary_root, alternate_root))


# ------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------

def reconcile(
    candidates,
    enabled: list[LogIdentity],
    disabled: list[LogIdentity],
    progressive_enable: bool,
    primary_root: str = PRIMARY_ROOT_NAME,
    alternate_root: str = ALTERNATE_ROOT_NAME,
) -> tuple[list[EntryRecord], list[LogIdentity], list[LogIdentity]]:
    """Merge observed log files with the allow/deny lists.

    Returns ``(entries, enabled, disabled)``. The input lists are not
    modified; the returned lists include any identity auto-enabled by
    progressive mode. Identities present in a list but not observed are
    kept as entries so the user can still change them.
    """
    entries: list[EntryRecord] = []
    new_enabled = list(enabled)
    # Enabled wins when an identity is in both lists
    new_disabled = [identity for identity in disabled if identity not in enabled]

    remaining_enabled = list(enabled)
    remaining_disabled = list(new_disabled)

    seen = set()
    for identity in candidates:
        if identity in seen:
            continue
        seen.add(identity)

        is_enabled = identity in new_enabled
        is_disabled = not is_enabled

        if not is_enabled:
            is_disabled = identity in new_disabled or not progressive_enable

            if not is_disabled:
                # Progressive mode enables anything the user has not disabled
                new_enabled.append(identity)
                is_enabled = True

        logger.debug("Backup candidate %s (enabled=%s)", identity, is_enabled)

        if is_enabled:
            _discard(remaining_enabled, identity)
            entries.append(EntryRecord(identity, True))
        elif is_disabled:
            _discard(remaining_disabled, identity)
            entries.append(EntryRecord(identity, False))
        else:
            raise ReconcileStateError(
                f"Backup entry {identity} must be enabled or disabled")

    # Recorded in a list file but not observed on disk
    entries.extend(EntryRecord(identity, True) for identity in remaining_enabled)
    entries.extend(EntryRecord(identity, False) for identity in remaining_disabled)

    sort_entries(entries, primary_root, alternate_root)
    return entries, new_enabled, new_disabled


def _discard(items: list, value):
    try:
        items.remove(value)
    except ValueError:
        pass
