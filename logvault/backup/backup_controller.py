"""Backup orchestration.

Owns the allow/deny lists and the current entry snapshot, decides whether
a log file may be backed up, rotates its existing backups and copies the
file into slot 1.

Usage::

    ctrl = BackupController(storage_root=lambda: "/game/logs",
                            candidate_provider=monitor.candidate_identities,
                            lists_path="/game/data")
    ctrl.populate_lists()
    ctrl.enabled = True
    ctrl.backup_from_folder()       # startup pass
    ctrl.backup(LogIdentity("console"))
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable

from logvault.backup.backup_config import (
    ALLOWED_BACKUPS_PER_FILE,
    ALTERNATE_ROOT_NAME,
    BACKUP_BLACKLIST,
    BACKUP_FOLDER_NAME,
    BACKUP_WHITELIST,
    DEFAULT_IO_ATTEMPTS,
    ENABLED_BY_DEFAULT,
    PRIMARY_ROOT_NAME,
    RETRY_DELAY_SECONDS,
    SUPPORTED_EXTENSIONS,
)
from logvault.backup.entries import (
    EntryRecord,
    LogIdentity,
    read_identity_list,
    reconcile,
    resolve_token,
    sort_entries,
    write_identity_list,
)
from logvault.backup.file_ops import safe_copy, safe_delete_directory
from logvault.backup.retention import apply_retention, make_room_for_new_backup
from logvault.backup.slot_index import BackupSlot, format_backup_path, scan_slots

logger = logging.getLogger(__name__)

# Outcome of a backup request
SKIPPED = "skipped"
COPIED = "copied"
FAILED = "failed"

# Lifecycle of a deferred request
PENDING = "pending"
APPLIED = "applied"
DROPPED = "dropped"


@dataclass
class BackupRequest:
    """A request to back up one log file.

    ``replacement_path`` is set when the log file has been moved away from
    its usual location; it is preferred over the usual path when it still
    exists. Successful backups append their destination to ``backup_paths``.
    """
    identity: LogIdentity
    source_path: str | None = None
    replacement_path: str | None = None
    backup_paths: list[str] = field(default_factory=list)
    state: str | None = None


class BackupController:
    """Rotating per-file backups gated by the allow/deny lists."""

    def __init__(
        self,
        storage_root: Callable[[], str],
        candidate_provider: Callable[[], Iterable[LogIdentity]] | None = None,
        lists_path: str = "data",
        source_resolver: Callable[[LogIdentity], str | None] | None = None,
        history=None,
        allowed_backups_per_file: int = ALLOWED_BACKUPS_PER_FILE,
        enabled: bool = False,
        progressive_enable_mode: bool = False,
        enabled_by_default: Iterable[str] = ENABLED_BY_DEFAULT,
        extensions: Iterable[str] = SUPPORTED_EXTENSIONS,
        io_attempts: int = DEFAULT_IO_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        primary_root_name: str = PRIMARY_ROOT_NAME,
        alternate_root_name: str = ALTERNATE_ROOT_NAME,
    ):
        if storage_root is None:
            raise ValueError("storage_root provider is required")
        self.storage_root = storage_root
        self.candidate_provider = candidate_provider or (lambda: [])
        self.source_resolver = source_resolver
        self.lists_path = lists_path
        self.history = history

        self.allowed_backups_per_file = allowed_backups_per_file
        self.enabled = enabled
        self.progressive_enable_mode = progressive_enable_mode
        self.enabled_by_default = list(enabled_by_default)
        self.extensions = tuple(e.lower() for e in extensions)
        self.io_attempts = io_attempts
        self.retry_delay = retry_delay
        self.primary_root_name = primary_root_name
        self.alternate_root_name = alternate_root_name

        self.enabled_list: list[LogIdentity] = []
        self.disabled_list: list[LogIdentity] = []
        self.entries: list[EntryRecord] = []
        self.pending: dict[LogIdentity, BackupRequest] = {}

        self._file_cache: list[str] | None = None
        self._lock = threading.RLock()

        os.makedirs(self.backup_path, exist_ok=True)

    @classmethod
    def from_settings(cls, settings, storage_root=None, **kwargs) -> "BackupController":
        """Build a controller from a ``Settings`` instance."""
        from logvault.config.settings import resolve_path

        if storage_root is None:
            root = resolve_path(settings.logs_folder_path)
            storage_root = lambda: root
        return cls(
            storage_root=storage_root,
            lists_path=resolve_path(settings.lists_path),
            allowed_backups_per_file=settings.backups_per_file,
            enabled=settings.allow_backups,
            progressive_enable_mode=settings.allow_progressive_backups,
            enabled_by_default=settings.enabled_by_default,
            extensions=settings.file_extensions,
            io_attempts=settings.io_attempts,
            primary_root_name=settings.primary_root_name,
            alternate_root_name=settings.alternate_root_name,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def backup_path(self) -> str:
        return os.path.join(self.storage_root(), BACKUP_FOLDER_NAME)

    @property
    def whitelist_path(self) -> str:
        return os.path.join(self.lists_path, BACKUP_WHITELIST)

    @property
    def blacklist_path(self) -> str:
        return os.path.join(self.lists_path, BACKUP_BLACKLIST)

    def resolve_source_path(self, identity: LogIdentity) -> str | None:
        """Where the live log file for ``identity`` is expected to be."""
        if self.source_resolver is not None:
            return self.source_resolver(identity)
        folder = identity.folder or self.storage_root()
        return os.path.join(folder, identity.filename)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def bind_settings(self, store):
        """Follow changes published by a ``SettingsStore``."""
        store.subscribe(self.on_setting_changed)

    def on_setting_changed(self, change):
        with self._lock:
            if change.key == "allow_backups":
                self.enabled = change.new
                if self.enabled:
                    self.create_backups_from_pending()
            elif change.key == "allow_progressive_backups":
                self.progressive_enable_mode = change.new
            elif change.key == "backups_per_file":
                self.allowed_backups_per_file = change.new
            elif change.key == "enabled_by_default":
                self.enabled_by_default = list(change.new)
            elif change.key == "file_extensions":
                self.extensions = tuple(e.lower() for e in change.new)
            elif change.key == "io_attempts":
                self.io_attempts = change.new
            elif change.key == "logs_folder_path":
                self._file_cache = None
                os.makedirs(self.backup_path, exist_ok=True)

    # ------------------------------------------------------------------
    # Backup folder listing
    # ------------------------------------------------------------------

    def get_backup_files(self) -> list[str]:
        """All files in the backup folder with a supported extension."""
        try:
            names = os.listdir(self.backup_path)
        except FileNotFoundError:
            return []
        return [
            os.path.join(self.backup_path, name)
            for name in sorted(names)
            if os.path.splitext(name)[1].lower() in self.extensions
            and os.path.isfile(os.path.join(self.backup_path, name))
        ]

    def build_file_cache(self):
        self._file_cache = self.get_backup_files()

    @contextmanager
    def directory_cache(self):
        """Scope a single listing of the backup folder to one pass.

        Nested uses share the outer listing; the outermost releases it.
        """
        owner = self._file_cache is None
        if owner:
            self.build_file_cache()
        try:
            yield
        finally:
            if owner:
                self._file_cache = None

    def find_existing_backups(self, name: str) -> list[BackupSlot]:
        """Backups for ``name`` ordered by slot, newest first."""
        listing = self._file_cache if self._file_cache is not None else self.get_backup_files()
        return scan_slots(listing, os.path.splitext(name)[0])

    # ------------------------------------------------------------------
    # Backup requests
    # ------------------------------------------------------------------

    def is_backup_allowed(self, identity: LogIdentity) -> bool:
        for record in self.entries:
            if record.identity == identity:
                return record.enabled
        return False

    def backup(self, identity: LogIdentity, source_path: str | None = None,
               replacement_path: str | None = None) -> str:
        """Convenience wrapper around ``request_backup``."""
        return self.request_backup(BackupRequest(
            identity=identity,
            source_path=source_path,
            replacement_path=replacement_path,
        ))

    def request_backup(self, request: BackupRequest) -> str:
        """Back up a log file now, or defer it until backups are allowed.

        Returns SKIPPED, COPIED or FAILED. Deferred requests return SKIPPED
        and replace any earlier deferred request for the same log file.
        """
        with self._lock:
            if not self.enabled or not self.is_backup_allowed(request.identity):
                self._defer(request)
                return SKIPPED
            return self._create_backup(request)

    def _defer(self, request: BackupRequest):
        previous = self.pending.pop(request.identity, None)
        if previous is not None:
            previous.state = DROPPED
            logger.debug("Dropped pending backup for %s", request.identity)
        request.state = PENDING
        self.pending[request.identity] = request
        logger.info("Backup for %s is pending", request.identity)

    def _resolve_request_source(self, request: BackupRequest) -> str | None:
        if request.replacement_path and os.path.isfile(request.replacement_path):
            return request.replacement_path
        path = request.source_path or self.resolve_source_path(request.identity)
        if path and os.path.isfile(path):
            return path
        return None

    def _create_backup(self, request: BackupRequest) -> str:
        identity = request.identity
        source = self._resolve_request_source(request)

        # The log may have been moved by someone else, or already cleaned up
        if source is None:
            logger.info("Unable to backup log file %s: source not found", identity)
            self._record(identity, SKIPPED, None, None, "source not found")
            return SKIPPED

        ext = os.path.splitext(source)[1] or identity.ext
        try:
            os.makedirs(self.backup_path, exist_ok=True)
            existing = self.find_existing_backups(identity.name)
            logger.info("%d existing backups for %s detected", len(existing), identity)

            ops = make_room_for_new_backup(
                existing, self.allowed_backups_per_file,
                self.backup_path, identity.name, ext,
            )
            apply_retention(ops, attempts=self.io_attempts, delay=self.retry_delay)

            dest = format_backup_path(self.backup_path, identity.name, ext, 1)
            copied = safe_copy(source, dest, attempts=self.io_attempts, delay=self.retry_delay)
        except OSError as exc:
            logger.error("Backup of %s failed: %s", identity, exc)
            self._record(identity, FAILED, source, None, str(exc))
            return FAILED
        finally:
            if self._file_cache is not None:
                self.build_file_cache()

        if not copied:
            logger.info("Unable to backup log file %s", identity)
            self._record(identity, FAILED, source, dest, "copy failed")
            return FAILED

        request.backup_paths.append(dest)
        self._record(identity, COPIED, source, dest, None)
        return COPIED

    def _record(self, identity, status, source, dest, detail):
        if self.history is None:
            return
        try:
            self.history.record(
                identity=identity.name, status=status,
                source_path=source, backup_path=dest, detail=detail,
            )
        except Exception:
            logger.exception("Could not record backup outcome for %s", identity)

    def create_backups_from_pending(self) -> dict[str, str]:
        """Apply deferred requests whose log file is now enabled."""
        results: dict[str, str] = {}
        with self._lock:
            if not self.enabled:
                return results
            for record in self.entries:
                if not record.enabled:
                    continue
                request = self.pending.pop(record.identity, None)
                if request is None:
                    continue
                request.state = APPLIED
                results[record.identity.name] = self._create_backup(request)
        return results

    # ------------------------------------------------------------------
    # Allow/deny lists
    # ------------------------------------------------------------------

    def populate_lists(self):
        """Load both list files, then apply the enabled-by-default entries.

        An identity found in both files stays enabled.
        """
        with self._lock:
            self.enabled_list = read_identity_list(self.whitelist_path)
            self.disabled_list = [
                identity for identity in read_identity_list(self.blacklist_path)
                if identity not in self.enabled_list
            ]
            self._apply_enabled_defaults()

    def _apply_enabled_defaults(self):
        for token in self.enabled_by_default:
            identity = resolve_token(token)
            if identity is None:
                continue
            if identity not in self.enabled_list and identity not in self.disabled_list:
                self.enabled_list.append(identity)

    def save_lists(self):
        logger.info("Writing list data to file")
        with self._lock:
            write_identity_list(self.blacklist_path, self.disabled_list)
            write_identity_list(self.whitelist_path, self.enabled_list)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def process_new_entries(self) -> list[EntryRecord]:
        """Rebuild the entry snapshot from the log files currently observed.

        Persists the updated lists, applies pending requests that became
        eligible and releases the directory listing.
        """
        with self._lock, self.directory_cache():
            self.entries = []
            candidates = list(self.candidate_provider())

            entries, enabled, disabled = reconcile(
                candidates, self.enabled_list, self.disabled_list,
                self.progressive_enable_mode,
                primary_root=self.primary_root_name,
                alternate_root=self.alternate_root_name,
            )
            self.entries = entries
            self.enabled_list = enabled
            self.disabled_list = disabled

            self.save_lists()
            self.create_backups_from_pending()
            return list(self.entries)

    def backup_from_folder(self) -> dict[str, str]:
        """Startup pass: reconcile, then back up every enabled log file found."""
        results: dict[str, str] = {}
        with self._lock, self.directory_cache():
            applied = set(self.pending)
            self.process_new_entries()
            applied -= set(self.pending)

            if not self.enabled:
                logger.info("Backups are disabled; entries processed only")
                return results

            observed = set(self.candidate_provider())
            for record in self.entries:
                identity = record.identity
                if not record.enabled or identity not in observed or identity in applied:
                    continue
                results[identity.name] = self._create_backup(BackupRequest(identity=identity))
        return results

    def process_changes(self, changes: list[tuple[LogIdentity, bool]]):
        """Apply enabled/disabled edits pushed from the user interface."""
        with self._lock:
            should_sort = False
            for identity, backup_enabled in changes:
                logger.info("Processing entry: %s (enabled=%s)", identity, backup_enabled)

                add_to, remove_from = (
                    (self.enabled_list, self.disabled_list) if backup_enabled
                    else (self.disabled_list, self.enabled_list)
                )
                if identity in remove_from:
                    remove_from.remove(identity)
                if identity not in add_to:
                    add_to.append(identity)

                index = self._entry_index(identity)
                if index != -1:
                    current = self.entries[index].identity
                    self.entries[index] = EntryRecord(current, backup_enabled)
                else:
                    self.entries.append(EntryRecord(identity, backup_enabled))
                    should_sort = True

            if should_sort:
                sort_entries(self.entries, self.primary_root_name, self.alternate_root_name)

            self.save_lists()
            self.create_backups_from_pending()

    def detect_changes(self, mirrored: list[tuple[str, bool]]) -> list[tuple[LogIdentity, bool]]:
        """Compare a UI-side copy of the entries with the snapshot.

        ``mirrored`` must list the same names in the same order as
        ``entries``. Anything else is an inconsistency; nothing is changed.
        """
        with self._lock:
            if len(mirrored) != len(self.entries):
                logger.info("Config entry count %d", len(mirrored))
                logger.info("Backup entry count %d", len(self.entries))
                logger.warning("Backup entry count detected does not match managed entry count")
                return []

            changes = []
            for (name, enabled), record in zip(mirrored, self.entries):
                if name != record.name:
                    logger.warning("Backup entry %s does not match managed entry %s",
                                   name, record.name)
                    return []
                if bool(enabled) != record.enabled:
                    changes.append((record.identity, bool(enabled)))
            return changes

    def _entry_index(self, identity: LogIdentity) -> int:
        for i, record in enumerate(self.entries):
            if record.identity == identity:
                return i
        return -1

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def delete_all_backups(self) -> bool:
        """Remove the backup folder and everything in it."""
        with self._lock:
            self._file_cache = None
            ok = safe_delete_directory(self.backup_path)
            os.makedirs(self.backup_path, exist_ok=True)
            if ok:
                logger.info("Deleted all backups in %s", self.backup_path)
            return ok

    def status(self) -> dict:
        with self._lock:
            return {
                "enabled": self.enabled,
                "progressive_enable": self.progressive_enable_mode,
                "backups_per_file": self.allowed_backups_per_file,
                "storage_root": self.storage_root(),
                "backup_path": self.backup_path,
                "entries": len(self.entries),
                "enabled_entries": sum(1 for r in self.entries if r.enabled),
                "pending": sorted(identity.name for identity in self.pending),
            }

    def close(self):
        """Flush the lists. Call at shutdown."""
        self.save_lists()
