"""Logs folder monitor using watchdog.

Keeps track of which log files currently exist in the logs folder so the
backup controller knows its candidates. When a log file is moved out of
the folder its new location is remembered, and an optional callback lets
the caller back it up from there.
"""

import logging
import os
import threading
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from logvault.backup.backup_config import BACKUP_FOLDER_NAME, SUPPORTED_EXTENSIONS
from logvault.backup.entries import LogIdentity

logger = logging.getLogger(__name__)


class LogsFolderEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for the logs folder to the monitor."""

    def __init__(self, monitor: "LogsFolderMonitor"):
        super().__init__()
        self.monitor = monitor

    def on_created(self, event):
        if event.is_directory:
            return
        try:
            self.monitor.track(event.src_path)
        except Exception:
            logger.exception("Error handling created event for %s", event.src_path)

    def on_deleted(self, event):
        if event.is_directory:
            return
        try:
            self.monitor.untrack(event.src_path)
        except Exception:
            logger.exception("Error handling deleted event for %s", event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        try:
            self.monitor.moved(event.src_path, event.dest_path)
        except Exception:
            logger.exception("Error handling moved event for %s", event.src_path)


class LogsFolderMonitor:
    """Candidate provider for the backup controller.

    Only files directly inside the logs folder with a supported extension
    count; the Backup folder is never looked at.
    """

    def __init__(
        self,
        storage_root: Callable[[], str],
        extensions=SUPPORTED_EXTENSIONS,
        on_moved_away: Callable[[LogIdentity, str], None] | None = None,
    ):
        self.storage_root = storage_root
        self.extensions = tuple(e.lower() for e in extensions)
        self.on_moved_away = on_moved_away

        self._files: dict[str, LogIdentity] = {}
        self._replacements: dict[str, str] = {}
        self._lock = threading.Lock()
        self._observer = None

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _is_candidate(self, path: str) -> bool:
        root = os.path.normcase(os.path.abspath(self.storage_root()))
        parent = os.path.normcase(os.path.dirname(os.path.abspath(path)))
        if parent != root:
            return False
        return os.path.splitext(path)[1].lower() in self.extensions

    def scan(self) -> list[LogIdentity]:
        """Rebuild the tracked set from a directory listing."""
        root = self.storage_root()
        found: dict[str, LogIdentity] = {}
        try:
            names = sorted(os.listdir(root))
        except FileNotFoundError:
            logger.warning("Logs folder does not exist: %s", root)
            names = []

        for name in names:
            path = os.path.join(root, name)
            if name == BACKUP_FOLDER_NAME or not os.path.isfile(path):
                continue
            if os.path.splitext(name)[1].lower() not in self.extensions:
                continue
            identity = LogIdentity.from_path(path)
            found.setdefault(identity.name, identity)

        with self._lock:
            self._files = found
        logger.debug("Found %d log file(s) in %s", len(found), root)
        return list(found.values())

    def track(self, path: str):
        if not self._is_candidate(path):
            return
        identity = LogIdentity.from_path(path)
        with self._lock:
            self._files.setdefault(identity.name, identity)
            self._replacements.pop(identity.name, None)
        logger.info("Log file detected: %s", identity)

    def untrack(self, path: str):
        if not self._is_candidate(path):
            return
        name = os.path.splitext(os.path.basename(path))[0]
        with self._lock:
            identity = self._files.get(name)
            if identity is not None and identity.filename == os.path.basename(path):
                del self._files[name]
                logger.info("Log file removed: %s", name)

    def moved(self, src_path: str, dest_path: str):
        if not self._is_candidate(src_path):
            self.track(dest_path)
            return

        name = os.path.splitext(os.path.basename(src_path))[0]
        with self._lock:
            identity = self._files.get(name) or LogIdentity.from_path(src_path)
        self.untrack(src_path)

        if self._is_candidate(dest_path):
            self.track(dest_path)
            return

        with self._lock:
            self._replacements[name] = dest_path
        logger.info("Log file %s moved to %s", name, dest_path)

        if self.on_moved_away is not None:
            self.on_moved_away(identity, dest_path)

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    def candidate_identities(self) -> list[LogIdentity]:
        with self._lock:
            return list(self._files.values())

    def replacement_path(self, identity: LogIdentity) -> str | None:
        with self._lock:
            return self._replacements.get(identity.name)

    def resolve_source_path(self, identity: LogIdentity) -> str | None:
        """Current path of the log file, or where it was moved to."""
        with self._lock:
            tracked = self._files.get(identity.name)
            replacement = self._replacements.get(identity.name)
        if tracked is not None:
            return os.path.join(tracked.folder, tracked.filename)
        return replacement

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start(self):
        """Scan the logs folder and start watching it for changes."""
        self.scan()
        root = self.storage_root()
        if not os.path.isdir(root):
            logger.warning("Logs folder does not exist, not watching: %s", root)
            return

        self._observer = Observer()
        self._observer.schedule(LogsFolderEventHandler(self), root, recursive=False)
        self._observer.start()
        logger.info("Watching logs folder: %s", root)

    def stop(self):
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("Logs folder monitor stopped.")

    def restart(self):
        """Re-point the watcher after the logs folder path changed."""
        self.stop()
        self.start()

    @property
    def running(self) -> bool:
        return self._observer is not None
