"""File operations with bounded retries.

Backup files are frequently held open by the process writing the log, so
copy/move/delete are retried a few times before giving up. A failed
operation is logged and reported to the caller; it never raises.
"""

import logging
import os
import shutil

import psutil
from tenacity import (
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from logvault.backup.backup_config import DEFAULT_IO_ATTEMPTS, RETRY_DELAY_SECONDS

logger = logging.getLogger(__name__)


def find_file_holders(path: str) -> list[tuple[int, str]]:
    """Return (pid, name) of processes that currently have ``path`` open.

    Best effort: processes we cannot inspect are skipped.
    """
    target = os.path.normcase(os.path.abspath(path))
    holders = []
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            for f in proc.open_files():
                if os.path.normcase(f.path) == target:
                    holders.append((proc.info["pid"], proc.info["name"]))
                    break
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return holders


def _log_failure(action: str, path: str, exc: Exception):
    logger.error("Unable to %s %s: %s", action, os.path.basename(path), exc)
    try:
        holders = find_file_holders(path)
    except psutil.Error:
        holders = []
    for pid, name in holders:
        logger.error("  %s is in use by pid=%d (%s)", os.path.basename(path), pid, name)


def _retry(action: str, path: str, fn, attempts: int, delay: float) -> bool:
    def log_attempt(state):
        logger.debug("Attempt %d to %s %s failed: %s", state.attempt_number,
                     action, path, state.outcome.exception())

    retrying = Retrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_fixed(max(delay, 0)),
        retry=(retry_if_exception_type(OSError)
               & retry_if_not_exception_type(FileNotFoundError)),
        before_sleep=log_attempt,
        reraise=True,
    )
    try:
        retrying(fn)
    except FileNotFoundError as exc:
        logger.error("%s target %s could not be found", action.capitalize(),
                     os.path.basename(path))
        logger.debug("%s", exc)
        return False
    except OSError as exc:
        _log_failure(action, path, exc)
        return False
    return True


def safe_copy(source_path: str, dest_path: str, attempts: int = DEFAULT_IO_ATTEMPTS,
              delay: float = RETRY_DELAY_SECONDS) -> bool:
    """Copy a file, overwriting the destination. Returns True on success."""
    logger.info("Copying %s to %s", os.path.basename(source_path),
                os.path.basename(dest_path))
    return _retry("copy", source_path,
                  lambda: shutil.copy2(source_path, dest_path), attempts, delay)


def safe_move(source_path: str, dest_path: str, attempts: int = DEFAULT_IO_ATTEMPTS,
              delay: float = RETRY_DELAY_SECONDS) -> bool:
    """Move a file, replacing anything already at the destination."""
    if os.path.normcase(os.path.abspath(source_path)) == \
            os.path.normcase(os.path.abspath(dest_path)):
        logger.debug("Same filepath for %s", os.path.basename(source_path))
        return True

    logger.info("Moving %s to %s", os.path.basename(source_path),
                os.path.basename(dest_path))
    return _retry("move", source_path,
                  lambda: os.replace(source_path, dest_path), attempts, delay)


def safe_delete(path: str, attempts: int = DEFAULT_IO_ATTEMPTS,
                delay: float = RETRY_DELAY_SECONDS) -> bool:
    """Delete a file. A file that is already gone counts as deleted."""
    if not os.path.exists(path):
        return True
    logger.info("Deleting %s", os.path.basename(path))
    return _retry("delete", path, lambda: os.remove(path), attempts, delay)


def safe_delete_directory(path: str, only_if_empty: bool = False) -> bool:
    """Remove a directory tree. Returns False if it could not be removed."""
    if not os.path.isdir(path):
        return True
    if only_if_empty and os.listdir(path):
        return False
    try:
        shutil.rmtree(path)
    except OSError as exc:
        logger.error("Unable to delete directory %s: %s", path, exc)
        return False
    return True


def safe_write_lines(path: str, values) -> bool:
    """Create or overwrite ``path`` with one value per line."""
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for value in values:
                f.write(f"{value}\n")
    except OSError as exc:
        logger.error("Unable to write to file %s: %s", path, exc)
        return False
    return True
