"""Error hierarchy for backup operations."""


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class ReconcileStateError(BackupError):
    """Raised when a reconciled entry ends up neither enabled nor disabled."""


class SettingsError(BackupError, ValueError):
    """Raised when a settings value is missing, unknown or out of range."""
