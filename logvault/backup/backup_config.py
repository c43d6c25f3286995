"""Backup system constants and defaults."""

# Folder (under the logs folder) that stores backup files
BACKUP_FOLDER_NAME = "Backup"

# Retention: number of backups kept per log file
ALLOWED_BACKUPS_PER_FILE = 2
MIN_BACKUPS_PER_FILE = 1
MAX_BACKUPS_PER_FILE = 5

# Persisted allow/deny lists, one identity per line
BACKUP_WHITELIST = "backup-whitelist.txt"
BACKUP_BLACKLIST = "backup-blacklist.txt"
COMMENT_PREFIXES = ("//", "#")

# Backup filename pattern: <name>_bkp[<slot>]<ext>
BACKUP_MARKER = "_bkp"
BACKUP_NAME_FORMAT = "{name}" + BACKUP_MARKER + "[{slot}]{ext}"

# Log files eligible for backup
SUPPORTED_EXTENSIONS = (".log", ".txt")

# These logs default to being enabled unless the user disables them
ENABLED_BY_DEFAULT = ("console", "exception")

# File operation retries against transient I/O errors (file in use)
DEFAULT_IO_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.05

# Folder keywords used to order entries that share a name
PRIMARY_ROOT_NAME = "logs"
ALTERNATE_ROOT_NAME = "alternate"
