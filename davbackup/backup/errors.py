"""
Error types for backup runs.

Fatal errors stop the whole run. Retryable errors are retried by the
executor; when they carry a backup filename, the partially uploaded remote
file is deleted before the next attempt.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for backup failures."""
    pass


class FatalBackupError(BackupError):
    """Raised when the run cannot continue at all."""
    pass


class InvalidCredentialsError(FatalBackupError):
    """Raised when the remote store rejects the credentials."""
    pass


class InsufficientStorageError(FatalBackupError):
    """Raised when the remote store reports it is out of space."""
    pass


class NoBackupTargetsError(FatalBackupError):
    """Raised when neither directories nor databases are configured."""
    pass


class RetryableBackupError(BackupError):
    """
    Raised when a single backup attempt fails.

    Attributes:
        backup_filename: Name of the remote file that may have been partially
            written, or None if nothing needs cleaning up
    """

    def __init__(self, message: str, backup_filename: Optional[str] = None):
        super().__init__(message)
        self.backup_filename = backup_filename


class UploadError(RetryableBackupError):
    """Raised when the remote store does not acknowledge an upload."""
    pass
