"""
Retention policy enforcement for remote backups.

Deletes backups of the current run that are older than the configured
number of days. Only files whose names match the backup filename format for
this run are considered; anything else in the directory is left alone.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .naming import is_backup_filename
from .storage import RemoteEntry, StorageError, WebDAVStorage

logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Prunes old backups from a remote directory listing.
    """

    def __init__(self, storage: WebDAVStorage, name: str, days_to_keep: Optional[float]):
        """
        Initialize retention manager.

        Args:
            storage: WebDAVStorage used for deletions
            name: Run name whose backups are pruned
            days_to_keep: Retention window in days (None or inf keeps everything)
        """
        self.storage = storage
        self.name = name
        self.days_to_keep = days_to_keep
        self.logs = []

    @property
    def enabled(self) -> bool:
        days = self.days_to_keep
        return days is not None and not math.isinf(days) and days > 0

    def cutoff(self) -> datetime:
        """
        Moment before which backups are obsolete (aware, UTC).

        A window reaching past the earliest representable date keeps
        everything.
        """
        try:
            return datetime.now(timezone.utc) - timedelta(days=self.days_to_keep)
        except OverflowError:
            return datetime.min.replace(tzinfo=timezone.utc)

    def is_obsolete(self, entry: RemoteEntry, cutoff: datetime) -> bool:
        """
        Check whether a listing entry should be deleted.

        Args:
            entry: RemoteEntry from the directory listing
            cutoff: Obsolescence moment

        Returns:
            True for backup files of this run modified strictly before cutoff
        """
        if not entry.is_file or entry.last_modified is None:
            return False

        if not is_backup_filename(entry.basename, self.name):
            return False

        last_modified = entry.last_modified
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)

        return last_modified < cutoff

    def prune(self, entries: List[RemoteEntry]) -> int:
        """
        Delete obsolete backups.

        Deletion failures are logged and do not stop the loop.

        Args:
            entries: Listing of the backup directory

        Returns:
            Number of backups deleted
        """
        if not self.enabled:
            self._log("Retention: not configured, skipping")
            return 0

        cutoff = self.cutoff()
        deleted_count = 0

        for entry in entries:
            if not self.is_obsolete(entry, cutoff):
                continue

            self._log(f"Deleting old backup: {entry.path}")
            try:
                self.storage.delete_file(entry.path)
                deleted_count += 1
            except StorageError as e:
                if e.status_code == 401:
                    self._log("Wrong credentials", logging.WARNING)
                else:
                    self._log(f"Failed to delete old backup {entry.path}: {e}", logging.WARNING)

        return deleted_count

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level used for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
