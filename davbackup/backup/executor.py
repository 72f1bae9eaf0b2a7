"""
Backup executor - orchestrates a complete backup run.

Workflow:
1. Make sure the remote directory exists (creating missing segments)
2. Delete remote backups older than the retention window
3. Back up directories (if configured)
4. Back up the MySQL database (if configured)
5. Back up the MongoDB database (if configured)

Each backup stage is retried on failure, removing the partially uploaded
file first. A failed stage does not stop the following ones, but makes the
whole run unsuccessful. A watchdog kills the process if the run takes too
long.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from davbackup.config import BackupOptions, Config
from .errors import NoBackupTargetsError, RetryableBackupError
from .retention import RetentionManager
from .sources import create_sources
from .storage import StorageError, WebDAVStorage, ensure_remote_directory
from .uploader import upload_backup

logger = logging.getLogger(__name__)

STAGE_MESSAGES = {
    'dirs': 'Directory dump',
    'mysql': 'MySQL dump',
    'mongo': 'MongoDB dump',
}


@dataclass
class RunResult:
    """Outcome of one backup run."""

    stages: Dict[str, bool] = field(default_factory=dict)
    pruned: int = 0
    elapsed_seconds: float = 0.0
    logs: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(self.stages.values())


def delete_broken_backup(storage: WebDAVStorage, remote_path: str):
    """
    Delete a partially uploaded backup.

    Best effort: a missing file is fine, anything else is only logged.
    """
    logger.info(f"Deleting broken backup: {remote_path}")
    try:
        storage.delete_file(remote_path)
    except StorageError as e:
        if e.status_code == 401:
            logger.warning("Wrong credentials")
        elif e.status_code != 404:
            logger.warning(f"Failed to delete broken backup {remote_path}: {e}")


def run_with_retries(
    operation: Callable[[], object],
    storage: WebDAVStorage,
    remote_dir: str,
    retries: int,
    delay: Optional[float] = None
) -> bool:
    """
    Run a backup operation, retrying it up to `retries` times.

    Before each retry, the remote file named by the failure (if any) is
    deleted. Fatal errors are not caught.

    Args:
        operation: Callable performing one complete backup attempt
        storage: WebDAVStorage used for cleanup
        remote_dir: Remote directory holding the backups
        retries: Number of retries after the first attempt
        delay: Seconds to wait between attempts (default Config.RETRY_DELAY)

    Returns:
        True if an attempt succeeded, False once all attempts failed
    """
    delay = Config.RETRY_DELAY if delay is None else delay
    attempts = retries + 1

    for attempt in range(1, attempts + 1):
        try:
            operation()
            return True
        except RetryableBackupError as e:
            logger.warning(f"Attempt {attempt}/{attempts} failed: {e}")

            if e.backup_filename:
                delete_broken_backup(storage, f"{remote_dir.rstrip('/')}/{e.backup_filename}")

        if attempt < attempts:
            logger.info("Retrying")
            time.sleep(delay)

    return False


def _terminate_process():
    logger.error("Timeout")
    logging.shutdown()
    os._exit(1)


class Watchdog:
    """
    Kill the process if a run takes longer than `timeout` seconds.

    Uses a background scheduler with a one-shot date trigger.
    """

    def __init__(self, timeout: float, on_timeout: Optional[Callable[[], None]] = None):
        self.timeout = timeout
        self.on_timeout = on_timeout or _terminate_process
        self.scheduler = None

    def start(self):
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.timeout)

        self.scheduler = BackgroundScheduler(timezone='UTC')
        self.scheduler.add_job(
            func=self.on_timeout,
            trigger=DateTrigger(run_date=run_date),
            id='watchdog',
            name='Backup run timeout',
            misfire_grace_time=None
        )
        self.scheduler.start()
        logger.debug(f"Watchdog armed for {run_date.isoformat()}")

    def stop(self):
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


class BackupExecutor:
    """
    Runs every configured backup stage for one set of options.
    """

    def __init__(self, options: BackupOptions, storage: Optional[WebDAVStorage] = None,
                 retry_delay: Optional[float] = None):
        """
        Initialize backup executor.

        Args:
            options: BackupOptions for the run
            storage: WebDAVStorage to use (built from options if omitted)
            retry_delay: Seconds between retries (default Config.RETRY_DELAY)
        """
        self.options = options
        self.storage = storage
        self.retry_delay = retry_delay
        self.logs = []

    def execute(self) -> RunResult:
        """
        Execute the backup run.

        Returns:
            RunResult with the outcome of every stage

        Raises:
            NoBackupTargetsError: If nothing is configured to back up
            FatalBackupError: On wrong credentials or a full remote store
            StorageError: If the remote directory cannot be prepared
        """
        options = self.options

        if not options.has_targets:
            raise NoBackupTargetsError("No directories or databases to backup")

        started = time.monotonic()
        result = RunResult(logs=self.logs)

        if self.storage is None:
            self.storage = WebDAVStorage(options.dav_base_url, options.dav_login, options.dav_pass)

        self._log(f"Starting backup run: {options.name}")

        contents = ensure_remote_directory(self.storage, options.dav_dir)

        retention = RetentionManager(self.storage, options.name, options.days_to_keep)
        result.pruned = retention.prune(contents)

        for stage, create_source in create_sources(options):
            succeeded = run_with_retries(
                lambda: upload_backup(create_source(), self.storage, options.dav_dir),
                self.storage,
                options.dav_dir,
                options.retries,
                self.retry_delay
            )
            result.stages[stage] = succeeded

            if succeeded:
                self._log(f"{STAGE_MESSAGES[stage]} completed")
            else:
                self._log(
                    f"{STAGE_MESSAGES[stage]} failed after {options.retries + 1} attempt(s)",
                    logging.ERROR
                )

        result.elapsed_seconds = time.monotonic() - started
        self._log(f"Execution time: {result.elapsed_seconds:.3f}s")

        return result

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


def run_backup(options: BackupOptions, timeout: Optional[float] = None,
               storage: Optional[WebDAVStorage] = None) -> RunResult:
    """
    Run a complete backup under the global watchdog.

    Args:
        options: BackupOptions for the run
        timeout: Watchdog timeout in seconds (default Config.TIMEOUT_HOURS)
        storage: Optional WebDAVStorage override

    Returns:
        RunResult of the run
    """
    if timeout is None:
        timeout = Config.TIMEOUT_HOURS * 60 * 60

    with Watchdog(timeout):
        return BackupExecutor(options, storage=storage).execute()
