"""
Source handlers for backup operations.

Each source spawns an external process whose standard output is the
compressed backup artifact:
- DirectorySource: tar --create --gzip of local directories
- MysqlSource: mysqldump piped through gzip
- MongoSource: mongodump --archive --gzip
"""

import logging
import os
import subprocess
from typing import Callable, IO, List, Optional, Sequence, Tuple

from davbackup.config import BackupOptions
from .errors import RetryableBackupError
from .naming import generate_backup_filename

logger = logging.getLogger(__name__)


class SourceError(RetryableBackupError):
    """Raised when a dump or archive process fails."""
    pass


class BackupSource:
    """
    Base class for process-backed backup sources.

    A source generates its remote filename when it is created, spawns its
    process(es) on open() and reports the exit status on wait().
    """

    kind: Optional[str] = None
    extension = 'tgz'
    description = 'Backup'

    def __init__(self, name: str, target: Optional[str] = None):
        self.name = name
        self.target = target
        self.filename = generate_backup_filename(
            name, self.extension, kind=self.kind, target=target
        )
        self.processes: List[subprocess.Popen] = []

    def commands(self) -> List[List[str]]:
        """Return the commands of the process pipeline, first to last."""
        raise NotImplementedError

    def environment(self) -> Optional[dict]:
        """Environment for the spawned processes (None inherits ours)."""
        return None

    def is_success(self, returncode: int) -> bool:
        return returncode == 0

    def open(self) -> IO[bytes]:
        """
        Spawn the process pipeline.

        Returns:
            Readable binary stream of the last process' stdout

        Raises:
            SourceError: If a process cannot be started
        """
        stdin = subprocess.DEVNULL
        env = self.environment()

        for command in self.commands():
            logger.debug(f"Spawning: {command[0]}")
            try:
                process = subprocess.Popen(
                    command,
                    stdin=stdin,
                    stdout=subprocess.PIPE,
                    env=env
                )
            except OSError as e:
                self.terminate()
                raise SourceError(
                    f"{self.description} failed to start {command[0]}: {e}",
                    backup_filename=self.filename
                )

            if self.processes:
                # the next process owns the pipe now
                self.processes[-1].stdout.close()
            self.processes.append(process)
            stdin = process.stdout

        return self.processes[-1].stdout

    def wait(self):
        """
        Wait for every process to exit and check their status.

        Raises:
            SourceError: If any process exited unsuccessfully
        """
        for process in self.processes:
            returncode = process.wait()
            if not self.is_success(returncode):
                raise SourceError(
                    f"{self.description} failed with code {returncode}",
                    backup_filename=self.filename
                )

    def terminate(self):
        """Kill any process that is still running."""
        for process in self.processes:
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stdout and not process.stdout.closed:
                process.stdout.close()


class DirectorySource(BackupSource):
    """Archive local directories with tar, gzip-compressed."""

    extension = 'tgz'
    description = 'Directory backup'

    def __init__(self, name: str, dirs: Sequence[str], exclude_dirs: Sequence[str] = ()):
        super().__init__(name)
        self.dirs = list(dirs)
        self.exclude_dirs = list(exclude_dirs)

    def commands(self) -> List[List[str]]:
        exclude_args = [f'--exclude={path}' for path in self.exclude_dirs]
        return [[
            'tar', '--create', '--gzip', '--absolute-names',
            '--warning=no-file-changed', '--warning=no-file-removed',
            *exclude_args, *self.dirs
        ]]

    def is_success(self, returncode: int) -> bool:
        # 1 means some files changed while being read
        return returncode in (0, 1)


class MysqlSource(BackupSource):
    """Dump a MySQL database with mysqldump, compressed with gzip."""

    kind = 'mysql'
    extension = 'sql.gz'
    description = 'MySQL backup'

    def __init__(self, name: str, database: str, host: str, port: int,
                 login: Optional[str] = None, password: Optional[str] = None):
        super().__init__(name, target=database)
        self.database = database
        self.host = host
        self.port = port
        self.login = login
        self.password = password

    def commands(self) -> List[List[str]]:
        dump = [
            'mysqldump', '--databases', self.database,
            f'--host={self.host}', f'--port={self.port}'
        ]
        if self.login:
            dump.append(f'--user={self.login}')
        return [dump, ['gzip', '--stdout', '-9']]

    def environment(self) -> Optional[dict]:
        if not self.password:
            return None
        # keeps the password out of the process list
        env = dict(os.environ)
        env['MYSQL_PWD'] = self.password
        return env


class MongoSource(BackupSource):
    """Dump a MongoDB database as a gzip archive with mongodump."""

    kind = 'mongo'
    # not SQL, kept so existing remote backups still match
    extension = 'sql.gz'
    description = 'MongoDB backup'

    def __init__(self, name: str, database: str, host: str, port: int,
                 login: Optional[str] = None, password: Optional[str] = None):
        super().__init__(name, target=database)
        self.database = database
        self.host = host
        self.port = port
        self.login = login
        self.password = password

    def commands(self) -> List[List[str]]:
        command = [
            'mongodump', '--quiet', '--archive', '--gzip',
            f'--db={self.database}', f'--host={self.host}', f'--port={self.port}'
        ]
        if self.login:
            command.append(f'--username={self.login}')
        if self.password:
            command.append(f'--password={self.password}')
        return [command]


def create_sources(options: BackupOptions) -> List[Tuple[str, Callable[[], BackupSource]]]:
    """
    Build source factories for every configured target.

    A factory is called once per attempt so each retry gets a fresh
    filename and process.

    Args:
        options: BackupOptions for the run

    Returns:
        List of (stage name, factory) in run order: dirs, mysql, mongo
    """
    sources = []

    if options.dirs:
        sources.append(('dirs', lambda: DirectorySource(
            options.name, options.dirs, options.exclude_dirs
        )))

    if options.mysql_db:
        sources.append(('mysql', lambda: MysqlSource(
            options.name, options.mysql_db, options.mysql_host, options.mysql_port,
            options.mysql_login, options.mysql_pass
        )))

    if options.mongo_db:
        sources.append(('mongo', lambda: MongoSource(
            options.name, options.mongo_db, options.mongo_host, options.mongo_port,
            options.mongo_login, options.mongo_pass
        )))

    return sources
