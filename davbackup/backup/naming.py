"""
Backup filename generation and parsing.

Format: backup-{name}_[{kind}-{target}_]{YYYY-MM-DD}_{HH-MM-SS-mmm}.{ext}

kind is 'mysql' or 'mongo' for database dumps and absent for directory
archives. The retention pruner only ever touches remote files whose names
match this format for the current run name.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Pattern

DATABASE_KINDS = ('mysql', 'mongo')

EXTENSIONS = ('tgz', 'tar', 'tar.gz', 'sql', 'sql.gz')

DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H-%M-%S'


@dataclass(frozen=True)
class ParsedBackupFilename:
    """Components recovered from a backup filename."""

    name: str
    kind: Optional[str]
    target: Optional[str]
    timestamp: datetime
    extension: str

    @property
    def is_database_dump(self) -> bool:
        return self.kind is not None


def format_timestamp(moment: datetime) -> str:
    """
    Format a datetime as 'YYYY-MM-DD_HH-MM-SS-mmm'.

    Args:
        moment: Datetime to format

    Returns:
        Timestamp string with millisecond precision
    """
    milliseconds = moment.microsecond // 1000
    return f"{moment.strftime(DATE_FORMAT)}_{moment.strftime(TIME_FORMAT)}-{milliseconds:03d}"


def generate_backup_filename(
    name: str,
    extension: str,
    kind: Optional[str] = None,
    target: Optional[str] = None,
    moment: Optional[datetime] = None
) -> str:
    """
    Generate a backup filename for the current moment.

    Args:
        name: Alphanumeric run name
        extension: One of EXTENSIONS
        kind: 'mysql', 'mongo' or None for directory archives
        target: Database name (required when kind is set)
        moment: Timestamp to embed (defaults to now)

    Returns:
        Filename (without path)

    Raises:
        ValueError: If kind, target or extension is invalid
    """
    if extension not in EXTENSIONS:
        raise ValueError(f"Invalid extension: {extension}. Valid options: {list(EXTENSIONS)}")

    if kind is not None:
        if kind not in DATABASE_KINDS:
            raise ValueError(f"Invalid backup kind: {kind}")
        if not target:
            raise ValueError("Database backups need a target name")

    moment = moment or datetime.now()
    kind_part = f"{kind}-{target}_" if kind else ''

    return f"backup-{name}_{kind_part}{format_timestamp(moment)}.{extension}"


def build_filename_pattern(name: str) -> Pattern:
    """
    Compile the regular expression matching backups of one run.

    Groups: kind, target, date, time, extension.
    """
    kinds = '|'.join(DATABASE_KINDS)
    extensions = '|'.join(
        re.escape(ext) for ext in sorted(EXTENSIONS, key=len, reverse=True)
    )
    return re.compile(
        rf'^backup-{re.escape(name)}_'
        rf'(?:(?P<kind>{kinds})-(?P<target>.+?)_)?'
        r'(?P<date>\d{4}-\d{2}-\d{2})_'
        r'(?P<time>\d{2}-\d{2}-\d{2}-\d{3})'
        rf'\.(?P<extension>{extensions})$'
    )


def parse_backup_filename(filename: str, name: str) -> Optional[ParsedBackupFilename]:
    """
    Parse a backup filename produced for run `name`.

    Args:
        filename: Basename of a remote file
        name: Run name the file must belong to

    Returns:
        ParsedBackupFilename, or None if the file is not one of our backups
    """
    match = build_filename_pattern(name).match(filename)
    if not match:
        return None

    clock, milliseconds = match.group('time').rsplit('-', 1)
    try:
        timestamp = datetime.strptime(
            f"{match.group('date')}_{clock}", f"{DATE_FORMAT}_{TIME_FORMAT}"
        ).replace(microsecond=int(milliseconds) * 1000)
    except ValueError:
        # digits in the right places but not a real date (e.g. month 13)
        return None

    return ParsedBackupFilename(
        name=name,
        kind=match.group('kind'),
        target=match.group('target'),
        timestamp=timestamp,
        extension=match.group('extension')
    )


def is_backup_filename(filename: str, name: str) -> bool:
    """Return True if filename is a backup of run `name`."""
    return parse_backup_filename(filename, name) is not None
