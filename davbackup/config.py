import os
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple


class Config:
    """Base configuration"""

    # Global watchdog: the whole run is killed after this many hours
    TIMEOUT_HOURS = float(os.environ.get('DAVBACKUP_TIMEOUT_HOURS', 12))

    # Per-request timeout for WebDAV calls (uploads can take a while)
    REQUEST_TIMEOUT_HOURS = float(os.environ.get('DAVBACKUP_REQUEST_TIMEOUT_HOURS', 4))

    # Delay between retries of a failed backup
    RETRY_DELAY = float(os.environ.get('DAVBACKUP_RETRY_DELAY', 10))

    # Size of chunks streamed from the dump process to the remote store
    CHUNK_SIZE = int(os.environ.get('DAVBACKUP_CHUNK_SIZE', 64 * 1024))

    # Logging
    LOG_DIR = os.environ.get('DAVBACKUP_LOG_DIR')
    DEBUG = False

    # Known WebDAV providers, anything else is used as a base URL verbatim
    DAV_BASE_URLS = {
        'box': 'https://dav.box.com/dav',
        'yandex': 'https://webdav.yandex.com',
    }

    DEFAULT_DAV_DIR = '/backup'
    DEFAULT_RETRIES = 1


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TIMEOUT_HOURS = float(os.environ.get('DAVBACKUP_TIMEOUT_HOURS', 1))


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name: Optional[str] = None):
    """Return the configuration class for the given name (or DAVBACKUP_ENV)."""
    if config_name is None:
        config_name = os.environ.get('DAVBACKUP_ENV', 'default')
    return config[config_name]


NAME_PATTERN = re.compile(r'^[a-z0-9]+$', re.IGNORECASE)

# Defaults merged into the parsed options before a run starts
DEFAULT_OPTIONS = {
    'mysql_host': 'localhost',
    'mysql_port': 3306,
    'mongo_host': 'localhost',
    'mongo_port': 27017,
}


@dataclass(frozen=True)
class BackupOptions:
    """
    Validated, immutable options for one backup run.

    Built once by build_options() and passed to every component; nothing
    reads options from global state.
    """

    name: str
    dav: str
    dav_login: str
    dav_pass: str
    dav_dir: str = Config.DEFAULT_DAV_DIR
    days_to_keep: Optional[float] = None
    retries: int = Config.DEFAULT_RETRIES
    dirs: Tuple[str, ...] = field(default_factory=tuple)
    exclude_dirs: Tuple[str, ...] = field(default_factory=tuple)

    mysql_db: Optional[str] = None
    mysql_host: str = DEFAULT_OPTIONS['mysql_host']
    mysql_port: int = DEFAULT_OPTIONS['mysql_port']
    mysql_login: Optional[str] = None
    mysql_pass: Optional[str] = None

    mongo_db: Optional[str] = None
    mongo_host: str = DEFAULT_OPTIONS['mongo_host']
    mongo_port: int = DEFAULT_OPTIONS['mongo_port']
    mongo_login: Optional[str] = None
    mongo_pass: Optional[str] = None

    @property
    def dav_base_url(self) -> str:
        return resolve_base_url(self.dav)

    @property
    def has_targets(self) -> bool:
        return bool(self.dirs) or bool(self.mysql_db) or bool(self.mongo_db)


def resolve_base_url(dav: str) -> str:
    """
    Resolve a provider name to its WebDAV base URL.

    Args:
        dav: Provider key ('box', 'yandex') or a full base URL

    Returns:
        Base URL without trailing slash
    """
    base_url = Config.DAV_BASE_URLS.get(dav, dav)
    return base_url.rstrip('/')


def normalize_dav_dir(path: Optional[str]) -> str:
    """
    Normalize a remote directory to '/segment/segment' form.

    '' and '/' both map to '/'.
    """
    if path is None:
        return Config.DEFAULT_DAV_DIR
    segments = [segment for segment in path.split('/') if segment]
    return '/' + '/'.join(segments)


def build_options(**kwargs) -> BackupOptions:
    """
    Build BackupOptions from raw values, merging defaults.

    Values passed as None fall back to their defaults.

    Raises:
        ValueError: If the run name is not alphanumeric or a numeric
            option is out of range
    """
    values = {key: value for key, value in kwargs.items() if value is not None}

    for key, default in DEFAULT_OPTIONS.items():
        values.setdefault(key, default)

    name = values.get('name', '')
    if not NAME_PATTERN.match(name):
        raise ValueError(f"Backup name must be alphanumeric: {name!r}")

    values['dav_dir'] = normalize_dav_dir(values.get('dav_dir'))
    values['dirs'] = tuple(values.get('dirs', ()))
    values['exclude_dirs'] = tuple(values.get('exclude_dirs', ()))

    retries = int(values.get('retries', Config.DEFAULT_RETRIES))
    if retries < 0:
        raise ValueError(f"Retries must not be negative: {retries}")
    values['retries'] = retries

    return BackupOptions(**values)
