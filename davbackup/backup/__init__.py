"""
Backup module for davbackup.

This module handles the core backup functionality including:
- Sources (tar, mysqldump, mongodump processes)
- Backup filename generation and parsing
- WebDAV storage and remote directory bootstrapping
- Streaming upload
- Retention policy enforcement
- Execution orchestration with retries
"""

from .executor import BackupExecutor, RunResult, Watchdog, run_backup, run_with_retries
from .sources import DirectorySource, MysqlSource, MongoSource, create_sources
from .storage import WebDAVStorage, ensure_remote_directory
from .retention import RetentionManager
from .uploader import upload_backup

__all__ = [
    'BackupExecutor',
    'RunResult',
    'Watchdog',
    'run_backup',
    'run_with_retries',
    'DirectorySource',
    'MysqlSource',
    'MongoSource',
    'create_sources',
    'WebDAVStorage',
    'ensure_remote_directory',
    'RetentionManager',
    'upload_backup'
]
