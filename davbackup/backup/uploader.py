"""
Streaming upload of a backup source to the remote store.

The source's stdout is read in fixed-size chunks and passed straight to the
PUT request body, so a slow upload throttles the dump process through the
pipe instead of buffering the archive.
"""

import logging
from typing import IO, Iterator, Optional

from davbackup.config import Config
from .errors import InsufficientStorageError, UploadError
from .sources import BackupSource
from .storage import REDIRECT_STATUSES, StorageError, WebDAVStorage

logger = logging.getLogger(__name__)

HTTP_CREATED = 201
HTTP_INSUFFICIENT_STORAGE = 507


def iter_chunks(stream: IO[bytes], chunk_size: Optional[int] = None) -> Iterator[bytes]:
    """Yield chunks from a binary stream until EOF."""
    chunk_size = chunk_size or Config.CHUNK_SIZE
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def upload_backup(source: BackupSource, storage: WebDAVStorage, remote_dir: str,
                  chunk_size: Optional[int] = None) -> str:
    """
    Run a backup source and stream its output to the remote store.

    The upload counts as done only when the server answers 201 Created and
    the source process exited successfully.

    Args:
        source: BackupSource to run
        storage: WebDAVStorage to upload to
        remote_dir: Remote directory, e.g. '/backup'
        chunk_size: Bytes per chunk (defaults to Config.CHUNK_SIZE)

    Returns:
        Remote path of the uploaded file

    Raises:
        InsufficientStorageError: If the server answers 507
        UploadError: If the server answers anything but 201 (a redirect
            included), or the connection fails
        SourceError: If the source process fails
    """
    remote_path = f"{remote_dir.rstrip('/')}/{source.filename}"
    logger.info(f"Uploading: {storage.upload_url_for(remote_path)}")

    stream = source.open()
    completed = False

    try:
        try:
            response = storage.put_stream(remote_path, iter_chunks(stream, chunk_size))
        except StorageError as e:
            raise UploadError(f"{source.description} upload failed: {e}")

        if response.status_code == HTTP_INSUFFICIENT_STORAGE:
            raise InsufficientStorageError("Not enough storage space")

        if response.status_code in REDIRECT_STATUSES:
            raise UploadError(
                f"{source.description} upload was redirected "
                f"({response.status_code}) to {response.headers.get('Location')}",
                backup_filename=source.filename
            )

        if response.status_code != HTTP_CREATED:
            raise UploadError(
                f"{source.description} upload failed with "
                f"{response.status_code} {response.reason}",
                backup_filename=source.filename
            )

        source.wait()
        completed = True
    finally:
        if not completed:
            source.terminate()

    return remote_path
