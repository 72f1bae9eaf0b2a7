"""
Shared pytest fixtures for davbackup tests.

This module provides fixtures for:
- Backup options
- Mock WebDAV storage and HTTP session
- PROPFIND response bodies
- Temporary directories to archive
"""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from davbackup.config import build_options
from davbackup.backup.storage import RemoteEntry, WebDAVStorage


def make_response(status_code=201, reason='Created', content=b''):
    """Build a mock requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.content = content
    return response


def make_entry(basename, last_modified, type='file', directory='/backup'):
    """Build a RemoteEntry inside `directory`."""
    return RemoteEntry(
        path=f"{directory}/{basename}",
        basename=basename,
        type=type,
        last_modified=last_modified,
        size=1024
    )


def multistatus(*responses):
    """
    Build a PROPFIND multistatus body.

    Args:
        responses: (href, is_collection, last_modified, size) tuples
    """
    parts = ['<?xml version="1.0" encoding="utf-8"?><d:multistatus xmlns:d="DAV:">']
    for href, is_collection, last_modified, size in responses:
        resource_type = '<d:collection/>' if is_collection else ''
        length = f'<d:getcontentlength>{size}</d:getcontentlength>' if size is not None else ''
        parts.append(
            f'<d:response><d:href>{href}</d:href><d:propstat><d:prop>'
            f'<d:resourcetype>{resource_type}</d:resourcetype>'
            f'<d:getlastmodified>{last_modified}</d:getlastmodified>{length}'
            f'</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>'
        )
    parts.append('</d:multistatus>')
    return ''.join(parts).encode('utf-8')


@pytest.fixture
def options():
    """Options for a directory-only run named 'nightly'."""
    return build_options(
        name='nightly',
        dirs=['/data'],
        days_to_keep=7,
        retries=1,
        dav='yandex',
        dav_dir='/backup',
        dav_login='user',
        dav_pass='secret'
    )


@pytest.fixture
def session():
    """Mock requests session; set session.request.return_value/side_effect per test."""
    return MagicMock()


@pytest.fixture
def storage(session):
    """WebDAVStorage backed by the mock session."""
    return WebDAVStorage('https://webdav.yandex.com', 'user', 'secret', session=session)


@pytest.fixture
def mock_storage():
    """
    Fully mocked WebDAVStorage.

    put_stream consumes the uploaded chunks (kept in mock_storage.uploads)
    and answers 201 Created.
    """
    storage = MagicMock(spec=WebDAVStorage)
    storage.uploads = {}
    storage.url_for.side_effect = lambda path: f"https://webdav.example.com{path}"
    storage.upload_url_for.side_effect = storage.url_for.side_effect

    def put_stream(path, chunks):
        storage.uploads[path] = b''.join(chunks)
        return make_response(201, 'Created')

    storage.put_stream.side_effect = put_stream
    storage.list_directory.return_value = []
    return storage


@pytest.fixture
def fake_source():
    """A BackupSource stand-in whose stream yields a few bytes."""
    source = MagicMock()
    source.filename = 'backup-nightly_2024-01-15_12-00-00-000.tgz'
    source.description = 'Directory backup'
    source.open.return_value = io.BytesIO(b'archive-bytes' * 100)
    return source


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a directory tree to archive.

    Creates:
    - data/file1.txt
    - data/nested/file2.txt
    - data/cache/skip.tmp
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    (data_dir / 'file1.txt').write_text('Test content 1')

    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'file2.txt').write_text('Nested test content')

    cache_dir = data_dir / 'cache'
    cache_dir.mkdir()
    (cache_dir / 'skip.tmp').write_text('excluded')

    return data_dir


@pytest.fixture
def utc_now():
    return datetime.now(timezone.utc)
