"""
WebDAV storage handler for backup archives.

Talks to any WebDAV-compatible endpoint (Box, Yandex.Disk, Nextcloud, ...)
over HTTP Basic authentication:
- PROPFIND: list directory contents
- MKCOL: create a directory
- DELETE: delete a file
- PUT: streaming upload
"""

import logging
import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, unquote, urljoin, urlparse

import requests

from davbackup.config import Config
from .errors import InvalidCredentialsError

logger = logging.getLogger(__name__)

DAV_NAMESPACE = '{DAV:}'

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    '<d:prop><d:resourcetype/><d:getlastmodified/><d:getcontentlength/></d:prop>'
    '</d:propfind>'
)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class StorageError(Exception):
    """
    Raised when a WebDAV operation fails.

    Attributes:
        status_code: HTTP status returned by the server, or None for
            transport failures
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class RemoteEntry:
    """One entry of a remote directory listing."""

    path: str
    basename: str
    type: str
    last_modified: Optional[datetime]
    size: int = 0

    @property
    def is_file(self) -> bool:
        return self.type == 'file'


class WebDAVStorage:
    """
    Handler for a WebDAV remote store.

    Paths passed to the methods are absolute remote paths ('/backup/x.tgz')
    relative to the base URL.
    """

    def __init__(
        self,
        base_url: str,
        login: str,
        password: str,
        request_timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize WebDAV storage handler.

        Args:
            base_url: WebDAV endpoint, e.g. https://webdav.yandex.com
            login: Account login
            password: Account password
            request_timeout: Per-request timeout in seconds
            session: Optional requests session (mainly for tests)
        """
        self.base_url = base_url.rstrip('/')
        self.request_timeout = request_timeout or Config.REQUEST_TIMEOUT_HOURS * 60 * 60

        self.session = session or requests.Session()
        self.session.auth = (login, password)

        # directory URL -> directory URL it redirected uploads to
        self.upload_redirects: Dict[str, str] = {}

    def url_for(self, path: str) -> str:
        """Build the full URL for a remote path."""
        return f"{self.base_url}{quote(path)}"

    def upload_url_for(self, path: str) -> str:
        """Build the URL a file is uploaded to, honoring known redirects."""
        url = self.url_for(path)
        directory, _, filename = url.rpartition('/')

        if directory in self.upload_redirects:
            return f"{self.upload_redirects[directory]}/{filename}"
        return url

    def _request(self, method: str, path: str, url: Optional[str] = None,
                 **kwargs) -> requests.Response:
        """
        Perform a request and turn transport failures into StorageError.

        Raises:
            StorageError: If the request cannot be completed
        """
        kwargs.setdefault('timeout', self.request_timeout)
        kwargs.setdefault('allow_redirects', True)

        try:
            return self.session.request(method, url or self.url_for(path), **kwargs)
        except requests.RequestException as e:
            raise StorageError(f"WebDAV {method} {path} failed: {e}")

    @staticmethod
    def _check(response: requests.Response, method: str, path: str, expected: Iterable[int]):
        if response.status_code not in expected:
            raise StorageError(
                f"WebDAV {method} {path} failed ({response.status_code} {response.reason})",
                status_code=response.status_code
            )

    def list_directory(self, path: str) -> List[RemoteEntry]:
        """
        List the contents of a remote directory.

        Args:
            path: Remote directory path

        Returns:
            List of RemoteEntry, without the directory itself

        Raises:
            StorageError: If listing fails (status_code 404 if missing)
        """
        response = self._request(
            'PROPFIND',
            path,
            data=PROPFIND_BODY,
            headers={'Depth': '1', 'Content-Type': 'application/xml; charset=utf-8'}
        )
        self._check(response, 'PROPFIND', path, (207,))

        try:
            return parse_multistatus(response.content, path, self.base_url)
        except ET.ParseError as e:
            raise StorageError(f"Invalid PROPFIND response for {path}: {e}")

    def create_directory(self, path: str):
        """
        Create a remote directory.

        Raises:
            StorageError: If creation fails
        """
        response = self._request('MKCOL', path)
        self._check(response, 'MKCOL', path, (200, 201))

    def delete_file(self, path: str):
        """
        Delete a remote file.

        Raises:
            StorageError: If deletion fails (status_code 404 if missing)
        """
        response = self._request('DELETE', path)
        self._check(response, 'DELETE', path, (200, 202, 204))

    def put_stream(self, path: str, chunks: Iterable[bytes]) -> requests.Response:
        """
        Upload a stream of chunks to a remote path.

        The body is sent with chunked transfer encoding as the chunks are
        produced, so the archive is never held in memory. The response is
        returned whatever its status; the caller decides what counts as
        success.

        The chunks can only be sent once, so redirects are not followed
        here. A redirect answer is returned to the caller, and when it moves
        the file to another directory, later uploads to that directory go
        to the new location directly.

        Args:
            path: Remote file path
            chunks: Iterable of byte chunks

        Returns:
            requests.Response of the PUT

        Raises:
            StorageError: On transport failure
        """
        url = self.upload_url_for(path)
        response = self._request('PUT', path, url=url, data=chunks, allow_redirects=False)

        location = response.headers.get('Location') if response.status_code in REDIRECT_STATUSES else None
        if location:
            self._remember_upload_redirect(url, urljoin(url, location))

        return response

    def _remember_upload_redirect(self, url: str, location: str):
        directory, _, filename = url.rpartition('/')
        new_directory, _, new_filename = location.rpartition('/')

        if unquote(filename) != unquote(new_filename):
            logger.warning(f"Upload of {url} redirected to a different file: {location}")
            return

        logger.info(f"Uploads to {directory} redirect to {new_directory}")
        self.upload_redirects[directory] = new_directory


def _text(element: Optional[ET.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    return element.text.strip()


def _href_to_path(href: str, base_url: str) -> str:
    """Convert an href (absolute URL or path) to a path below base_url."""
    href_path = unquote(urlparse(href).path)
    base_path = unquote(urlparse(base_url).path).rstrip('/')

    if base_path and href_path.startswith(base_path):
        href_path = href_path[len(base_path):]

    return '/' + href_path.strip('/')


def parse_multistatus(content: bytes, directory: str, base_url: str) -> List[RemoteEntry]:
    """
    Parse a PROPFIND multistatus body into remote entries.

    Args:
        content: XML body
        directory: Directory that was listed (its own entry is skipped)
        base_url: WebDAV base URL, used to strip prefixes from hrefs

    Returns:
        List of RemoteEntry
    """
    root = ET.fromstring(content)
    directory = '/' + directory.strip('/')
    entries = []

    for response in root.iter(f'{DAV_NAMESPACE}response'):
        href = _text(response.find(f'{DAV_NAMESPACE}href'))
        if not href:
            continue

        path = _href_to_path(href, base_url)
        if path == directory:
            continue

        prop = response.find(f'.//{DAV_NAMESPACE}prop')
        if prop is None:
            continue

        resource_type = prop.find(f'{DAV_NAMESPACE}resourcetype')
        is_collection = (
            resource_type is not None
            and resource_type.find(f'{DAV_NAMESPACE}collection') is not None
        )

        last_modified = None
        last_modified_text = _text(prop.find(f'{DAV_NAMESPACE}getlastmodified'))
        if last_modified_text:
            try:
                last_modified = parsedate_to_datetime(last_modified_text)
            except (TypeError, ValueError):
                logger.warning(f"Unparseable last-modified date for {path}: {last_modified_text}")

        size_text = _text(prop.find(f'{DAV_NAMESPACE}getcontentlength'))

        entries.append(RemoteEntry(
            path=path,
            basename=posixpath.basename(path),
            type='directory' if is_collection else 'file',
            last_modified=last_modified,
            size=int(size_text) if size_text and size_text.isdigit() else 0
        ))

    return entries


def ensure_remote_directory(storage: WebDAVStorage, path: str) -> List[RemoteEntry]:
    """
    Make sure every segment of a remote path exists.

    Lists '/', then '/a', then '/a/b', ... creating each missing directory
    along the way.

    Args:
        storage: WebDAVStorage instance
        path: Remote directory, e.g. '/backup/nightly'

    Returns:
        Listing of the final directory (empty if it had to be created)

    Raises:
        InvalidCredentialsError: If the server answers 401
        StorageError: For any other listing or creation failure
    """
    segments = [segment for segment in path.split('/') if segment]
    contents: List[RemoteEntry] = []

    for depth in range(len(segments) + 1):
        # start with no segment
        partial_path = '/' + '/'.join(segments[:depth])

        try:
            contents = storage.list_directory(partial_path)
        except StorageError as e:
            if e.status_code == 404:
                logger.info(f"Creating directory: {partial_path}")
                try:
                    storage.create_directory(partial_path)
                except StorageError as create_error:
                    if create_error.status_code == 401:
                        raise InvalidCredentialsError("Wrong credentials") from create_error
                    raise
                contents = []
            elif e.status_code == 401:
                raise InvalidCredentialsError("Wrong credentials") from e
            else:
                raise

    return contents
