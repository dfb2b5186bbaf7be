#!/usr/bin/env python3
"""
IMAP session for the mailbox migrator.

Wraps an ``imapclient.IMAPClient`` connection and exposes the operations the
migration engine needs: connect/disconnect, quota, folder listing and
creation, folder locking, status, message enumeration, download and append.
Every protocol command is serialized on the session so that several transfer
workers can share one connection.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import imapclient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from config_manager import Credentials, Endpoint
from exceptions import FolderCreationError, LockError, MailConnectionError


# Session-only flag; servers reject it in APPEND.
NON_STORABLE_FLAGS = {'\\recent'}

SESSION_EVENTS = ('close', 'error')


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


@dataclass(frozen=True)
class FolderDescriptor:
    """Identity record for one mailbox folder."""
    name: str
    parent: Tuple[str, ...]
    flags: FrozenSet[str] = field(default_factory=frozenset)
    path: str = ''
    delimiter: Optional[str] = '/'

    @classmethod
    def from_listing(cls, flags: Sequence, delimiter, path: str) -> 'FolderDescriptor':
        """Build a descriptor from one LIST response line."""
        delimiter = _decode(delimiter) if delimiter else None
        segments = path.split(delimiter) if delimiter else [path]
        return cls(
            name=segments[-1],
            parent=tuple(segments[:-1]),
            flags=frozenset(_decode(flag) for flag in flags),
            path=path,
            delimiter=delimiter,
        )

    @property
    def segments(self) -> Tuple[str, ...]:
        return self.parent + (self.name,)

    def matches(self, other: 'FolderDescriptor') -> bool:
        """Exact name and parent-path equality, order-sensitive, case-sensitive."""
        return self.name == other.name and self.parent == other.parent

    def has_flag(self, flag: str) -> bool:
        wanted = flag.lower()
        return any(own.lower() == wanted for own in self.flags)


@dataclass(frozen=True)
class MessageIdentity:
    """Enumeration-time reference to one message. Not durable past the folder lock."""
    sequence_id: int
    internal_date: Optional[datetime]
    flags: Tuple[str, ...] = ()


class Quota(NamedTuple):
    used: int
    available: int


class FolderLock:
    """Exclusive access token for one folder on one session."""

    def __init__(self, session: 'IMAPClient', path: str, message_count: Optional[int] = None):
        self.session = session
        self.path = path
        self.message_count = message_count
        self.released = False

    def release(self) -> None:
        """Release the folder. Calling it again is a no-op."""
        if self.released:
            return
        self.released = True
        self.session._release_folder(self)


class IMAPClient:
    """Handles IMAP server operations for one account."""

    def __init__(self, endpoint: Endpoint, credentials: Credentials, use_ssl: bool = True,
                 ssl_context=None, timeout: float = 60.0, logger: Optional[logging.Logger] = None,
                 client_factory: Callable = imapclient.IMAPClient):
        self.endpoint = endpoint
        self.credentials = credentials
        self.use_ssl = use_ssl
        self.ssl_context = ssl_context
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.client_factory = client_factory
        self.client = None
        self.delimiter: Optional[str] = None
        self.connection_start_time = None
        self._authenticated = False
        self._closed = False
        self._selected: Optional[str] = None
        self._io_lock = threading.RLock()
        self._folder_mutex = threading.Lock()
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in SESSION_EVENTS}

    def __repr__(self) -> str:
        return f"IMAPClient({self.credentials.email}@{self.endpoint.host}:{self.endpoint.port})"

    # Lifecycle

    def connect(self) -> None:
        """Open an authenticated session; raises MailConnectionError on any failure."""
        with self._io_lock:
            self.connection_start_time = time.time()
            self.logger.info(f"🔌 Connecting to {self.endpoint.host}:{self.endpoint.port} as {self.credentials.email}")
            self._shutdown()
            client = None
            try:
                client = self.client_factory(
                    self.endpoint.host,
                    port=self.endpoint.port,
                    ssl=self.use_ssl,
                    ssl_context=self.ssl_context,
                    timeout=self.timeout,
                )
                client.login(self.credentials.email, self.credentials.password)
            except (IMAPClientError, OSError) as e:
                self._authenticated = False
                self._closed = True
                if client is not None:
                    try:
                        client.shutdown()
                    except (IMAPClientError, OSError) as shutdown_error:
                        self.logger.debug(f"Error closing socket to {self.endpoint.host}: {shutdown_error}")
                raise MailConnectionError(
                    f"Could not connect to {self.endpoint.host}:{self.endpoint.port} "
                    f"as {self.credentials.email}: {e}"
                ) from e

            self.client = client
            self._authenticated = True
            self._closed = False
            elapsed = time.time() - self.connection_start_time
            self.logger.info(f"✅ Connected to {self.endpoint.host} in {elapsed:.2f}s")

            if self._selected is not None:
                # Reconnected while a folder lock is held.
                try:
                    client.select_folder(self._selected, readonly=True)
                except (IMAPClientError, OSError) as e:
                    self.logger.warning(f"Could not reopen {self._selected} after reconnect: {e}")

    def disconnect(self) -> None:
        """Log out. Never raises."""
        with self._io_lock:
            if self.client is None:
                return
            logged_out = False
            try:
                if self._authenticated and not self._closed:
                    self.client.logout()
                    logged_out = True
                    self.logger.info(f"✅ Logged out from {self.endpoint.host}")
            except (IMAPClientError, OSError) as e:
                self.logger.warning(f"Error logging out from {self.endpoint.host}: {e}")
            finally:
                if not logged_out:
                    self._shutdown()
                self._authenticated = False
                self._closed = True
                self.client = None

    def _shutdown(self) -> None:
        """Close the socket of the current connection without a LOGOUT."""
        if self.client is None:
            return
        try:
            self.client.shutdown()
        except (IMAPClientError, OSError) as e:
            self.logger.debug(f"Error closing socket to {self.endpoint.host}: {e}")
        self.client = None

    @property
    def is_authenticated(self) -> bool:
        return self.client is not None and self._authenticated and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    # Notifications

    def subscribe(self, event: str, callback: Callable) -> None:
        """Register a callback for 'close' or 'error' notifications."""
        if event not in self._listeners:
            raise ValueError(f"Unknown session event {event!r} (expected one of {SESSION_EVENTS})")
        self._listeners[event].append(callback)

    def _emit(self, event: str, error: Exception) -> None:
        for callback in list(self._listeners[event]):
            callback(self, error)

    def _call(self, func: Callable, *args, **kwargs):
        """Run one protocol command under the session lock, translating connection loss."""
        with self._io_lock:
            if self._closed or self.client is None:
                raise MailConnectionError(f"Session {self!r} is closed")
            try:
                return func(*args, **kwargs)
            except (IMAPClientAbortError, OSError) as e:
                self._authenticated = False
                self._closed = True
                self.logger.error(f"🔌 Session {self!r} closed unexpectedly: {e}")
                self._emit('error', e)
                self._emit('close', e)
                raise MailConnectionError(f"Session {self!r} closed: {e}") from e
            except IMAPClientError as e:
                self._emit('error', e)
                raise

    # Capabilities

    def get_quota(self) -> Optional[Quota]:
        """Return STORAGE quota of the INBOX root, or None when the server does not report one."""
        if not self._call(lambda: self.client.has_capability('QUOTA')):
            self.logger.info(f"Server {self.endpoint.host} does not support quota")
            return None

        try:
            quotas = self._call(lambda: self.client.get_quota('INBOX'))
        except IMAPClientError as e:
            self.logger.warning(f"⚠️ Quota query failed on {self.endpoint.host}: {e}")
            return None
        for quota in quotas or ():
            if _decode(quota.resource).upper() == 'STORAGE':
                return Quota(used=int(quota.usage), available=int(quota.limit) - int(quota.usage))
        return None

    def list_folders(self) -> List[FolderDescriptor]:
        """List all folders in server order."""
        folders = [
            FolderDescriptor.from_listing(flags, delimiter, name)
            for flags, delimiter, name in self._call(lambda: self.client.list_folders())
        ]
        for folder in folders:
            if folder.delimiter:
                self.delimiter = folder.delimiter
                break
        return folders

    def hierarchy_delimiter(self) -> str:
        """Delimiter used by this server to separate folder path segments."""
        if self.delimiter is None:
            listing = self._call(lambda: self.client.list_folders('', ''))
            self.delimiter = next((_decode(delimiter) for _, delimiter, _ in listing if delimiter), '/')
        return self.delimiter

    def create_folder(self, segments: Sequence[str]) -> FolderDescriptor:
        """Create a folder from its full path segments in a single CREATE."""
        delimiter = self.hierarchy_delimiter()
        path = delimiter.join(segments)
        try:
            self._call(lambda: self.client.create_folder(path))
        except IMAPClientError as e:
            raise FolderCreationError(f"Failed to create folder {path}: {e}") from e
        self.logger.info(f"📁 Created folder {path}")
        return FolderDescriptor(
            name=segments[-1],
            parent=tuple(segments[:-1]),
            path=path,
            delimiter=delimiter,
        )

    def acquire_folder_lock(self, path: str) -> FolderLock:
        """Take exclusive access on a folder and open it read-only."""
        if not self._folder_mutex.acquire(timeout=self.timeout):
            raise LockError(f"Timed out waiting for lock on {path}")
        try:
            response = self._call(lambda: self.client.select_folder(path, readonly=True))
        except (IMAPClientError, MailConnectionError) as e:
            self._folder_mutex.release()
            raise LockError(f"Could not lock folder {path}: {e}") from e
        self._selected = path
        exists = response.get(b'EXISTS') if isinstance(response, dict) else None
        return FolderLock(self, path, message_count=int(exists) if exists is not None else None)

    def _release_folder(self, lock: FolderLock) -> None:
        try:
            if self.is_authenticated:
                if self._call(lambda: self.client.has_capability('UNSELECT')):
                    self._call(lambda: self.client.unselect_folder())
                else:
                    self._call(lambda: self.client.close_folder())
        finally:
            self._selected = None
            self._folder_mutex.release()

    def get_folder_status(self, path: str) -> int:
        """Number of messages in a folder."""
        status = self._call(lambda: self.client.folder_status(path, [b'MESSAGES']))
        return int(status[b'MESSAGES'])

    def fetch_message_identities(self, message_range: str = '1:*') -> Iterator[MessageIdentity]:
        """Enumerate identities of the selected folder in one pass."""
        response = self._call(lambda: self.client.fetch(message_range, ['INTERNALDATE', 'FLAGS']))
        for sequence_id in sorted(response):
            data = response[sequence_id]
            yield MessageIdentity(
                sequence_id=sequence_id,
                internal_date=data.get(b'INTERNALDATE'),
                flags=tuple(_decode(flag) for flag in data.get(b'FLAGS', ())),
            )

    def download_message(self, sequence_id: int) -> bytes:
        """Fetch the full raw content of one message without setting \\Seen."""
        response = self._call(lambda: self.client.fetch([sequence_id], ['BODY.PEEK[]']))
        data = response.get(sequence_id)
        if not data or b'BODY[]' not in data:
            raise LookupError(f"Message {sequence_id} returned no content")
        return data[b'BODY[]']

    def append_message(self, path: str, payload: bytes, flags: Sequence[str],
                       internal_date: Optional[datetime]) -> None:
        """Append raw content with the original flags and internal date."""
        storable = tuple(flag for flag in flags if flag.lower() not in NON_STORABLE_FLAGS)
        self._call(lambda: self.client.append(path, payload, flags=storable, msg_time=internal_date))
