"""
Shared pytest fixtures and utilities for mailbox migrator tests.
"""

import logging
import os
import sys
import threading
from datetime import datetime

import pytest

# Ensure the project modules are importable without installation
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config_manager import AccountPair, Credentials, Endpoint, MigrationSettings, RunContext
from exceptions import FolderCreationError, LockError, MailConnectionError
from imap_client import FolderDescriptor, FolderLock, MessageIdentity, Quota


class FakeServer:
    """In-memory mailbox for one account."""

    def __init__(self, folders=None, delimiter="/", quota=None):
        self.delimiter = delimiter
        self.quota = quota
        self.folders = {}
        self.messages = {}
        self.next_uid = 1
        self.fail_connect = False
        self.reject_create = set()
        self.lock_failures = set()
        self.failing_downloads = set()
        self.created = []
        self.lock_events = []
        self.appended = []
        self.report_exists = True
        self.status_calls = []
        for path, flags in folders or []:
            self.add_folder(path, flags)

    def add_folder(self, path, flags=()):
        self.folders[path] = tuple(flags)
        self.messages.setdefault(path, [])

    def add_message(self, path, payload, flags=("\\Seen",), date=None):
        uid = self.next_uid
        self.next_uid += 1
        self.messages[path].append({
            "uid": uid,
            "payload": payload,
            "flags": tuple(flags),
            "date": date or datetime(2020, 1, uid % 28 + 1, 12, 0, 0),
        })
        return uid


class FakeSession:
    """Implements the session interface used by the migration engine over a FakeServer."""

    def __init__(self, server, endpoint, credentials, logger=None, **kwargs):
        self.server = server
        self.endpoint = endpoint
        self.credentials = credentials
        self.logger = logger or logging.getLogger(__name__)
        self.options = kwargs
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.selected = None
        self._authenticated = False
        self._listeners = {"close": [], "error": []}
        self._lock = threading.Lock()

    @property
    def is_authenticated(self):
        return self._authenticated

    def connect(self):
        self.connect_calls += 1
        if self.server.fail_connect:
            raise MailConnectionError(f"Could not connect to {self.endpoint.host}")
        self._authenticated = True

    def disconnect(self):
        self.disconnect_calls += 1
        self._authenticated = False

    def subscribe(self, event, callback):
        self._listeners[event].append(callback)

    def _check(self):
        if not self._authenticated:
            raise MailConnectionError("Session is closed")

    def get_quota(self):
        self._check()
        return self.server.quota

    def list_folders(self):
        self._check()
        return [
            FolderDescriptor.from_listing(flags, self.server.delimiter, path)
            for path, flags in self.server.folders.items()
        ]

    def hierarchy_delimiter(self):
        return self.server.delimiter

    def create_folder(self, segments):
        self._check()
        path = self.server.delimiter.join(segments)
        if path in self.server.reject_create:
            raise FolderCreationError(f"Failed to create folder {path}")
        self.server.add_folder(path)
        self.server.created.append(path)
        return FolderDescriptor(name=segments[-1], parent=tuple(segments[:-1]), path=path,
                                delimiter=self.server.delimiter)

    def acquire_folder_lock(self, path):
        self._check()
        if path in self.server.lock_failures:
            raise LockError(f"Could not lock folder {path}")
        self.server.lock_events.append(("acquire", path))
        self.selected = path
        count = len(self.server.messages[path]) if self.server.report_exists else None
        return FolderLock(self, path, message_count=count)

    def _release_folder(self, lock):
        self.server.lock_events.append(("release", lock.path))
        self.selected = None

    def get_folder_status(self, path):
        self._check()
        self.server.status_calls.append(path)
        return len(self.server.messages[path])

    def fetch_message_identities(self, message_range="1:*"):
        self._check()
        for message in self.server.messages[self.selected]:
            yield MessageIdentity(message["uid"], message["date"], message["flags"])

    def _find(self, uid):
        for message in self.server.messages[self.selected]:
            if message["uid"] == uid:
                return message
        raise LookupError(uid)

    def download_message(self, sequence_id):
        self._check()
        if sequence_id in self.server.failing_downloads:
            raise IOError(f"download of {sequence_id} failed")
        return self._find(sequence_id)["payload"]

    def append_message(self, path, payload, flags, internal_date):
        self._check()
        with self._lock:
            uid = self.server.add_message(path, payload, flags, internal_date)
            self.server.appended.append((path, uid))


def make_account_pair(source="src@example.com", destination="dest@example.com",
                      source_host="imap.source.test", destination_host="imap.dest.test"):
    return AccountPair(
        source_endpoint=Endpoint(source_host, 993),
        source=Credentials(source, "secret"),
        destination_endpoint=Endpoint(destination_host, 993),
        destination=Credentials(destination, "secret"),
    )


@pytest.fixture
def settings():
    return MigrationSettings(max_workers=4, show_progress=False)


@pytest.fixture
def logger():
    return logging.getLogger("imap_migrator.test")


@pytest.fixture
def fake_servers():
    """Registry of FakeServer objects keyed by account email, plus a session factory."""
    servers = {}
    sessions = []

    def factory(endpoint, credentials, **kwargs):
        session = FakeSession(servers[credentials.email], endpoint, credentials, **kwargs)
        sessions.append(session)
        return session

    factory.servers = servers
    factory.sessions = sessions
    return factory


@pytest.fixture
def run_context(settings, logger):
    def _create(account_pairs):
        return RunContext(settings=settings, account_pairs=list(account_pairs), logger=logger)
    return _create


__all__ = [
    "FakeServer",
    "FakeSession",
    "Quota",
    "make_account_pair",
]
