"""
Tests for the source/destination session pair.
"""

from unittest.mock import MagicMock

import pytest
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from conftest import FakeServer, Quota, make_account_pair
from exceptions import MailConnectionError, QuotaExceededError
from imap_client import IMAPClient
from session_pair import SessionPair


@pytest.fixture
def pair_factory(fake_servers, settings):
    def _create(source_server=None, destination_server=None):
        account_pair = make_account_pair()
        fake_servers.servers[account_pair.source.email] = source_server or FakeServer()
        fake_servers.servers[account_pair.destination.email] = destination_server or FakeServer()
        return SessionPair(account_pair, settings, session_factory=fake_servers)
    return _create


def test_connect_both_sessions(pair_factory):
    sessions = pair_factory()
    sessions.connect()
    assert sessions.source.is_authenticated
    assert sessions.destination.is_authenticated


def test_connect_failure_on_either_leg(pair_factory):
    destination = FakeServer()
    destination.fail_connect = True
    sessions = pair_factory(destination_server=destination)

    with pytest.raises(MailConnectionError):
        sessions.connect()


def test_quota_exceeded(pair_factory):
    sessions = pair_factory(
        FakeServer(quota=Quota(used=100, available=900)),
        FakeServer(quota=Quota(used=950, available=50)),
    )
    sessions.connect()

    with pytest.raises(QuotaExceededError) as excinfo:
        sessions.quota_check()
    assert excinfo.value.used == 100
    assert excinfo.value.available == 50


def test_quota_fits(pair_factory):
    sessions = pair_factory(FakeServer(quota=Quota(100, 0)), FakeServer(quota=Quota(0, 100)))
    sessions.connect()
    sessions.quota_check()


@pytest.mark.parametrize("source_quota,destination_quota", [
    (None, Quota(0, 10)),
    (Quota(100, 0), None),
    (None, None),
])
def test_unknown_quota_proceeds(pair_factory, source_quota, destination_quota):
    sessions = pair_factory(FakeServer(quota=source_quota), FakeServer(quota=destination_quota))
    sessions.connect()
    sessions.quota_check()


def test_teardown_is_idempotent(pair_factory):
    sessions = pair_factory()
    sessions.connect()

    sessions.teardown()
    sessions.teardown()

    assert sessions.source.disconnect_calls == 1
    assert sessions.destination.disconnect_calls == 1


def test_teardown_skips_unauthenticated_and_never_raises(pair_factory):
    sessions = pair_factory()
    sessions.source.connect()
    sessions.source.disconnect = MagicMock(side_effect=RuntimeError("broken pipe"))

    sessions.teardown()

    sessions.source.disconnect.assert_called_once()
    assert sessions.destination.disconnect_calls == 0


class TestReconnect:
    def make_pair(self, settings, source_connections):
        factory = MagicMock(side_effect=source_connections)
        destination_connection = MagicMock()

        def session_factory(endpoint, credentials, **kwargs):
            if credentials.email.startswith("src"):
                return IMAPClient(endpoint, credentials, client_factory=factory, **kwargs)
            return IMAPClient(endpoint, credentials, client_factory=MagicMock(return_value=destination_connection),
                              **kwargs)

        sessions = SessionPair(make_account_pair(), settings, session_factory=session_factory)
        sessions.connect()
        return sessions, factory

    def test_single_reconnect_attempt_then_operations_fail_fast(self, settings):
        first = MagicMock()
        first.folder_status.side_effect = IMAPClientAbortError("connection reset")
        sessions, factory = self.make_pair(settings, [first, OSError("connection refused"), MagicMock()])

        with pytest.raises(MailConnectionError):
            sessions.source.get_folder_status("INBOX")

        assert factory.call_count == 2
        assert sessions.reconnect_attempts == {"source": 1, "destination": 0}

        with pytest.raises(MailConnectionError):
            sessions.source.get_folder_status("INBOX")
        assert factory.call_count == 2

        sessions.teardown()
        first.logout.assert_not_called()

    def test_successful_reconnect_restores_session(self, settings):
        first = MagicMock()
        first.folder_status.side_effect = IMAPClientAbortError("connection reset")
        second = MagicMock()
        second.folder_status.return_value = {b"MESSAGES": 4}
        sessions, factory = self.make_pair(settings, [first, second])

        with pytest.raises(MailConnectionError):
            sessions.source.get_folder_status("INBOX")

        assert sessions.source.is_authenticated
        assert sessions.source.get_folder_status("INBOX") == 4
        assert sessions.reconnect_attempts["source"] == 1


def test_quota_command_failure_proceeds(settings):
    connection = MagicMock()
    connection.has_capability.return_value = True
    connection.get_quota.side_effect = IMAPClientError("NO quota root not found")

    def session_factory(endpoint, credentials, **kwargs):
        return IMAPClient(endpoint, credentials, client_factory=MagicMock(return_value=connection), **kwargs)

    sessions = SessionPair(make_account_pair(), settings, session_factory=session_factory)
    sessions.connect()

    sessions.quota_check()
    assert sessions.source.is_authenticated
