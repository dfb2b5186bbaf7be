#!/usr/bin/env python3
"""
Source/destination session pair for one account migration.
"""

import logging
import threading
from typing import Callable, Optional

from config_manager import AccountPair, MigrationSettings
from exceptions import MailConnectionError, QuotaExceededError
from imap_client import IMAPClient
from utils import with_context


class SessionPair:
    """Owns the connect, reconnect and logout lifecycle of both sessions of an account pair."""

    def __init__(self, account_pair: AccountPair, settings: MigrationSettings,
                 logger: Optional[logging.Logger] = None,
                 session_factory: Callable[..., IMAPClient] = IMAPClient):
        self.account_pair = account_pair
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        ssl_context = settings.ssl_context()

        self.source = session_factory(
            account_pair.source_endpoint, account_pair.source,
            use_ssl=settings.use_ssl, ssl_context=ssl_context, timeout=settings.timeout,
            logger=with_context(self.logger, side='source'),
        )
        self.destination = session_factory(
            account_pair.destination_endpoint, account_pair.destination,
            use_ssl=settings.use_ssl, ssl_context=ssl_context, timeout=settings.timeout,
            logger=with_context(self.logger, side='destination'),
        )
        self.reconnect_attempts = {'source': 0, 'destination': 0}
        self._reconnect_lock = threading.Lock()

        for side, session in (('source', self.source), ('destination', self.destination)):
            session.subscribe('close', self._make_close_handler(side))
            session.subscribe('error', self._make_error_handler(side))

    def connect(self) -> None:
        """Authenticate both sessions; MailConnectionError if either leg fails."""
        self.source.connect()
        self.destination.connect()
        self.logger.info("Clients connected.")

    def quota_check(self) -> None:
        """Reject the migration when source usage exceeds destination availability."""
        source_quota = self.source.get_quota()
        destination_quota = self.destination.get_quota()

        if source_quota is None or destination_quota is None:
            self.logger.info("Quota not reported by both servers, proceeding without quota check")
            return

        self.logger.info(
            f"Quota: source used {source_quota.used}, destination available {destination_quota.available}"
        )
        if source_quota.used > destination_quota.available:
            raise QuotaExceededError(source_quota.used, destination_quota.available)

    def _make_close_handler(self, side: str):
        def on_close(session: IMAPClient, error: Exception) -> None:
            # One reconnect attempt per unexpected closure; a failed attempt leaves the
            # session closed so the next operation raises instead of retrying.
            with self._reconnect_lock:
                self.reconnect_attempts[side] += 1
                self.logger.warning(f"🔄 {side} session closed ({error}), attempting reconnect")
                try:
                    session.connect()
                except MailConnectionError as e:
                    self.logger.error(f"❌ {side} session reconnect failed: {e}")
                else:
                    self.logger.info(f"✅ {side} session reconnected")
        return on_close

    def _make_error_handler(self, side: str):
        def on_error(session: IMAPClient, error: Exception) -> None:
            self.logger.debug(f"{side} session error: {error}")
        return on_error

    def teardown(self) -> None:
        """Log out of each session that is still authenticated. Idempotent, never raises."""
        for side, session in (('source', self.source), ('destination', self.destination)):
            try:
                if session.is_authenticated:
                    session.disconnect()
            except Exception as e:  # teardown must always complete
                self.logger.warning(f"Error tearing down {side} session: {e}")
