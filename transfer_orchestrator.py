#!/usr/bin/env python3
"""
Main transfer orchestrator for the IMAP mailbox migrator.

Drives each account pair through connect, quota check, the folder loop and
teardown. Failures are contained at the narrowest scope: a message failure
never aborts its folder, a folder failure never aborts its account, and an
account failure never aborts the batch.
"""

import sys
from enum import Enum
from typing import Callable, List, Optional, TextIO

from config_manager import AccountPair, RunContext
from exceptions import FolderCreationError, LockError, MailConnectionError, QuotaExceededError
from folder_manager import FolderLockScope, FolderReconciler
from imap_client import FolderDescriptor, IMAPClient
from message_pipeline import MessageTransferPipeline
from migration_accountant import AccountMigrationRecord, FolderTransferRecord, MigrationAccountant
from session_pair import SessionPair
from utils import with_context


class AccountState(Enum):
    IDLE = 'idle'
    CONNECTING = 'connecting'
    QUOTA_CHECKING = 'quota_checking'
    MIGRATING_FOLDERS = 'migrating_folders'
    ERRORED = 'errored'
    TEARING_DOWN = 'tearing_down'
    DONE = 'done'


class MailboxMigration:
    """Runs the migration of every configured account pair, in configuration order."""

    def __init__(self, context: RunContext, session_factory: Callable[..., IMAPClient] = IMAPClient,
                 output: Optional[TextIO] = None, dry_run: bool = False):
        self.context = context
        self.settings = context.settings
        self.logger = context.logger
        self.session_factory = session_factory
        self.output = output
        self.dry_run = dry_run
        self.accountant = MigrationAccountant()
        self.state = AccountState.IDLE
        self.transitions: List[AccountState] = []

    def _transition(self, state: AccountState, log) -> None:
        log.debug(f"State {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def run(self) -> List[AccountMigrationRecord]:
        """Migrate every account pair and emit the final report."""
        records = []
        for pair in self.context.account_pairs:
            self.logger.info(f"Migrating:\n  - From: {pair.source.email}\n  - To: {pair.destination.email}")
            records.append(self.migrate_account(pair))

        report = MigrationAccountant.render_report(records)
        self.logger.info(f"Migration report:\n{report}")
        print(report, file=self.output or sys.stdout)
        return records

    def migrate_account(self, pair: AccountPair) -> AccountMigrationRecord:
        """Run one account pair end to end. Never raises."""
        log = with_context(self.logger, account=pair.source.email)
        record = AccountMigrationRecord(source=pair.source.email, destination=pair.destination.email)
        self.state = AccountState.IDLE
        self.transitions = [AccountState.IDLE]
        sessions = None

        try:
            self._transition(AccountState.CONNECTING, log)
            sessions = SessionPair(pair, self.settings, logger=log, session_factory=self.session_factory)
            log.info("Waiting clients to connect...")
            sessions.connect()

            self._transition(AccountState.QUOTA_CHECKING, log)
            sessions.quota_check()

            self._transition(AccountState.MIGRATING_FOLDERS, log)
            self.migrate_folders(sessions, record, log)
        except (MailConnectionError, QuotaExceededError) as e:
            log.error(f"❌ Account migration aborted: {e}")
            record.error = str(e)
            self._transition(AccountState.ERRORED, log)
        except Exception as e:
            log.exception(f"❌ Unexpected error migrating account: {e}")
            record.error = f"{type(e).__name__}: {e}"
            self._transition(AccountState.ERRORED, log)
        finally:
            self._transition(AccountState.TEARING_DOWN, log)
            if sessions is not None:
                sessions.teardown()
            self._transition(AccountState.DONE, log)

        return record

    def migrate_folders(self, sessions: SessionPair, record: AccountMigrationRecord, log) -> None:
        """Walk the source folders in listing order."""
        log.info("Getting all mailboxes...")
        source_folders = sessions.source.list_folders()
        destination_folders = sessions.destination.list_folders()
        log.info(
            f"Got all mailboxes:\n"
            f"  - From mailboxes: {[folder.path for folder in source_folders]}\n"
            f"  - To mailboxes: {[folder.path for folder in destination_folders]}"
        )

        reconciler = FolderReconciler(
            sessions.destination, destination_folders,
            excluded_flags=self.settings.excluded_flags, logger=log,
        )
        pipeline = MessageTransferPipeline(
            sessions.source, sessions.destination,
            max_workers=self.settings.max_workers, show_progress=self.settings.show_progress, logger=log,
        )

        for source_folder in source_folders:
            if reconciler.is_excluded(source_folder):
                log.info(f"Skipping excluded mailbox {source_folder.path}")
                continue

            folder_log = with_context(log, folder=source_folder.path)
            if self.dry_run:
                folder_record = self.plan_folder(sessions, reconciler, source_folder, folder_log)
            else:
                folder_record = self.migrate_folder(sessions, reconciler, pipeline, source_folder, folder_log)

            if folder_record is not None:
                self.accountant.record_folder(record, folder_record)

    def migrate_folder(self, sessions: SessionPair, reconciler: FolderReconciler,
                       pipeline: MessageTransferPipeline, source_folder: FolderDescriptor,
                       log) -> Optional[FolderTransferRecord]:
        """Reconcile, lock and transfer one folder. Returns None if nothing was attempted."""
        log.info(f"Mailbox: {source_folder.path}")
        try:
            destination_folder = reconciler.reconcile(source_folder)
        except FolderCreationError as e:
            log.error(f"Error creating new mailbox {source_folder.path}: {e}")
            return None

        if source_folder.has_flag('\\Noselect'):
            log.info(f"Mailbox {source_folder.path} cannot hold messages, hierarchy only")
            return None

        total = None
        transferred = 0
        try:
            with FolderLockScope(sessions.source, source_folder,
                                 sessions.destination, destination_folder, logger=log) as scope:
                total = scope.source_lock.message_count
                if total is None:
                    total = sessions.source.get_folder_status(source_folder.path)
                transferred = pipeline.run(source_folder, destination_folder, total)
                total = max(total, pipeline.last_enumerated)
        except LockError as e:
            log.error(f"Error getting lock for mailbox {source_folder.path}: {e!r}")
            return None
        except Exception as e:
            log.error(f"Error transferring messages of mailbox {source_folder.path}: {e!r}")
            if total is None:
                return None

        if transferred != total:
            log.warning(
                f"⚠️ Messages uploaded ({transferred}) do not match total messages ({total}) "
                f"of {source_folder.path}"
            )

        return FolderTransferRecord(
            source_path=source_folder.path,
            destination_path=destination_folder.path,
            total=total,
            transferred=transferred,
        )

    def plan_folder(self, sessions: SessionPair, reconciler: FolderReconciler,
                    source_folder: FolderDescriptor, log) -> Optional[FolderTransferRecord]:
        """Dry run: report what would be migrated without touching the destination."""
        if source_folder.has_flag('\\Noselect'):
            return None

        existing = reconciler.find(source_folder)
        if existing is not None:
            destination_path = existing.path
        else:
            delimiter = sessions.destination.hierarchy_delimiter()
            destination_path = f"{delimiter.join(source_folder.segments)} (new)"

        try:
            total = sessions.source.get_folder_status(source_folder.path)
        except Exception as e:
            log.error(f"Error reading status of mailbox {source_folder.path}: {e!r}")
            return None

        log.info(f"Mailbox '{source_folder.path}' -> '{destination_path}': {total} messages")
        return FolderTransferRecord(
            source_path=source_folder.path,
            destination_path=destination_path,
            total=total,
            transferred=0,
        )
