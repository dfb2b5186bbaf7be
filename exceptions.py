#!/usr/bin/env python3
"""
Error taxonomy for the IMAP mailbox migrator.

Each error is contained at the narrowest scope it belongs to:
message errors never abort a folder, folder errors never abort an account,
account errors never abort the batch.
"""


class MigrationError(Exception):
    """Base class for all migration errors."""


class ConfigurationError(MigrationError, ValueError):
    """Malformed configuration. Fatal before any connection is made."""


class MailConnectionError(MigrationError, ConnectionError):
    """A session could not connect, authenticate, or was closed. Fatal per account."""


class QuotaExceededError(MigrationError):
    """Source storage used exceeds destination storage available. Fatal per account."""

    def __init__(self, used: int, available: int):
        self.used = used
        self.available = available
        super().__init__(
            f"Source uses {used} storage units but destination only has {available} available"
        )


class FolderCreationError(MigrationError):
    """Destination refused to create a folder. Fatal per folder."""


class LockError(MigrationError):
    """Exclusive access on a folder could not be obtained. Fatal per folder."""


class MessageTransferError(MigrationError):
    """A single message could not be downloaded or appended. Fatal per message."""

    def __init__(self, identity, cause: Exception):
        self.identity = identity
        self.cause = cause
        super().__init__(f"Transfer of message {identity.sequence_id} failed: {cause}")
