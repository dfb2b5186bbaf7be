#!/usr/bin/env python3
"""
Folder reconciliation and exclusive folder access for the mailbox migrator.
"""

import logging
from typing import Iterable, List, Optional

from config_manager import DEFAULT_EXCLUDED_FLAGS
from exceptions import LockError
from imap_client import FolderDescriptor, FolderLock, IMAPClient


class FolderReconciler:
    """Maps source folders onto the destination folder tree, creating missing folders."""

    def __init__(self, destination: IMAPClient, destination_folders: Iterable[FolderDescriptor],
                 excluded_flags: Iterable[str] = DEFAULT_EXCLUDED_FLAGS,
                 logger: Optional[logging.Logger] = None):
        self.destination = destination
        self.destination_folders: List[FolderDescriptor] = list(destination_folders)
        self.excluded_flags = tuple(excluded_flags)
        self.logger = logger or logging.getLogger(__name__)

    def is_excluded(self, folder: FolderDescriptor) -> bool:
        """Folders carrying an excluded special-use flag are never migrated."""
        return any(folder.has_flag(flag) for flag in self.excluded_flags)

    def find(self, source_folder: FolderDescriptor) -> Optional[FolderDescriptor]:
        for folder in self.destination_folders:
            if folder.matches(source_folder):
                return folder
        return None

    def reconcile(self, source_folder: FolderDescriptor) -> FolderDescriptor:
        """Return the matching destination folder, creating it when absent.

        Raises FolderCreationError when the destination refuses the folder.
        """
        existing = self.find(source_folder)
        if existing is not None:
            self.logger.debug(f"Folder {source_folder.path} matches {existing.path}")
            return existing

        created = self.destination.create_folder(source_folder.segments)
        self.destination_folders.append(created)
        return created


class FolderLockScope:
    """Holds exclusive access on a source and a destination folder for one transfer window.

    Locks are taken source first, destination second. Both are released exactly
    once on every exit path, independently of each other.
    """

    def __init__(self, source: IMAPClient, source_folder: FolderDescriptor,
                 destination: IMAPClient, destination_folder: FolderDescriptor,
                 logger: Optional[logging.Logger] = None):
        self.source = source
        self.source_folder = source_folder
        self.destination = destination
        self.destination_folder = destination_folder
        self.logger = logger or logging.getLogger(__name__)
        self.source_lock: Optional[FolderLock] = None
        self.destination_lock: Optional[FolderLock] = None
        self.release_count = 0

    def acquire(self) -> 'FolderLockScope':
        try:
            self.source_lock = self.source.acquire_folder_lock(self.source_folder.path)
            self.destination_lock = self.destination.acquire_folder_lock(self.destination_folder.path)
        except LockError:
            self.release()
            raise
        return self

    def release(self) -> None:
        """Release both locks. Safe to call repeatedly."""
        released_any = False
        for side, lock in (('source', self.source_lock), ('destination', self.destination_lock)):
            if lock is None or lock.released:
                continue
            released_any = True
            try:
                lock.release()
            except Exception as e:  # one side failing must not keep the other locked
                self.logger.error(f"Error releasing {side} lock on {lock.path}: {e}")
        if released_any:
            self.release_count += 1

    def __enter__(self) -> 'FolderLockScope':
        return self.acquire()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()
