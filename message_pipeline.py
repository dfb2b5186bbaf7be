#!/usr/bin/env python3
"""
Message transfer pipeline: enumerate, download and append every message of a folder.

Transfers run on a bounded worker pool over the shared source and destination
sessions. Each message succeeds or fails on its own; the pipeline waits for
every outcome before returning the number of messages transferred.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

import psutil
from tqdm import tqdm

from exceptions import MessageTransferError
from imap_client import FolderDescriptor, IMAPClient, MessageIdentity


class MessageTransferPipeline:
    """Copies the messages of one locked folder from source to destination."""

    def __init__(self, source: IMAPClient, destination: IMAPClient, max_workers: int = 10,
                 show_progress: bool = True, logger: Optional[logging.Logger] = None):
        self.source = source
        self.destination = destination
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger(__name__)
        self.last_enumerated = 0

    def enumerate(self) -> List[MessageIdentity]:
        """Snapshot identities of the selected source folder (first through last)."""
        return list(self.source.fetch_message_identities('1:*'))

    def transfer_message(self, identity: MessageIdentity, destination_folder: FolderDescriptor) -> None:
        """Download one message completely, then append it with its flags and internal date."""
        try:
            payload = self.source.download_message(identity.sequence_id)
            self.destination.append_message(
                destination_folder.path, payload, identity.flags, identity.internal_date
            )
        except Exception as e:
            raise MessageTransferError(identity, e) from e

    def run(self, source_folder: FolderDescriptor, destination_folder: FolderDescriptor,
            total: int) -> int:
        """Transfer every message of the folder and return how many succeeded."""
        self.last_enumerated = 0
        if total == 0:
            self.logger.info(f"Mailbox {source_folder.path} is empty")
            return 0

        self.logger.info(f"Getting messages from mailbox {source_folder.path} from message 1 to *")
        identities = self.enumerate()
        self.last_enumerated = len(identities)

        process = psutil.Process()
        initial_memory = process.memory_info().rss / (1024 * 1024)
        start_time = time.time()
        transferred = 0

        progress = tqdm(total=len(identities), desc=f"📤 {source_folder.path}",
                        disable=not self.show_progress, leave=False)
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self.transfer_message, identity, destination_folder): identity
                    for identity in identities
                }
                for future in as_completed(futures):
                    identity = futures[future]
                    try:
                        future.result()
                    except MessageTransferError as e:
                        self.logger.error(
                            f"❌ Error downloading and uploading message {identity} "
                            f"from mailbox {source_folder.path} to {destination_folder.path}: {e.cause!r}"
                        )
                    else:
                        transferred += 1
                    progress.update(1)
        finally:
            progress.close()

        memory_delta = process.memory_info().rss / (1024 * 1024) - initial_memory
        self.logger.info(
            f"Messages uploaded to mailbox {destination_folder.path}: {transferred} of {total} "
            f"({time.time() - start_time:.1f}s, memory Δ{memory_delta:+.1f}MB)"
        )
        return transferred
