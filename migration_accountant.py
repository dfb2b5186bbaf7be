#!/usr/bin/env python3
"""
Migration accounting: per-folder and per-account transfer records and the final report.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional


SEPARATOR = '-' * 34


@dataclass(frozen=True)
class FolderTransferRecord:
    source_path: str
    destination_path: str
    total: int
    transferred: int

    def __post_init__(self):
        if self.total < 0 or self.transferred < 0:
            raise ValueError("Message counts cannot be negative")
        if self.transferred > self.total:
            raise ValueError(
                f"Transferred count {self.transferred} exceeds total {self.total} for {self.source_path}"
            )

    @property
    def complete(self) -> bool:
        return self.transferred == self.total


@dataclass
class AccountMigrationRecord:
    source: str
    destination: str
    folders: List[FolderTransferRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return f"failed - {self.error}" if self.error else "completed"

    @property
    def total(self) -> int:
        return sum(folder.total for folder in self.folders)

    @property
    def transferred(self) -> int:
        return sum(folder.transferred for folder in self.folders)


class MigrationAccountant:
    """Pure aggregation of transfer records into the run report."""

    @staticmethod
    def record_folder(account_record: AccountMigrationRecord, folder_record: FolderTransferRecord) -> None:
        account_record.folders.append(folder_record)

    @staticmethod
    def render_account(account_record: AccountMigrationRecord) -> str:
        lines = [
            SEPARATOR,
            f"Email from: {account_record.source}",
            f"Email to: {account_record.destination}",
            f"Status: {account_record.status}",
            "Mailboxes:",
        ]
        if not account_record.folders:
            lines.append("  (none)")
        for folder in account_record.folders:
            lines.extend([
                f"  - Mailbox from: {folder.source_path}",
                f"    Mailbox to: {folder.destination_path}",
                f"    Total messages from: {folder.total}",
                f"    Messages uploaded: {folder.transferred}",
            ])
        lines.append(
            f"Total: {account_record.transferred} of {account_record.total} messages uploaded "
            f"across {len(account_record.folders)} mailboxes"
        )
        return "\n".join(lines)

    @classmethod
    def render_report(cls, account_records: Iterable[AccountMigrationRecord]) -> str:
        """Deterministic summary: accounts in configuration order, folders in listing order."""
        blocks = [cls.render_account(record) for record in account_records]
        if not blocks:
            return "No accounts migrated."
        return "\n".join(blocks + [SEPARATOR])
