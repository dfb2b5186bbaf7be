#!/usr/bin/env python3
"""
IMAP Mailbox Migrator

Migrates every folder of one or more mail accounts from a source IMAP server
to a destination IMAP server, preserving folder structure, flags and internal
dates. Folders flagged Junk or Trash are skipped. A per-folder report of
transferred versus total messages is printed at the end of the run.
"""

import argparse
import sys
from dataclasses import replace

from config_manager import ConfigManager
from exceptions import ConfigurationError
from transfer_orchestrator import MailboxMigration
from utils import setup_logging


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Migrate mailboxes from one IMAP server to another')
    parser.add_argument('--config', default='config.yaml', help='Configuration file path')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what would be migrated without creating folders or copying messages')
    parser.add_argument('--no-progress', action='store_true', help='Disable progress bars')

    args = parser.parse_args(argv)

    try:
        config_manager = ConfigManager(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    settings = config_manager.settings
    if args.no_progress:
        config_manager.settings = replace(settings, show_progress=False)
        settings = config_manager.settings

    logger = setup_logging(settings.log_file, verbose=args.verbose)
    context = config_manager.build_context(logger)

    try:
        if args.dry_run:
            logger.info("=== DRY RUN MODE ===")
        MailboxMigration(context, dry_run=args.dry_run).run()
    except KeyboardInterrupt:
        logger.info("Migration interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        print(f"Migration failed: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
