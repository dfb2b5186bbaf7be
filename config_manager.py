#!/usr/bin/env python3
"""
Configuration management for the IMAP mailbox migrator.

The configuration file lists migration entries. Each entry names a source
provider and a destination provider together with two account lists that are
paired by position.
"""

import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from exceptions import ConfigurationError


DEFAULT_EXCLUDED_FLAGS = ('\\Junk', '\\Trash')

TLS_VERSIONS = {
    'TLSv1': ssl.TLSVersion.TLSv1,
    'TLSv1.1': ssl.TLSVersion.TLSv1_1,
    'TLSv1.2': ssl.TLSVersion.TLSv1_2,
    'TLSv1.3': ssl.TLSVersion.TLSv1_3,
}


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class AccountPair:
    """One source/destination account migrated together."""
    source_endpoint: Endpoint
    source: Credentials
    destination_endpoint: Endpoint
    destination: Credentials


@dataclass(frozen=True)
class MigrationSettings:
    max_workers: int = 10
    timeout: float = 60.0
    use_ssl: bool = True
    tls_min_version: Optional[str] = None
    show_progress: bool = True
    log_file: Optional[str] = None
    excluded_flags: Tuple[str, ...] = DEFAULT_EXCLUDED_FLAGS

    def ssl_context(self) -> Optional[ssl.SSLContext]:
        """Build the TLS context used for both sessions of a pair."""
        if not self.use_ssl:
            return None
        context = ssl.create_default_context()
        if self.tls_min_version:
            context.minimum_version = TLS_VERSIONS[self.tls_min_version]
        return context


@dataclass
class RunContext:
    """Explicit run state handed to the orchestrator: parsed configuration plus logger."""
    settings: MigrationSettings
    account_pairs: List[AccountPair]
    logger: logging.Logger


class ConfigManager:
    """Handles configuration loading and validation."""

    def __init__(self, config_file: str = "config.yaml"):
        self.config_file = config_file
        self.config = self.load_config()
        self.settings = self.parse_settings(self.config.get('settings') or {})
        self.account_pairs = self.parse_account_pairs(self.config['migrations'])

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, 'r') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file '{self.config_file}' not found")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        self.validate_config(config)
        return config

    @staticmethod
    def validate_config(config: Any) -> None:
        """Validate configuration structure."""
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a mapping")

        migrations = config.get('migrations')
        if not isinstance(migrations, list) or not migrations:
            raise ConfigurationError("Missing required configuration section: migrations")

        settings = config.get('settings')
        if settings is not None and not isinstance(settings, dict):
            raise ConfigurationError("'settings' must be a mapping")

        for index, entry in enumerate(migrations):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Migration entry #{index} must be a mapping")
            for side in ('from', 'to'):
                if not isinstance(entry.get(side), dict):
                    raise ConfigurationError(f"Migration entry #{index} is missing '{side}' section")

            source_accounts = entry['from'].get('accounts')
            destination_accounts = entry['to'].get('accounts')
            if not isinstance(source_accounts, list) or not isinstance(destination_accounts, list):
                raise ConfigurationError(f"Migration entry #{index} needs 'accounts' lists on both sides")
            if len(source_accounts) != len(destination_accounts):
                raise ConfigurationError(
                    f"Migration entry #{index} pairs {len(source_accounts)} source accounts "
                    f"with {len(destination_accounts)} destination accounts"
                )

    @staticmethod
    def parse_settings(settings: Dict[str, Any]) -> MigrationSettings:
        """Build MigrationSettings from the 'settings' section."""
        try:
            max_workers = int(settings.get('max_workers', 10))
            timeout = float(settings.get('timeout', 60))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        if max_workers < 1:
            raise ConfigurationError("'max_workers' must be at least 1")
        if timeout <= 0:
            raise ConfigurationError("'timeout' must be positive")

        tls_min_version = settings.get('tls_min_version')
        if tls_min_version is not None and tls_min_version not in TLS_VERSIONS:
            raise ConfigurationError(
                f"Unknown 'tls_min_version' {tls_min_version!r} (expected one of {sorted(TLS_VERSIONS)})"
            )

        excluded_flags = settings.get('excluded_flags', DEFAULT_EXCLUDED_FLAGS)
        if not isinstance(excluded_flags, (list, tuple)):
            raise ConfigurationError("'excluded_flags' must be a list")

        return MigrationSettings(
            max_workers=max_workers,
            timeout=timeout,
            use_ssl=bool(settings.get('use_ssl', True)),
            tls_min_version=tls_min_version,
            show_progress=bool(settings.get('show_progress', True)),
            log_file=settings.get('log_file'),
            excluded_flags=tuple(str(flag) for flag in excluded_flags),
        )

    @classmethod
    def parse_account_pairs(cls, migrations: List[Dict[str, Any]]) -> List[AccountPair]:
        """Flatten migration entries into account pairs, in configuration order."""
        pairs = []
        for index, entry in enumerate(migrations):
            source_endpoint = cls._parse_endpoint(entry['from'].get('provider'), index, 'from')
            destination_endpoint = cls._parse_endpoint(entry['to'].get('provider'), index, 'to')

            for source, destination in zip(entry['from']['accounts'], entry['to']['accounts']):
                pairs.append(AccountPair(
                    source_endpoint=source_endpoint,
                    source=cls._parse_credentials(source, index, 'from'),
                    destination_endpoint=destination_endpoint,
                    destination=cls._parse_credentials(destination, index, 'to'),
                ))
        return pairs

    @staticmethod
    def _parse_endpoint(provider: Any, index: int, side: str) -> Endpoint:
        if not isinstance(provider, dict) or not provider.get('host') or not provider.get('port'):
            raise ConfigurationError(
                f"Migration entry #{index} '{side}' provider should be a mapping with host and port"
            )
        try:
            port = int(provider['port'])
        except (TypeError, ValueError):
            raise ConfigurationError(f"Migration entry #{index} '{side}' provider port is not a number")
        return Endpoint(host=str(provider['host']), port=port)

    @staticmethod
    def _parse_credentials(account: Any, index: int, side: str) -> Credentials:
        if not isinstance(account, dict) or not account.get('email') or not account.get('password'):
            raise ConfigurationError(
                f"Migration entry #{index} '{side}' account should be a mapping with email and password"
            )
        return Credentials(email=str(account['email']), password=str(account['password']))

    def build_context(self, logger: logging.Logger) -> RunContext:
        """Bundle the parsed configuration with a logger handle."""
        return RunContext(settings=self.settings, account_pairs=self.account_pairs, logger=logger)
