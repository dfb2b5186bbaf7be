#!/usr/bin/env python3
"""
Utility functions for the IMAP mailbox migrator.
"""

import logging
from typing import Any, Dict, Optional


LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_file: Optional[str] = None, verbose: bool = False,
                  name: str = 'imap_migrator') -> logging.Logger:
    """Configure and return the logger handle used for a run."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes messages with contextual fields such as account and folder."""

    def process(self, msg, kwargs):
        fields = ' '.join(f"{key}={value}" for key, value in self.extra.items() if value is not None)
        kwargs.setdefault('extra', {}).update(self.extra)
        if fields:
            return f"[{fields}] {msg}", kwargs
        return msg, kwargs

    def bind(self, **fields: Any) -> 'ContextAdapter':
        """Return a new adapter with additional context fields."""
        merged: Dict[str, Any] = dict(self.extra)
        merged.update(fields)
        return ContextAdapter(self.logger, merged)


def with_context(logger, **fields: Any) -> ContextAdapter:
    """Wrap a logger (or adapter) with contextual fields."""
    if isinstance(logger, ContextAdapter):
        return logger.bind(**fields)
    return ContextAdapter(logger, fields)
