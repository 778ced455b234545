# SPDX-License-Identifier: GPL-3.0-only
"""Shared logger factory."""

import logging
import os

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format=LOG_FORMAT)


def get_logger(name: str = None) -> logging.Logger:
    """Return a named logger using the shared configuration.

    Args:
        name: Logger name, usually ``__name__``.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)
