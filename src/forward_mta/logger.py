# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the forwarding MTA.

Library modules only ask for named loggers here. Level, handlers and format
are configured once by the command line entry point (see ``configure_logging``)
so that a successful sendmail run stays silent for cron.

Example:
    Typical usage in a module::

        from forward_mta.logger import get_logger

        logger = get_logger("relay")
        logger.debug("connected to %s", host)
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "FORWARD_AS_ATTACHMENT_MTA_LOG_LEVEL"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str = "ForwardMta") -> logging.Logger:
    """Retrieve a logger instance.

    This function returns a standard library logger with the specified name.
    It does not configure handlers or formatters; that responsibility lies
    with the application entry point.

    Args:
        name: The logger name. Defaults to "ForwardMta".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(verbose: bool = False) -> None:
    """Configure the root logger for a single sendmail invocation.

    The level comes from ``FORWARD_AS_ATTACHMENT_MTA_LOG_LEVEL`` (default
    WARNING). ``verbose`` forces DEBUG, mirroring sendmail's ``-v``.
    Records go to stderr, never stdout.
    """
    if verbose:
        level = logging.DEBUG
    else:
        level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
        level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )
