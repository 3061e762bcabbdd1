# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sendmail-compatible command line entry point.

Installed as ``/usr/sbin/sendmail``; local daemons call it with the usual
sendmail flags and pipe a message on stdin::

    echo -e "Subject: job failed\\n\\nexit 1" | sendmail -t -oi

The process reads the configuration, wraps stdin into a new message for the
configured operator mailbox, relays it once and exits. The exit status
follows ``sysexits.h`` so that callers can tell temporary failures (75) from
permanent ones.
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import BinaryIO

import click
from rich.console import Console
from rich.markup import escape

from .config import load_config, permission_warning, resolve_config_path
from .errors import EX_SOFTWARE, ForwardMtaError
from .identity import resolve_local_identity
from .invocation import Invocation, interpret_arguments
from .logger import configure_logging, get_logger
from .parser import parse_message, read_message
from .relay import DeliveryResult, deliver
from .wrapper import build_wrapper

console = Console()
err_console = Console(stderr=True)

logger = get_logger("cli")


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {escape(message)}")


def forward(invocation: Invocation, stdin: BinaryIO) -> DeliveryResult:
    """Run one forwarding: config, stdin, wrapper, relay.

    The configuration is loaded before stdin is touched.

    Raises:
        ForwardMtaError: The classified failure of any step.
    """
    config_override = invocation.config_file
    if config_override and os.getuid() != os.geteuid():
        logger.warning("ignoring -C %s: not honoured in a setuid process", config_override)
        config_override = None
    config_path = resolve_config_path(config_override)
    config = load_config(config_path)
    identity = resolve_local_identity()

    parsed = parse_message(read_message(stdin))
    outbound = build_wrapper(
        parsed,
        config,
        identity,
        invocation,
        config_warning=permission_warning(config_path),
    )
    logger.debug("sending message with subject %r", outbound.subject)
    return run_async(deliver(outbound, config))


@click.command(
    context_settings={
        "ignore_unknown_options": True,
        "allow_extra_args": True,
        "help_option_names": [],
    }
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def main(args: tuple[str, ...]) -> None:
    """Forward the message on stdin, as an attachment, to the operator mailbox.

    Accepts the usual sendmail flags; recipients on the command line or in
    the message headers are not used for delivery.
    """
    configure_logging()
    try:
        invocation = interpret_arguments(args)
        if invocation.verbose:
            configure_logging(verbose=True)
        result = forward(invocation, sys.stdin.buffer)
    except ForwardMtaError as exc:
        print_error(str(exc))
        sys.exit(exc.exit_status)
    except Exception as exc:
        logger.exception("unexpected failure")
        print_error(f"unexpected failure: {exc}")
        sys.exit(EX_SOFTWARE)

    if invocation.verbose:
        print_success(f"Email sent successfully: {result.smtp_code} {result.smtp_message}")


if __name__ == "__main__":
    main()
