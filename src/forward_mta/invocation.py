# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Interpretation of sendmail-style command line arguments.

Local daemons call ``sendmail`` with a wide variety of flags. The forwarding
MTA never delivers to the recipients named there, but it must consume the
arguments the way sendmail does so that common invocations keep working:

- ``sendmail -t -oi`` (recipients taken from the message headers)
- ``sendmail -f sender@host -F "Full Name" rcpt@example.com``
- ``sendmail -i -- rcpt@example.com``

Flags follow getopt rules: boolean flags may be clustered (``-ti``) and value
flags take the value attached (``-fuser@host``) or as the next argument.
Unknown flags are ignored rather than rejected.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .errors import UsageError
from .logger import get_logger

logger = get_logger("invocation")

# Flags without a value.
BOOLEAN_FLAGS = frozenset("tivGUnms")
# Flags whose value is attached or taken from the next argument.
VALUE_FLAGS = frozenset("BCFNRVXLOfrhpo")
# Flags whose value, if any, must be attached.
OPTIONAL_VALUE_FLAGS = frozenset("bqd")


@dataclass(frozen=True)
class Invocation:
    """Result of interpreting the sendmail arguments.

    None of these fields select the delivery target; the wrapper message is
    always sent to the configured recipient.

    Attributes:
        args: The arguments as received (without the program name).
        recipients: Positional recipient addresses.
        extract_recipients: True when ``-t`` asked to read To/Cc/Bcc headers.
        envelope_from: Sender given with ``-f``/``-r``, None when absent,
            ambiguous or not trustworthy (non UTF-8 argv).
        full_name: Value of ``-F``.
        config_file: Alternate configuration file given with ``-C``.
        ignore_dots: True for ``-i`` / ``-oi``.
        verbose: True for ``-v``.
        delivery_mode: Value of ``-b`` (``m`` when not given).
        options: ``-o`` option clusters in order.
        ignored: Flags that were accepted but not understood.
        lossy: True when some argument was not valid UTF-8.
    """

    args: tuple[str, ...] = ()
    recipients: tuple[str, ...] = ()
    extract_recipients: bool = False
    envelope_from: str | None = None
    full_name: str | None = None
    config_file: str | None = None
    ignore_dots: bool = False
    verbose: bool = False
    delivery_mode: str = "m"
    options: tuple[str, ...] = ()
    ignored: tuple[str, ...] = ()
    lossy: bool = False

    def display(self) -> str:
        """Render the arguments for humans, marking non UTF-8 input."""
        rendered = repr([_printable(arg) for arg in self.args])
        return f"(non-utf-8): {rendered}" if self.lossy else rendered


def _is_lossy(arg: str) -> bool:
    try:
        arg.encode("utf-8")
    except UnicodeEncodeError:
        return True
    return False


def _printable(arg: str) -> str:
    return arg.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def interpret_arguments(args: Sequence[str]) -> Invocation:
    """Interpret sendmail arguments.

    Args:
        args: Command line arguments without the program name. Arguments that
            were not valid UTF-8 are expected in ``os.fsdecode`` form
            (surrogate escapes), which is how Python exposes ``sys.argv``.

    Returns:
        The interpreted ``Invocation``.

    Raises:
        UsageError: If a flag that requires a value is the last argument.
    """
    args = tuple(args)
    lossy = any(_is_lossy(arg) for arg in args)

    recipients: list[str] = []
    senders: list[str] = []
    options: list[str] = []
    ignored: list[str] = []
    values: dict[str, str] = {}
    flags: set[str] = set()

    index = 0
    end_of_options = False
    while index < len(args):
        arg = args[index]
        index += 1

        if end_of_options or not arg.startswith("-"):
            recipients.append(arg)
            continue
        if arg == "-":
            ignored.append(arg)
            continue
        if arg == "--":
            end_of_options = True
            continue
        if arg.startswith("--"):
            ignored.append(arg)
            continue

        pos = 1
        while pos < len(arg):
            letter = arg[pos]
            rest = arg[pos + 1:]
            if letter in BOOLEAN_FLAGS:
                flags.add(letter)
                pos += 1
                continue
            if letter in VALUE_FLAGS:
                if rest:
                    value = rest
                elif index < len(args):
                    value = args[index]
                    index += 1
                else:
                    raise UsageError(f"option requires an argument -- '{letter}'")
                if letter in "fr":
                    senders.append(value)
                elif letter == "o":
                    options.append(value)
                else:
                    values[letter] = value
            elif letter in OPTIONAL_VALUE_FLAGS:
                values[letter] = rest
            else:
                ignored.append(f"-{arg[pos:]}")
            break

    envelope_from = None
    distinct_senders = set(senders)
    if len(distinct_senders) == 1 and not lossy:
        envelope_from = senders[0]
    elif len(distinct_senders) > 1:
        logger.debug("ambiguous envelope sender: %s", senders)

    invocation = Invocation(
        args=args,
        recipients=tuple(recipients),
        extract_recipients="t" in flags,
        envelope_from=envelope_from,
        full_name=values.get("F"),
        config_file=values.get("C") or None,
        ignore_dots="i" in flags or "i" in options,
        verbose="v" in flags,
        delivery_mode=values.get("b") or "m",
        options=tuple(options),
        ignored=tuple(ignored),
        lossy=lossy,
    )
    if ignored:
        logger.debug("ignoring unsupported flags: %s", ignored)
    if invocation.delivery_mode != "m":
        logger.debug("delivery mode -b%s treated as -bm", invocation.delivery_mode)
    if invocation.extract_recipients and recipients:
        logger.debug("-t given together with argv recipients %s", recipients)
    logger.debug("args %s", invocation.display())
    return invocation


__all__ = ["Invocation", "interpret_arguments"]
