# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy for the forwarding MTA.

Every error is terminal for the process. Each class carries a short machine
``code`` and the ``exit_status`` a sendmail-compatible binary reports for it
(values from ``sysexits.h``), so the invoking daemon can tell a temporary
failure from a permanent one.
"""

from __future__ import annotations

EX_OK = 0
EX_USAGE = 64
EX_DATAERR = 65
EX_UNAVAILABLE = 69
EX_SOFTWARE = 70
EX_TEMPFAIL = 75
EX_NOPERM = 77
EX_CONFIG = 78


class ForwardMtaError(RuntimeError):
    """Base class for all failures of a forwarding run."""

    code = "error"
    exit_status = EX_SOFTWARE


class UsageError(ForwardMtaError):
    """Raised when the sendmail-style arguments are structurally invalid."""

    code = "usage"
    exit_status = EX_USAGE


class ConfigError(ForwardMtaError):
    """Raised when the configuration file is missing, unreadable or invalid."""

    code = "config"
    exit_status = EX_CONFIG


class MalformedInputError(ForwardMtaError):
    """Raised when standard input cannot be read as bytes."""

    code = "malformed_input"
    exit_status = EX_DATAERR


class TransportError(ForwardMtaError):
    """Raised on network, timeout or TLS failures while talking to the relay."""

    code = "transport"
    exit_status = EX_TEMPFAIL


class AuthError(ForwardMtaError):
    """Raised when the relay rejects the configured credentials."""

    code = "auth"
    exit_status = EX_NOPERM

    def __init__(self, message: str, smtp_code: int | None = None):
        super().__init__(message)
        self.smtp_code = smtp_code


class RelayRejectedError(ForwardMtaError):
    """Raised when the relay answers an envelope or data command with 4xx/5xx.

    Attributes:
        smtp_code: Reply code returned by the relay.
        smtp_message: Reply text returned by the relay.
        stage: Command that was rejected ("mail", "rcpt" or "data").
        transient: True for 4xx replies.
    """

    code = "relay_rejected"

    def __init__(self, smtp_code: int, smtp_message: str, stage: str):
        super().__init__(f"relay rejected {stage.upper()}: {smtp_code} {smtp_message}")
        self.smtp_code = smtp_code
        self.smtp_message = smtp_message
        self.stage = stage

    @property
    def transient(self) -> bool:
        return 400 <= self.smtp_code < 500

    @property
    def exit_status(self) -> int:  # type: ignore[override]
        return EX_TEMPFAIL if self.transient else EX_UNAVAILABLE


__all__ = [
    "AuthError",
    "ConfigError",
    "EX_CONFIG",
    "EX_DATAERR",
    "EX_NOPERM",
    "EX_OK",
    "EX_SOFTWARE",
    "EX_TEMPFAIL",
    "EX_UNAVAILABLE",
    "EX_USAGE",
    "ForwardMtaError",
    "MalformedInputError",
    "RelayRejectedError",
    "TransportError",
    "UsageError",
]
