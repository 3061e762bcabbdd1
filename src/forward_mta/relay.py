# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP relay client for the wrapper message.

One invocation performs exactly one SMTP transaction against the configured
relay, modelled as a linear state machine::

    CONNECTING -> TLS_HANDSHAKE -> AUTHENTICATING -> SENDING_ENVELOPE
        -> SENDING_DATA -> COMPLETED

Any failure moves straight to FAILED with a classified error; no state is
entered twice and nothing is retried. Retrying is left to the invoking daemon.
The connection is closed whatever the outcome.

TLS behavior:
- ``smtp_security = "starttls"`` (default, port 587): plain connect, then
  STARTTLS, which the relay must advertise.
- ``smtp_security = "tls"`` (default on port 465): TLS from the first byte.

Certificates are verified against the system trust store in both modes.

Example:
    Relaying a wrapper message::

        result = asyncio.run(deliver(outbound, config))
        print(result.smtp_code, result.smtp_message)
"""

from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass, field
from enum import Enum

import aiosmtplib

from .config import RelayConfig
from .errors import AuthError, ForwardMtaError, RelayRejectedError, TransportError
from .logger import get_logger
from .wrapper import OutboundMessage

logger = get_logger("relay")


class RelayState(str, Enum):
    """States of one relay transaction."""

    CONNECTING = "connecting"
    TLS_HANDSHAKE = "tls_handshake"
    AUTHENTICATING = "authenticating"
    SENDING_ENVELOPE = "sending_envelope"
    SENDING_DATA = "sending_data"
    COMPLETED = "completed"
    FAILED = "failed"


NEXT_STATE = {
    RelayState.CONNECTING: RelayState.TLS_HANDSHAKE,
    RelayState.TLS_HANDSHAKE: RelayState.AUTHENTICATING,
    RelayState.AUTHENTICATING: RelayState.SENDING_ENVELOPE,
    RelayState.SENDING_ENVELOPE: RelayState.SENDING_DATA,
    RelayState.SENDING_DATA: RelayState.COMPLETED,
}

# Errors meaning the connection itself is gone or stuck.
NETWORK_ERRORS = (aiosmtplib.SMTPServerDisconnected, aiosmtplib.SMTPTimeoutError, asyncio.TimeoutError, OSError)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


@dataclass
class DeliveryResult:
    """Outcome of a relay transaction.

    Attributes:
        state: COMPLETED on success, FAILED otherwise.
        trace: States visited, in order (FAILED included on failure).
        smtp_code: Final reply code from the relay, when one was received.
        smtp_message: Final reply text from the relay.
        error: The classified error for a failed transaction.
    """

    state: RelayState
    trace: list[RelayState] = field(default_factory=list)
    smtp_code: int | None = None
    smtp_message: str = ""
    error: ForwardMtaError | None = None

    @property
    def ok(self) -> bool:
        return self.state is RelayState.COMPLETED

    @property
    def failed_at(self) -> RelayState | None:
        """The state in which the transaction failed."""
        if self.ok or len(self.trace) < 2:
            return None
        return self.trace[-2]

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class RelayClient:
    """Performs the single SMTP transaction of a forwarding run."""

    def __init__(self, config: RelayConfig, tls_context: ssl.SSLContext | None = None):
        self.config = config
        self.tls_context = tls_context or ssl.create_default_context()

    def _create_client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.config.smtp_host,
            port=self.config.smtp_port,
            use_tls=self.config.implicit_tls,
            start_tls=False,
            tls_context=self.tls_context,
            timeout=self.config.timeout,
        )

    async def _connect(self, smtp: aiosmtplib.SMTP, payload: bytes) -> None:
        target = f"{self.config.smtp_host}:{self.config.smtp_port}"
        try:
            # Wrap in asyncio.wait_for to ensure we don't hang even if aiosmtplib timeout fails
            await asyncio.wait_for(smtp.connect(), timeout=self.config.timeout + 5.0)
        except ssl.SSLError as exc:
            raise TransportError(f"TLS handshake with {target} failed: {exc}") from exc
        except (aiosmtplib.SMTPException, *NETWORK_ERRORS) as exc:
            raise TransportError(f"cannot connect to {target}: {_describe(exc)}") from exc

    async def _handshake(self, smtp: aiosmtplib.SMTP, payload: bytes) -> None:
        if self.config.implicit_tls:
            # already negotiated by connect()
            return
        try:
            await asyncio.wait_for(
                smtp.starttls(tls_context=self.tls_context),
                timeout=self.config.timeout + 5.0,
            )
        except aiosmtplib.SMTPResponseException as exc:
            raise TransportError(f"relay refused STARTTLS: {exc.code} {exc.message}") from exc
        except ssl.SSLError as exc:
            raise TransportError(f"TLS handshake failed: {exc}") from exc
        except NETWORK_ERRORS as exc:
            raise TransportError(f"connection lost during TLS handshake: {_describe(exc)}") from exc
        except aiosmtplib.SMTPException as exc:
            raise TransportError(f"cannot negotiate TLS: {exc}") from exc

    async def _authenticate(self, smtp: aiosmtplib.SMTP, payload: bytes) -> None:
        try:
            await smtp.login(self.config.smtp_username, self.config.smtp_password)
        except aiosmtplib.SMTPResponseException as exc:
            raise AuthError(f"relay rejected credentials: {exc.code} {exc.message}", smtp_code=exc.code) from exc
        except NETWORK_ERRORS as exc:
            raise TransportError(f"connection lost during authentication: {_describe(exc)}") from exc
        except aiosmtplib.SMTPException as exc:
            raise AuthError(f"cannot authenticate: {exc}") from exc

    async def _send_envelope(self, smtp: aiosmtplib.SMTP, payload: bytes) -> None:
        options: list[str] = []
        if not payload.isascii():
            if smtp.supports_extension("8bitmime"):
                options.append("BODY=8BITMIME")
            else:
                logger.warning("relay does not advertise 8BITMIME, sending 8bit data anyway")
        try:
            await smtp.mail(self.config.sender_email, options=options)
        except aiosmtplib.SMTPResponseException as exc:
            raise RelayRejectedError(exc.code, exc.message, "mail") from exc
        except (aiosmtplib.SMTPException, *NETWORK_ERRORS) as exc:
            raise TransportError(f"MAIL FROM failed: {_describe(exc)}") from exc
        try:
            await smtp.rcpt(self.config.recipient_email)
        except aiosmtplib.SMTPResponseException as exc:
            raise RelayRejectedError(exc.code, exc.message, "rcpt") from exc
        except (aiosmtplib.SMTPException, *NETWORK_ERRORS) as exc:
            raise TransportError(f"RCPT TO failed: {_describe(exc)}") from exc

    async def _send_data(self, smtp: aiosmtplib.SMTP, payload: bytes) -> aiosmtplib.SMTPResponse:
        try:
            return await smtp.data(payload)
        except aiosmtplib.SMTPResponseException as exc:
            raise RelayRejectedError(exc.code, exc.message, "data") from exc
        except (aiosmtplib.SMTPException, *NETWORK_ERRORS) as exc:
            raise TransportError(f"DATA failed: {_describe(exc)}") from exc

    async def _close(self, smtp: aiosmtplib.SMTP) -> None:
        if not smtp.is_connected:
            return
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, *NETWORK_ERRORS) as exc:
            logger.debug("QUIT failed (%s), closing connection", exc)
            smtp.close()

    async def transact(self, outbound: OutboundMessage) -> DeliveryResult:
        """Run the transaction and classify its outcome without raising.

        The envelope comes from the configuration, never from ``outbound``'s
        original content.
        """
        steps = {
            RelayState.CONNECTING: self._connect,
            RelayState.TLS_HANDSHAKE: self._handshake,
            RelayState.AUTHENTICATING: self._authenticate,
            RelayState.SENDING_ENVELOPE: self._send_envelope,
            RelayState.SENDING_DATA: self._send_data,
        }
        payload = outbound.as_bytes()
        result = DeliveryResult(state=RelayState.CONNECTING)
        smtp = self._create_client()
        response = None
        try:
            state = RelayState.CONNECTING
            while state is not RelayState.COMPLETED:
                result.trace.append(state)
                logger.debug("relay state: %s", state.value)
                response = await steps[state](smtp, payload)
                state = NEXT_STATE[state]
            result.state = RelayState.COMPLETED
            result.trace.append(RelayState.COMPLETED)
            if response is not None:
                result.smtp_code = response.code
                result.smtp_message = response.message
            logger.info("relay accepted message: %s %s", result.smtp_code, result.smtp_message)
        except ForwardMtaError as exc:
            result.state = RelayState.FAILED
            result.trace.append(RelayState.FAILED)
            result.error = exc
            if isinstance(exc, (AuthError, RelayRejectedError)):
                result.smtp_code = exc.smtp_code
                result.smtp_message = getattr(exc, "smtp_message", "")
            logger.error("relay transaction failed at %s: %s", result.failed_at.value, exc)
        finally:
            await self._close(smtp)
        return result


async def deliver(outbound: OutboundMessage, config: RelayConfig) -> DeliveryResult:
    """Relay ``outbound`` and raise the classified error on failure.

    Raises:
        TransportError: Network, timeout or TLS failure.
        AuthError: The relay rejected the credentials.
        RelayRejectedError: The relay answered MAIL, RCPT or DATA with 4xx/5xx.
    """
    result = await RelayClient(config).transact(outbound)
    result.raise_for_error()
    return result


__all__ = ["DeliveryResult", "NEXT_STATE", "RelayClient", "RelayState", "deliver"]
