# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Construction of the wrapper message that carries the original as attachment.

The wrapper always goes from ``RelayConfig.sender_email`` to
``RelayConfig.recipient_email``. Addresses found in the original message or on
the command line only ever appear in the human readable subject and summary.

The original bytes are embedded unchanged:

- as an inline ``message/rfc822`` part when they can travel through SMTP as
  7bit/8bit text (mail clients then display the original in place);
- otherwise as a base64 ``application/octet-stream`` attachment. Gmail and
  Apple Mail break on ``message/rfc822`` parts with any other transfer
  encoding, so the rfc822 part itself is never re-encoded.

A ``text/plain`` original that is not transport safe (typically cron output
with very long lines) additionally gets an inline preview: its headers with
the body re-encoded as base64, wrapped in a 7bit/8bit ``message/rfc822``
part. The exact bytes are always the ones named ``stdin.eml``.
"""

from __future__ import annotations

import base64
import email
import io
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email import policy
from email.errors import HeaderParseError
from email.generator import BytesGenerator
from email.header import decode_header, make_header
from email.message import EmailMessage, MIMEPart
from email.utils import format_datetime, getaddresses, make_msgid

from .config import RelayConfig
from .identity import LocalIdentity
from .invocation import Invocation
from .logger import get_logger
from .parser import FOLD, HeaderField, ParsedMessage

logger = get_logger("wrapper")

ATTACHMENT_NAME = "stdin.eml"
MAX_LINE_OCTETS = 998
SUBJECT_SUMMARY_MAX = 120

NO_SUBJECT = "no subject"
UNKNOWN_SENDER = "unknown sender"
MULTIPLE_SUBJECTS = "(multiple Subject headers)"

CRON_FROM = re.compile(r"(\S+) \(Cron Daemon\)")
BARE_CR = re.compile(rb"\r(?!\n)")

REPLACED_IN_PREVIEW = frozenset({"content-type", "content-transfer-encoding"})


class VerbatimGenerator(BytesGenerator):
    """BytesGenerator writing ``message/rfc822`` string payloads as their original bytes.

    The stock generator encodes such payloads as strict ASCII, which fails on
    8bit originals.
    """

    def _handle_message(self, msg):
        payload = msg._payload
        if isinstance(payload, str):
            self._fp.write(payload.encode("ascii", "surrogateescape"))
            return
        super()._handle_message(msg)


def _rfc822_part(data: bytes, filename: str | None = None) -> MIMEPart:
    part = MIMEPart(policy=policy.SMTP)
    part["Content-Type"] = "message/rfc822"
    part["Content-Transfer-Encoding"] = "7bit" if data.isascii() else "8bit"
    if filename:
        part.add_header("Content-Disposition", "inline", filename=filename)
    else:
        part["Content-Disposition"] = "inline"
    # surrogateescape maps every byte back to itself on output
    part.set_payload(data.decode("ascii", "surrogateescape"))
    return part


@dataclass(frozen=True)
class OutboundMessage:
    """The wrapper message ready for the relay.

    Attributes:
        envelope_from: MAIL FROM address (always the configured sender).
        envelope_to: RCPT TO address (always the configured recipient).
        header_from: From header (always the configured sender).
        header_to: To header (always the configured recipient).
        subject: Synthesized subject.
        summary_body: Plaintext summary shown above the attachment.
        attachment: The original message bytes, unchanged.
        inline: True when embedded as ``message/rfc822``.
        date: Date header value.
        message_id: Message-ID header value.
        preview: Re-encoded copy shown inline when the original cannot be.
    """

    envelope_from: str
    envelope_to: str
    header_from: str
    header_to: str
    subject: str
    summary_body: str
    attachment: bytes
    inline: bool
    date: str
    message_id: str
    preview: bytes | None = None

    @property
    def attachment_type(self) -> str:
        return "message/rfc822" if self.inline else "application/octet-stream"

    def to_email(self) -> EmailMessage:
        """Build the MIME structure (multipart/mixed: summary, preview, original)."""
        msg = EmailMessage(policy=policy.SMTP)
        msg["From"] = self.header_from
        msg["To"] = self.header_to
        msg["Subject"] = self.subject
        msg["Date"] = self.date
        msg["Message-ID"] = self.message_id
        msg.set_content(self.summary_body)

        if self.inline:
            msg.make_mixed()
            msg.attach(_rfc822_part(self.attachment, ATTACHMENT_NAME))
            return msg
        if self.preview is not None:
            msg.make_mixed()
            msg.attach(_rfc822_part(self.preview))
        msg.add_attachment(
            self.attachment,
            maintype="application",
            subtype="octet-stream",
            filename=ATTACHMENT_NAME,
        )
        return msg

    def as_bytes(self) -> bytes:
        """Serialize with CRLF line endings for the SMTP DATA payload."""
        buffer = io.BytesIO()
        generator = VerbatimGenerator(buffer, mangle_from_=False, policy=policy.SMTP)
        generator.flatten(self.to_email())
        return buffer.getvalue()


def is_transport_safe(raw: bytes) -> bool:
    """Whether ``raw`` can be sent as a 7bit/8bit MIME body without re-encoding."""
    if b"\x00" in raw or BARE_CR.search(raw):
        return False
    return all(len(line.rstrip(b"\r")) <= MAX_LINE_OCTETS for line in raw.split(b"\n"))


def reencode_for_display(parsed: ParsedMessage) -> bytes | None:
    """Rebuild a ``text/plain`` original with a base64 body, or None if impossible.

    Headers are kept as they are except the content headers, which describe
    the new UTF-8 base64 body.
    """
    if not parsed.is_recognized or len(parsed.headers) != len(parsed.segments):
        logger.debug("no inline preview: header block not fully parsed")
        return None
    if parsed.content_type != "text/plain":
        logger.debug("no inline preview: content type is %s", parsed.content_type)
        return None
    try:
        text = parsed.as_email().get_content()
    except (LookupError, UnicodeError, ValueError, KeyError) as exc:
        logger.debug("no inline preview: cannot decode body: %s", exc)
        return None

    kept: list[HeaderField] = [
        field for field in parsed.headers if field.name.lower() not in REPLACED_IN_PREVIEW
    ]
    lines = [FOLD.sub(b"\r\n", field.raw.rstrip(b"\r\n")) + b"\r\n" for field in kept]
    if not any(field.name.lower() == "mime-version" for field in kept):
        lines.append(b"MIME-Version: 1.0\r\n")
    lines += [
        b'Content-Type: text/plain; charset="utf-8"\r\n',
        b"Content-Transfer-Encoding: base64\r\n",
        b"\r\n",
        base64.encodebytes(text.encode("utf-8")).replace(b"\n", b"\r\n"),
    ]
    preview = b"".join(lines)
    if not is_transport_safe(preview):
        logger.debug("no inline preview: headers are not transport safe")
        return None
    return preview


def _decode_header_value(value: str) -> str:
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError, ValueError):
        return value


def _collapse(text: str, limit: int = SUBJECT_SUMMARY_MAX) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 3].rstrip() + "..."
    return text


def escape_parens(text: str) -> str:
    return text.replace("(", r"\(").replace(")", r"\)")


def extract_cron_sender(value: str) -> str | None:
    """Pick ``user`` out of cron's ``user (Cron Daemon)`` From header."""
    match = CRON_FROM.search(value)
    return match.group(1) if match else None


def header_sender(parsed: ParsedMessage) -> str | None:
    """The single address of an unambiguous From header, if any."""
    values = parsed.get_all("From")
    if len(values) != 1:
        if values:
            logger.debug("ignoring %d From headers", len(values))
        return None
    value = _decode_header_value(values[0])
    addresses = [addr for _name, addr in getaddresses([value]) if addr]
    if len(addresses) == 1:
        return addresses[0]
    logger.debug("cannot read From header %r as one address, trying cron format", value)
    return extract_cron_sender(value)


def describe_sender(envelope_from: str | None, header_from: str | None) -> str:
    """Render the origin of the message from envelope and header senders."""
    evlp = escape_parens(envelope_from) if envelope_from else None
    hdr = escape_parens(header_from) if header_from else None
    if evlp and hdr:
        return f"evlp+hdr({evlp})" if evlp == hdr else f"evlp({evlp})+hdr({hdr})"
    if evlp:
        return f"evlp({evlp})"
    if hdr:
        return f"hdr({hdr})"
    return UNKNOWN_SENDER


def subject_summary(parsed: ParsedMessage) -> str:
    values = parsed.get_all("Subject")
    if not values:
        return NO_SUBJECT
    if len(values) > 1:
        return MULTIPLE_SUBJECTS
    return _collapse(_decode_header_value(values[0])) or NO_SUBJECT


def synthesize_subject(
    parsed: ParsedMessage,
    identity: LocalIdentity,
    invocation: Invocation | None = None,
) -> str:
    """Build ``[user@host] sender: subject``; never raises on odd headers."""
    envelope_from = invocation.envelope_from if invocation else None
    sender = describe_sender(envelope_from, header_sender(parsed))
    subject = f"[{identity.invoking_user}@{identity.hostname}] {sender}: {subject_summary(parsed)}"
    # header values may not contain line breaks
    return " ".join(subject.split())


def compose_summary(
    parsed: ParsedMessage,
    identity: LocalIdentity,
    invocation: Invocation | None = None,
    config_warning: str | None = None,
    *,
    inline: bool = False,
    preview: bool = False,
) -> str:
    """Plaintext body readable without opening the attachment."""
    from_values = [_collapse(_decode_header_value(v), 200) for v in parsed.get_all("From")]
    lines = [
        f"A process on host {identity.hostname!r} (user {identity.invoking_user!r}) invoked the sendmail binary.",
        "On that host, the sendmail binary is provided by forward-as-attachment-mta.",
    ]
    if config_warning:
        lines.append(config_warning)
    if inline:
        lines.append("The original message is attached inline to this wrapper message.")
    elif preview:
        lines.append(
            "The original message is shown inline with its body re-encoded;"
            f" the exact bytes are attached as {ATTACHMENT_NAME}."
        )
    elif parsed.is_recognized:
        lines.append(
            f"The original message cannot be shown inline; it is attached unchanged as {ATTACHMENT_NAME}."
        )
    else:
        lines.append("Standard input did not look like an email; it is attached unchanged.")
    lines += [
        "",
        f"Original subject: {subject_summary(parsed)}",
        f"Original from: {', '.join(from_values) if from_values else UNKNOWN_SENDER}",
        f"Original size: {len(parsed.raw)} bytes",
        "",
    ]
    if invocation is not None:
        lines += [f"Invocation args: {invocation.display()}", ""]
    lines += identity.describe()
    lines.append("")
    return "\n".join(lines)


def build_wrapper(
    parsed: ParsedMessage,
    config: RelayConfig,
    identity: LocalIdentity,
    invocation: Invocation | None = None,
    *,
    config_warning: str | None = None,
    now: datetime | None = None,
) -> OutboundMessage:
    """Wrap the original message for the configured operator mailbox.

    Args:
        parsed: The original message.
        config: Relay configuration; its addresses are the only ones used.
        identity: Local host and user, for display.
        invocation: Interpreted sendmail arguments, for display.
        config_warning: Optional config permission warning for the body.
        now: Timestamp for the Date header (defaults to the current time).

    Returns:
        The ``OutboundMessage``.
    """
    inline = parsed.is_recognized and is_transport_safe(parsed.raw)
    preview = None if inline else reencode_for_display(parsed)
    logger.debug(
        "embedding original as %s%s",
        "inline message/rfc822" if inline else "application/octet-stream attachment",
        " with inline preview" if preview is not None else "",
    )
    sender_domain = config.sender_email.rpartition("@")[2]
    return OutboundMessage(
        envelope_from=config.sender_email,
        envelope_to=config.recipient_email,
        header_from=config.sender_email,
        header_to=config.recipient_email,
        subject=synthesize_subject(parsed, identity, invocation),
        summary_body=compose_summary(
            parsed,
            identity,
            invocation,
            config_warning,
            inline=inline,
            preview=preview is not None,
        ),
        attachment=parsed.raw,
        inline=inline,
        date=format_datetime(now or datetime.now(timezone.utc)),
        message_id=make_msgid(domain=sender_domain),
        preview=preview,
    )


def _split_part(piece: bytes) -> tuple[bytes, bytes]:
    ends = [(piece.find(sep), sep) for sep in (b"\r\n\r\n", b"\n\n") if piece.find(sep) >= 0]
    if not ends:
        return piece, b""
    index, sep = min(ends)
    return piece[: index + len(sep)], piece[index + len(sep):]


def extract_original(data: bytes) -> bytes:
    """Recover the embedded original from a serialized wrapper message.

    Raises:
        ValueError: If ``data`` is not a wrapper message.
    """
    outer = email.message_from_bytes(data, policy=policy.compat32)
    boundary = outer.get_boundary()
    if not boundary:
        raise ValueError("not a multipart message")
    delimiter = re.compile(
        rb"(?:\r\n|\n)--" + re.escape(boundary.encode("ascii")) + rb"(?:--)?[ \t]*(?:\r\n|\n|\Z)"
    )
    for piece in delimiter.split(data)[1:]:
        head, body = _split_part(piece)
        part = email.message_from_bytes(head, policy=policy.compat32)
        if part.get_filename() != ATTACHMENT_NAME:
            continue
        if part.get_content_type() == "message/rfc822":
            return body
        if (part.get("Content-Transfer-Encoding") or "").strip().lower() == "base64":
            return base64.b64decode(body)
        return body
    raise ValueError(f"no {ATTACHMENT_NAME} part found")


__all__ = [
    "ATTACHMENT_NAME",
    "OutboundMessage",
    "build_wrapper",
    "compose_summary",
    "describe_sender",
    "extract_original",
    "header_sender",
    "is_transport_safe",
    "reencode_for_display",
    "synthesize_subject",
]
