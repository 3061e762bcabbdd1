# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tolerant parsing of the original message read from standard input.

The parser never fails on content. The header block is scanned line by line
into segments that are either a recognized ``HeaderField`` or an
``OpaqueSegment`` holding bytes that did not look like a header. Joining the
raw bytes of all segments, the blank separator line and the body always gives
back the exact input, which is what the wrapper embeds.
"""

from __future__ import annotations

import email
import re
from dataclasses import dataclass
from email import policy
from email.message import EmailMessage
from typing import BinaryIO, Union

from .errors import MalformedInputError
from .logger import get_logger

logger = get_logger("parser")

# field-name = 1*(printable US-ASCII except ":"), obsolete whitespace before the colon tolerated
HEADER_LINE = re.compile(rb"^([\x21-\x39\x3b-\x7e]+)[ \t]*:")
FOLD = re.compile(rb"\r\n|\r|\n")


@dataclass(frozen=True)
class HeaderField:
    """A recognized header with its original casing and raw bytes (folding included)."""

    name: str
    value: str
    raw: bytes


@dataclass(frozen=True)
class OpaqueSegment:
    """Part of the header block that could not be read as headers."""

    raw: bytes


Segment = Union[HeaderField, OpaqueSegment]


@dataclass(frozen=True)
class ParsedMessage:
    """The original message as ordered header segments plus body.

    Attributes:
        raw: The exact bytes read from standard input.
        segments: Header block segments in input order.
        separator: The empty line ending the header block (b"" if missing).
        body: Everything after the separator.
    """

    raw: bytes
    segments: tuple[Segment, ...]
    separator: bytes
    body: bytes

    @property
    def headers(self) -> tuple[HeaderField, ...]:
        return tuple(seg for seg in self.segments if isinstance(seg, HeaderField))

    @property
    def is_recognized(self) -> bool:
        """True when the input starts with a header, i.e. looks like a message."""
        return bool(self.segments) and isinstance(self.segments[0], HeaderField)

    def get_all(self, name: str) -> list[str]:
        """Values of every header called ``name`` (case-insensitive), in order."""
        wanted = name.lower()
        return [field.value for field in self.headers if field.name.lower() == wanted]

    def reassemble(self) -> bytes:
        """Rebuild the input from the parsed pieces."""
        return b"".join(seg.raw for seg in self.segments) + self.separator + self.body

    def as_email(self) -> EmailMessage:
        """MIME view of the message, parsed by the standard library."""
        return email.message_from_bytes(self.raw, policy=policy.default)

    @property
    def content_type(self) -> str:
        if not self.is_recognized:
            return "application/octet-stream"
        return self.as_email().get_content_type()


def _is_blank(line: bytes) -> bool:
    return line in (b"\n", b"\r\n", b"\r")


def _header_field(raw: bytes) -> Segment:
    name_match = HEADER_LINE.match(raw)
    if name_match is None:
        return OpaqueSegment(raw)
    name = name_match.group(1).decode("ascii")
    value = FOLD.sub(b"", raw[name_match.end():]).strip(b" \t")
    return HeaderField(name=name, value=value.decode("utf-8", "replace"), raw=raw)


def parse_message(raw: bytes) -> ParsedMessage:
    """Split raw bytes into header segments and body.

    A line that is neither a header nor a continuation of one makes the rest
    of the header block, up to the first empty line, an ``OpaqueSegment``.

    Args:
        raw: The complete original message.

    Returns:
        The ``ParsedMessage``; ``reassemble()`` equals ``raw``.
    """
    lines = raw.splitlines(keepends=True)
    segments: list[Segment] = []
    current: list[bytes] = []
    opaque = False
    separator = b""
    consumed = 0

    def flush() -> None:
        if not current:
            return
        chunk = b"".join(current)
        segments.append(OpaqueSegment(chunk) if opaque else _header_field(chunk))
        current.clear()

    for line in lines:
        if _is_blank(line):
            separator = line
            consumed += len(line)
            break
        consumed += len(line)
        if opaque:
            current.append(line)
        elif line[:1] in (b" ", b"\t") and current:
            current.append(line)
        elif HEADER_LINE.match(line):
            flush()
            current.append(line)
        else:
            flush()
            opaque = True
            current.append(line)
    flush()

    parsed = ParsedMessage(
        raw=raw,
        segments=tuple(segments),
        separator=separator,
        body=raw[consumed:],
    )
    logger.debug(
        "parsed message: %d headers, opaque=%s, body=%d bytes",
        len(parsed.headers),
        opaque,
        len(parsed.body),
    )
    return parsed


def read_message(stream: BinaryIO) -> bytes:
    """Read the whole original message from ``stream`` until EOF.

    Raises:
        MalformedInputError: If the stream cannot be read as bytes.
    """
    try:
        data = stream.read()
    except OSError as exc:
        raise MalformedInputError(f"failed to read stdin: {exc}") from exc
    if isinstance(data, str):
        try:
            data = data.encode("utf-8", "surrogateescape")
        except UnicodeEncodeError as exc:
            raise MalformedInputError(f"stdin is not a byte stream: {exc}") from exc
    if not isinstance(data, bytes):
        raise MalformedInputError(f"stdin yielded {type(data).__name__}, expected bytes")
    logger.debug("read %d bytes from stdin", len(data))
    return data


__all__ = [
    "HeaderField",
    "OpaqueSegment",
    "ParsedMessage",
    "Segment",
    "parse_message",
    "read_message",
]
