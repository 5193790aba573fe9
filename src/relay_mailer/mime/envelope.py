# =============================================================================
# Envelope Builder
# =============================================================================
# Serializes a Message snapshot into the raw bytes sent during the SMTP DATA
# phase: a fixed-order header block followed by either a single text body or
# a multipart body.
#
# Message shapes:
#   - PLAIN:        text/plain only (also used when there is no body at all)
#   - HTML:         text/html only
#   - ALTERNATIVE:  text + html, no attachments
#   - MIXED:        one or more attachments (text and html parts, if any,
#                   sit beside the attachments)
#
# Text parts are quoted-printable encoded; attachments are base64 encoded.
# Every build gets its own boundary token, and multipart bodies are closed
# with a "--boundary--" delimiter.
# =============================================================================

import base64
import logging
import os
import quopri
import secrets
import socket
import threading
import time
from datetime import datetime
from email.utils import format_datetime, formataddr, formatdate
from enum import Enum
from typing import TYPE_CHECKING, Callable

from relay_mailer.mime.attachments import resolve

if TYPE_CHECKING:
    from relay_mailer.core.message import Attachment, Message

logger = logging.getLogger(__name__)

CRLF = "\r\n"

# Host part of the Message-Id when the local host name is unavailable
FALLBACK_HOST = "localdomain"


class EnvelopeShape(Enum):
    """Top-level structure of a serialized message (value is the MIME type)."""
    PLAIN = "text/plain"
    HTML = "text/html"
    ALTERNATIVE = "multipart/alternative"
    MIXED = "multipart/mixed"

    @property
    def is_multipart(self) -> bool:
        return self in (EnvelopeShape.ALTERNATIVE, EnvelopeShape.MIXED)


def classify(message: "Message") -> EnvelopeShape:
    """Pick the envelope shape for a message from its content."""
    if message.attachments:
        return EnvelopeShape.MIXED
    if message.text and message.html:
        return EnvelopeShape.ALTERNATIVE
    if message.html:
        return EnvelopeShape.HTML
    return EnvelopeShape.PLAIN


# =============================================================================
# Identifiers
# =============================================================================

_stamp_lock = threading.Lock()
_last_stamp = 0


def generate_message_id() -> str:
    """
    Generate a Message-Id of the form <pid.timestamp@host>.

    The timestamp (nanoseconds) never repeats within a process, even when
    the clock is coarse. Unique enough for header hygiene; not a security
    token.
    """
    global _last_stamp
    with _stamp_lock:
        stamp = max(time.time_ns(), _last_stamp + 1)
        _last_stamp = stamp

    try:
        host = socket.gethostname() or FALLBACK_HOST
    except OSError:
        host = FALLBACK_HOST

    return f"<{os.getpid()}.{stamp}@{host}>"


def generate_boundary() -> str:
    """Generate a fresh random multipart boundary token (60 hex chars)."""
    return secrets.token_hex(30)


# =============================================================================
# Transfer Encodings
# =============================================================================

def encode_quoted_printable(text: str) -> bytes:
    """
    Quoted-printable encode text as UTF-8 with CRLF line endings.

    Lines longer than 76 characters get soft line breaks.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    encoded = quopri.encodestring(normalized.encode("utf-8"))
    return encoded.replace(b"\n", b"\r\n")


def encode_base64(data: bytes) -> bytes:
    """Base64 encode data in 76-character CRLF-separated lines."""
    return base64.encodebytes(data).rstrip(b"\n").replace(b"\n", b"\r\n")


# =============================================================================
# Builder
# =============================================================================

class EnvelopeBuilder:
    """
    Turns Message snapshots into wire-ready envelope bytes.

    Usage:
        >>> builder = EnvelopeBuilder()
        >>> data = builder.build(message)

    Attributes:
        resolver: Callable that returns an attachment's bytes. Defaults to
                  loading them from disk via relay_mailer.mime.attachments.
    """

    def __init__(self, resolver: Callable[["Attachment"], bytes] = resolve) -> None:
        self.resolver = resolver

    def build(
        self,
        message: "Message",
        *,
        message_id: str | None = None,
        boundary: str | None = None,
        date: datetime | None = None,
    ) -> bytes:
        """
        Serialize a message.

        Args:
            message: The message to serialize. Sender and recipients are
                     assumed to have been validated already.
            message_id: Message-Id header value. Generated if omitted.
            boundary: Multipart boundary token. Generated if omitted.
            date: Date header value. Current local time if omitted.

        Returns:
            The complete envelope (headers and body) as bytes.

        Raises:
            ValidationError: If a header value contains a line break, or an
                             attachment filename contains a quote.
            AttachmentError: If an attachment's bytes cannot be loaded.
                             Nothing is produced in that case.
        """
        message.check_headers()
        shape = classify(message)

        # Load every attachment before producing any output
        contents: list[bytes] = []
        if shape is EnvelopeShape.MIXED:
            contents = [self.resolver(attachment) for attachment in message.attachments]

        if boundary is None:
            boundary = generate_boundary()

        headers = [
            ("Message-Id", message_id or generate_message_id()),
            ("Mime-Version", "1.0"),
            ("Date", formatdate(localtime=True) if date is None else format_datetime(date)),
            ("From", formataddr((message.sender_name, message.sender))),
            ("To", ", ".join(message.to)),
        ]
        if message.cc:
            headers.append(("CC", ", ".join(message.cc)))

        if shape.is_multipart:
            headers.append(("Content-Type", f'{shape.value};{CRLF} boundary="{boundary}"'))
        else:
            headers.append(("Content-Type", f"{shape.value}; charset=UTF-8"))
            headers.append(("Content-Transfer-Encoding", "quoted-printable"))

        headers.append(("Subject", message.subject))

        head = "".join(f"{name}: {value}{CRLF}" for name, value in headers) + CRLF
        payload = head.encode("utf-8")

        if not shape.is_multipart:
            body = message.html if shape is EnvelopeShape.HTML else message.text
            payload += encode_quoted_printable(body) + CRLF.encode()
        else:
            parts = []
            if message.text:
                parts.append(self._text_part("text/plain", message.text))
            if message.html:
                parts.append(self._text_part("text/html", message.html))
            for attachment, content in zip(message.attachments, contents):
                parts.append(self._attachment_part(attachment, content))
            payload += self._join_parts(parts, boundary)

        logger.debug(
            f"Built {shape.value} envelope: {len(payload)} bytes, "
            f"{len(message.attachments)} attachment(s)"
        )
        return payload

    @staticmethod
    def _text_part(content_type: str, text: str) -> bytes:
        head = (
            f"Content-Type: {content_type}; charset=UTF-8{CRLF}"
            f"Content-Transfer-Encoding: quoted-printable{CRLF}"
            f"{CRLF}"
        )
        return head.encode("utf-8") + encode_quoted_printable(text)

    @staticmethod
    def _attachment_part(attachment: "Attachment", content: bytes) -> bytes:
        head = (
            f'Content-Disposition: attachment;{CRLF} filename="{attachment.filename}"{CRLF}'
            f"Content-Id: <{attachment.filename}>{CRLF}"
            f"Content-Transfer-Encoding: base64{CRLF}"
            f"Content-Type: {attachment.content_type}{CRLF}"
            f"{CRLF}"
        )
        return head.encode("utf-8") + encode_base64(content)

    @staticmethod
    def _join_parts(parts: list[bytes], boundary: str) -> bytes:
        delimiter = f"--{boundary}{CRLF}".encode()
        body = b"".join(delimiter + part + CRLF.encode() for part in parts)
        return body + f"--{boundary}--{CRLF}".encode()


def build_envelope(message: "Message") -> bytes:
    """Serialize a message with the default builder."""
    return EnvelopeBuilder().build(message)
