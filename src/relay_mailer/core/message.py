# =============================================================================
# Message Model
# =============================================================================
# Represents an outgoing email message. Messages are composed in two steps:
#
#   1. A MessageBuilder is filled in incrementally (set_from, add_to,
#      set_text, attach_file, ...). It is mutable and can be reset for reuse.
#   2. MessageBuilder.build() freezes the current state into a Message
#      snapshot. Only snapshots are serialized and sent, so a builder that
#      is modified after build() can't affect a message already in flight.
#
# Attachments are the one shared, mutable piece: their bytes are loaded
# lazily from disk at serialization time and cached on the record.
# =============================================================================

from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath

from relay_mailer.errors import AttachmentNotFoundError, ValidationError
from relay_mailer.mime.attachments import guess_content_type

# Subject used when the caller leaves it empty
DEFAULT_SUBJECT = "(no subject)"

# Characters that would end a header line early
LINE_BREAKS = ("\r", "\n")


@dataclass
class Attachment:
    """
    Represents a file attached to an outgoing message.

    Attributes:
        content_type: MIME type (e.g., "application/pdf", "image/png").
        filename: Base name shown to the recipient. Also used as the
                  part's Content-Id.
        source_path: Where to load the bytes from, if not given directly.
        content: The attachment data. May be None until the message is
                 serialized (lazy-loaded from source_path, then cached).

    Example:
        >>> attachment = Attachment(
        ...     content_type="text/plain",
        ...     filename="notes.txt",
        ...     content=b"hello",
        ... )
    """
    content_type: str
    filename: str
    source_path: str | None = None
    content: bytes | None = None

    @property
    def is_loaded(self) -> bool:
        """Returns True if the bytes are already in memory."""
        return self.content is not None


@dataclass(frozen=True)
class Message:
    """
    Immutable snapshot of an outgoing email message.

    Attributes:
        sender: The "From" address.
        sender_name: Display name of the sender (may be empty).
        to: Primary recipients, in order.
        cc: Carbon-copy recipients, in order.
        bcc: Blind-carbon-copy recipients, in order. Never written to headers.
        subject: Subject line.
        text: Plain text body.
        html: HTML body.
        attachments: Files attached to the message.
    """
    sender: str = ""
    sender_name: str = ""
    to: tuple[str, ...] = ()
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    subject: str = ""
    text: str = ""
    html: str = ""
    attachments: tuple[Attachment, ...] = ()

    def validated(self) -> "Message":
        """
        Check the message is sendable.

        Returns:
            This message, or a copy with the placeholder subject if the
            subject was empty.

        Raises:
            ValidationError: If the sender or every "To" recipient is missing,
                             or a header value is malformed.
        """
        if not self.sender:
            raise ValidationError("Must specify the From address")
        if not self.to:
            raise ValidationError("Must specify at least one To address")
        self.check_headers()
        if not self.subject:
            return replace(self, subject=DEFAULT_SUBJECT)
        return self

    def check_headers(self) -> None:
        """
        Reject values that can't be written safely into a header.

        A line break would start a new header, and a double quote would
        end the quoted filename parameter early.

        Raises:
            ValidationError: On the first offending value.
        """
        fields = [
            ("From", self.sender),
            ("From name", self.sender_name),
            ("Subject", self.subject),
            *(("To", address) for address in self.to),
            *(("CC", address) for address in self.cc),
            *(("BCC", address) for address in self.bcc),
        ]
        for attachment in self.attachments:
            fields.append(("Attachment filename", attachment.filename))
            fields.append(("Attachment content type", attachment.content_type))
            if '"' in attachment.filename:
                raise ValidationError(
                    f"Attachment filename must not contain quotes: {attachment.filename!r}"
                )

        for name, value in fields:
            if any(char in value for char in LINE_BREAKS):
                raise ValidationError(f"{name} must not contain line breaks: {value!r}")

    def recipients(self, include_copies: bool = True) -> list[str]:
        """
        Addresses to declare to the relay with RCPT TO.

        Args:
            include_copies: Also declare CC and BCC recipients. When False
                            only the "To" list is declared, so CC/BCC
                            addresses appear in headers but receive nothing.
        """
        if include_copies:
            return [*self.to, *self.cc, *self.bcc]
        return list(self.to)


@dataclass
class MessageBuilder:
    """
    Mutable message under composition.

    Not thread-safe; one writer at a time.

    Usage:
        >>> builder = MessageBuilder()
        >>> builder.set_from("Alice", "alice@example.com")
        >>> builder.add_to("bob@example.com")
        >>> builder.set_text("Hello!")
        >>> message = builder.build()
    """
    sender: str = ""
    sender_name: str = ""
    subject: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    text: str = ""
    html: str = ""
    attachments: list[Attachment] = field(default_factory=list)

    def set_from(self, name: str, address: str) -> None:
        self.sender_name = name
        self.sender = address

    def set_subject(self, subject: str) -> None:
        self.subject = subject

    def add_to(self, *addresses: str) -> None:
        self.to.extend(addresses)

    def add_cc(self, *addresses: str) -> None:
        self.cc.extend(addresses)

    def add_bcc(self, *addresses: str) -> None:
        self.bcc.extend(addresses)

    def set_text(self, text: str) -> None:
        self.text = text

    def set_html(self, html: str) -> None:
        self.html = html

    def add_attachment(self, attachment: Attachment) -> None:
        self.attachments.append(attachment)

    def attach_file(self, path: str | Path) -> Attachment:
        """
        Attach a file from disk.

        The path is checked now, but the file is only read when the
        message is serialized.

        Args:
            path: Local file path. Windows separators are accepted.

        Returns:
            The new Attachment record.

        Raises:
            AttachmentNotFoundError: If the path does not exist.
            ValidationError: If the path is a directory.
        """
        file_name = str(path).replace("\\", "/")
        file_path = Path(file_name)

        if not file_path.exists():
            raise AttachmentNotFoundError(f"No such file: {file_name}")
        if file_path.is_dir():
            raise ValidationError(f"{file_name} is not a file")

        attachment = Attachment(
            content_type=guess_content_type(file_name),
            filename=PurePosixPath(file_name).name,
            source_path=file_name,
        )
        self.attachments.append(attachment)
        return attachment

    def reset(self) -> None:
        """Clear everything so the builder can compose a new message."""
        self.sender = ""
        self.sender_name = ""
        self.subject = ""
        self.to = []
        self.cc = []
        self.bcc = []
        self.text = ""
        self.html = ""
        self.attachments = []

    def build(self) -> Message:
        """Freeze the current state into a Message snapshot."""
        return Message(
            sender=self.sender,
            sender_name=self.sender_name,
            to=tuple(self.to),
            cc=tuple(self.cc),
            bcc=tuple(self.bcc),
            subject=self.subject,
            text=self.text,
            html=self.html,
            attachments=tuple(self.attachments),
        )
