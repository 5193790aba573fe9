# =============================================================================
# Attachment Resolution
# =============================================================================
# Loads attachment bytes from disk and infers content types from file
# extensions. Attachments are read whole into memory; they are assumed to
# be modest in size.
# =============================================================================

import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

from relay_mailer.errors import (
    AttachmentError,
    AttachmentNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from relay_mailer.core.message import Attachment

logger = logging.getLogger(__name__)

# Fallback for names with no (or an unknown) extension
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Compressed files are labelled by their compression, not by what is inside
ENCODING_CONTENT_TYPES = {
    "gzip": "application/gzip",
    "bzip2": "application/x-bzip2",
    "xz": "application/x-xz",
    "compress": "application/x-compress",
    "br": "application/x-brotli",
}


def guess_content_type(filename: str) -> str:
    """
    Infer a MIME type from a file name's extension.

    Examples:
        - "report.pdf" -> "application/pdf"
        - "README" -> "application/octet-stream"
        - "data.unknownext" -> "application/octet-stream"
        - "notes.txt.gz" -> "application/gzip"
    """
    suffix = Path(filename).suffix if filename else ""
    if not suffix:
        return DEFAULT_CONTENT_TYPE

    _, encoding = mimetypes.guess_type(filename)
    if encoding is not None:
        return ENCODING_CONTENT_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)

    # Only the last extension counts ("archive.pdf.bin" is not a PDF)
    content_type, _ = mimetypes.guess_type(f"file{suffix}")
    return content_type or DEFAULT_CONTENT_TYPE


def resolve(attachment: "Attachment") -> bytes:
    """
    Return an attachment's bytes, loading them from disk if necessary.

    Already-loaded content is returned unchanged. Otherwise the file at
    source_path is read and the bytes are cached on the attachment, so
    serializing the same message again won't touch the disk.

    Raises:
        ValidationError: If the attachment has neither content nor a path,
                         or the path is a directory.
        AttachmentNotFoundError: If the path does not exist.
        AttachmentError: If the file can't be read.
    """
    if attachment.content is not None:
        return attachment.content

    if not attachment.source_path:
        raise ValidationError(
            f"Attachment {attachment.filename!r} has no content and no source path"
        )

    path = Path(attachment.source_path)
    if not path.exists():
        raise AttachmentNotFoundError(f"No such file: {attachment.source_path}")
    if path.is_dir():
        raise ValidationError(f"{attachment.source_path} is a directory, not a file")

    try:
        content = path.read_bytes()
    except OSError as e:
        raise AttachmentError(
            f"Failed to read attachment {attachment.source_path}: {e}"
        ) from e

    logger.debug(f"Loaded attachment {attachment.filename} ({len(content)} bytes)")
    attachment.content = content
    return content
