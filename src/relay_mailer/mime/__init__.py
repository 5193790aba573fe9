# =============================================================================
# MIME Module
# =============================================================================
# Generates (never parses) MIME envelopes:
#   - Attachment loading and content-type inference
#   - Envelope serialization (plain, html, alternative, mixed)
# =============================================================================

from relay_mailer.mime.attachments import (
    DEFAULT_CONTENT_TYPE,
    guess_content_type,
    resolve,
)
from relay_mailer.mime.envelope import (
    EnvelopeBuilder,
    EnvelopeShape,
    build_envelope,
    classify,
    encode_base64,
    encode_quoted_printable,
    generate_boundary,
    generate_message_id,
)

__all__ = [
    # Attachments
    "DEFAULT_CONTENT_TYPE",
    "guess_content_type",
    "resolve",
    # Envelope
    "EnvelopeBuilder",
    "EnvelopeShape",
    "build_envelope",
    "classify",
    "encode_base64",
    "encode_quoted_printable",
    "generate_boundary",
    "generate_message_id",
]
