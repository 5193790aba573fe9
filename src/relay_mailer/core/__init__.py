# =============================================================================
# relay-mailer Core Module
# =============================================================================
# Domain models shared by the MIME and SMTP layers:
#   - Account / RelayAddress: where and as whom to submit mail
#   - Message / MessageBuilder / Attachment: what to submit
#   - Re-exports of the exception hierarchy (relay_mailer.errors)
# =============================================================================

from relay_mailer.core.account import Account, RelayAddress
from relay_mailer.errors import (
    AttachmentError,
    AttachmentNotFoundError,
    MailerError,
    SessionStateError,
    SMTPAuthenticationError,
    SMTPConnectionError,
    SMTPSecurityError,
    TransactionError,
    ValidationError,
)
from relay_mailer.core.message import (
    DEFAULT_SUBJECT,
    Attachment,
    Message,
    MessageBuilder,
)

__all__ = [
    "Account",
    "RelayAddress",
    "Attachment",
    "Message",
    "MessageBuilder",
    "DEFAULT_SUBJECT",
    # Exceptions
    "MailerError",
    "ValidationError",
    "AttachmentError",
    "AttachmentNotFoundError",
    "SMTPConnectionError",
    "SMTPSecurityError",
    "SMTPAuthenticationError",
    "TransactionError",
    "SessionStateError",
]
