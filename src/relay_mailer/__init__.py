# =============================================================================
# relay-mailer: An Outbound SMTP Submission Client
# =============================================================================
#
# relay-mailer turns structured message content (subject, recipients, text
# and HTML bodies, file attachments) into a MIME envelope and submits it to
# an SMTP relay.
#
# Features:
#   - Implicit TLS or opportunistic STARTTLS
#   - Optional SMTP AUTH with passwords from the system keyring
#   - Plain, HTML, multipart/alternative and multipart/mixed messages
#   - Quoted-printable text parts, base64 attachments
#   - XDG Base Directory compliant configuration
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "relay-mailer"

from relay_mailer.core import Attachment, Message, MessageBuilder
from relay_mailer.errors import MailerError
from relay_mailer.smtp import Mailer

__all__ = [
    "Mailer",
    "Message",
    "MessageBuilder",
    "Attachment",
    "MailerError",
    "__version__",
    "__app_name__",
]
