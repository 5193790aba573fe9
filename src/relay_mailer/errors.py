# =============================================================================
# Exceptions
# =============================================================================
# Every error raised by relay-mailer derives from MailerError, so callers can
# catch one type. Each subclass matches a distinct failure stage:
#
#   ValidationError          bad input, detected before any network I/O
#   AttachmentError          attachment file could not be read
#   SMTPConnectionError      transport or greeting failure
#   SMTPSecurityError        STARTTLS upgrade failure
#   SMTPAuthenticationError  credentials rejected
#   TransactionError         MAIL/RCPT/DATA rejected by the relay
#   SessionStateError        operation not allowed in the current session state
# =============================================================================


class MailerError(Exception):
    """Base exception for all relay-mailer operations."""
    pass


class ValidationError(MailerError):
    """Raised when an address, message or attachment fails validation."""
    pass


class AttachmentError(MailerError):
    """Raised when an attachment's bytes cannot be loaded."""
    pass


class AttachmentNotFoundError(AttachmentError):
    """Raised when an attachment's source path does not exist."""
    pass


class SMTPConnectionError(MailerError):
    """Raised when unable to connect to (or greet) the SMTP relay."""
    pass


class SMTPSecurityError(MailerError):
    """Raised when the STARTTLS upgrade is attempted and fails."""
    pass


class SMTPAuthenticationError(MailerError):
    """Raised when SMTP authentication fails."""
    pass


class TransactionError(MailerError):
    """
    Raised when the relay rejects the sender, a recipient or the message data.

    Attributes:
        code: SMTP reply code from the relay, or None if the failure
              was not a reply (e.g. the connection dropped).
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class SessionStateError(MailerError):
    """Raised when a session operation is called in the wrong state."""
    pass
