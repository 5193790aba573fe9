# =============================================================================
# SMTP Client
# =============================================================================
# The object applications hold to send mail. Wraps at most one RelaySession
# at a time and picks how it gets established.
#
# Key responsibilities:
#   - Validating the relay address up front (before any network I/O)
#   - Connection strategies: opportunistic STARTTLS, STARTTLS with a
#     caller-supplied SSL context, implicit TLS
#   - Opening a session on demand when send() is called first
#   - Loading account passwords from the system keyring
# =============================================================================

import logging
import ssl
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import keyring

from relay_mailer.core import Message, MessageBuilder, RelayAddress
from relay_mailer.errors import ValidationError
from relay_mailer.smtp.session import Credentials, RelaySession, SessionState

if TYPE_CHECKING:
    from relay_mailer.config import DeliveryConfig
    from relay_mailer.core import Account

logger = logging.getLogger(__name__)


class SecurityMode(str, Enum):
    """How the channel to the relay gets encrypted."""
    STARTTLS = "starttls"   # Plain connect, upgrade if the server offers it
    SSL = "ssl"             # TLS from the first byte (implicit TLS)


class Mailer:
    """
    Async SMTP client for sending emails.

    Usage:
        >>> mailer = Mailer("smtp.example.com:587", "me@example.com", "secret")
        >>> message_id = await mailer.send(message)
        >>> await mailer.quit()

    Or as a context manager:
        >>> async with Mailer("smtp.example.com:587", "me", "secret") as mailer:
        ...     await mailer.send(message)

    Attributes:
        address: Validated relay address.
        security: SecurityMode used by dial().
        tls_context: SSL context used for TLS; None means aiosmtplib's
                     default, which verifies the relay's host name.
        declare_copy_recipients: Declare CC/BCC addresses with RCPT TO.
    """

    # Timeout for SMTP operations (seconds)
    TIMEOUT = 30

    def __init__(
        self,
        address: str,
        username: str = "",
        password: str = "",
        *,
        security: SecurityMode | str = SecurityMode.STARTTLS,
        tls_context: ssl.SSLContext | None = None,
        declare_copy_recipients: bool = True,
        timeout: float | None = None,
        local_hostname: str | None = None,
        smtp_factory: Callable[..., Any] | None = None,
    ) -> None:
        """
        Initialize the client. No connection is made yet.

        Args:
            address: Relay address as "host:port".
            username: SMTP AUTH login. Empty means never authenticate.
            password: SMTP AUTH password.
            security: "starttls" (default) or "ssl".
            tls_context: Optional SSL context overriding certificate and
                         host-name validation.
            declare_copy_recipients: Also send to CC and BCC addresses.
            timeout: Per-operation timeout in seconds.
            local_hostname: Name used in EHLO (default "localhost").
            smtp_factory: Replacement for aiosmtplib.SMTP (used in tests).

        Raises:
            ValidationError: If the address or security mode is invalid.
        """
        self.address = RelayAddress.parse(address)
        try:
            self.security = SecurityMode(security)
        except ValueError as e:
            raise ValidationError(f"Unknown security mode: {security!r}") from e

        self.credentials = Credentials(username, password) if username else None
        self.tls_context = tls_context
        self.declare_copy_recipients = declare_copy_recipients
        self.timeout = timeout if timeout is not None else self.TIMEOUT
        self.local_hostname = local_hostname
        self._smtp_factory = smtp_factory
        self._session: RelaySession | None = None
        # (implicit_tls, tls_context) of the last dial; reused by on-demand redials
        self._strategy: tuple[bool, ssl.SSLContext | None] | None = None

    # -------------------------------------------------------------------------
    # Alternate Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def with_starttls(
        cls,
        address: str,
        username: str,
        password: str,
        tls_context: ssl.SSLContext,
        **kwargs: Any,
    ) -> "Mailer":
        """
        Client that upgrades with STARTTLS using a specific SSL context.

        Raises:
            ValidationError: If tls_context is missing.
        """
        if tls_context is None:
            raise ValidationError("Must specify the TLS context")
        return cls(
            address,
            username,
            password,
            security=SecurityMode.STARTTLS,
            tls_context=tls_context,
            **kwargs,
        )

    @classmethod
    def with_tls(
        cls,
        address: str,
        username: str,
        password: str,
        tls_context: ssl.SSLContext | None = None,
        **kwargs: Any,
    ) -> "Mailer":
        """Client that connects over implicit TLS (usually port 465)."""
        return cls(
            address,
            username,
            password,
            security=SecurityMode.SSL,
            tls_context=tls_context,
            **kwargs,
        )

    @classmethod
    def from_account(
        cls,
        account: "Account",
        delivery: "DeliveryConfig | None" = None,
        **kwargs: Any,
    ) -> "Mailer":
        """
        Client for a configured account, with its password from the keyring.

        If the keyring holds no password the client will not authenticate;
        relays on trusted networks may still accept mail.
        """
        password = keyring.get_password(account.keyring_service, account.username)

        if not password:
            logger.warning(
                f"No password found in keyring for {account.username}; sending without AUTH. "
                f"Set it with: keyring set {account.keyring_service} {account.username}"
            )

        if delivery is not None:
            kwargs.setdefault("timeout", delivery.timeout)
            kwargs.setdefault("local_hostname", delivery.local_hostname)
            kwargs.setdefault("declare_copy_recipients", delivery.declare_copy_recipients)

        return cls(
            account.address,
            account.username if password else "",
            password or "",
            security=account.smtp_security,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Check if a session is open and ready to send."""
        return self._session is not None and self._session.is_ready

    @property
    def session(self) -> RelaySession | None:
        """The current session, if any."""
        return self._session

    def _new_session(self, tls_context: ssl.SSLContext | None) -> RelaySession:
        kwargs: dict[str, Any] = {
            "tls_context": tls_context,
            "timeout": self.timeout,
            "declare_copy_recipients": self.declare_copy_recipients,
            "smtp_factory": self._smtp_factory,
        }
        if self.local_hostname:
            kwargs["local_hostname"] = self.local_hostname
        return RelaySession(self.address, self.credentials, **kwargs)

    async def _establish(
        self,
        *,
        implicit_tls: bool,
        tls_context: ssl.SSLContext | None,
    ) -> RelaySession:
        """Run connect, STARTTLS and AUTH on a fresh session."""
        self._strategy = (implicit_tls, tls_context)
        if self._session is not None and self._session.state is not SessionState.CLOSED:
            await self.quit()

        session = self._new_session(tls_context)
        self._session = session
        try:
            await session.connect(implicit_tls=implicit_tls)
            await session.negotiate_security()
            await session.authenticate()
        except Exception:
            # A half-established session is never reused
            await session.quit()
            self._session = None
            raise

        logger.info(f"Successfully connected to SMTP {self.address}")
        return session

    async def dial(self) -> None:
        """
        Connect using the configured security mode.

        Raises:
            SMTPConnectionError: If unable to connect.
            SMTPSecurityError: If the STARTTLS upgrade fails.
            SMTPAuthenticationError: If authentication fails.
        """
        await self._establish(
            implicit_tls=self.security is SecurityMode.SSL,
            tls_context=self.tls_context,
        )

    async def dial_with_tls(self, tls_context: ssl.SSLContext | None = None) -> None:
        """Connect over implicit TLS, regardless of the configured mode."""
        await self._establish(implicit_tls=True, tls_context=tls_context or self.tls_context)

    async def dial_with_starttls(self, tls_context: ssl.SSLContext | None = None) -> None:
        """Connect in plain text and upgrade with STARTTLS using tls_context."""
        await self._establish(implicit_tls=False, tls_context=tls_context or self.tls_context)

    async def ensure_connected(self) -> RelaySession:
        """
        Return a ready session, dialing first if there isn't one.

        A redial repeats the strategy of the last dial (dial_with_tls(),
        dial_with_starttls() or dial()), including its SSL context.
        Without an earlier dial the configured security mode is used.

        Raises:
            SMTPConnectionError: If reconnection fails.
        """
        if not self.is_connected:
            logger.debug("No open SMTP session; dialing")
            if self._strategy is None:
                await self.dial()
            else:
                implicit_tls, tls_context = self._strategy
                await self._establish(implicit_tls=implicit_tls, tls_context=tls_context)
        return self._session

    async def quit(self) -> None:
        """Disconnect from the SMTP server."""
        if self._session is not None:
            try:
                await self._session.quit()
            finally:
                self._session = None

    async def __aenter__(self) -> "Mailer":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.quit()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send(self, message: Message | MessageBuilder) -> str:
        """
        Send an email, connecting first if needed.

        Args:
            message: The message to send. A MessageBuilder is frozen with
                     build() first.

        Returns:
            Message-ID of the sent message.

        Raises:
            ValidationError: If the sender or recipients are missing.
            AttachmentError: If an attachment can't be loaded.
            TransactionError: If the relay rejects the message.
        """
        if isinstance(message, MessageBuilder):
            message = message.build()

        # Fail before touching the network
        message = message.validated()

        session = await self.ensure_connected()
        return await session.send(message)

    def __repr__(self) -> str:
        state = self._session.state.value if self._session else "no session"
        return f"Mailer(address={str(self.address)!r}, security={self.security.value}, {state})"
