# =============================================================================
# SMTP Session
# =============================================================================
# Drives one SMTP conversation over one connection, as an explicit state
# machine:
#
#   UNCONNECTED --connect--> CONNECTED --negotiate_security--> SECURED
#        |                       |                                |
#        |  (implicit TLS)       +-------authenticate-------------+--> AUTHENTICATED
#        +---------------------> SECURED
#
#   CONNECTED / SECURED / AUTHENTICATED --send--> TRANSACTION_OPEN
#   TRANSACTION_OPEN --done--> (back to the state send() started from)
#   any state --quit--> CLOSED
#
# Every transition goes through _transition(), which checks it against
# TRANSITIONS. Calling an operation in the wrong state raises
# SessionStateError instead of silently reconnecting.
#
# Uses aiosmtplib for the protocol itself. One session must not be shared
# between concurrently running tasks.
# =============================================================================

import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import aiosmtplib

from relay_mailer.core import Message, RelayAddress
from relay_mailer.errors import (
    SessionStateError,
    SMTPAuthenticationError,
    SMTPConnectionError,
    SMTPSecurityError,
    TransactionError,
)
from relay_mailer.mime import EnvelopeBuilder, generate_message_id

logger = logging.getLogger(__name__)

# Name we introduce ourselves with in EHLO/HELO
LOCAL_NAME = "localhost"


class SessionState(Enum):
    """Lifecycle states of a RelaySession."""
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    SECURED = "secured"
    AUTHENTICATED = "authenticated"
    TRANSACTION_OPEN = "transaction_open"
    CLOSED = "closed"


# Allowed state changes. Anything else is a programming error.
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNCONNECTED: frozenset({
        SessionState.CONNECTED,
        SessionState.SECURED,
        SessionState.CLOSED,
    }),
    SessionState.CONNECTED: frozenset({
        SessionState.SECURED,
        SessionState.AUTHENTICATED,
        SessionState.TRANSACTION_OPEN,
        SessionState.CLOSED,
    }),
    SessionState.SECURED: frozenset({
        SessionState.AUTHENTICATED,
        SessionState.TRANSACTION_OPEN,
        SessionState.CLOSED,
    }),
    SessionState.AUTHENTICATED: frozenset({
        SessionState.TRANSACTION_OPEN,
        SessionState.CLOSED,
    }),
    SessionState.TRANSACTION_OPEN: frozenset({
        SessionState.CONNECTED,
        SessionState.SECURED,
        SessionState.AUTHENTICATED,
        SessionState.CLOSED,
    }),
    SessionState.CLOSED: frozenset({
        SessionState.CONNECTED,
        SessionState.SECURED,
    }),
}

# States in which a new mail transaction may begin
READY_STATES = frozenset({
    SessionState.CONNECTED,
    SessionState.SECURED,
    SessionState.AUTHENTICATED,
})


@dataclass(frozen=True)
class Credentials:
    """Username and password for SMTP AUTH."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class RelaySession:
    """
    One SMTP conversation with a relay server.

    Usage:
        >>> session = RelaySession(RelayAddress.parse("smtp.example.com:587"),
        ...                        Credentials("me@example.com", "secret"))
        >>> await session.open()
        >>> message_id = await session.send(message)
        >>> await session.quit()

    Attributes:
        address: Relay host and port.
        credentials: Login for SMTP AUTH, or None to never authenticate.
        tls_context: SSL context used for STARTTLS / implicit TLS. When None,
                     aiosmtplib builds a default context that verifies the
                     relay's certificate against its host name.
        declare_copy_recipients: Declare CC and BCC addresses with RCPT TO
                                 as well as the "To" addresses.
        state: Current SessionState.
    """

    # Timeout for SMTP operations (seconds)
    TIMEOUT = 30

    def __init__(
        self,
        address: RelayAddress,
        credentials: Credentials | None = None,
        *,
        tls_context: ssl.SSLContext | None = None,
        local_hostname: str = LOCAL_NAME,
        timeout: float | None = None,
        declare_copy_recipients: bool = True,
        smtp_factory: Callable[..., Any] | None = None,
        envelope_builder: EnvelopeBuilder | None = None,
    ) -> None:
        self.address = address
        self.credentials = credentials
        self.tls_context = tls_context
        self.local_hostname = local_hostname
        self.timeout = timeout if timeout is not None else self.TIMEOUT
        self.declare_copy_recipients = declare_copy_recipients
        self.state = SessionState.UNCONNECTED

        self._smtp_factory = smtp_factory or aiosmtplib.SMTP
        self._envelope_builder = envelope_builder or EnvelopeBuilder()
        self._client: aiosmtplib.SMTP | None = None
        self._secure = False
        # State to return to when the current transaction ends
        self._ready_state = SessionState.CONNECTED

    def __repr__(self) -> str:
        return f"RelaySession(address={str(self.address)!r}, state={self.state.value})"

    @property
    def is_ready(self) -> bool:
        """True if a mail transaction can start right now."""
        return self.state in READY_STATES and self._client is not None

    @property
    def is_secure(self) -> bool:
        """True once the channel is encrypted (STARTTLS or implicit TLS)."""
        return self._secure

    # =========================================================================
    # State Handling
    # =========================================================================

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Cannot go from {self.state.value} to {new_state.value}"
            )
        logger.debug(f"Session {self.address}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _require(self, *states: SessionState) -> None:
        if self.state not in states or self._client is None:
            expected = ", ".join(state.value for state in states)
            raise SessionStateError(
                f"Session is {self.state.value}; expected one of: {expected}"
            )

    def _drop_connection(self) -> None:
        """Close the transport without talking to the server."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Error closing SMTP transport: {e}")
        self._client = None
        self._secure = False

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(
        self,
        *,
        implicit_tls: bool = False,
        tls_context: ssl.SSLContext | None = None,
    ) -> None:
        """
        Open the connection, read the greeting and say EHLO.

        Args:
            implicit_tls: Wrap the socket in TLS before the greeting
                          (usually port 465). The session starts SECURED.
            tls_context: SSL context for implicit TLS, overriding the
                         session's own.

        Raises:
            SessionStateError: If the session is already connected.
            SMTPConnectionError: On transport or greeting failure.
        """
        self._require_disconnected()
        logger.info(f"Connecting to SMTP {self.address}")

        context = tls_context or self.tls_context
        kwargs: dict[str, Any] = {
            "hostname": self.address.host,
            "port": self.address.port,
            "local_hostname": self.local_hostname,
            "use_tls": implicit_tls,
            "start_tls": False,          # STARTTLS is driven by negotiate_security()
            "timeout": self.timeout,
        }
        if implicit_tls and context is not None:
            kwargs["tls_context"] = context

        self._client = self._smtp_factory(**kwargs)

        try:
            await self._client.connect()
            await self._greet()
        except (aiosmtplib.SMTPException, OSError) as e:
            self._drop_connection()
            raise SMTPConnectionError(
                f"Failed to connect to SMTP {self.address}: {e}"
            ) from e

        self._secure = implicit_tls
        self._transition(SessionState.SECURED if implicit_tls else SessionState.CONNECTED)
        logger.debug("SMTP connection established")

    def _require_disconnected(self) -> None:
        if self.state not in (SessionState.UNCONNECTED, SessionState.CLOSED):
            raise SessionStateError(f"Session is already {self.state.value}")

    async def _greet(self) -> None:
        """EHLO, falling back to HELO for servers without ESMTP."""
        try:
            await self._client.ehlo()
        except aiosmtplib.SMTPHeloError:
            logger.debug("EHLO rejected, falling back to HELO")
            await self._client.helo()

    async def negotiate_security(self, tls_context: ssl.SSLContext | None = None) -> None:
        """
        Upgrade to TLS with STARTTLS if the server offers it.

        Does nothing if the channel is already encrypted or the server
        does not advertise STARTTLS.

        Args:
            tls_context: SSL context to use instead of the session's own.

        Raises:
            SMTPSecurityError: If the upgrade is attempted and fails.
        """
        if self.state is SessionState.SECURED:
            return
        self._require(SessionState.CONNECTED)

        if not self._client.supports_extension("starttls"):
            logger.debug(f"{self.address} does not offer STARTTLS; staying in plain text")
            return

        context = tls_context or self.tls_context
        kwargs: dict[str, Any] = {"server_hostname": self.address.host}
        if context is not None:
            kwargs["tls_context"] = context

        logger.debug("Upgrading to TLS via STARTTLS")
        try:
            await self._client.starttls(**kwargs)
            # Extensions learned before the upgrade must be discarded (RFC 3207)
            await self._greet()
        except (aiosmtplib.SMTPException, OSError) as e:
            self._drop_connection()
            self._transition(SessionState.CLOSED)
            raise SMTPSecurityError(f"STARTTLS with {self.address} failed: {e}") from e

        self._secure = True
        self._transition(SessionState.SECURED)

    async def authenticate(self) -> None:
        """
        Log in if we have credentials and the server offers AUTH.

        Relays that accept mail from trusted networks may not advertise
        AUTH; the session stays usable unauthenticated in that case.

        Raises:
            SMTPAuthenticationError: If the server rejects the credentials.
        """
        self._require(SessionState.CONNECTED, SessionState.SECURED)

        if self.credentials is None:
            logger.debug("No credentials configured; skipping AUTH")
            return
        if not self._client.supports_extension("auth"):
            logger.debug(f"{self.address} does not offer AUTH; skipping")
            return

        logger.debug(f"Authenticating as {self.credentials.username}")
        try:
            await self._client.login(self.credentials.username, self.credentials.password)
        except (aiosmtplib.SMTPException, OSError) as e:
            raise SMTPAuthenticationError(
                f"SMTP authentication failed for {self.credentials.username}: {e}"
            ) from e

        self._transition(SessionState.AUTHENTICATED)
        logger.debug("SMTP authentication successful")

    async def open(self, *, implicit_tls: bool = False) -> None:
        """
        Bring the session to a ready state: connect, STARTTLS, AUTH.

        Does nothing if the session is already ready.
        """
        if self.is_ready:
            return
        await self.connect(implicit_tls=implicit_tls)
        await self.negotiate_security()
        await self.authenticate()
        logger.info(f"Successfully connected to SMTP {self.address}")

    async def quit(self) -> None:
        """
        Say QUIT and close the connection.

        Best effort: failures are logged, and the session always ends CLOSED.
        """
        if self._client is not None:
            try:
                logger.debug("Disconnecting from SMTP")
                await self._client.quit()
            except (aiosmtplib.SMTPException, OSError) as e:
                logger.warning(f"Error during SMTP disconnect: {e}")
            finally:
                self._drop_connection()

        if self.state is not SessionState.CLOSED:
            self._transition(SessionState.CLOSED)

    # =========================================================================
    # Mail Transaction
    # =========================================================================

    async def send(self, message: Message) -> str:
        """
        Send one message: MAIL FROM, RCPT TO for each recipient, DATA.

        The message is validated and fully serialized before the
        transaction starts, so an unreadable attachment never leaves a
        half-sent message behind.

        Args:
            message: The message snapshot to send.

        Returns:
            Message-Id of the sent message.

        Raises:
            SessionStateError: If the session is not ready.
            ValidationError: If the sender or recipients are missing.
            AttachmentError: If an attachment can't be loaded.
            TransactionError: If the relay rejects the sender, any
                              recipient, or the data.
        """
        self._require(*READY_STATES)

        message = message.validated()
        message_id = generate_message_id()
        payload = self._envelope_builder.build(message, message_id=message_id)
        recipients = message.recipients(include_copies=self.declare_copy_recipients)

        self._ready_state = self.state
        self._transition(SessionState.TRANSACTION_OPEN)
        logger.info(f"Sending email to {', '.join(recipients)}")

        try:
            await self._client.mail(message.sender)
            for recipient in recipients:
                await self._client.rcpt(recipient)
            await self._client.data(payload)
        except aiosmtplib.SMTPResponseException as e:
            await self._abort_transaction()
            raise TransactionError(f"Relay rejected message: {e}", code=e.code) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            await self._abort_transaction()
            raise TransactionError(f"Failed to send email: {e}") from e

        self._transition(self._ready_state)
        logger.info(f"Email sent successfully: {message_id}")
        return message_id

    async def _abort_transaction(self) -> None:
        """
        Reset the server's transaction state after a failure.

        The session returns to its ready state only if RSET succeeds;
        otherwise the connection is unusable and gets closed.
        """
        try:
            await self._client.rset()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning(f"RSET failed, closing SMTP connection: {e}")
            self._drop_connection()
            self._transition(SessionState.CLOSED)
            return

        self._transition(self._ready_state)
