# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the relay-mailer test suite.
#
# FakeRelay stands in for aiosmtplib.SMTP: it is passed as `smtp_factory`,
# records every command it receives and raises real aiosmtplib exceptions
# when told to misbehave.
# =============================================================================

import pytest
import tempfile
from pathlib import Path

import aiosmtplib

from relay_mailer.core import Account, Attachment, MessageBuilder


class FakeSMTP:
    """One fake connection, created by FakeRelay for each session."""

    def __init__(self, relay: "FakeRelay", **options) -> None:
        self.relay = relay
        self.options = options
        self.is_connected = False
        self.tls = bool(options.get("use_tls"))
        self.esmtp_extensions: dict[str, str] = {}

    def _record(self, verb: str, arg=None) -> None:
        self.relay.commands.append((verb, arg))

    async def connect(self) -> None:
        self._record("CONNECT", f"{self.options['hostname']}:{self.options['port']}")
        if self.relay.fail_connect:
            raise aiosmtplib.SMTPConnectError("Connection refused")
        self.is_connected = True

    async def ehlo(self, hostname=None) -> None:
        self._record("EHLO", hostname or self.options.get("local_hostname"))
        if self.relay.reject_ehlo:
            raise aiosmtplib.SMTPHeloError(502, "Command not implemented")
        self.esmtp_extensions = {
            ext: "" for ext in self.relay.extensions
            if not (self.tls and ext == "starttls")
        }

    async def helo(self, hostname=None) -> None:
        self._record("HELO", hostname or self.options.get("local_hostname"))
        self.esmtp_extensions = {}

    def supports_extension(self, extension: str) -> bool:
        return extension.lower() in self.esmtp_extensions

    async def starttls(self, server_hostname=None, tls_context=None, **kwargs) -> None:
        self._record("STARTTLS", server_hostname)
        self.relay.starttls_contexts.append(tls_context)
        if self.relay.fail_starttls:
            raise aiosmtplib.SMTPResponseException(454, "TLS not available")
        self.tls = True
        self.esmtp_extensions = {}

    async def login(self, username: str, password: str) -> None:
        self._record("AUTH", username)
        if self.relay.reject_login:
            raise aiosmtplib.SMTPAuthenticationError(535, "Authentication credentials invalid")

    async def mail(self, sender: str) -> None:
        self._record("MAIL", sender)
        if self.relay.reject_sender:
            raise aiosmtplib.SMTPSenderRefused(550, "Sender rejected", sender)

    async def rcpt(self, recipient: str) -> None:
        self._record("RCPT", recipient)
        if recipient in self.relay.refused_recipients:
            raise aiosmtplib.SMTPRecipientRefused(550, "No such user", recipient)

    async def data(self, message: bytes) -> None:
        self._record("DATA")
        if self.relay.reject_data:
            raise aiosmtplib.SMTPDataError(554, "Message rejected")
        self.relay.messages.append(message)

    async def rset(self) -> None:
        self._record("RSET")
        if self.relay.fail_rset:
            raise aiosmtplib.SMTPServerDisconnected("Connection lost")

    async def quit(self) -> None:
        self._record("QUIT")
        if self.relay.fail_quit:
            raise aiosmtplib.SMTPServerDisconnected("Connection lost")
        self.is_connected = False

    def close(self) -> None:
        self.is_connected = False


class FakeRelay:
    """
    Configurable fake SMTP relay.

    Use an instance as `smtp_factory`; inspect `commands` and `messages`
    afterwards.
    """

    def __init__(self) -> None:
        self.extensions = {"starttls", "auth", "8bitmime"}
        self.fail_connect = False
        self.reject_ehlo = False
        self.fail_starttls = False
        self.reject_login = False
        self.reject_sender = False
        self.refused_recipients: set[str] = set()
        self.reject_data = False
        self.fail_rset = False
        self.fail_quit = False

        self.clients: list[FakeSMTP] = []
        self.commands: list[tuple[str, object]] = []
        self.messages: list[bytes] = []
        self.starttls_contexts: list[object] = []

    def __call__(self, **options) -> FakeSMTP:
        client = FakeSMTP(self, **options)
        self.clients.append(client)
        return client

    def verbs(self) -> list[str]:
        """Command names only, in order."""
        return [verb for verb, _ in self.commands]

    def args(self, verb: str) -> list[object]:
        """Arguments of every command with the given name."""
        return [arg for v, arg in self.commands if v == verb]


@pytest.fixture
def relay():
    """A fresh fake relay advertising STARTTLS and AUTH."""
    return FakeRelay()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_account():
    """Create a sample Account for testing."""
    return Account(
        name="test",
        email="test@example.com",
        display_name="Test User",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_security="starttls",
    )


@pytest.fixture
def sample_builder():
    """A builder holding a minimal sendable plain-text message."""
    builder = MessageBuilder()
    builder.set_from("Alice", "a@x.com")
    builder.add_to("b@y.com")
    builder.set_subject("Greetings")
    builder.set_text("hi")
    return builder


@pytest.fixture
def sample_message(sample_builder):
    """Snapshot of sample_builder."""
    return sample_builder.build()


@pytest.fixture
def text_attachment():
    """An in-memory attachment that needs no disk access."""
    return Attachment(content_type="text/plain", filename="f.txt", content=b"AB")
