import asyncio
import ssl

import pytest

from relay_mailer.core import Attachment, Message, RelayAddress
from relay_mailer.errors import (
    AttachmentNotFoundError,
    SessionStateError,
    SMTPAuthenticationError,
    SMTPConnectionError,
    SMTPSecurityError,
    TransactionError,
    ValidationError,
)
from relay_mailer.smtp import LOCAL_NAME, TRANSITIONS, Credentials, RelaySession, SessionState


ADDRESS = RelayAddress.parse("smtp.example.com:587")


def make_session(relay, credentials=Credentials("user", "secret"), **kwargs) -> RelaySession:
    return RelaySession(ADDRESS, credentials, smtp_factory=relay, **kwargs)


def ready_session(relay, **kwargs) -> RelaySession:
    session = make_session(relay, **kwargs)
    asyncio.run(session.open())
    relay.commands.clear()
    return session


class TestTransitionTable:
    def test_closed_reachable_from_every_live_state(self):
        for state, targets in TRANSITIONS.items():
            if state is not SessionState.CLOSED:
                assert SessionState.CLOSED in targets

    def test_every_state_has_an_entry(self):
        assert set(TRANSITIONS) == set(SessionState)


class TestConnect:
    def test_connect_greets_with_local_name(self, relay):
        session = make_session(relay)
        asyncio.run(session.connect())

        assert session.state is SessionState.CONNECTED
        assert relay.commands == [("CONNECT", "smtp.example.com:587"), ("EHLO", LOCAL_NAME)]
        options = relay.clients[0].options
        assert options["use_tls"] is False
        assert options["start_tls"] is False
        assert options["local_hostname"] == LOCAL_NAME

    def test_helo_fallback(self, relay):
        relay.reject_ehlo = True
        session = make_session(relay)
        asyncio.run(session.connect())

        assert relay.verbs() == ["CONNECT", "EHLO", "HELO"]
        assert session.state is SessionState.CONNECTED

    def test_connection_failure(self, relay):
        relay.fail_connect = True
        session = make_session(relay)

        with pytest.raises(SMTPConnectionError):
            asyncio.run(session.connect())
        assert session.state is SessionState.UNCONNECTED
        assert not session.is_ready

    def test_implicit_tls_starts_secured(self, relay):
        context = ssl.create_default_context()
        session = make_session(relay, tls_context=context)
        asyncio.run(session.connect(implicit_tls=True))

        assert session.state is SessionState.SECURED
        assert session.is_secure
        assert relay.clients[0].options["use_tls"] is True
        assert relay.clients[0].options["tls_context"] is context

    def test_connect_twice_is_an_error(self, relay):
        session = make_session(relay)
        asyncio.run(session.connect())
        with pytest.raises(SessionStateError):
            asyncio.run(session.connect())


class TestNegotiateSecurity:
    def test_starttls_when_offered(self, relay):
        session = make_session(relay)
        asyncio.run(session.connect())
        asyncio.run(session.negotiate_security())

        assert session.state is SessionState.SECURED
        assert session.is_secure
        # Extensions are re-learned after the upgrade
        assert relay.verbs() == ["CONNECT", "EHLO", "STARTTLS", "EHLO"]
        assert relay.args("STARTTLS") == ["smtp.example.com"]
        assert relay.starttls_contexts == [None]

    def test_custom_context_used(self, relay):
        context = ssl.create_default_context()
        session = make_session(relay)
        asyncio.run(session.connect())
        asyncio.run(session.negotiate_security(context))

        assert relay.starttls_contexts == [context]

    def test_no_starttls_offered_is_a_noop(self, relay):
        relay.extensions = {"auth"}
        session = make_session(relay)
        asyncio.run(session.connect())
        asyncio.run(session.negotiate_security())

        assert session.state is SessionState.CONNECTED
        assert not session.is_secure
        assert "STARTTLS" not in relay.verbs()

    def test_already_secured_is_a_noop(self, relay):
        session = make_session(relay)
        asyncio.run(session.connect(implicit_tls=True))
        asyncio.run(session.negotiate_security())

        assert "STARTTLS" not in relay.verbs()

    def test_upgrade_failure_closes_session(self, relay):
        relay.fail_starttls = True
        session = make_session(relay)
        asyncio.run(session.connect())

        with pytest.raises(SMTPSecurityError):
            asyncio.run(session.negotiate_security())
        assert session.state is SessionState.CLOSED

    def test_requires_connection(self, relay):
        with pytest.raises(SessionStateError):
            asyncio.run(make_session(relay).negotiate_security())


class TestAuthenticate:
    def test_login_when_offered(self, relay):
        session = make_session(relay)
        asyncio.run(session.open())

        assert session.state is SessionState.AUTHENTICATED
        assert relay.args("AUTH") == ["user"]

    def test_no_auth_offered_is_a_noop(self, relay):
        relay.extensions = {"starttls"}
        session = make_session(relay)
        asyncio.run(session.open())

        assert session.state is SessionState.SECURED
        assert "AUTH" not in relay.verbs()
        assert session.is_ready

    def test_no_credentials_is_a_noop(self, relay):
        session = make_session(relay, credentials=None)
        asyncio.run(session.open())

        assert session.state is SessionState.SECURED
        assert "AUTH" not in relay.verbs()

    def test_rejected_credentials(self, relay):
        relay.reject_login = True
        session = make_session(relay)
        asyncio.run(session.connect())

        with pytest.raises(SMTPAuthenticationError):
            asyncio.run(session.authenticate())

    def test_credentials_repr_hides_password(self):
        assert "secret" not in repr(Credentials("user", "secret"))


class TestSend:
    def test_transaction_order(self, relay, sample_message):
        session = ready_session(relay)
        message_id = asyncio.run(session.send(sample_message))

        assert relay.commands == [
            ("MAIL", "a@x.com"),
            ("RCPT", "b@y.com"),
            ("DATA", None),
        ]
        assert session.state is SessionState.AUTHENTICATED
        assert f"Message-Id: {message_id}".encode() in relay.messages[0]

    def test_copies_declared_by_default(self, relay):
        session = ready_session(relay)
        message = Message(sender="a@x.com", to=("t1@y.com", "t2@y.com"),
                          cc=("c@y.com",), bcc=("h@y.com",), text="hi")
        asyncio.run(session.send(message))

        assert relay.args("RCPT") == ["t1@y.com", "t2@y.com", "c@y.com", "h@y.com"]

    def test_only_to_declared_when_copies_disabled(self, relay):
        session = ready_session(relay, declare_copy_recipients=False)
        message = Message(sender="a@x.com", to=("t1@y.com",), cc=("c@y.com",),
                          bcc=("h@y.com",), text="hi")
        asyncio.run(session.send(message))

        assert relay.args("RCPT") == ["t1@y.com"]
        # CC still shows up in the headers even though it gets no RCPT
        assert b"CC: c@y.com" in relay.messages[0]

    def test_session_reusable_for_second_message(self, relay, sample_message):
        session = ready_session(relay)
        first = asyncio.run(session.send(sample_message))
        second = asyncio.run(session.send(sample_message))

        assert first != second
        assert len(relay.messages) == 2
        assert relay.verbs().count("MAIL") == 2

    def test_empty_subject_placeholder_sent(self, relay):
        session = ready_session(relay)
        asyncio.run(session.send(Message(sender="a@x.com", to=("b@y.com",), text="hi")))

        assert b"Subject: (no subject)\r\n" in relay.messages[0]

    def test_missing_recipients_opens_no_transaction(self, relay):
        session = ready_session(relay)

        with pytest.raises(ValidationError):
            asyncio.run(session.send(Message(sender="a@x.com", text="hi")))
        assert relay.commands == []
        assert session.state is SessionState.AUTHENTICATED

    def test_missing_sender_opens_no_transaction(self, relay):
        session = ready_session(relay)

        with pytest.raises(ValidationError):
            asyncio.run(session.send(Message(to=("b@y.com",), text="hi")))
        assert relay.commands == []

    def test_header_injection_opens_no_transaction(self, relay):
        session = ready_session(relay)
        message = Message(sender="a@x.com", to=("b@y.com",),
                          subject="hi\r\nBcc: spy@evil.com", text="hi")

        with pytest.raises(ValidationError):
            asyncio.run(session.send(message))
        assert relay.commands == []
        assert session.state is SessionState.AUTHENTICATED

    def test_unreadable_attachment_opens_no_transaction(self, relay, temp_dir):
        session = ready_session(relay)
        attachment = Attachment("text/plain", "gone.txt", source_path=str(temp_dir / "gone.txt"))
        message = Message(sender="a@x.com", to=("b@y.com",), attachments=(attachment,))

        with pytest.raises(AttachmentNotFoundError):
            asyncio.run(session.send(message))
        assert relay.commands == []

    def test_refused_recipient_aborts_transaction(self, relay):
        relay.refused_recipients = {"bad@y.com"}
        session = ready_session(relay)
        message = Message(sender="a@x.com", to=("ok@y.com", "bad@y.com", "late@y.com"), text="hi")

        with pytest.raises(TransactionError) as exc_info:
            asyncio.run(session.send(message))

        assert exc_info.value.code == 550
        assert relay.verbs() == ["MAIL", "RCPT", "RCPT", "RSET"]
        assert relay.messages == []
        assert session.state is SessionState.AUTHENTICATED

    def test_rejected_sender(self, relay, sample_message):
        relay.reject_sender = True
        session = ready_session(relay)

        with pytest.raises(TransactionError):
            asyncio.run(session.send(sample_message))
        assert "RCPT" not in relay.verbs()

    def test_rejected_data(self, relay, sample_message):
        relay.reject_data = True
        session = ready_session(relay)

        with pytest.raises(TransactionError) as exc_info:
            asyncio.run(session.send(sample_message))
        assert exc_info.value.code == 554
        assert relay.verbs()[-1] == "RSET"

    def test_failed_reset_closes_session(self, relay, sample_message):
        relay.reject_data = True
        relay.fail_rset = True
        session = ready_session(relay)

        with pytest.raises(TransactionError):
            asyncio.run(session.send(sample_message))
        assert session.state is SessionState.CLOSED
        assert not session.is_ready

    def test_send_requires_open_session(self, relay, sample_message):
        session = make_session(relay)
        with pytest.raises(SessionStateError):
            asyncio.run(session.send(sample_message))
        assert relay.commands == []

    def test_send_after_quit_is_an_error(self, relay, sample_message):
        session = ready_session(relay)
        asyncio.run(session.quit())
        with pytest.raises(SessionStateError):
            asyncio.run(session.send(sample_message))


class TestQuit:
    def test_quit_closes(self, relay):
        session = ready_session(relay)
        asyncio.run(session.quit())

        assert relay.verbs() == ["QUIT"]
        assert session.state is SessionState.CLOSED

    def test_quit_is_best_effort(self, relay):
        relay.fail_quit = True
        session = ready_session(relay)
        asyncio.run(session.quit())

        assert session.state is SessionState.CLOSED
        assert not relay.clients[0].is_connected

    def test_quit_unconnected_session(self, relay):
        session = make_session(relay)
        asyncio.run(session.quit())
        assert session.state is SessionState.CLOSED

    def test_reconnect_after_quit(self, relay):
        session = ready_session(relay)
        asyncio.run(session.quit())
        asyncio.run(session.open())

        assert session.state is SessionState.AUTHENTICATED
        assert len(relay.clients) == 2
