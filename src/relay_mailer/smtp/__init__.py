# =============================================================================
# SMTP Module
# =============================================================================
# Handles sending emails via SMTP (Simple Mail Transfer Protocol).
#
# Features:
#   - Connection with implicit TLS or opportunistic STARTTLS
#   - Optional authentication (skipped when the relay doesn't offer AUTH)
#   - An explicit session state machine around aiosmtplib
#   - A Mailer facade that dials on demand
# =============================================================================

from relay_mailer.smtp.client import Mailer, SecurityMode
from relay_mailer.smtp.session import (
    LOCAL_NAME,
    READY_STATES,
    TRANSITIONS,
    Credentials,
    RelaySession,
    SessionState,
)

__all__ = [
    "Mailer",
    "SecurityMode",
    "RelaySession",
    "SessionState",
    "Credentials",
    "LOCAL_NAME",
    "READY_STATES",
    "TRANSITIONS",
]
