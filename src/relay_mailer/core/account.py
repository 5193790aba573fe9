# =============================================================================
# Account Model
# =============================================================================
# Represents a sending account: the relay to submit through, the identity
# that appears in the "From" header, and the login used for SMTP AUTH.
#
# IMPORTANT: Passwords are NOT stored here. They are retrieved from the system
# keyring at runtime using the 'keyring' library. This keeps credentials secure
# and out of config files.
# =============================================================================

from dataclasses import dataclass

from relay_mailer.errors import ValidationError


@dataclass(frozen=True)
class RelayAddress:
    """
    A validated "host:port" relay address.

    Attributes:
        host: Relay host name or IP address (IPv6 without brackets).
        port: TCP port (1-65535).

    Example:
        >>> RelayAddress.parse("smtp.example.com:587")
        RelayAddress(host='smtp.example.com', port=587)
    """
    host: str
    port: int

    @classmethod
    def parse(cls, address: str) -> "RelayAddress":
        """
        Parse and validate a relay address string.

        The address must contain a colon with a non-empty host before it
        and a non-empty port after it. IPv6 hosts must be bracketed
        ("[::1]:25").

        Raises:
            ValidationError: If the address is malformed.
        """
        pos = address.find(":")
        if pos <= 0 or pos == len(address) - 1:
            raise ValidationError(f"Invalid SMTP server address: {address!r}")

        host, _, port_str = address.rpartition(":")
        if host.startswith("["):
            if not host.endswith("]"):
                raise ValidationError(f"Invalid SMTP server address: {address!r}")
            host = host[1:-1]
        elif ":" in host:
            # Unbracketed IPv6 is ambiguous
            raise ValidationError(f"Invalid SMTP server address: {address!r}")

        if not host or not port_str.isdigit():
            raise ValidationError(f"Invalid SMTP server address: {address!r}")

        port = int(port_str)
        if not 0 < port < 65536:
            raise ValidationError(f"Port out of range in SMTP server address: {address!r}")

        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass
class Account:
    """
    Represents a sending account with SMTP configuration.

    Attributes:
        name: A unique identifier for this account (e.g., "personal", "work").
              Used as the key in config files and for keyring lookups.
        email: The email address messages are sent from.
        display_name: The name shown in the "From" field when sending emails.
                      Defaults to the email address if not specified.
        username: Login name for SMTP AUTH. Defaults to the email address.

        smtp_host: Hostname of the SMTP relay (e.g., "smtp.gmail.com").
        smtp_port: Port for SMTP connection. Standard ports:
                   - 465 for SMTP with SSL (implicit TLS)
                   - 587 for SMTP with STARTTLS (recommended)
        smtp_security: Connection security method ("ssl" or "starttls").

        enabled: Whether this account may be used for sending.

    Example:
        >>> account = Account(
        ...     name="work",
        ...     email="user@example.com",
        ...     display_name="John Doe",
        ...     smtp_host="smtp.example.com",
        ...     smtp_port=587,
        ... )
    """

    # Account identification
    name: str                           # Unique account identifier
    email: str                          # Sender address
    display_name: str = ""              # Name shown in "From" field
    username: str = ""                  # SMTP AUTH login

    # SMTP configuration
    smtp_host: str = ""
    smtp_port: int = 587                # Default to STARTTLS port
    smtp_security: str = "starttls"     # "ssl" or "starttls"

    enabled: bool = True

    def __post_init__(self) -> None:
        """Fill in display_name and username from the email address."""
        if not self.display_name:
            self.display_name = self.email
        if not self.username:
            self.username = self.email

    @property
    def address(self) -> str:
        """The relay address in "host:port" form."""
        return f"{self.smtp_host}:{self.smtp_port}"

    @property
    def keyring_service(self) -> str:
        """
        Returns the service name used for keyring password storage.

        Passwords can be managed via the keyring CLI:
            keyring set relay-mailer:work user@example.com
        """
        return f"relay-mailer:{self.name}"

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"

    def __repr__(self) -> str:
        return (
            f"Account(name={self.name!r}, email={self.email!r}, "
            f"smtp={self.smtp_host}:{self.smtp_port}, security={self.smtp_security!r})"
        )
