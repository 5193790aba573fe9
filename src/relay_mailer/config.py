# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading, saving, and validating relay-mailer configuration.
#
# XDG Base Directory Compliance (https://specifications.freedesktop.org/basedir-spec/):
#   - Config:  $XDG_CONFIG_HOME/relay-mailer/  (default: ~/.config/relay-mailer/)
#
# Files:
#   - config.toml: Sending accounts and delivery settings
#
# Passwords are never written here; see Account.keyring_service.
# =============================================================================

import os
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w  # For writing TOML (tomllib is read-only)

from relay_mailer.core import Account
from relay_mailer.smtp import LOCAL_NAME, SecurityMode


# =============================================================================
# XDG Directory Management
# =============================================================================

# Application identifier used in all XDG paths
APP_NAME = "relay-mailer"


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory for relay-mailer.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/relay-mailer/
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


# =============================================================================
# Configuration Data Structures
# =============================================================================

@dataclass
class DeliveryConfig:
    """
    Settings that apply to every SMTP session.

    Attributes:
        timeout: Per-operation timeout in seconds.
        local_hostname: Name we introduce ourselves with in EHLO.
        declare_copy_recipients: Send to CC and BCC addresses too. When
                                 False, only "To" addresses are declared
                                 with RCPT TO and CC/BCC only appear in
                                 headers.
    """
    timeout: float = 30
    local_hostname: str = LOCAL_NAME
    declare_copy_recipients: bool = True


@dataclass
class Config:
    """
    Main configuration container for relay-mailer.

    Attributes:
        default_account: Name of the account used when none is given.
        accounts: Dictionary of configured sending accounts, keyed by name.
        delivery: Session-wide delivery settings.

    Usage:
        >>> config = Config.load()
        >>> account = config.get_account()
    """
    # General settings
    default_account: str = ""

    # Account configurations (name -> Account)
    accounts: dict[str, Account] = field(default_factory=dict)

    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    # -------------------------------------------------------------------------
    # File Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def config_file_path() -> Path:
        """Returns the path to the main config file."""
        return get_xdg_config_home() / "config.toml"

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load configuration from a config file.

        If the file doesn't exist, returns default configuration.

        Args:
            path: Config file to read. Defaults to the XDG location.

        Returns:
            Loaded Config object.

        Raises:
            ConfigError: If the config file exists but is invalid.
        """
        config_path = path or cls.config_file_path()

        if not config_path.exists():
            # No config file yet - return defaults
            return cls()

        # Load and parse the TOML file
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e

        return cls._from_dict(data)

    def save(self, path: Path | None = None) -> None:
        """
        Save configuration to a config file.

        Creates the parent directory if it doesn't exist.
        """
        config_path = path or self.config_file_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    def get_account(self, name: str | None = None) -> Account:
        """
        Look up an account by name, or the default account.

        Falls back to the only configured account when no default is set.

        Raises:
            ConfigError: If the account doesn't exist or is disabled.
        """
        name = name or self.default_account
        if not name and len(self.accounts) == 1:
            name = next(iter(self.accounts))

        if not name:
            raise ConfigError("No account given and no default_account configured")

        account = self.accounts.get(name)
        if account is None:
            raise ConfigError(f"Unknown account: {name!r}")
        if not account.enabled:
            raise ConfigError(f"Account {name!r} is disabled")
        return account

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).

        Converts account entries into Account objects and checks the
        values that would otherwise only fail at send time.
        """
        config = cls()

        # General settings
        general = data.get("general", {})
        config.default_account = general.get("default_account", "")

        # Delivery settings
        delivery = data.get("delivery", {})
        config.delivery = DeliveryConfig(
            timeout=delivery.get("timeout", 30),
            local_hostname=delivery.get("local_hostname", LOCAL_NAME),
            declare_copy_recipients=delivery.get("declare_copy_recipients", True),
        )

        # Accounts - each key under [accounts] is an account name
        accounts_data = data.get("accounts", {})
        for name, acct_data in accounts_data.items():
            security = acct_data.get("smtp_security", "starttls")
            if security not in {mode.value for mode in SecurityMode}:
                raise ConfigError(
                    f"Account {name!r}: smtp_security must be 'starttls' or 'ssl', got {security!r}"
                )
            if not acct_data.get("email"):
                raise ConfigError(f"Account {name!r}: email is required")

            config.accounts[name] = Account(
                name=name,
                email=acct_data["email"],
                display_name=acct_data.get("display_name", ""),
                username=acct_data.get("username", ""),
                smtp_host=acct_data.get("smtp_host", ""),
                smtp_port=acct_data.get("smtp_port", 587),
                smtp_security=security,
                enabled=acct_data.get("enabled", True),
            )

        return config

    def _to_dict(self) -> dict[str, Any]:
        """
        Convert Config to a dictionary for TOML serialization.
        """
        data: dict[str, Any] = {}

        # General settings
        data["general"] = {
            "default_account": self.default_account,
        }

        # Delivery settings
        data["delivery"] = {
            "timeout": self.delivery.timeout,
            "local_hostname": self.delivery.local_hostname,
            "declare_copy_recipients": self.delivery.declare_copy_recipients,
        }

        # Accounts
        data["accounts"] = {}
        for name, account in self.accounts.items():
            data["accounts"][name] = {
                "email": account.email,
                "display_name": account.display_name,
                "username": account.username,
                "smtp_host": account.smtp_host,
                "smtp_port": account.smtp_port,
                "smtp_security": account.smtp_security,
                "enabled": account.enabled,
            }

        return data


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when there's an error loading or parsing configuration."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def print_paths() -> None:
    """
    Print config paths for debugging.
    Useful for users wondering where their config is stored.
    """
    print(f"Config:       {get_xdg_config_home()}")
    print(f"Config file:  {Config.config_file_path()}")
