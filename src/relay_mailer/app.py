# =============================================================================
# relay-mailer Command Line
# =============================================================================
# Sends one message from the command line through a configured account:
#
#   relay-mailer send --to bob@example.com --subject Hi --text "Hello"
#   relay-mailer send --account work --to a@x.com --html-file mail.html \
#                     --attach report.pdf
#
# The account (relay, sender identity, login) comes from config.toml; the
# password comes from the system keyring.
# =============================================================================

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from relay_mailer import __app_name__, __version__
from relay_mailer.config import Config, ConfigError, print_paths
from relay_mailer.core import MessageBuilder
from relay_mailer.errors import MailerError
from relay_mailer.smtp import Mailer

logger = logging.getLogger(__name__)


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="relay-mailer: send mail through an SMTP relay",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: XDG config location)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    subparsers = parser.add_subparsers(dest="command")

    send = subparsers.add_parser("send", help="Send a message")
    send.add_argument("--account", help="Account name (default: default_account)")
    send.add_argument("--to", action="append", default=[], required=True, help="Primary recipient (repeatable)")
    send.add_argument("--cc", action="append", default=[], help="CC recipient (repeatable)")
    send.add_argument("--bcc", action="append", default=[], help="BCC recipient (repeatable)")
    send.add_argument("--subject", default="", help="Subject line")

    body = send.add_mutually_exclusive_group()
    body.add_argument("--text", help="Plain text body")
    body.add_argument("--text-file", type=Path, help="Read the plain text body from a file")

    send.add_argument("--html-file", type=Path, help="Read the HTML body from a file")
    send.add_argument("--attach", action="append", default=[], help="File to attach (repeatable)")

    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    """Send log records to stderr; DEBUG with --debug, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_message(args: argparse.Namespace, config: Config) -> tuple[MessageBuilder, str]:
    """
    Compose the message described by the `send` arguments.

    Returns:
        The filled-in builder and the name of the sending account.
    """
    account = config.get_account(args.account)

    builder = MessageBuilder()
    builder.set_from(account.display_name, account.email)
    builder.set_subject(args.subject)
    builder.add_to(*args.to)
    builder.add_cc(*args.cc)
    builder.add_bcc(*args.bcc)

    if args.text is not None:
        builder.set_text(args.text)
    elif args.text_file:
        builder.set_text(args.text_file.read_text(encoding="utf-8"))
    if args.html_file:
        builder.set_html(args.html_file.read_text(encoding="utf-8"))

    for path in args.attach:
        builder.attach_file(path)

    return builder, account.name


async def send_message(builder: MessageBuilder, account_name: str, config: Config) -> str:
    """Send through the named account and return the Message-Id."""
    account = config.get_account(account_name)
    async with Mailer.from_account(account, config.delivery) as mailer:
        return await mailer.send(builder)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for relay-mailer.

    This function:
        1. Parses command-line arguments
        2. Handles special commands (--paths, --version)
        3. Loads configuration
        4. Sends the message

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)
    configure_logging(args.debug)

    # Handle --paths flag
    if args.paths:
        print_paths()
        return 0

    if args.command != "send":
        print(f"{__app_name__}: nothing to do (try '{__app_name__} send --help')", file=sys.stderr)
        return 1

    try:
        config = Config.load(args.config)
        builder, account_name = build_message(args, config)
        message_id = asyncio.run(send_message(builder, account_name, config))
    except (ConfigError, MailerError, OSError) as e:
        logger.debug("Send failed", exc_info=True)
        print(f"{__app_name__}: {e}", file=sys.stderr)
        return 1

    print(message_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
