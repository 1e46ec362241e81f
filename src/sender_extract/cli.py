"""CLI for sender-extract.

Usage:
    sender-extract <label>      # Print every distinct sender under a label

On first run a browser window opens for Google consent; the resulting
token is cached under tokens/ for later runs.
"""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor

USAGE_MESSAGE = (
    "Please specify exactly one parameter - the label/folder you want to extract emails from."
)

logger = logging.getLogger(__name__)


def resolve_log_level(name: str) -> int:
    """Numeric logging level for a level name; unknown names fall back to WARNING."""
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        logger.warning("Unknown log level %r, using WARNING", name)
        return logging.WARNING
    return level


def configure_logging(level: str) -> None:
    """Send log records to stderr so stdout carries only addresses."""
    logging.basicConfig(
        level=resolve_log_level(level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def extract(label_name: str) -> int:
    """Print the distinct senders of every message under ``label_name``."""
    from sender_extract.config import get_max_workers
    from sender_extract.gmail import GmailClient, LabelNotFoundError
    from sender_extract.google import CredentialsNotFoundError, GoogleOAuth
    from sender_extract.senders import SenderExtractor

    try:
        auth = GoogleOAuth()
    except CredentialsNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not auth.is_authorized():
        auth.authorize()

    client = GmailClient(auth=auth)

    try:
        label = client.find_label(label_name)
    except LabelNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    workers = get_max_workers()
    logger.info("Fetching senders under %s with %d worker(s)", label.name, workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
        senders = SenderExtractor(client, pool).collect(label)

    for address in senders:
        print(address)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    from sender_extract.config import get_log_level

    parser = argparse.ArgumentParser(
        prog="sender-extract",
        description="Print the distinct sender addresses of messages under a Gmail label",
        add_help=False,
    )
    parser.add_argument("label", nargs="*", help="Name of the label/folder to read")

    # Labels may start with a dash, so unrecognized "options" count as labels too
    args, extra = parser.parse_known_args(sys.argv[1:] if argv is None else argv)
    labels = [*args.label, *extra]

    if len(labels) != 1:
        print(USAGE_MESSAGE)
        return 0

    configure_logging(get_log_level())
    return extract(labels[0])


if __name__ == "__main__":
    sys.exit(main())
