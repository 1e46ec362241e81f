"""Gmail API client with OAuth authentication.

Read-only access to labels and message headers via the Gmail API.

Usage:
    from sender_extract.gmail import GmailClient

    client = GmailClient()

    # Resolve a label by name
    label = client.find_label("Receipts")

    # Walk every message under it, spam and trash included
    for message_id in client.iter_message_ids(label):
        meta = client.get_metadata(message_id, headers=["From"])
        print(meta.header("From"))

OAuth Setup:
    1. Download OAuth credentials from Google Cloud Console
    2. Save them as credentials.json in the working directory
    3. Run sender-extract once and complete the consent flow
"""

from __future__ import annotations

from sender_extract.gmail.client import GmailClient, GmailLabel, MessageMetadata
from sender_extract.gmail.exceptions import GmailError, LabelNotFoundError, NotFoundError

__all__ = [
    "GmailClient",
    "GmailLabel",
    "MessageMetadata",
    "GmailError",
    "NotFoundError",
    "LabelNotFoundError",
]
