"""Gmail API client implementation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from sender_extract.config import REQUEST_TIMEOUT, USER_ID
from sender_extract.gmail.exceptions import LabelNotFoundError
from sender_extract.google import GoogleOAuth
from sender_extract.google.exceptions import AuthorizationRequired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GmailLabel:
    """A Gmail label (user or system)."""

    id: str
    name: str


@dataclass
class MessageMetadata:
    """Header metadata of a single message."""

    id: str
    headers: list[tuple[str, str]] = field(default_factory=list)

    def header(self, name: str) -> str | None:
        """Value of the first header called exactly ``name``, if any."""
        for header_name, value in self.headers:
            if header_name == name:
                return value
        return None


class GmailClient:
    """Gmail API client for label lookup and metadata reads.

    Usage:
        client = GmailClient()

        label = client.find_label("Newsletters")
        for message_id in client.iter_message_ids(label):
            meta = client.get_metadata(message_id, headers=["From"])
            print(meta.header("From"))

    The client may be shared between threads: every thread gets its own
    authorized HTTP transport, since httplib2 connections are not
    thread-safe.

    Note:
        Requires OAuth authorization; the CLI runs the consent flow on
        first use.
    """

    def __init__(
        self,
        auth: GoogleOAuth | None = None,
        user: str = USER_ID,
        timeout: int = REQUEST_TIMEOUT,
        service: Any = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            auth: OAuth helper. Created with default paths when needed.
            user: Gmail user ID or "me" for authenticated user.
            timeout: Connect/read timeout in seconds for every request.
            service: Prebuilt Gmail API service (skips OAuth entirely).
        """
        self._auth = auth
        self._user = user
        self._timeout = timeout
        self._service = service
        self._local = threading.local()

    def _get_service(self) -> Any:
        """Get or create Gmail API service."""
        if self._service is None:
            if self._auth is None:
                self._auth = GoogleOAuth()
            if not self._auth.is_authorized():
                raise AuthorizationRequired(
                    self._auth.get_authorization_url(),
                    "Gmail API requires OAuth authorization.",
                )
            self._service = self._auth.build_service("gmail", "v1", timeout=self._timeout)
        return self._service

    def _thread_http(self) -> Any:
        """Authorized transport owned by the calling thread."""
        if self._auth is None:
            return None
        http = getattr(self._local, "http", None)
        if http is None:
            http = self._auth.authorized_http(self._timeout)
            self._local.http = http
        return http

    def _execute(self, request: Any) -> dict[str, Any]:
        return request.execute(http=self._thread_http())

    def list_labels(self) -> list[GmailLabel]:
        """List all Gmail labels."""
        service = self._get_service()
        results = self._execute(service.users().labels().list(userId=self._user))
        return [GmailLabel(id=label["id"], name=label["name"]) for label in results.get("labels", [])]

    def find_label(self, name: str) -> GmailLabel:
        """Resolve a label by its exact, case-sensitive name.

        Raises:
            LabelNotFoundError: If no label carries that name.
        """
        for label in self.list_labels():
            if label.name == name:
                logger.debug("Resolved label %r to %s", name, label.id)
                return label
        raise LabelNotFoundError(name)

    def iter_message_ids(
        self,
        label: GmailLabel,
        page_token: str | None = None,
    ) -> Iterator[str]:
        """Yield the ID of every message tagged with ``label``.

        Pages are fetched lazily, following ``nextPageToken`` until the
        listing is exhausted. Spam and trash are included.

        Args:
            label: Label to list.
            page_token: Continuation token to resume from.
        """
        service = self._get_service()
        pages = 0
        while True:
            kwargs: dict[str, Any] = {
                "userId": self._user,
                "labelIds": [label.id],
                "includeSpamTrash": True,
            }
            if page_token:
                kwargs["pageToken"] = page_token
            response = self._execute(service.users().messages().list(**kwargs))
            pages += 1

            for message in response.get("messages", []):
                yield message["id"]

            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d page(s) for label %s", pages, label.id)

    def get_metadata(self, message_id: str, headers: list[str] | None = None) -> MessageMetadata:
        """Fetch the header metadata of one message.

        Args:
            message_id: Gmail message ID.
            headers: Restrict the response to these header names.

        Returns:
            MessageMetadata with headers in the order Gmail returned them.
        """
        service = self._get_service()
        kwargs: dict[str, Any] = {"userId": self._user, "id": message_id, "format": "metadata"}
        if headers:
            kwargs["metadataHeaders"] = headers
        msg = self._execute(service.users().messages().get(**kwargs))

        return MessageMetadata(
            id=msg.get("id", message_id),
            headers=[(h["name"], h["value"]) for h in msg.get("payload", {}).get("headers", [])],
        )
