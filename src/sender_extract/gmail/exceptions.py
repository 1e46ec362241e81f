"""Gmail API exceptions."""

from __future__ import annotations


class GmailError(Exception):
    """Base exception for Gmail API errors."""


class NotFoundError(GmailError):
    """A requested Gmail resource does not exist."""


class LabelNotFoundError(NotFoundError):
    """No label with the requested name exists in the account."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Label `{name}` is unknown.")
