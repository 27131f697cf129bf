"""Exception types for feed identity and storage."""

from typing import Optional


class FeedshelfError(Exception):
    """Base class for all feedshelf errors."""


class InvalidItemError(FeedshelfError):
    """Raised when an item passed to the identity resolver is missing or not a mapping."""


class StorageError(FeedshelfError):
    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


class StorageReadError(StorageError):
    """A document is missing, unreadable or does not match its schema."""


class StorageWriteError(StorageError):
    """A document could not be written (permissions, disk full, bad feed id)."""


class PartialPruneError(StorageError):
    """One items document failed during a prune scan."""
