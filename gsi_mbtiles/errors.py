"""
Errors raised while mirroring a tileset.
Every one of them aborts the run; whatever was committed before stays valid.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for failures that end a sync run."""


class IdentityConflict(SyncError):
    """The archive is already bound to a different tileset."""

    def __init__(self, existing: str, requested: str):
        super().__init__(
            f"archive is synced with '{existing}' but '{requested}' was requested; aborting"
        )
        self.existing = existing
        self.requested = requested


class AmbiguousExistingData(SyncError):
    """The archive holds tiles but no tileset id, so its origin is unknown."""


class NetworkError(SyncError):
    """A request could not be completed at the connection level."""


class FetchError(SyncError):
    """The server answered with a non-success status."""

    def __init__(self, status: int, url: Optional[str] = None):
        message = f"HTTP {status}"
        if url:
            message += f" for {url}"
        super().__init__(message)
        self.status = status
        self.url = url


class FormatError(SyncError):
    """A manifest (or one of its headers) could not be decoded."""


class ParseError(SyncError, ValueError):
    """A tile path does not match {z}/{x}/{y}.{ext}."""
