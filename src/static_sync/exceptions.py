# src/static_sync/exceptions.py
"""Custom exceptions for the static-sync application."""

from typing import List, Sequence


class StaticSyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(StaticSyncError):
    """Raised for configuration-related issues."""

    pass


class ListingError(StaticSyncError):
    """Raised when the remote bucket cannot be enumerated."""

    pass


class UploadError(StaticSyncError):
    """Raised when an object upload fails permanently."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"Upload failed for '{key}': {message}")
        self.key: str = key


class DeleteError(StaticSyncError):
    """Raised when a batch delete request fails."""

    def __init__(self, keys: Sequence[str], message: str) -> None:
        super().__init__(f"Deleting {len(keys)} objects failed: {message}")
        self.keys: List[str] = list(keys)
