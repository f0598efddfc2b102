"""Exception hierarchy shared across catalog matching, downloads, and ownership.

The installer spans catalog ingestion, HTTP retrieval, on-disk finalisation,
and extended-attribute bookkeeping.  This module groups the failure modes
into a small hierarchy so caller code (most notably the CLI exit-code
mapping) can react to high-level categories while still having access to the
details each failure carries.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "BinaryFetchError",
    "ConfigError",
    "UserConfigError",
    "NotFoundError",
    "ChecksumMismatchError",
    "DownloadCancelled",
    "NetworkError",
    "FilesystemError",
    "OwnershipTagMissing",
]


class BinaryFetchError(RuntimeError):
    """Base exception for catalog, download, install, or validation failures."""


class UserConfigError(BinaryFetchError):
    """Raised when CLI arguments or YAML configuration inputs are invalid."""


# Shorter alias used throughout the package.
ConfigError = UserConfigError


class NotFoundError(BinaryFetchError):
    """Raised when no catalog entry matches the requested binary."""

    def __init__(self, message: str, *, requested: str = "") -> None:
        super().__init__(message)
        self.requested = requested


class ChecksumMismatchError(BinaryFetchError):
    """Raised when a downloaded artifact does not hash to the catalog digest."""

    def __init__(self, message: str, *, expected: str, actual: str) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DownloadCancelled(BinaryFetchError):
    """Raised when a download observes a cancelled token between chunks."""


class NetworkError(BinaryFetchError):
    """Raised when an HTTP request fails at the transport or status level."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class FilesystemError(BinaryFetchError):
    """Raised when directory creation, rename, chmod, or tagging fails."""

    def __init__(self, message: str, *, path: Optional[Union[str, Path]] = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class OwnershipTagMissing(FilesystemError):
    """Raised when an existing file carries no ownership identity.

    Absence of the tag is a valid state (unmanaged or pre-tracking install);
    callers catch this explicitly rather than treating it as a hard failure.
    """


# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.errors",
#   "purpose": "Define the exception hierarchy used across matching, download, install, and ownership",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "configuration", "name": "Configuration Errors", "anchor": "CFG", "kind": "api"},
#     {"id": "download", "name": "Lookup & Download Errors", "anchor": "DWN", "kind": "api"},
#     {"id": "filesystem", "name": "Filesystem & Ownership Errors", "anchor": "FSE", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
