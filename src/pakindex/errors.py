"""
errors.py
Exception hierarchy shared by the PAK and UTOC decoders.

Every error raised while decoding derives from ArchiveError so callers can
catch one type. Storage failures are also OSErrors.
"""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for every archive decoding error."""


class FormatError(ArchiveError):
    """Raised when the bytes do not describe a valid archive index.

    Magic mismatch, version-major mismatch, malformed boolean bytes and
    out-of-range node references all end up here. When PAK footer probing
    runs out of versions, ``attempts`` holds one ``(version, reason)`` pair
    per version that was tried.
    """
    def __init__(self, message: str, attempts: list[tuple[str, str]] | None = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class UnsupportedFeatureError(ArchiveError):
    """Raised for features that are detected but never performed (decryption)."""
    def __init__(self, message: str, feature: str = ""):
        super().__init__(message)
        self.feature = feature


class TruncatedDataError(ArchiveError):
    """Raised when a declared count, size or offset runs past the buffer."""
    def __init__(self, message: str, needed: int = 0, available: int = 0):
        super().__init__(message)
        self.needed = needed
        self.available = available


class ArchiveIOError(ArchiveError, OSError):
    """Raised when the archive file cannot be opened or read."""
