"""Common errors raised across the resolver and registry clients."""

from __future__ import annotations

from typing import Optional


class ProvenanceError(RuntimeError):
    """Base class for resolver failures."""


class NetworkError(ProvenanceError):
    """Raised for non-success responses and transport failures."""

    def __init__(
        self, message: str, *, status_code: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(ProvenanceError):
    """Raised when a registry response body is malformed."""


class FileSystemError(ProvenanceError):
    """Raised when an artifact is missing or unreadable."""


class ConfigurationError(ProvenanceError):
    """Raised when an enabled registry lacks a required setting."""
