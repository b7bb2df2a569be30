"""Exception hierarchy shared by the export pipeline."""

from typing import Optional


class ExportError(Exception):
    """Base exception for all exporter errors."""
    pass


# Transport

class TransportError(ExportError):
    """Network, timeout or remote-service failure."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RateLimitedError(TransportError):
    """Remote API kept answering 429 after all retries."""
    pass


class TransientServerError(TransportError):
    """5xx or timeout that survived the retry budget."""
    pass


class RemoteClientError(TransportError):
    """Non-retryable 4xx response other than 401/403/429."""
    pass


class NotFoundError(RemoteClientError):
    """Remote resource does not exist (404)."""
    pass


# Authorization

class AuthorizationError(ExportError):
    """Credential or permission problem. Never retried, aborts the export."""

    hint = "Check the Yuque configuration and permissions"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        if hint:
            self.hint = hint


class InvalidCredentialError(AuthorizationError):
    """Token is invalid or expired (401)."""

    hint = "Access token is invalid or expired, update the Yuque token"


class ForbiddenError(AuthorizationError):
    """Token has no access to the repository (403)."""

    hint = "No permission to access the knowledge base, check repository settings"


# Content

class ContentError(ExportError):
    """Malformed markup or card payload."""
    pass


class CardParseError(ContentError):
    """A card payload could not be decoded or lacks a required field."""
    pass


# Assets

class AssetError(ExportError):
    """Download or storage failure for a single media item."""
    pass


class AssetNotFoundError(AssetError):
    """Requested asset does not exist in storage."""
    pass


# Storage

class StorageError(ExportError):
    """Disk read/write failure."""
    pass


class LockTimeoutError(StorageError):
    """Exclusive file lock could not be acquired within the retry budget."""
    pass


# Rendering

class RenderError(ExportError):
    """A format renderer failed to produce output."""
    pass


class PdfToolNotFoundError(RenderError):
    """No headless browser or wkhtmltopdf binary is available."""
    pass


class GenerationTimeoutError(RenderError):
    """A renderer exceeded its time budget."""

    def __init__(self, fmt: str, timeout: float):
        super().__init__(f"{fmt} generation timed out after {timeout:g}s")
        self.format = fmt
        self.timeout = timeout


__all__ = [
    'ExportError',
    'TransportError',
    'RateLimitedError',
    'TransientServerError',
    'RemoteClientError',
    'NotFoundError',
    'AuthorizationError',
    'InvalidCredentialError',
    'ForbiddenError',
    'ContentError',
    'CardParseError',
    'AssetError',
    'AssetNotFoundError',
    'StorageError',
    'LockTimeoutError',
    'RenderError',
    'PdfToolNotFoundError',
    'GenerationTimeoutError',
]
