"""
Publishing error taxonomy.

Every failure inside the pipeline is a ``PublishError`` subclass carrying a
machine-readable ``ErrorKind``.  The dispatcher turns these into a
``PublishResult`` so no platform-specific exception crosses its boundary.

  PublishError
  ├── UnsupportedMediaError       unsupported_media
  ├── UnsupportedPlatformError    unsupported_platform
  ├── NoMediaError                no_media
  ├── InvalidPostError            invalid_post
  ├── QuotaExceededError          quota_exceeded
  ├── CredentialsNotFoundError    credentials_not_found
  ├── StorageError                storage
  ├── PublishTimeoutError         timeout
  └── ProtocolError               protocol
      ├── ProcessingFailedError   processing_failed
      └── TransientError          transient
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UNSUPPORTED_MEDIA = "unsupported_media"
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    NO_MEDIA = "no_media"
    INVALID_POST = "invalid_post"
    QUOTA_EXCEEDED = "quota_exceeded"
    CREDENTIALS_NOT_FOUND = "credentials_not_found"
    PROTOCOL = "protocol"
    PROCESSING_FAILED = "processing_failed"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    STORAGE = "storage"


class PublishError(Exception):
    """Base class for all pipeline failures."""

    kind: ErrorKind = ErrorKind.PROTOCOL


class UnsupportedMediaError(PublishError):
    """The sniffed content type cannot be posted to the target platform."""

    kind = ErrorKind.UNSUPPORTED_MEDIA


class UnsupportedPlatformError(PublishError):
    kind = ErrorKind.UNSUPPORTED_PLATFORM


class NoMediaError(PublishError):
    """Raised when a platform that requires media receives no files."""

    kind = ErrorKind.NO_MEDIA


class InvalidPostError(PublishError):
    """The post breaks a local precondition (empty, too long, too many files)."""

    kind = ErrorKind.INVALID_POST


class QuotaExceededError(PublishError):
    kind = ErrorKind.QUOTA_EXCEEDED


class CredentialsNotFoundError(PublishError):
    """No usable credentials: the account is unlinked or its token expired."""

    kind = ErrorKind.CREDENTIALS_NOT_FOUND


class StorageError(PublishError):
    """The media stager could not store the bytes or build a public URL."""

    kind = ErrorKind.STORAGE


class PublishTimeoutError(PublishError, TimeoutError):
    """A polling loop ran past its wall-clock budget."""

    kind = ErrorKind.TIMEOUT


class ProtocolError(PublishError):
    """
    A remote call returned a non-success response.

    ``status_code`` is the HTTP status (``None`` for transport failures),
    ``code`` the platform's own error code when it sent one.
    """

    kind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.body = body


class ProcessingFailedError(ProtocolError):
    """Server-side media processing reached a terminal failure state."""

    kind = ErrorKind.PROCESSING_FAILED


class TransientError(ProtocolError):
    """The platform flagged the error as safe to retry."""

    kind = ErrorKind.TRANSIENT
