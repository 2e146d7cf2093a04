"""
Publishing pipeline data model.

Twitter upload session state machine:
  new → initialized → appending → finalized → ready
                                          └─→ processing → ready | failed
  (image uploads go straight from finalized to ready)
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from crosspost.publish.errors import (
    ErrorKind,
    ProtocolError,
    UnsupportedPlatformError,
)


# ---------------------------------------------------------------------------
# Platforms / credentials / input files
# ---------------------------------------------------------------------------


class Platform(str, Enum):
    TWITTER = "twitter"
    INSTAGRAM = "instagram"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """Resolve a platform name, accepting ``x`` as an alias of twitter."""
        if isinstance(value, Platform):
            return value
        name = (value or "").strip().lower()
        if name == "x":
            name = cls.TWITTER.value
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedPlatformError(f"Unsupported platform: {value!r}") from None


@dataclass(frozen=True)
class Credentials:
    """
    Per-user platform credentials, passed explicitly into every call.

    Twitter: ``token`` / ``secret`` are the OAuth 1.0a user token pair.
    Instagram: ``token`` is the long-lived user token, ``account_id`` the
    Instagram business user id.
    """

    token: str
    secret: Optional[str] = None
    account_id: Optional[str] = None
    expires_at: Optional[dt.datetime] = None

    def __repr__(self) -> str:
        return f"Credentials(account_id={self.account_id!r}, expires_at={self.expires_at!r})"

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        expires = (
            self.expires_at.replace(tzinfo=dt.timezone.utc)
            if self.expires_at.tzinfo is None
            else self.expires_at
        )
        return dt.datetime.now(dt.timezone.utc) >= expires


@dataclass(frozen=True)
class MediaFile:
    """One raw uploaded file.  The content type is sniffed, never trusted."""

    filename: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Twitter
# ---------------------------------------------------------------------------


class MediaCategory(str, Enum):
    IMAGE = "image"
    GIF = "gif"
    VIDEO = "video"

    @property
    def wire(self) -> str:
        """Value sent as ``media_category`` on INIT."""
        return f"tweet_{self.value}"

    @property
    def needs_processing(self) -> bool:
        return self is not MediaCategory.IMAGE


class SessionState(str, Enum):
    NEW = "new"
    INITIALIZED = "initialized"
    APPENDING = "appending"
    FINALIZED = "finalized"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class UploadSession:
    """
    One chunked upload: created at INIT, grown by APPEND, sealed at FINALIZE.

    The session refuses out-of-order segments and a second FINALIZE locally,
    so a coordinator bug surfaces as a ``ProtocolError`` instead of a
    malformed request.
    """

    media_id: str
    total_bytes: int
    media_type: str
    category: MediaCategory
    segments: list[tuple[int, range]] = field(default_factory=list)
    state: SessionState = SessionState.INITIALIZED

    @property
    def bytes_appended(self) -> int:
        return self.segments[-1][1].stop if self.segments else 0

    @property
    def next_segment_index(self) -> int:
        return len(self.segments)

    def record_append(self, segment_index: int, size: int) -> None:
        if self.state not in (SessionState.INITIALIZED, SessionState.APPENDING):
            raise ProtocolError(
                f"Cannot APPEND to media {self.media_id} in state {self.state.value}"
            )
        if segment_index != self.next_segment_index:
            raise ProtocolError(
                f"Segment {segment_index} out of order for media {self.media_id} "
                f"(expected {self.next_segment_index})"
            )
        start = self.bytes_appended
        if size <= 0 or start + size > self.total_bytes:
            raise ProtocolError(
                f"Segment {segment_index} overflows declared size {self.total_bytes}"
            )
        self.segments.append((segment_index, range(start, start + size)))
        self.state = SessionState.APPENDING

    def seal(self) -> None:
        if self.state is not SessionState.APPENDING:
            raise ProtocolError(
                f"Cannot FINALIZE media {self.media_id} in state {self.state.value}"
            )
        if self.bytes_appended != self.total_bytes:
            raise ProtocolError(
                f"Cannot FINALIZE media {self.media_id}: "
                f"{self.bytes_appended}/{self.total_bytes} bytes appended"
            )
        self.state = SessionState.FINALIZED


class ProcessingState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessingStatus:
    state: ProcessingState
    progress_percent: int = 0
    next_check_delay_seconds: int = 0
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ProcessingState.SUCCEEDED, ProcessingState.FAILED)

    @classmethod
    def from_payload(cls, info: dict, error: Optional[dict] = None) -> "ProcessingStatus":
        """Build from a ``processing_info`` object of the media endpoint."""
        if not isinstance(info, dict):
            raise ProtocolError(f"Malformed processing_info: {info!r}")
        try:
            state = ProcessingState(info.get("state", ""))
        except ValueError:
            raise ProtocolError(f"Unknown processing state: {info.get('state')!r}") from None
        message = None
        for source in (info.get("error"), error):
            if isinstance(source, dict) and source.get("message"):
                message = str(source["message"])
                break
        try:
            progress = int(info.get("progress_percent") or 0)
            check_after = int(info.get("check_after_secs") or 0)
        except (TypeError, ValueError):
            raise ProtocolError(f"Malformed processing_info: {info!r}") from None
        return cls(
            state=state,
            progress_percent=progress,
            next_check_delay_seconds=check_after,
            error_message=message,
        )


# ---------------------------------------------------------------------------
# Instagram
# ---------------------------------------------------------------------------


class ContainerMediaType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    REELS = "REELS"


class ContainerStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"
    PUBLISHED = "PUBLISHED"


@dataclass
class MediaContainer:
    container_id: str
    media_url: str
    media_type: ContainerMediaType
    is_carousel_child: bool = False
    status: ContainerStatus = ContainerStatus.IN_PROGRESS


@dataclass
class CarouselContainer:
    container_id: str
    child_container_ids: list[str]
    status: ContainerStatus = ContainerStatus.IN_PROGRESS


@dataclass(frozen=True)
class PublishQuota:
    quota_usage: int
    quota_total: int

    @property
    def exhausted(self) -> bool:
        return self.quota_usage >= self.quota_total


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublishResult:
    """The only value returned across the pipeline boundary."""

    success: bool
    platform: Optional[Platform] = None
    platform_post_id: Optional[str] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    media_ids: tuple[str, ...] = ()

    @classmethod
    def ok(
        cls,
        platform: Platform,
        post_id: str,
        media_ids: "list[str] | tuple[str, ...]" = (),
    ) -> "PublishResult":
        return cls(
            success=True,
            platform=platform,
            platform_post_id=post_id,
            media_ids=tuple(media_ids),
        )

    @classmethod
    def failed(
        cls, platform: Optional[Platform], error: ErrorKind, message: str = ""
    ) -> "PublishResult":
        return cls(success=False, platform=platform, error=error, message=message)
