"""Tests for crosspost/publish/models.py"""

from __future__ import annotations

import datetime as dt

import pytest

from crosspost.publish.errors import ErrorKind, ProtocolError, UnsupportedPlatformError
from crosspost.publish.models import (
    Credentials,
    MediaCategory,
    Platform,
    ProcessingState,
    ProcessingStatus,
    PublishQuota,
    PublishResult,
    SessionState,
    UploadSession,
)


def _session(total: int = 10) -> UploadSession:
    return UploadSession(
        media_id="M1", total_bytes=total, media_type="video/mp4", category=MediaCategory.VIDEO
    )


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


class TestPlatform:
    def test_parse_names(self) -> None:
        assert Platform.parse("twitter") is Platform.TWITTER
        assert Platform.parse(" Instagram ") is Platform.INSTAGRAM

    def test_x_is_twitter(self) -> None:
        assert Platform.parse("X") is Platform.TWITTER

    def test_unknown_platform_raises(self) -> None:
        with pytest.raises(UnsupportedPlatformError):
            Platform.parse("myspace")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_no_expiry_is_never_expired(self) -> None:
        assert not Credentials(token="t").is_expired

    def test_past_expiry_is_expired(self) -> None:
        past = dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=1)
        assert Credentials(token="t", expires_at=past).is_expired

    def test_naive_expiry_treated_as_utc(self) -> None:
        future = dt.datetime.now(dt.timezone.utc).replace(tzinfo=None) + dt.timedelta(days=1)
        assert not Credentials(token="t", expires_at=future).is_expired

    def test_repr_hides_tokens(self) -> None:
        text = repr(Credentials(token="SECRET-TOKEN", secret="SECRET-PAIR", account_id="IG1"))
        assert "SECRET" not in text
        assert "IG1" in text


# ---------------------------------------------------------------------------
# UploadSession
# ---------------------------------------------------------------------------


class TestUploadSession:
    def test_segments_are_contiguous(self) -> None:
        session = _session(10)
        session.record_append(0, 4)
        session.record_append(1, 4)
        session.record_append(2, 2)

        assert [idx for idx, _ in session.segments] == [0, 1, 2]
        assert session.segments[1][1] == range(4, 8)
        assert session.bytes_appended == 10
        assert session.state is SessionState.APPENDING

    def test_out_of_order_segment_rejected(self) -> None:
        session = _session()
        session.record_append(0, 4)
        with pytest.raises(ProtocolError, match="out of order"):
            session.record_append(2, 4)

    def test_overflow_rejected(self) -> None:
        session = _session(5)
        with pytest.raises(ProtocolError, match="overflows"):
            session.record_append(0, 6)

    def test_seal_requires_all_bytes(self) -> None:
        session = _session(10)
        session.record_append(0, 4)
        with pytest.raises(ProtocolError, match="4/10"):
            session.seal()

    def test_seal_only_once(self) -> None:
        session = _session(4)
        session.record_append(0, 4)
        session.seal()
        assert session.state is SessionState.FINALIZED
        with pytest.raises(ProtocolError):
            session.seal()

    def test_no_append_after_seal(self) -> None:
        session = _session(4)
        session.record_append(0, 4)
        session.seal()
        with pytest.raises(ProtocolError):
            session.record_append(1, 1)


# ---------------------------------------------------------------------------
# Processing status / quota / result
# ---------------------------------------------------------------------------


class TestProcessingStatus:
    def test_from_payload(self) -> None:
        status = ProcessingStatus.from_payload(
            {"state": "in_progress", "progress_percent": 40, "check_after_secs": 3}
        )
        assert status.state is ProcessingState.IN_PROGRESS
        assert status.progress_percent == 40
        assert status.next_check_delay_seconds == 3
        assert not status.is_terminal

    def test_failed_carries_message(self) -> None:
        status = ProcessingStatus.from_payload(
            {"state": "failed", "error": {"message": "InvalidMedia"}}
        )
        assert status.is_terminal
        assert status.error_message == "InvalidMedia"

    def test_unknown_state_raises(self) -> None:
        with pytest.raises(ProtocolError):
            ProcessingStatus.from_payload({"state": "melted"})


class TestPublishQuota:
    def test_exhausted_at_limit(self) -> None:
        assert PublishQuota(quota_usage=25, quota_total=25).exhausted
        assert not PublishQuota(quota_usage=24, quota_total=25).exhausted


class TestPublishResult:
    def test_ok(self) -> None:
        result = PublishResult.ok(Platform.TWITTER, "T1", ["A", "B"])
        assert result.success
        assert result.media_ids == ("A", "B")
        assert result.error is None

    def test_failed(self) -> None:
        result = PublishResult.failed(Platform.INSTAGRAM, ErrorKind.QUOTA_EXCEEDED, "limit")
        assert not result.success
        assert result.platform_post_id is None
        assert result.error is ErrorKind.QUOTA_EXCEEDED
