"""Tests for crosspost/publish/fanout.py"""

from __future__ import annotations

import asyncio

import pytest

from crosspost.publish.errors import ProtocolError
from crosspost.publish.fanout import upload_all
from crosspost.publish.models import MediaFile


class _FakeUploader:
    """Stands in for ChunkedUploader; per-file delay and failure are scripted."""

    def __init__(self, delays: dict[str, float] | None = None, fail: set[str] | None = None) -> None:
        self.delays = delays or {}
        self.fail = fail or set()
        self.finished: list[str] = []
        self.events: list[tuple[str, str]] = []

    async def upload(self, media: MediaFile) -> str:
        self.events.append(("start", media.filename))
        await asyncio.sleep(self.delays.get(media.filename, 0))
        if media.filename in self.fail:
            raise ProtocolError(f"upload of {media.filename} failed")
        self.finished.append(media.filename)
        self.events.append(("end", media.filename))
        return f"id-{media.filename}"


def _files(*names: str) -> list[MediaFile]:
    return [MediaFile(filename=n, data=b"x") for n in names]


class TestUploadAll:
    @pytest.mark.asyncio
    async def test_ids_in_input_order(self) -> None:
        # "a" finishes last, but still comes first.
        uploader = _FakeUploader(delays={"a": 0.03, "b": 0.01, "c": 0.0})

        ids = await upload_all(uploader, _files("a", "b", "c"))

        assert ids == ["id-a", "id-b", "id-c"]

    @pytest.mark.asyncio
    async def test_uploads_run_concurrently(self) -> None:
        uploader = _FakeUploader(delays={"a": 0.02, "b": 0.02})

        await upload_all(uploader, _files("a", "b"))

        events = uploader.events
        assert events.index(("start", "b")) < events.index(("end", "a"))
        assert sorted(uploader.finished) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_one_failure_raises_without_partial_list(self) -> None:
        uploader = _FakeUploader(delays={"c": 0.02}, fail={"b"})

        with pytest.raises(ProtocolError, match="b failed"):
            await upload_all(uploader, _files("a", "b", "c"))

        # Siblings are not cancelled.
        assert sorted(uploader.finished) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_first_failure_wins(self) -> None:
        uploader = _FakeUploader(delays={"a": 0.03, "b": 0.0}, fail={"a", "b"})

        with pytest.raises(ProtocolError, match="b failed"):
            await upload_all(uploader, _files("a", "b"))

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        assert await upload_all(_FakeUploader(), []) == []
