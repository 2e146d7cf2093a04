"""Tests for crosspost/publish/media.py"""

from __future__ import annotations

import pytest

from crosspost.publish.errors import UnsupportedMediaError
from crosspost.publish.media import (
    OCTET_STREAM,
    instagram_media_type,
    sniff_mime_type,
    twitter_category,
)
from crosspost.publish.models import ContainerMediaType, MediaCategory


class TestSniffMimeType:
    def test_images(self, jpeg_bytes: bytes, png_bytes: bytes, gif_bytes: bytes) -> None:
        assert sniff_mime_type(jpeg_bytes) == "image/jpeg"
        assert sniff_mime_type(png_bytes) == "image/png"
        assert sniff_mime_type(gif_bytes) == "image/gif"

    def test_webp(self) -> None:
        assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_mp4(self, mp4_bytes: bytes) -> None:
        assert sniff_mime_type(mp4_bytes) == "video/mp4"

    def test_quicktime(self) -> None:
        data = b"\x00\x00\x00\x14ftypqt  \x00\x00\x00\x00qt  "
        assert sniff_mime_type(data) == "video/quicktime"

    def test_unknown_is_octet_stream(self) -> None:
        assert sniff_mime_type(b"hello, world") == OCTET_STREAM
        assert sniff_mime_type(b"") == OCTET_STREAM

    def test_only_leading_bytes_matter(self, png_bytes: bytes) -> None:
        assert sniff_mime_type(png_bytes + b"GIF89a" * 1000) == "image/png"


class TestTwitterCategory:
    @pytest.mark.parametrize(
        ("mime", "category"),
        [
            ("image/jpeg", MediaCategory.IMAGE),
            ("image/png", MediaCategory.IMAGE),
            ("image/gif", MediaCategory.GIF),
            ("video/mp4", MediaCategory.VIDEO),
        ],
    )
    def test_supported(self, mime: str, category: MediaCategory) -> None:
        assert twitter_category(mime) is category

    def test_wire_names(self) -> None:
        assert MediaCategory.IMAGE.wire == "tweet_image"
        assert MediaCategory.GIF.wire == "tweet_gif"
        assert MediaCategory.VIDEO.wire == "tweet_video"

    @pytest.mark.parametrize("mime", ["image/webp", "video/quicktime", OCTET_STREAM])
    def test_unsupported(self, mime: str) -> None:
        with pytest.raises(UnsupportedMediaError):
            twitter_category(mime)


class TestInstagramMediaType:
    def test_image(self) -> None:
        assert instagram_media_type("image/png", carousel_item=False) is ContainerMediaType.IMAGE

    def test_standalone_video_is_reel(self) -> None:
        assert instagram_media_type("video/mp4", carousel_item=False) is ContainerMediaType.REELS

    def test_carousel_video_is_video(self) -> None:
        assert instagram_media_type("video/mp4", carousel_item=True) is ContainerMediaType.VIDEO

    def test_unsupported(self) -> None:
        with pytest.raises(UnsupportedMediaError):
            instagram_media_type(OCTET_STREAM, carousel_item=False)
