"""
Content sniffing and per-platform media classification.

Only the leading bytes of a file are inspected (at most ``SNIFF_BYTES``),
mirroring what browsers and HTTP servers do; file names and client-supplied
content types are ignored.
"""

from __future__ import annotations

from crosspost.publish.errors import UnsupportedMediaError
from crosspost.publish.models import ContainerMediaType, MediaCategory

SNIFF_BYTES = 512
OCTET_STREAM = "application/octet-stream"

_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
]

_TWITTER_CATEGORIES = {
    "image/gif": MediaCategory.GIF,
    "video/mp4": MediaCategory.VIDEO,
    "image/jpeg": MediaCategory.IMAGE,
    "image/png": MediaCategory.IMAGE,
}


def _sniff_iso_media(head: bytes) -> str | None:
    """Recognise an ISO base media file (``ftyp`` box) and pick MP4 vs MOV."""
    if len(head) < 12 or head[4:8] != b"ftyp":
        return None
    box_size = int.from_bytes(head[:4], "big")
    if box_size < 12 or box_size % 4 != 0:
        return None
    major_brand = head[8:12]
    if major_brand == b"qt  ":
        return "video/quicktime"
    # Compatible brands follow the 4-byte minor version at offset 12.
    brands = [major_brand] + [
        head[i : i + 4] for i in range(16, min(box_size, len(head)), 4)
    ]
    if any(b.startswith(b"mp4") or b in (b"isom", b"iso2", b"avc1", b"M4V ") for b in brands):
        return "video/mp4"
    return None


def sniff_mime_type(data: bytes) -> str:
    """Return the MIME type detected from the first bytes of *data*."""
    head = data[:SNIFF_BYTES]
    for magic, mime in _SIGNATURES:
        if head.startswith(magic):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return _sniff_iso_media(head) or OCTET_STREAM


def twitter_category(mime_type: str) -> MediaCategory:
    """
    Map a MIME type onto an X media category.

    Raises UnsupportedMediaError for anything X's chunked endpoint does not take.
    """
    try:
        return _TWITTER_CATEGORIES[mime_type]
    except KeyError:
        raise UnsupportedMediaError(f"Unsupported media type for X: {mime_type}") from None


def instagram_media_type(mime_type: str, *, carousel_item: bool) -> ContainerMediaType:
    """
    Map a MIME type onto an Instagram container media type.

    Standalone videos are published as reels; videos inside a carousel keep
    the generic VIDEO designation.
    """
    if mime_type.startswith("image/"):
        return ContainerMediaType.IMAGE
    if mime_type.startswith("video/"):
        return ContainerMediaType.VIDEO if carousel_item else ContainerMediaType.REELS
    raise UnsupportedMediaError(f"Unsupported media type for Instagram: {mime_type}")
