"""
Concurrent media upload fan-out for X.

One asyncio task per file, all started together.  The caller gets either
every media id, in input order, or the first failure observed.  A failure
does not cancel the other uploads: they run to completion before the error
is raised, and nothing they uploaded is cleaned up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Sequence

from crosspost.publish.errors import ProtocolError
from crosspost.publish.models import MediaFile

if TYPE_CHECKING:
    from crosspost.publish.twitter import ChunkedUploader

logger = logging.getLogger(__name__)


async def _upload_one(
    uploader: "ChunkedUploader", index: int, media: MediaFile
) -> tuple[int, str]:
    media_id = await uploader.upload(media)
    return index, media_id


async def upload_all(uploader: "ChunkedUploader", files: Sequence[MediaFile]) -> list[str]:
    """
    Upload *files* concurrently and return their media ids in input order.

    Raises the first exception any upload raised, after all uploads have
    finished.  Never returns a partial list.
    """
    if not files:
        return []

    tasks = [
        asyncio.create_task(_upload_one(uploader, i, media), name=f"x-upload-{i}")
        for i, media in enumerate(files)
    ]
    slots: list[Optional[str]] = [None] * len(files)
    first_error: Optional[Exception] = None

    for finished in asyncio.as_completed(tasks):
        try:
            index, media_id = await finished
        except Exception as exc:
            if first_error is None:
                first_error = exc
                logger.warning("Media upload failed, waiting for %d sibling(s): %s", len(files) - 1, exc)
            continue
        slots[index] = media_id

    if first_error is not None:
        raise first_error

    media_ids = [media_id for media_id in slots if media_id is not None]
    if len(media_ids) != len(files):
        raise ProtocolError(
            f"Only {len(media_ids)} of {len(files)} media files were uploaded"
        )
    return media_ids
