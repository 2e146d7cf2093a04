"""
Instagram Graph API publishing.

Docs: https://developers.facebook.com/docs/instagram-platform/content-publishing
Rate limits: posts per 24-hour period, reported by content_publishing_limit

Flow (single image / reel):
  0. GET  /{ig_id}/content_publishing_limit     → refuse if quota used up
  1. POST /{ig_id}/media                         → container_id
  2. GET  /{container_id}?fields=status_code     until FINISHED
  3. POST /{ig_id}/media_publish                 → post_id

Flow (carousel — up to 10 items):
  0. quota check
  1. POST /{ig_id}/media for each file (is_carousel_item=true)  → child_ids
  2. wait for every child to be FINISHED
  3. POST /{ig_id}/media with CAROUSEL + children=[child_ids]    → parent_id
     (retried while the Graph API flags the error as transient)
  4. wait for the parent to be FINISHED
  5. POST /{ig_id}/media_publish with creation_id=parent_id      → post_id

Media bytes are staged through a ``MediaStager`` first, since the Graph API
only fetches media from public URLs.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Optional, Sequence

import httpx

from crosspost.publish.errors import (
    CredentialsNotFoundError,
    InvalidPostError,
    NoMediaError,
    ProcessingFailedError,
    ProtocolError,
    QuotaExceededError,
    TransientError,
)
from crosspost.publish.media import instagram_media_type, sniff_mime_type
from crosspost.publish.models import (
    CarouselContainer,
    ContainerMediaType,
    ContainerStatus,
    Credentials,
    MediaContainer,
    MediaFile,
    Platform,
    PublishQuota,
    PublishResult,
)
from crosspost.publish.polling import Backoff, Clock, Sleep, poll_until, retry_transient

if TYPE_CHECKING:
    from crosspost.storage.staging import MediaStager

logger = logging.getLogger(__name__)

CAROUSEL_MAX = 10
CAPTION_MAX = 2200

READY_BACKOFF = Backoff(initial=2.0, factor=2.0, maximum=10.0)
READY_TIMEOUT = 2 * 60
CAROUSEL_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Graph API client
# ---------------------------------------------------------------------------


class InstagramGraphClient:
    """
    Thin async wrapper around the Instagram Content Publishing endpoints for
    one account.
    """

    def __init__(
        self,
        credentials: Credentials,
        http: httpx.AsyncClient,
        *,
        base_url: str = "https://graph.instagram.com/v24.0",
    ) -> None:
        if not credentials.token or not credentials.account_id:
            raise CredentialsNotFoundError("Instagram account not linked or account id missing")
        self.token = credentials.token
        self.account_id = credentials.account_id
        self._http = http
        self._base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(resp: httpx.Response, step: str) -> dict:
        """Return the JSON body, raising on any Graph API error."""
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.is_success and "error" not in body:
            return body

        error = body.get("error")
        if not isinstance(error, dict):
            # Some edges answer with a bare string instead of an error object.
            error = {"message": error} if isinstance(error, str) else {}
        msg = error.get("message") or resp.text or f"HTTP {resp.status_code}"
        error_cls = TransientError if error.get("is_transient") else ProtocolError
        raise error_cls(
            f"{step} failed: {msg}",
            status_code=resp.status_code,
            code=error.get("code"),
            body=resp.text,
        )

    async def _post(self, path: str, data: dict, *, step: str) -> dict:
        """POST to the Graph API and return parsed JSON, raising on error."""
        data["access_token"] = self.token
        try:
            resp = await self._http.post(f"{self._base_url}{path}", data=data)
        except httpx.HTTPError as exc:
            raise ProtocolError(f"{step} request failed: {exc}") from exc
        return self._parse(resp, step)

    async def _get(self, path: str, params: dict, *, step: str) -> dict:
        params["access_token"] = self.token
        try:
            resp = await self._http.get(f"{self._base_url}{path}", params=params)
        except httpx.HTTPError as exc:
            raise ProtocolError(f"{step} request failed: {exc}") from exc
        return self._parse(resp, step)

    @staticmethod
    def _id(body: dict, step: str) -> str:
        value = body.get("id")
        if not value:
            raise ProtocolError(f"{step} response did not contain an id")
        return str(value)

    # ------------------------------------------------------------------
    # Quota / account
    # ------------------------------------------------------------------

    async def get_publishing_limit(self) -> PublishQuota:
        body = await self._get(
            f"/{self.account_id}/content_publishing_limit",
            {"fields": "quota_usage,config"},
            step="content_publishing_limit",
        )
        data = body.get("data")
        entry = data[0] if isinstance(data, list) and data else body
        if not isinstance(entry, dict) or not isinstance(entry.get("config"), dict):
            raise ProtocolError(f"Malformed publishing limit response: {body!r}")
        try:
            return PublishQuota(
                quota_usage=int(entry.get("quota_usage") or 0),
                quota_total=int(entry["config"]["quota_total"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"Malformed publishing limit response: {body!r}") from exc

    async def check_token(self) -> bool:
        """Return True if the token can still read the account profile."""
        try:
            await self._get("/me", {"fields": "id"}, step="me")
        except ProtocolError:
            return False
        return True

    # ------------------------------------------------------------------
    # Container creation
    # ------------------------------------------------------------------

    async def create_container(
        self,
        media_url: str,
        media_type: ContainerMediaType,
        caption: str = "",
        *,
        is_carousel_item: bool = False,
    ) -> MediaContainer:
        """
        Create a single-media container.

        Carousel items get ``is_carousel_item`` and never a caption.
        """
        payload: dict = {}
        if media_type is ContainerMediaType.IMAGE:
            payload["image_url"] = media_url
        else:
            payload["video_url"] = media_url
            payload["media_type"] = media_type.value
        if is_carousel_item:
            payload["is_carousel_item"] = "true"
        elif caption:
            payload["caption"] = caption

        body = await self._post(f"/{self.account_id}/media", payload, step="container create")
        container_id = self._id(body, "container create")
        logger.info("Created %s container: %s", media_type.value, container_id)
        return MediaContainer(
            container_id=container_id,
            media_url=media_url,
            media_type=media_type,
            is_carousel_child=is_carousel_item,
        )

    async def create_carousel_container(
        self,
        children: Sequence[MediaContainer],
        caption: str = "",
    ) -> CarouselContainer:
        """
        Create a carousel parent container from finished child containers.
        """
        for child in children:
            if not child.is_carousel_child or child.status is not ContainerStatus.FINISHED:
                raise ProtocolError(
                    f"Container {child.container_id} is not a finished carousel item"
                )
        child_ids = [c.container_id for c in children]
        payload = {"media_type": "CAROUSEL", "children": ",".join(child_ids)}
        if caption:
            payload["caption"] = caption
        body = await self._post(f"/{self.account_id}/media", payload, step="carousel create")
        container_id = self._id(body, "carousel create")
        logger.info("Created carousel container: %s (%d children)", container_id, len(child_ids))
        return CarouselContainer(container_id=container_id, child_container_ids=child_ids)

    async def container_status(self, container_id: str) -> ContainerStatus:
        body = await self._get(
            f"/{container_id}", {"fields": "status_code,status"}, step="container status"
        )
        try:
            status = ContainerStatus(body.get("status_code", ""))
        except ValueError:
            raise ProtocolError(
                f"Unknown status for container {container_id}: {body.get('status_code')!r}"
            ) from None
        logger.debug("Container %s: %s", container_id, status.value)
        return status

    async def publish_container(self, container_id: str) -> str:
        """
        Publish a finished container.

        Returns the media_id (the published post's ID).
        """
        body = await self._post(
            f"/{self.account_id}/media_publish",
            {"creation_id": container_id},
            step="media publish",
        )
        post_id = self._id(body, "media publish")
        logger.info("Published container %s → post %s", container_id, post_id)
        return post_id


# ---------------------------------------------------------------------------
# Container coordinator
# ---------------------------------------------------------------------------


class InstagramPublisher:
    """
    Turn one or more media files plus a caption into a single Instagram post.

    Usage::

        async with InstagramPublisher(R2MediaStager()) as publisher:
            result = await publisher.publish(credentials, "caption", files)
    """

    platform = Platform.INSTAGRAM

    def __init__(
        self,
        stager: MediaStager,
        http: Optional[httpx.AsyncClient] = None,
        *,
        base_url: Optional[str] = None,
        ready_backoff: Backoff = READY_BACKOFF,
        ready_timeout: float = READY_TIMEOUT,
        carousel_attempts: int = CAROUSEL_ATTEMPTS,
        sleep: Optional[Sleep] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        from config.settings import settings

        self._stager = stager
        self._http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self._base_url = base_url or settings.instagram_graph_base
        self.ready_backoff = ready_backoff
        self.ready_timeout = ready_timeout
        self.carousel_attempts = carousel_attempts
        self._sleep = sleep
        self._clock = clock

    def graph(self, credentials: Credentials) -> InstagramGraphClient:
        return InstagramGraphClient(credentials, self._http, base_url=self._base_url)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _create_container(
        self,
        graph: InstagramGraphClient,
        media: MediaFile,
        caption: str,
        *,
        carousel_item: bool,
    ) -> MediaContainer:
        mime_type = sniff_mime_type(media.data)
        media_type = instagram_media_type(mime_type, carousel_item=carousel_item)
        media_url = await self._stager.store(media.data, media.filename, mime_type)
        return await graph.create_container(
            media_url, media_type, caption, is_carousel_item=carousel_item
        )

    async def wait_until_ready(
        self, graph: InstagramGraphClient, container_id: str
    ) -> ContainerStatus:
        """
        Poll a container until FINISHED.

        ERROR / EXPIRED are fatal; running past ``ready_timeout`` raises
        PublishTimeoutError.
        """
        status = await poll_until(
            lambda: graph.container_status(container_id),
            lambda s: s is not ContainerStatus.IN_PROGRESS,
            backoff=self.ready_backoff,
            timeout=self.ready_timeout,
            sleep=self._sleep,
            clock=self._clock,
            what=f"Instagram container {container_id}",
        )
        if status is not ContainerStatus.FINISHED:
            raise ProcessingFailedError(f"Container {container_id} ended in {status.value}")
        return status

    async def _create_carousel(
        self,
        graph: InstagramGraphClient,
        children: Sequence[MediaContainer],
        caption: str,
    ) -> CarouselContainer:
        return await retry_transient(
            lambda: graph.create_carousel_container(children, caption),
            backoff=self.ready_backoff,
            attempts=self.carousel_attempts,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    @staticmethod
    def validate(caption: str, files: Sequence[MediaFile]) -> None:
        if not files:
            raise NoMediaError("Instagram posts need at least one image or video.")
        if len(files) > CAROUSEL_MAX:
            raise InvalidPostError(
                f"Instagram carousels support at most {CAROUSEL_MAX} items (got {len(files)})."
            )
        if len(caption) > CAPTION_MAX:
            raise InvalidPostError(
                f"Caption is {len(caption)} characters (max {CAPTION_MAX})."
            )

    async def publish(
        self, credentials: Credentials, caption: str, files: Sequence[MediaFile]
    ) -> PublishResult:
        self.validate(caption, files)
        graph = self.graph(credentials)

        quota = await graph.get_publishing_limit()
        if quota.exhausted:
            raise QuotaExceededError(
                f"Publishing limit reached ({quota.quota_usage}/{quota.quota_total})"
            )

        if len(files) == 1:
            container = await self._create_container(graph, files[0], caption, carousel_item=False)
            container.status = await self.wait_until_ready(graph, container.container_id)
            target_id = container.container_id
        else:
            children = [
                await self._create_container(graph, media, "", carousel_item=True)
                for media in files
            ]
            for child in children:
                child.status = await self.wait_until_ready(graph, child.container_id)
            carousel = await self._create_carousel(graph, children, caption)
            carousel.status = await self.wait_until_ready(graph, carousel.container_id)
            target_id = carousel.container_id

        post_id = await graph.publish_container(target_id)
        return PublishResult.ok(Platform.INSTAGRAM, post_id)

    async def check_credentials(self, credentials: Credentials) -> bool:
        return await self.graph(credentials).check_token()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "InstagramPublisher":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
