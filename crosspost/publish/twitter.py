"""
X/Twitter publishing: chunked media upload (API v2) + tweet creation via Tweepy.

Docs: https://docs.x.com/x-api/media/quickstart/media-upload-chunked

Flow (per media file):
  1. POST /2/media/upload/initialize            → media_id
  2. POST /2/media/upload/{media_id}/append     (multipart, ≤ 4 MiB per segment)
  3. POST /2/media/upload/{media_id}/finalize   → optional processing_info
  4. GET  /2/media/upload?command=STATUS        (video / gif only, until succeeded)

Then one POST /2/tweets with ``media.media_ids``.

Requests are signed with OAuth 1.0a: the app consumer pair comes from
settings, the user token pair from ``Credentials``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Generator, Optional, Sequence

import httpx
import tweepy
from oauthlib import oauth1

from crosspost.publish.errors import (
    CredentialsNotFoundError,
    InvalidPostError,
    ProcessingFailedError,
    ProtocolError,
)
from crosspost.publish.fanout import upload_all
from crosspost.publish.media import sniff_mime_type, twitter_category
from crosspost.publish.models import (
    Credentials,
    MediaCategory,
    MediaFile,
    Platform,
    ProcessingState,
    ProcessingStatus,
    PublishResult,
    SessionState,
    UploadSession,
)
from crosspost.publish.polling import Backoff, Clock, Sleep, poll_until

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 4 * 1024 * 1024
MIN_CHECK_DELAY = 5
PROCESSING_TIMEOUT = 5 * 60

TWEET_MAX_CHARS = 280
TWEET_MAX_MEDIA = 4

_APPEND_OK = (200, 204)
_FINALIZE_OK = (200, 204)


# ---------------------------------------------------------------------------
# OAuth 1.0a request signing for httpx
# ---------------------------------------------------------------------------


class OAuth1Auth(httpx.Auth):
    """
    Sign each request with an OAuth 1.0a ``Authorization`` header.

    Bodies are JSON or multipart, so only the URL and its query string
    take part in the signature.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        token: str,
        token_secret: str,
    ) -> None:
        self._signer = oauth1.Client(
            consumer_key,
            client_secret=consumer_secret,
            resource_owner_key=token,
            resource_owner_secret=token_secret,
        )

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        _, headers, _ = self._signer.sign(str(request.url), http_method=request.method)
        request.headers["Authorization"] = headers["Authorization"]
        yield request


# ---------------------------------------------------------------------------
# Chunked upload coordinator
# ---------------------------------------------------------------------------


class ChunkedUploader:
    """
    Drives INIT → APPEND → FINALIZE → STATUS for one file at a time.

    Holds no per-upload state, so one instance may serve several concurrent
    uploads; each upload owns its ``UploadSession``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: httpx.Auth,
        *,
        base_url: str = "https://api.x.com",
        chunk_size: int = MAX_CHUNK_SIZE,
        min_check_delay: float = MIN_CHECK_DELAY,
        processing_timeout: float = PROCESSING_TIMEOUT,
        sleep: Optional[Sleep] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if chunk_size <= 0 or chunk_size > MAX_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be in 1..{MAX_CHUNK_SIZE}")
        self._http = http
        self._auth = auth
        self._base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        self.min_check_delay = min_check_delay
        self.processing_timeout = processing_timeout
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        step: str,
        ok: tuple[int, ...] = (200,),
        **kwargs: object,
    ) -> httpx.Response:
        try:
            resp = await self._http.request(
                method, f"{self._base_url}{path}", auth=self._auth, **kwargs  # type: ignore[arg-type]
            )
        except httpx.HTTPError as exc:
            raise ProtocolError(f"{step} request failed: {exc}") from exc
        if resp.status_code not in ok:
            logger.error("X API error on %s: status=%d body=%s", step, resp.status_code, resp.text)
            raise ProtocolError(
                f"Bad status on {step}: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response, step: str) -> dict:
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as exc:
            raise ProtocolError(f"Unparseable {step} response", body=resp.text) from exc
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _data(resp: httpx.Response, step: str) -> dict:
        """The ``data`` object of a response body (empty when absent)."""
        data = ChunkedUploader._json(resp, step).get("data") or {}
        if not isinstance(data, dict):
            raise ProtocolError(f"Malformed {step} response: data is not an object", body=resp.text)
        return data

    # ------------------------------------------------------------------
    # Protocol steps
    # ------------------------------------------------------------------

    async def init_upload(
        self, data: bytes, mime_type: str, category: MediaCategory
    ) -> UploadSession:
        """Declare size, type and category; return a fresh session."""
        resp = await self._request(
            "POST",
            "/2/media/upload/initialize",
            step="INIT",
            json={
                "total_bytes": len(data),
                "media_type": mime_type,
                "media_category": category.wire,
            },
        )
        media_id = self._data(resp, "INIT").get("id")
        if not media_id:
            raise ProtocolError("INIT response did not contain a media id", body=resp.text)
        logger.info("INIT %s (%s, %d bytes) → media %s", mime_type, category.wire, len(data), media_id)
        return UploadSession(
            media_id=str(media_id),
            total_bytes=len(data),
            media_type=mime_type,
            category=category,
        )

    async def append_upload(
        self, session: UploadSession, chunk: bytes, segment_index: int
    ) -> int:
        """Send one segment; return the accepted status code."""
        session.record_append(segment_index, len(chunk))
        resp = await self._request(
            "POST",
            f"/2/media/upload/{session.media_id}/append",
            step=f"APPEND[{segment_index}]",
            ok=_APPEND_OK,
            data={"segment_index": str(segment_index)},
            files={"media": ("media.bin", chunk, "application/octet-stream")},
        )
        logger.debug(
            "APPEND media %s segment %d (%d bytes)", session.media_id, segment_index, len(chunk)
        )
        return resp.status_code

    async def finalize_upload(self, session: UploadSession) -> Optional[ProcessingStatus]:
        """
        Seal the session.

        Returns the ``processing_info`` reported by FINALIZE, if any; the
        processing wait uses it only for its suggested delay.  A session that
        was already finalized is refused without a request.
        """
        session.seal()
        resp = await self._request(
            "POST",
            f"/2/media/upload/{session.media_id}/finalize",
            step="FINALIZE",
            ok=_FINALIZE_OK,
        )
        logger.info("FINALIZE media %s (%d segments)", session.media_id, len(session.segments))
        info = self._data(resp, "FINALIZE").get("processing_info")
        return ProcessingStatus.from_payload(info) if info else None

    async def poll_status(self, media_id: str) -> ProcessingStatus:
        resp = await self._request(
            "GET",
            "/2/media/upload",
            step="STATUS",
            params={"command": "STATUS", "media_id": media_id},
        )
        body = self._json(resp, "STATUS")
        info = self._data(resp, "STATUS").get("processing_info")
        if not info:
            raise ProtocolError(f"STATUS response for {media_id} has no processing_info", body=resp.text)
        error = body.get("error")
        status = ProcessingStatus.from_payload(info, error if isinstance(error, dict) else None)
        logger.debug(
            "Media %s processing: %s (%d%%)", media_id, status.state.value, status.progress_percent
        )
        return status

    async def wait_for_processing(
        self,
        session: UploadSession,
        first_status: Optional[ProcessingStatus] = None,
    ) -> ProcessingStatus:
        """
        Poll STATUS until a terminal state, honouring ``check_after_secs``.

        STATUS is always queried at least once, after at least
        ``min_check_delay``.  The status FINALIZE reported only stretches that
        first delay; its state is not trusted.  ``failed`` raises
        ProcessingFailedError and is never retried.
        """
        first_delay = first_status.next_check_delay_seconds if first_status else 0
        session.state = SessionState.PROCESSING

        status = await poll_until(
            lambda: self.poll_status(session.media_id),
            lambda s: s.is_terminal,
            backoff=Backoff(self.min_check_delay, factor=1.0, minimum=self.min_check_delay),
            timeout=self.processing_timeout,
            delay_hint=lambda s: s.next_check_delay_seconds,
            initial_delay=max(self.min_check_delay, first_delay),
            sleep=self._sleep,
            clock=self._clock,
            what=f"X media {session.media_id} processing",
        )

        if status.state is ProcessingState.FAILED:
            session.state = SessionState.FAILED
            raise ProcessingFailedError(
                f"Media {session.media_id} processing failed: "
                f"{status.error_message or 'no reason given'}"
            )
        session.state = SessionState.READY
        logger.info("Media %s processed", session.media_id)
        return status

    # ------------------------------------------------------------------
    # Whole upload
    # ------------------------------------------------------------------

    async def upload(self, media: MediaFile) -> str:
        """Upload one file end to end and return its media id."""
        mime_type = sniff_mime_type(media.data)
        category = twitter_category(mime_type)

        session = await self.init_upload(media.data, mime_type, category)
        for index, offset in enumerate(range(0, media.size, self.chunk_size)):
            await self.append_upload(session, media.data[offset : offset + self.chunk_size], index)

        first_status = await self.finalize_upload(session)
        if category.needs_processing:
            await self.wait_for_processing(session, first_status)
        else:
            session.state = SessionState.READY
        return session.media_id


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class TwitterPublisher:
    """
    Publish a post to X: upload every file concurrently, then create the tweet.

    Usage::

        async with TwitterPublisher() as publisher:
            result = await publisher.publish(credentials, "hello", [MediaFile("a.jpg", data)])
    """

    platform = Platform.TWITTER

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        *,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        chunk_size: int = MAX_CHUNK_SIZE,
        processing_timeout: float = PROCESSING_TIMEOUT,
        sleep: Optional[Sleep] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        from config.settings import settings

        self._api_key = api_key or settings.twitter_api_key
        self._api_secret = api_secret or settings.twitter_api_secret
        self._base_url = base_url or settings.twitter_api_base
        self._http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self._chunk_size = chunk_size
        self._processing_timeout = processing_timeout
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Per-credential helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _token_pair(credentials: Credentials) -> tuple[str, str]:
        if not credentials.token or not credentials.secret:
            raise CredentialsNotFoundError("X account not linked or token pair incomplete")
        return credentials.token, credentials.secret

    def uploader(self, credentials: Credentials) -> ChunkedUploader:
        token, secret = self._token_pair(credentials)
        return ChunkedUploader(
            self._http,
            OAuth1Auth(self._api_key, self._api_secret, token, secret),
            base_url=self._base_url,
            chunk_size=self._chunk_size,
            processing_timeout=self._processing_timeout,
            sleep=self._sleep,
            clock=self._clock,
        )

    def _tweepy_client(self, credentials: Credentials) -> tweepy.Client:
        token, secret = self._token_pair(credentials)
        return tweepy.Client(
            consumer_key=self._api_key,
            consumer_secret=self._api_secret,
            access_token=token,
            access_token_secret=secret,
        )

    def _tweepy_api(self, credentials: Credentials) -> tweepy.API:
        token, secret = self._token_pair(credentials)
        auth = tweepy.OAuth1UserHandler(self._api_key, self._api_secret, token, secret)
        return tweepy.API(auth)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(text: str, files: Sequence[MediaFile]) -> None:
        """
        Reject posts X would refuse, before any network call.

        Files whose type X does not take are left for the upload step to
        report as UnsupportedMediaError.
        """
        if len(text) > TWEET_MAX_CHARS:
            raise InvalidPostError(
                f"Tweet text is {len(text)} characters (max {TWEET_MAX_CHARS})."
            )
        if len(files) > TWEET_MAX_MEDIA:
            raise InvalidPostError(
                f"A tweet takes at most {TWEET_MAX_MEDIA} media files (got {len(files)})."
            )

    # ------------------------------------------------------------------
    # Tweet
    # ------------------------------------------------------------------

    async def create_tweet(
        self, credentials: Credentials, text: str, media_ids: Sequence[str] = ()
    ) -> str:
        """Create the tweet and return its id."""
        client = self._tweepy_client(credentials)
        kwargs: dict = {"text": text or None}
        if media_ids:
            kwargs["media_ids"] = list(media_ids)
        try:
            response = await asyncio.to_thread(client.create_tweet, **kwargs)
        except tweepy.HTTPException as exc:
            raise ProtocolError(
                f"Tweet creation failed: {exc}",
                status_code=exc.response.status_code if exc.response is not None else None,
            ) from exc
        except tweepy.TweepyException as exc:
            raise ProtocolError(f"Tweet creation failed: {exc}") from exc

        data = getattr(response, "data", None)
        if not isinstance(data, dict) or not data.get("id"):
            raise ProtocolError(f"Tweet creation returned no tweet id: {data!r}")
        tweet_id = str(data["id"])
        logger.info("Posted tweet %s (%d media)", tweet_id, len(media_ids))
        return tweet_id

    async def publish(
        self, credentials: Credentials, caption: str, files: Sequence[MediaFile]
    ) -> PublishResult:
        """
        Upload all media, then tweet.

        If any upload fails the error propagates and no tweet is created.
        """
        self.validate(caption, files)
        media_ids: list[str] = []
        if files:
            media_ids = await upload_all(self.uploader(credentials), files)
            logger.info("Uploaded %d media: %s", len(media_ids), media_ids)
        tweet_id = await self.create_tweet(credentials, caption, media_ids)
        return PublishResult.ok(Platform.TWITTER, tweet_id, media_ids)

    async def check_credentials(self, credentials: Credentials) -> bool:
        """Return True if X still accepts the user's token pair."""
        api = self._tweepy_api(credentials)
        try:
            await asyncio.to_thread(api.verify_credentials)
        except tweepy.Unauthorized:
            return False
        except tweepy.TweepyException as exc:
            raise ProtocolError(f"Credential check failed: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "TwitterPublisher":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
