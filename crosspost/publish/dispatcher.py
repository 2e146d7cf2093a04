"""
Platform publish dispatcher — the single entry point of the pipeline.

Routes a post to the publisher registered for its platform and turns every
pipeline error into a failed ``PublishResult``.  Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Mapping, Optional, Protocol, Sequence

from crosspost.publish.errors import (
    CredentialsNotFoundError,
    InvalidPostError,
    PublishError,
    UnsupportedPlatformError,
)
from crosspost.publish.models import Credentials, MediaFile, Platform, PublishResult

if TYPE_CHECKING:
    from crosspost.storage.credentials import CredentialProvider

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    """One platform's publish implementation."""

    platform: Platform

    async def publish(
        self, credentials: Credentials, caption: str, files: Sequence[MediaFile]
    ) -> PublishResult: ...

    async def check_credentials(self, credentials: Credentials) -> bool: ...

    async def aclose(self) -> None: ...


class PublishDispatcher:
    """
    Usage::

        async with default_dispatcher() as dispatcher:
            result = await dispatcher.publish("twitter", credentials, "hello", files)
            if not result.success:
                print(result.error, result.message)
    """

    def __init__(
        self,
        publishers: Mapping[Platform, Publisher] | Sequence[Publisher],
        credential_provider: Optional[CredentialProvider] = None,
    ) -> None:
        if isinstance(publishers, Mapping):
            self._publishers = dict(publishers)
        else:
            self._publishers = {p.platform: p for p in publishers}
        self._credentials = credential_provider

    def publisher_for(self, platform: Platform) -> Publisher:
        try:
            return self._publishers[platform]
        except KeyError:
            raise UnsupportedPlatformError(
                f"No publisher registered for {platform.value}"
            ) from None

    async def _run(
        self,
        platform: "str | Platform",
        credentials: Optional[Credentials],
        caption: str,
        files: Sequence[MediaFile],
        *,
        user_id: Optional[str] = None,
    ) -> PublishResult:
        caption = caption or ""
        target = Platform.parse(platform)
        if not caption.strip() and not files:
            raise InvalidPostError("Nothing to publish: no caption and no media.")
        publisher = self.publisher_for(target)

        if credentials is None:
            if self._credentials is None or user_id is None:
                raise CredentialsNotFoundError("No credential provider configured")
            credentials = await asyncio.to_thread(
                self._credentials.get_credentials, user_id, target
            )
        elif credentials.is_expired:
            raise CredentialsNotFoundError(f"{target.value} credentials have expired")

        logger.info("Publishing to %s: %d file(s), %d-char caption", target.value, len(files), len(caption))
        result = await publisher.publish(credentials, caption, files)
        logger.info("Published to %s: post %s", target.value, result.platform_post_id)
        return result

    @staticmethod
    def _failed(platform: "str | Platform", exc: PublishError) -> PublishResult:
        try:
            target: Optional[Platform] = Platform.parse(platform)
        except UnsupportedPlatformError:
            target = None
        name = target.value if target else str(platform)
        logger.error("Publish to %s failed (%s): %s", name, exc.kind.value, exc)
        return PublishResult.failed(target, exc.kind, str(exc))

    async def publish(
        self,
        platform: "str | Platform",
        credentials: Credentials,
        caption: str,
        files: Sequence[MediaFile] = (),
    ) -> PublishResult:
        """
        Publish *caption* and *files* to *platform* with explicit credentials.

        Never raises a ``PublishError``: failures come back as
        ``PublishResult(success=False, error=<kind>, message=...)``.
        """
        try:
            return await self._run(platform, credentials, caption, files)
        except PublishError as exc:
            return self._failed(platform, exc)

    async def publish_for_user(
        self,
        user_id: str,
        platform: "str | Platform",
        caption: str,
        files: Sequence[MediaFile] = (),
    ) -> PublishResult:
        """Like ``publish``, resolving credentials through the provider."""
        try:
            return await self._run(platform, None, caption, files, user_id=user_id)
        except PublishError as exc:
            return self._failed(platform, exc)

    async def check_credentials(
        self, platform: "str | Platform", credentials: Credentials
    ) -> bool:
        """Ask the platform whether *credentials* are still accepted."""
        target = Platform.parse(platform)
        if credentials.is_expired:
            return False
        return await self.publisher_for(target).check_credentials(credentials)

    async def aclose(self) -> None:
        for publisher in self._publishers.values():
            await publisher.aclose()

    async def __aenter__(self) -> "PublishDispatcher":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def default_dispatcher() -> PublishDispatcher:
    """Dispatcher wired from settings: X, Instagram via R2, SQLite credential store."""
    from config.settings import settings
    from crosspost.publish.instagram import InstagramPublisher
    from crosspost.publish.twitter import TwitterPublisher
    from crosspost.storage.credentials import CredentialStore
    from crosspost.storage.staging import R2MediaStager

    return PublishDispatcher(
        [TwitterPublisher(), InstagramPublisher(R2MediaStager())],
        credential_provider=CredentialStore(settings.credentials_db),
    )
