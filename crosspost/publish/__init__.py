"""
Publishing package — X/Twitter chunked upload, Instagram containers, dispatcher.
"""

from crosspost.publish.dispatcher import PublishDispatcher, Publisher, default_dispatcher
from crosspost.publish.errors import ErrorKind, PublishError
from crosspost.publish.instagram import InstagramGraphClient, InstagramPublisher
from crosspost.publish.models import Credentials, MediaFile, Platform, PublishResult
from crosspost.publish.twitter import ChunkedUploader, TwitterPublisher

__all__ = [
    "PublishDispatcher",
    "Publisher",
    "default_dispatcher",
    "ErrorKind",
    "PublishError",
    "InstagramGraphClient",
    "InstagramPublisher",
    "ChunkedUploader",
    "TwitterPublisher",
    "Credentials",
    "MediaFile",
    "Platform",
    "PublishResult",
]
