"""
SQLite-backed credential store — one linked account per user and platform.

Table: accounts
  id          TEXT PK  (user_id:platform)
  user_id     TEXT
  platform    TEXT  (twitter | instagram)
  token       TEXT  (X access token / Instagram long-lived token)
  secret      TEXT  (X access secret; empty for Instagram)
  account_id  TEXT  (Instagram business user id; empty for X)
  expires_at  TEXT  (ISO 8601, UTC; empty when the token does not expire)
  linked_at   TEXT
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Optional, Protocol

import sqlite_utils
from pydantic import BaseModel, Field, model_validator

from crosspost.publish.errors import CredentialsNotFoundError
from crosspost.publish.models import Credentials, Platform

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Resolve a user's credentials for one platform."""

    def get_credentials(self, user_id: str, platform: Platform) -> Credentials: ...


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


class LinkedAccount(BaseModel):
    """A platform account linked to a local user."""

    user_id: str
    platform: Platform
    token: str
    secret: str = ""
    account_id: str = ""
    expires_at: Optional[dt.datetime] = None
    linked_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    @model_validator(mode="after")
    def _check_platform_fields(self) -> "LinkedAccount":
        if not self.token:
            raise ValueError("token is required")
        if self.platform is Platform.TWITTER and not self.secret:
            raise ValueError("X accounts need both an access token and an access secret")
        if self.platform is Platform.INSTAGRAM and not self.account_id:
            raise ValueError("Instagram accounts need the business account id")
        return self

    @property
    def id(self) -> str:
        return f"{self.user_id}:{self.platform.value}"

    def to_credentials(self) -> Credentials:
        return Credentials(
            token=self.token,
            secret=self.secret or None,
            account_id=self.account_id or None,
            expires_at=self.expires_at,
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CredentialStore:
    """
    Persistent ``CredentialProvider``.

    Usage::

        store = CredentialStore(Path("data/credentials.db"))
        store.link("alice", Platform.TWITTER, token="...", secret="...")
        creds = store.get_credentials("alice", Platform.TWITTER)
    """

    TABLE = "accounts"

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite_utils.Database(db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        if self.TABLE not in self._db.table_names():
            self._db[self.TABLE].create(
                {
                    "id": str,
                    "user_id": str,
                    "platform": str,
                    "token": str,
                    "secret": str,
                    "account_id": str,
                    "expires_at": str,
                    "linked_at": str,
                },
                pk="id",
            )
            self._db[self.TABLE].create_index(["user_id"])

    # ------------------------------------------------------------------
    # Link / unlink
    # ------------------------------------------------------------------

    def link(
        self,
        user_id: str,
        platform: Platform,
        token: str,
        *,
        secret: str = "",
        account_id: str = "",
        expires_at: Optional[dt.datetime] = None,
    ) -> LinkedAccount:
        """Create or replace the user's link for *platform*."""
        account = LinkedAccount(
            user_id=user_id,
            platform=platform,
            token=token,
            secret=secret,
            account_id=account_id,
            expires_at=expires_at,
            linked_at=dt.datetime.now(dt.timezone.utc),
        )
        self._db[self.TABLE].insert(self._to_row(account), replace=True)
        logger.info("Linked %s account for user %s", platform.value, user_id)
        return account

    def unlink(self, user_id: str, platform: Platform) -> bool:
        """Remove a link. Returns True if one existed."""
        key = f"{user_id}:{platform.value}"
        try:
            self._db[self.TABLE].get(key)
        except sqlite_utils.db.NotFoundError:
            return False
        self._db[self.TABLE].delete(key)
        logger.info("Unlinked %s account for user %s", platform.value, user_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, user_id: str, platform: Platform) -> Optional[LinkedAccount]:
        try:
            row = self._db[self.TABLE].get(f"{user_id}:{platform.value}")
        except sqlite_utils.db.NotFoundError:
            return None
        return self._from_row(row)

    def get_credentials(self, user_id: str, platform: Platform) -> Credentials:
        """
        Return usable credentials or raise CredentialsNotFoundError when the
        account is not linked or its token has expired.
        """
        account = self.get(user_id, platform)
        if account is None:
            raise CredentialsNotFoundError(
                f"No {platform.value} account linked for user {user_id!r}"
            )
        credentials = account.to_credentials()
        if credentials.is_expired:
            raise CredentialsNotFoundError(
                f"{platform.value} token for user {user_id!r} expired at "
                f"{account.expires_at.isoformat() if account.expires_at else '?'}"
            )
        return credentials

    def list_links(self, user_id: Optional[str] = None) -> list[LinkedAccount]:
        """Return linked accounts, optionally for a single user."""
        if user_id is None:
            rows = self._db[self.TABLE].rows_where(order_by="user_id, platform")
        else:
            rows = self._db[self.TABLE].rows_where(
                "user_id = ?", [user_id], order_by="platform"
            )
        return [self._from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(account: LinkedAccount) -> dict:
        return {
            "id": account.id,
            "user_id": account.user_id,
            "platform": account.platform.value,
            "token": account.token,
            "secret": account.secret,
            "account_id": account.account_id,
            "expires_at": account.expires_at.isoformat() if account.expires_at else None,
            "linked_at": account.linked_at.isoformat(),
        }

    @staticmethod
    def _from_row(row: dict) -> LinkedAccount:
        return LinkedAccount(
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            token=row["token"],
            secret=row["secret"] or "",
            account_id=row["account_id"] or "",
            expires_at=dt.datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
            linked_at=dt.datetime.fromisoformat(row["linked_at"]),
        )
