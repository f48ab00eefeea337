from __future__ import annotations

import hmac
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..security.cipher import PasswordCipher
from ..security.tokens import generate_api_key
from .contracts import SaveContext
from .slugs import generate_unique_slug

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Account:
    """Tenant-level aggregate identified by a globally unique slug."""

    name: str = ""
    slug: str = ""
    api_key: str = ""
    active: bool = True
    account_id: str = ""
    created_at: datetime | None = None
    key: str | None = field(default=None, compare=False)

    def get_key(self) -> str:
        """Return the durable key handle, deriving it from the slug on first use."""
        if self.key is None:
            self.key = self.slug
        return self.key

    def load(self) -> "Account":
        """Populate cached values after the account has been read from storage."""
        self.get_key()
        return self

    def pre_save(self, ctx: SaveContext) -> None:
        if not self.account_id:
            self.account_id = str(uuid.uuid4())
        if not self.name:
            self.name = f"Account-{random.getrandbits(63)}"
        if not self.slug:
            # slug, created_at and api_key are assigned together and only once
            self.slug = generate_unique_slug(ctx.slug_exists, self.name)
            self.created_at = ctx.now
            self.api_key = generate_api_key()
        self.get_key()

    def post_save(self, key: Any) -> None:
        self.key = key


@dataclass(slots=True)
class User:
    """Optional sub-identity scoped to an account, authenticated by username and password."""

    username: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    encrypted_password: bytes = b""
    account_key: str | None = None
    created_at: datetime | None = None
    last_login: datetime | None = None
    key: int | None = None
    password: str = field(default="", repr=False, compare=False)

    def pre_save(self, ctx: SaveContext) -> None:
        if self.password:
            plaintext, self.password = self.password, ""
            self.encrypted_password = ctx.cipher.encrypt(plaintext.encode("utf-8"))
        if not self.username:
            self.username = self.email or f"{self.first_name}{self.last_name}"
        if ctx.current_account is not None:
            self.account_key = ctx.current_account.get_key()
        if self.created_at is None:
            self.created_at = ctx.now

    def post_save(self, key: Any) -> None:
        self.key = key

    def validate_password(self, cipher: PasswordCipher, password: str) -> bool:
        try:
            decrypted = cipher.decrypt(self.encrypted_password)
        except ValueError:
            logger.warning("stored password for user %s could not be decrypted", self.key)
            return False
        return hmac.compare_digest(decrypted, password.encode("utf-8"))


@dataclass(slots=True)
class Session:
    """Ephemeral proof of authentication, valid while ``now - last_used <= ttl``."""

    key: str
    account_key: str
    initialized: datetime
    last_used: datetime
    ttl: timedelta
    user_key: int | None = None

    def expired(self, now: datetime) -> bool:
        return now > self.last_used + self.ttl

    def to_record(self) -> dict[str, Any]:
        """Serialise the session for the shared cache."""
        return {
            "key": self.key,
            "account": self.account_key,
            "user": self.user_key,
            "initialized": self.initialized.isoformat(),
            "lastUsed": self.last_used.isoformat(),
            "ttl": self.ttl.total_seconds(),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Session":
        return cls(
            key=data["key"],
            account_key=data["account"],
            user_key=data.get("user"),
            initialized=datetime.fromisoformat(data["initialized"]),
            last_used=datetime.fromisoformat(data["lastUsed"]),
            ttl=timedelta(seconds=float(data["ttl"])),
        )
