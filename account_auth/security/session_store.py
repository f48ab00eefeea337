"""Redis-backed session store with a process-local fast path."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable

from redis import Redis
from redis.exceptions import RedisError

from ..domain.account import Account, Session, User
from ..domain.errors import NoSuchSession
from .tokens import generate_session_token

logger = logging.getLogger(__name__)


class SessionPersistenceError(RuntimeError):
    """Raised when a session record could not be written to the shared cache."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Maps session tokens to session records.

    Records live in Redis under ``<prefix><token>`` so every process sees them,
    and in a lock-guarded local map consulted first. The local map also keeps
    the session -> account/user association resolved at creation time.
    """

    def __init__(
        self,
        client: Redis,
        *,
        ttl: timedelta,
        key_prefix: str = "session-",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._ttl = ttl
        self._key_prefix = key_prefix
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._accounts: dict[str, Account] = {}
        self._users: dict[str, User | None] = {}
        self._lock = Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def _cache_key(self, token: str) -> str:
        return f"{self._key_prefix}{token}"

    def create(self, account: Account, user: User | None = None) -> Session:
        """Mint, persist and locally register a new session for ``account``."""
        now = self._clock()
        session = Session(
            key=generate_session_token(account.slug),
            account_key=account.get_key(),
            user_key=user.key if user is not None else None,
            initialized=now,
            last_used=now,
            ttl=self._ttl,
        )
        self.save(session)
        with self._lock:
            self._sessions[session.key] = session
            self._accounts[session.key] = account
            self._users[session.key] = user
        return session

    def save(self, session: Session) -> None:
        """Write ``session`` to the shared cache, expiring one ttl after this write."""
        payload = json.dumps(session.to_record())
        expire = max(int(session.ttl.total_seconds()), 1)
        try:
            self._client.set(self._cache_key(session.key), payload, ex=expire)
        except RedisError as exc:
            raise SessionPersistenceError(f"unable to store session: {exc}") from exc

    def get(self, token: str) -> Session:
        with self._lock:
            session = self._sessions.get(token)
        if session is not None:
            return session
        raw = self._client.get(self._cache_key(token))
        if raw is None:
            raise NoSuchSession()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return Session.from_record(json.loads(raw))

    def touch(self, session: Session, now: datetime | None = None) -> Session:
        """Refresh ``last_used``; persisting the change is left to :meth:`save`."""
        session.last_used = now or self._clock()
        return session

    def delete(self, token: str) -> bool:
        """Forget ``token`` everywhere; returns whether a session existed."""
        removed = 0
        try:
            removed = int(self._client.delete(self._cache_key(token)))
        except RedisError as exc:
            logger.error("failed to delete session from shared cache: %s", exc)
        with self._lock:
            local = self._sessions.pop(token, None)
            self._accounts.pop(token, None)
            self._users.pop(token, None)
        return local is not None or removed > 0

    def account_for(self, session: Session) -> Account | None:
        with self._lock:
            return self._accounts.get(session.key)

    def user_for(self, session: Session) -> User | None:
        with self._lock:
            return self._users.get(session.key)
