"""Per-request cache of the authenticated identity."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Iterator

from ..domain.account import Account, Session, User
from ..domain.errors import Unauthenticated


@dataclass(slots=True, frozen=True)
class RequestIdentity:
    account: Account
    session: Session | None = None
    user: User | None = None


class RequestIdentityCache:
    """Thread-safe mapping from request identifier to the identity resolved for it."""

    def __init__(self) -> None:
        self._entries: dict[str, RequestIdentity] = {}
        self._lock = Lock()

    def store(
        self,
        request_id: str,
        account: Account,
        session: Session | None = None,
        user: User | None = None,
    ) -> RequestIdentity:
        """Record the identity for ``request_id``, replacing any earlier entry."""
        identity = RequestIdentity(account=account, session=session, user=user)
        with self._lock:
            self._entries[request_id] = identity
        return identity

    def get(self, request_id: str) -> RequestIdentity:
        with self._lock:
            identity = self._entries.get(request_id)
        if identity is None:
            raise Unauthenticated()
        return identity

    def clear(self, request_id: str) -> None:
        with self._lock:
            self._entries.pop(request_id, None)

    @contextmanager
    def scope(self, request_id: str) -> Iterator[str]:
        """Guarantee the entry for ``request_id`` is cleared when the block exits."""
        try:
            yield request_id
        finally:
            self.clear(request_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
