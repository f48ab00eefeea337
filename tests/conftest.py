from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from account_auth.domain.account import Account, User
from account_auth.domain.contracts import RequestContext, SaveContext, SaveHooks
from account_auth.domain.errors import UsernameTaken
from account_auth.domain.service import AuthenticationService
from account_auth.repository import FieldMismatchError
from account_auth.security.cipher import PasswordCipher
from account_auth.security.identity_cache import RequestIdentityCache
from account_auth.security.session_store import SessionStore

TEST_KEY = b"my test key 1234"
SESSION_TTL = timedelta(hours=3)


class FakeClock:
    """Manually advanced clock shared by the service and session store."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviours."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._users: dict[int, User] = {}
        self._user_ids = itertools.count(1)
        self.user_extra_columns: list[str] = []
        self.saved: list[Any] = []

    def get_account(self, key: str):
        account = self._accounts.get(key)
        return replace(account).load() if account else None

    def find_account_by_slug(self, slug: str):
        return self.get_account(slug)

    def slug_exists(self, slug: str) -> bool:
        return slug in self._accounts

    def find_user(self, username: str, account_key: str | None = None):
        for user_id in sorted(self._users):
            user = self._users[user_id]
            if user.username != username:
                continue
            if account_key is not None and user.account_key != account_key:
                continue
            loaded = replace(user)
            if self.user_extra_columns:
                raise FieldMismatchError(loaded, list(self.user_extra_columns))
            return loaded
        return None

    def get_user(self, user_id: int):
        user = self._users.get(user_id)
        return replace(user) if user else None

    def username_exists(self, username: str, account_key: str | None) -> bool:
        return any(
            u.username == username and u.account_key == account_key for u in self._users.values()
        )

    def save(self, entity: SaveHooks, ctx: SaveContext):
        entity.pre_save(ctx)
        if isinstance(entity, Account):
            key = entity.slug
            self._accounts[key] = replace(entity)
        elif isinstance(entity, User):
            if entity.key is None:
                if self.username_exists(entity.username, entity.account_key):
                    raise UsernameTaken(f"username {entity.username!r} already exists")
                key = next(self._user_ids)
            else:
                key = entity.key
            self._users[key] = replace(entity, key=key)
        else:
            raise TypeError(f"cannot persist {type(entity).__name__}")
        entity.post_save(key)
        self.saved.append(entity)
        return key

    def add_account(self, **kwargs: Any) -> Account:
        account = Account(**kwargs)
        account.get_key()
        self._accounts[account.slug] = replace(account)
        return account

    def add_user(self, cipher: PasswordCipher, password: str, **kwargs: Any) -> User:
        user_id = next(self._user_ids)
        user = User(key=user_id, encrypted_password=cipher.encrypt(password.encode()), **kwargs)
        self._users[user_id] = replace(user)
        return user

    def remove_account(self, key: str) -> None:
        self._accounts.pop(key, None)


class BrokenRedis:
    """Redis double whose writes always fail."""

    def set(self, *args: Any, **kwargs: Any):
        raise RedisConnectionError("redis unavailable")

    def get(self, *args: Any, **kwargs: Any):
        return None

    def delete(self, *args: Any, **kwargs: Any):
        return 0


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture()
def cipher() -> PasswordCipher:
    return PasswordCipher(TEST_KEY)


@pytest.fixture()
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture()
def session_store(redis_client, clock) -> SessionStore:
    return SessionStore(redis_client, ttl=SESSION_TTL, clock=clock)


@pytest.fixture()
def service(repository, session_store, cipher, clock) -> AuthenticationService:
    return AuthenticationService(
        repository,
        session_store,
        RequestIdentityCache(),
        cipher,
        clock=clock,
    )


@pytest.fixture()
def acme(repository) -> Account:
    return repository.add_account(
        name="Acme", slug="acme", api_key="k1", account_id="acct-acme", active=True
    )


@pytest.fixture()
def ctx() -> RequestContext:
    return RequestContext(request_id="req-1")


@pytest.fixture()
def session_ttl() -> timedelta:
    return SESSION_TTL


@pytest.fixture()
def broken_redis() -> BrokenRedis:
    return BrokenRedis()
