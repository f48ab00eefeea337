"""Authentication service resolving credentials to accounts, users and sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from prometheus_client import Counter

from ..repository import AccountRepository, FieldMismatchError
from ..security.cipher import PasswordCipher
from ..security.credentials import (
    AccountCredentials,
    Credentials,
    SessionCredentials,
    UserCredentials,
)
from ..security.identity_cache import RequestIdentity, RequestIdentityCache
from ..security.session_store import SessionPersistenceError, SessionStore
from ..security.tokens import api_keys_match
from .account import Account, Session, User
from .contracts import CreateAccountInput, CreateUserInput, RequestContext, SaveContext
from .errors import (
    AuthError,
    InvalidApiKey,
    InvalidPassword,
    NoSuchAccount,
    NoSuchSession,
    OrphanedUser,
    SessionExpired,
    Unauthenticated,
    UsernameTaken,
)

logger = logging.getLogger(__name__)

AUTH_ATTEMPTS = Counter(
    "account_auth_attempts_total",
    "Authentication attempts by credential path and outcome.",
    ["method", "outcome"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class AuthResult:
    """Outcome of a successful authentication."""

    account: Account
    session: Session | None = None
    user: User | None = None
    session_created: bool = False


class AuthenticationService:
    """Resolves credentials to an identity and records it for the current request."""

    def __init__(
        self,
        repository: AccountRepository,
        sessions: SessionStore,
        identities: RequestIdentityCache,
        cipher: PasswordCipher,
        *,
        clock: Callable[[], datetime] = _utcnow,
        persist_touch: bool = True,
    ) -> None:
        """Store collaborators used to look up, verify and remember identities."""
        self._repository = repository
        self._sessions = sessions
        self._identities = identities
        self._cipher = cipher
        self._clock = clock
        self._persist_touch = persist_touch
        self._mock_account: Account | None = None

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def identities(self) -> RequestIdentityCache:
        return self._identities

    def mock_account(self, account: Account | None) -> None:
        """Force every resolution to return ``account``; pass ``None`` to restore normal behaviour."""
        self._mock_account = account

    @property
    def mocked_account(self) -> Account | None:
        return self._mock_account

    def authenticate(self, ctx: RequestContext, credentials: Credentials) -> AuthResult:
        """Authenticate through whichever credential path ``credentials`` represents."""
        if self._mock_account is not None:
            return AuthResult(account=self._mock_account)
        if isinstance(credentials, AccountCredentials):
            method = "account"
        elif isinstance(credentials, UserCredentials):
            method = "user"
        elif isinstance(credentials, SessionCredentials):
            method = "session"
        else:
            raise TypeError(f"unsupported credentials: {type(credentials).__name__}")
        try:
            if isinstance(credentials, AccountCredentials):
                result = self.authenticate_by_account(ctx, credentials.slug, credentials.api_key)
            elif isinstance(credentials, UserCredentials):
                result = self.authenticate_by_user(ctx, credentials.username, credentials.password)
            else:
                result = self.authenticate_by_session(ctx, credentials.token)
        except AuthError as exc:
            AUTH_ATTEMPTS.labels(method=method, outcome=type(exc).__name__).inc()
            raise
        AUTH_ATTEMPTS.labels(method=method, outcome="success").inc()
        return result

    def authenticate_by_account(self, ctx: RequestContext, slug: str, api_key: str) -> AuthResult:
        account = self._repository.find_account_by_slug(slug)
        if account is None:
            raise NoSuchAccount()
        if not api_keys_match(account.api_key, api_key):
            raise InvalidApiKey()
        account.load()
        session = self._start_session(ctx, account, None)
        return AuthResult(account=account, session=session, session_created=session is not None)

    def authenticate_user(self, ctx: RequestContext, username: str, password: str) -> User:
        """Validate ``username``/``password`` and return the matching user with ``last_login`` bumped."""
        current = self._current_account_or_none(ctx)
        account_key = current.get_key() if current is not None else None
        try:
            user = self._repository.find_user(username, account_key)
        except FieldMismatchError as exc:
            logger.warning("tolerating user schema mismatch for %s: %s", username, exc)
            user = exc.entity
        if user is None:
            raise NoSuchAccount()
        if not user.validate_password(self._cipher, password):
            raise InvalidPassword()
        user.last_login = self._clock()
        self._repository.save(user, self._save_context(current))
        return user

    def authenticate_by_user(self, ctx: RequestContext, username: str, password: str) -> AuthResult:
        user = self.authenticate_user(ctx, username, password)
        if user.account_key is None:
            raise OrphanedUser()
        account = self._repository.get_account(user.account_key)
        if account is None:
            logger.error("user %s references missing account %s", user.key, user.account_key)
            raise OrphanedUser()
        session = self._start_session(ctx, account, user)
        return AuthResult(
            account=account, session=session, user=user, session_created=session is not None
        )

    def authenticate_by_session(self, ctx: RequestContext, token: str) -> AuthResult:
        try:
            session = self._sessions.get(token)
        except NoSuchSession as exc:
            raise Unauthenticated() from exc
        account = self._sessions.account_for(session)
        if account is None:
            account = self._repository.get_account(session.account_key)
            if account is None:
                raise Unauthenticated()
        now = self._clock()
        if session.expired(now):
            self._sessions.delete(session.key)
            raise SessionExpired()
        self._sessions.touch(session, now)
        if self._persist_touch:
            try:
                self._sessions.save(session)
            except SessionPersistenceError as exc:
                logger.warning("could not persist refreshed session: %s", exc)
        user = self._sessions.user_for(session)
        if user is None and session.user_key is not None:
            user = self._repository.get_user(session.user_key)
        self._identities.store(ctx.request_id, account, session, user)
        return AuthResult(account=account, session=session, user=user)

    def current_identity(self, ctx: RequestContext) -> RequestIdentity:
        if self._mock_account is not None:
            return RequestIdentity(account=self._mock_account)
        return self._identities.get(ctx.request_id)

    def current_account(self, ctx: RequestContext) -> Account:
        """Return the account authenticated for this request or raise ``Unauthenticated``."""
        return self.current_identity(ctx).account

    def current_account_key(self, ctx: RequestContext) -> str:
        return self.current_account(ctx).get_key()

    def current_user(self, ctx: RequestContext) -> User:
        user = self.current_identity(ctx).user
        if user is None:
            raise Unauthenticated()
        return user

    def current_session(self, ctx: RequestContext) -> Session:
        session = self.current_identity(ctx).session
        if session is None:
            raise Unauthenticated()
        return session

    def account_session(self, ctx: RequestContext, account: Account) -> Session | None:
        """Return the session of the current request, starting one for ``account`` if needed."""
        try:
            return self.current_session(ctx)
        except Unauthenticated:
            return self._start_session(ctx, account, None)

    def create_account(self, ctx: RequestContext, payload: CreateAccountInput) -> Account:
        account = Account(name=payload.name, active=payload.active)
        self._repository.save(account, self._save_context(self._current_account_or_none(ctx)))
        logger.info("created account %s", account.slug)
        return account

    def create_user(self, ctx: RequestContext, payload: CreateUserInput) -> User:
        """Create a user bound to the current account; usernames are unique per account."""
        account = self.current_account(ctx)
        user = User(
            username=payload.username,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password=payload.password,
        )
        username = user.username or user.email or f"{user.first_name}{user.last_name}"
        if not username:
            raise ValueError("username, email or name is required")
        if self._repository.username_exists(username, account.get_key()):
            raise UsernameTaken(f"username {username!r} already exists")
        self._repository.save(user, self._save_context(account))
        logger.info("created user %s in account %s", user.key, account.slug)
        return user

    def logout(self, ctx: RequestContext, token: str | None = None) -> bool:
        """Delete ``token``, or the session authenticated for ``ctx``; returns whether it existed."""
        if token is None:
            try:
                token = self.current_session(ctx).key
            except Unauthenticated:
                return False
        if not token:
            return False
        existed = self._sessions.delete(token)
        logger.info("session logout existed=%s", existed)
        return existed

    def clear(self, ctx: RequestContext) -> None:
        self._identities.clear(ctx.request_id)

    def _start_session(self, ctx: RequestContext, account: Account, user: User | None) -> Session | None:
        try:
            session = self._sessions.create(account, user)
        except SessionPersistenceError as exc:
            # authentication stands even without a session
            logger.warning("error creating session for account %s: %s", account.slug, exc)
            self._identities.store(ctx.request_id, account, None, user)
            return None
        self._identities.store(ctx.request_id, account, session, user)
        return session

    def _current_account_or_none(self, ctx: RequestContext) -> Account | None:
        try:
            return self.current_account(ctx)
        except Unauthenticated:
            return None

    def _save_context(self, current: Account | None) -> SaveContext:
        return SaveContext(
            now=self._clock(),
            slug_exists=self._repository.slug_exists,
            cipher=self._cipher,
            current_account=current,
        )
