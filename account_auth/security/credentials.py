"""Extraction of credentials from request headers and cookies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Union

from ..config import Settings
from ..domain.errors import Unauthenticated


@dataclass(slots=True, frozen=True)
class AccountCredentials:
    slug: str
    api_key: str


@dataclass(slots=True, frozen=True)
class UserCredentials:
    username: str
    password: str = ""


@dataclass(slots=True, frozen=True)
class SessionCredentials:
    token: str


Credentials = Union[AccountCredentials, UserCredentials, SessionCredentials]


@dataclass(slots=True, frozen=True)
class HeaderNames:
    """Names of the headers (and session cookie) carrying credentials."""

    account: str = "X-account"
    key: str = "X-key"
    session: str = "X-session"
    username: str = "X-username"
    password: str = "X-password"

    @classmethod
    def from_settings(cls, settings: Settings) -> "HeaderNames":
        return cls(
            account=settings.account_header,
            key=settings.key_header,
            session=settings.session_header,
            username=settings.username_header,
            password=settings.password_header,
        )


def _lookup(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower(), "")
    return value or ""


def session_token_from(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    names: HeaderNames,
) -> str:
    """Return the session token from the session header, falling back to the cookie."""
    token = _lookup(headers, names.session)
    if not token:
        token = cookies.get(names.session, "") or ""
    return token


def resolve_credentials(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    names: HeaderNames | None = None,
) -> Credentials:
    """Pick the credential set a request presents.

    An account slug wins over a username, which wins over a session token.
    The companion secret is taken as-is, so a missing API key or password
    fails verification later rather than falling through to the next path.
    """
    names = names or HeaderNames()
    slug = _lookup(headers, names.account)
    if slug:
        return AccountCredentials(slug=slug, api_key=_lookup(headers, names.key))
    username = _lookup(headers, names.username)
    if username:
        return UserCredentials(username=username, password=_lookup(headers, names.password))
    token = session_token_from(headers, cookies, names)
    if token:
        return SessionCredentials(token=token)
    raise Unauthenticated()
