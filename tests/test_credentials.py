from __future__ import annotations

import pytest

from account_auth.domain.errors import Unauthenticated
from account_auth.security.credentials import (
    AccountCredentials,
    HeaderNames,
    SessionCredentials,
    UserCredentials,
    resolve_credentials,
)


def test_account_slug_and_key():
    creds = resolve_credentials({"X-account": "acme", "X-key": "k1"}, {})
    assert creds == AccountCredentials(slug="acme", api_key="k1")


def test_account_slug_takes_precedence_over_other_credentials():
    headers = {
        "X-account": "acme",
        "X-key": "k1",
        "X-username": "alice",
        "X-password": "pw",
        "X-session": "token",
    }
    assert isinstance(resolve_credentials(headers, {"X-session": "cookie"}), AccountCredentials)


def test_missing_api_key_is_passed_through_empty():
    assert resolve_credentials({"X-account": "acme"}, {}) == AccountCredentials("acme", "")


def test_username_and_password():
    creds = resolve_credentials({"X-username": "alice", "X-password": "pw"}, {"X-session": "t"})
    assert creds == UserCredentials(username="alice", password="pw")


def test_session_header_wins_over_cookie():
    creds = resolve_credentials({"X-session": "from-header"}, {"X-session": "from-cookie"})
    assert creds == SessionCredentials(token="from-header")


def test_session_cookie_fallback():
    assert resolve_credentials({}, {"X-session": "from-cookie"}) == SessionCredentials("from-cookie")


def test_lowercase_header_keys_are_recognised():
    creds = resolve_credentials({"x-account": "acme", "x-key": "k1"}, {})
    assert creds == AccountCredentials("acme", "k1")


def test_no_credentials_is_unauthenticated():
    with pytest.raises(Unauthenticated):
        resolve_credentials({"X-key": "orphan-key"}, {})


def test_custom_header_names():
    names = HeaderNames(account="X-Tenant", key="X-Tenant-Key", session="sid")
    creds = resolve_credentials({"X-Tenant": "acme", "X-Tenant-Key": "k"}, {}, names)
    assert creds == AccountCredentials("acme", "k")
    assert resolve_credentials({}, {"sid": "abc"}, names) == SessionCredentials("abc")
