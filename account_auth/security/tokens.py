"""Utilities for minting session tokens and account API keys."""

from __future__ import annotations

import hashlib
import hmac
import time
import uuid


def generate_session_token(slug: str, now_ns: int | None = None) -> str:
    """Derive an opaque session token from an account slug and a nanosecond timestamp.

    Parameters
    ----------
    slug:
        Slug of the account the session is bound to.
    now_ns:
        Creation time in nanoseconds; defaults to :func:`time.time_ns`.

    Returns
    -------
    str
        Hex-encoded SHA-256 digest of ``"<slug>-<now_ns>"``.
    """

    if now_ns is None:
        now_ns = time.time_ns()
    return hashlib.sha256(f"{slug}-{now_ns}".encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """Return a fresh 32 character hex API key."""
    return hashlib.md5(uuid.uuid4().bytes).hexdigest()


def api_keys_match(expected: str, supplied: str) -> bool:
    """Compare API keys byte for byte without leaking timing information."""
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
