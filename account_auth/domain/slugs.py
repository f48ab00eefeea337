"""URL-safe slug generation for account names."""

from __future__ import annotations

from typing import Callable

_SEPARATORS = frozenset(" _-")
_FALLBACK_SLUG = "account"


def generate_slug(value: str) -> str:
    """Lowercase and trim ``value``, map separators to ``-`` and drop anything else non-alphanumeric."""
    chars: list[str] = []
    for ch in value.strip().lower():
        if ch in _SEPARATORS:
            chars.append("-")
        elif ch.isalnum():
            chars.append(ch)
    return "".join(chars)


def generate_unique_slug(exists: Callable[[str], bool], value: str) -> str:
    """Return a slug for ``value`` that ``exists`` reports as free.

    The bare slug is tried first, then ``<slug>-2``, ``<slug>-3`` and so on.
    Names with no alphanumeric characters fall back to ``account``.
    """
    slug = generate_slug(value) or _FALLBACK_SLUG
    if not exists(slug):
        return slug
    counter = 2
    while exists(f"{slug}-{counter}"):
        counter += 1
    return f"{slug}-{counter}"
