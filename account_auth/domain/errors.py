"""Authentication failures raised by the identity resolver and session store."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every authentication failure."""

    message: str = "authentication failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class Unauthenticated(AuthError):
    """No usable credentials were presented, or the session is unknown."""

    message = "No account has been authenticated for this request"


class NoSuchSession(AuthError):
    message = "No account matches that session"


class NoSuchAccount(AuthError):
    message = "No account matches that slug"


class InvalidApiKey(AuthError):
    message = "API Key does not match account"


class SessionExpired(AuthError):
    """The session was not used within its TTL."""

    message = "Session has expired, please reauthenticate"


class InvalidPassword(AuthError):
    message = "That password is not valid for this user"


class OrphanedUser(AuthError):
    message = "Orphaned user object has no account"


class UsernameTaken(ValueError):
    """Raised when creating a user whose username already exists in the account."""


__all__ = [
    "AuthError",
    "InvalidApiKey",
    "InvalidPassword",
    "NoSuchAccount",
    "NoSuchSession",
    "OrphanedUser",
    "SessionExpired",
    "Unauthenticated",
    "UsernameTaken",
]
