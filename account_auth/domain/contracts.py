"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..security.cipher import PasswordCipher
    from .account import Account


@dataclass(slots=True, frozen=True)
class RequestContext:
    """Identifies one in-flight request; passed to every call needing the current identity."""

    request_id: str


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create an account."""

    name: str = ""
    active: bool = True


@dataclass(slots=True)
class CreateUserInput:
    """Validated inputs required to create a user within the current account."""

    password: str
    username: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""


@dataclass(slots=True)
class SaveContext:
    """Collaborators handed to entity lifecycle hooks by the repository."""

    now: datetime
    slug_exists: Callable[[str], bool]
    cipher: "PasswordCipher"
    current_account: "Account | None" = None


@runtime_checkable
class SaveHooks(Protocol):
    """Lifecycle hooks the repository invokes around a durable put."""

    def pre_save(self, ctx: SaveContext) -> None: ...

    def post_save(self, key: Any) -> None: ...
