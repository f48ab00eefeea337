"""Database repository for accounts and users."""

from __future__ import annotations

from typing import Any

from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row, tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, User
from .domain.contracts import SaveContext, SaveHooks
from .domain.errors import UsernameTaken

_ACCOUNT_COLUMNS = "slug, account_id, name, api_key, active, created_at"

_USER_COLUMN_FIELDS = {
    "user_id": "key",
    "account_key": "account_key",
    "username": "username",
    "email": "email",
    "encrypted_password": "encrypted_password",
    "first_name": "first_name",
    "last_name": "last_name",
    "created_at": "created_at",
    "last_login": "last_login",
}


class FieldMismatchError(Exception):
    """A row carried columns the entity does not know about.

    ``entity`` holds the value populated from the columns that did match.
    """

    def __init__(self, entity: Any, unknown: list[str]) -> None:
        super().__init__(f"unexpected columns for {type(entity).__name__}: {', '.join(unknown)}")
        self.entity = entity
        self.unknown = unknown


class AccountRepository:
    """Postgres-backed persistence for accounts and their users."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def get_account(self, key: str) -> Account | None:
        """Fetch an account by its durable key or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE slug = %s",
                    (key,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    def find_account_by_slug(self, slug: str) -> Account | None:
        """Return the first account whose slug matches exactly."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE slug = %s LIMIT 1",
                    (slug,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    def slug_exists(self, slug: str) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT COUNT(*) FROM accounts WHERE slug = %s", (slug,))
                (count,) = cur.fetchone()
        return count > 0

    def find_user(self, username: str, account_key: str | None = None) -> User | None:
        """Return the first user with ``username``, optionally scoped to one account.

        Raises :class:`FieldMismatchError` when the stored row has columns this
        version does not map; the partially loaded user rides on the exception.
        """
        query = "SELECT * FROM users WHERE username = %s"
        params: list[Any] = [username]
        if account_key is not None:
            query += " AND account_key = %s"
            params.append(account_key)
        query += " ORDER BY user_id LIMIT 1"
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        if not row:
            return None
        return self._map_user(row)

    def get_user(self, user_id: int) -> User | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("SELECT * FROM users WHERE user_id = %s", (user_id,))
                row = cur.fetchone()
        if not row:
            return None
        try:
            return self._map_user(row)
        except FieldMismatchError as exc:
            return exc.entity

    def username_exists(self, username: str, account_key: str | None) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT COUNT(*) FROM users
                    WHERE username = %s AND account_key IS NOT DISTINCT FROM %s
                    """,
                    (username, account_key),
                )
                (count,) = cur.fetchone()
        return count > 0

    def save(self, entity: SaveHooks, ctx: SaveContext) -> Any:
        """Run ``pre_save``, write the entity, then hand the stored key to ``post_save``."""
        entity.pre_save(ctx)
        if isinstance(entity, Account):
            key = self._put_account(entity)
        elif isinstance(entity, User):
            key = self._put_user(entity)
        else:
            raise TypeError(f"cannot persist {type(entity).__name__}")
        entity.post_save(key)
        return key

    def _put_account(self, account: Account) -> str:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO accounts (slug, account_id, name, api_key, active, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (slug) DO UPDATE
                    SET name = EXCLUDED.name, active = EXCLUDED.active
                    RETURNING slug
                    """,
                    (
                        account.slug,
                        account.account_id,
                        account.name,
                        account.api_key,
                        account.active,
                        account.created_at,
                    ),
                )
                (key,) = cur.fetchone()
                conn.commit()
        return key

    def _put_user(self, user: User) -> int:
        values = (
            user.account_key,
            user.username,
            user.email,
            user.encrypted_password,
            user.first_name,
            user.last_name,
            user.created_at,
            user.last_login,
        )
        try:
            return self._write_user(user, values)
        except UniqueViolation as exc:
            raise UsernameTaken(f"username {user.username!r} already exists") from exc

    def _write_user(self, user: User, values: tuple) -> int:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                if user.key is None:
                    cur.execute(
                        """
                        INSERT INTO users (account_key, username, email, encrypted_password,
                                           first_name, last_name, created_at, last_login)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING user_id
                        """,
                        values,
                    )
                else:
                    cur.execute(
                        """
                        UPDATE users
                        SET account_key = %s, username = %s, email = %s, encrypted_password = %s,
                            first_name = %s, last_name = %s, created_at = %s, last_login = %s
                        WHERE user_id = %s
                        RETURNING user_id
                        """,
                        (*values, user.key),
                    )
                (key,) = cur.fetchone()
                conn.commit()
        return key

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into a loaded ``Account``."""
        return Account(
            slug=row[0],
            account_id=str(row[1]),
            name=row[2],
            api_key=row[3],
            active=row[4],
            created_at=row[5],
        ).load()

    def _map_user(self, row: dict[str, Any]) -> User:
        values: dict[str, Any] = {}
        unknown: list[str] = []
        for column, value in row.items():
            attr = _USER_COLUMN_FIELDS.get(column)
            if attr is None:
                unknown.append(column)
                continue
            if attr == "encrypted_password" and value is not None:
                value = bytes(value)
            values[attr] = value
        user = User(**values)
        if unknown:
            raise FieldMismatchError(user, unknown)
        return user
