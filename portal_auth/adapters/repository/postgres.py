"""
PostgreSQL repository adapters - implement UserDirectory and RegionalStore.

This module provides the PostgreSQL implementations of the domain's
persistence ports using psycopg3 with raw SQL.

Atomicity Design
----------------
Every state check that guards a mutation is part of the mutating statement
itself (``UPDATE ... WHERE consumed_at IS NULL AND expires_at > NOW()``),
and the affected row count decides the outcome. Two concurrent requests
using the same single-use token therefore cannot both succeed: the second
UPDATE blocks on the row lock, re-evaluates its WHERE clause after the
first commits, and matches nothing.

Expiry is always judged against the database clock (``NOW()``), never the
application clock, so a token is expired for every reader at the same
instant whether or not the sweeper has removed it yet.

Compound operations (password reset, password change, email change) run
in one transaction on one connection, so they apply entirely or not at all.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from portal_auth.domain.exceptions import EmailTaken, UserExists
from portal_auth.domain.ports import (
    NewUser,
    Portal,
    Region,
    TokenKind,
    TokenRecord,
    UserRecord,
    UserStatus,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_USER_COLUMNS = """
    user_id, portal, email, handle, display_name, home_region, status, preferred_language
"""


def _user_from_row(row: dict[str, Any]) -> UserRecord:
    return UserRecord(
        user_id=row["user_id"],
        portal=Portal(row["portal"]),
        email=row["email"],
        handle=row["handle"],
        home_region=Region(row["home_region"]),
        status=UserStatus(row["status"]),
        preferred_language=row["preferred_language"],
        display_name=row["display_name"],
    )


def _signup_token_from_row(row: dict[str, Any]) -> TokenRecord:
    return TokenRecord(
        kind=TokenKind.SIGNUP,
        secret=row["signup_token"],
        expires_at=row["expires_at"],
        expired=row["expired"],
        consumed=row["consumed"],
        region=Region(row["home_region"]),
        email=row["email"],
        portal=Portal(row["portal"]),
    )


class PostgresUserDirectory:
    """
    Implements UserDirectory protocol via psycopg3 against the global DB.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def get_user_by_email(self, portal: Portal, email: str) -> UserRecord | None:
        query = f"SELECT {_USER_COLUMNS} FROM users WHERE portal = %s AND email = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (portal.value, email))
            row = cursor.fetchone()
        return _user_from_row(row) if row else None

    def get_user(self, user_id: UUID) -> UserRecord | None:
        query = f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (user_id,))
            row = cursor.fetchone()
        return _user_from_row(row) if row else None

    def is_domain_approved(self, domain: str) -> bool:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM approved_domains WHERE domain = %s AND status = 'active'",
                (domain,),
            )
            return cursor.fetchone() is not None

    def create_signup_token(
        self,
        secret: str,
        portal: Portal,
        email: str,
        home_region: Region,
        ttl_seconds: int,
    ) -> TokenRecord:
        query = """
            INSERT INTO signup_tokens (signup_token, portal, email, home_region, expires_at)
            VALUES (%s, %s, %s, %s, NOW() + %s * INTERVAL '1 second')
            RETURNING signup_token, portal, email, home_region, expires_at,
                      FALSE AS expired, FALSE AS consumed
        """
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (secret, portal.value, email, home_region.value, ttl_seconds))
            row = cursor.fetchone()
            conn.commit()
        return _signup_token_from_row(row)

    def get_signup_token(self, secret: str) -> TokenRecord | None:
        query = """
            SELECT signup_token, portal, email, home_region, expires_at,
                   expires_at <= NOW() AS expired,
                   consumed_at IS NOT NULL AS consumed
            FROM signup_tokens
            WHERE signup_token = %s
        """
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (secret,))
            row = cursor.fetchone()
        return _signup_token_from_row(row) if row else None

    def complete_signup(self, secret: str, new_user: NewUser) -> UserRecord | None:
        """
        Consume the signup token and insert the user in one transaction.

        The UNIQUE (portal, email) constraint settles concurrent signups for
        the same address: the loser's INSERT fails and its token consumption
        is rolled back with it.
        """
        consume_sql = """
            UPDATE signup_tokens
            SET consumed_at = NOW()
            WHERE signup_token = %s AND consumed_at IS NULL AND expires_at > NOW()
            RETURNING portal, email, home_region
        """
        insert_sql = f"""
            INSERT INTO users (user_id, portal, email, handle, display_name,
                               home_region, status, preferred_language)
            VALUES (%s, %s, %s, %s, %s, %s, 'active', %s)
            RETURNING {_USER_COLUMNS}
        """
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor(row_factory=dict_row) as cursor:
                cursor.execute(consume_sql, (secret,))
                token = cursor.fetchone()
                if token is None:
                    return None
                try:
                    cursor.execute(
                        insert_sql,
                        (
                            uuid4(),
                            token["portal"],
                            token["email"],
                            new_user.handle,
                            new_user.display_name,
                            token["home_region"],
                            new_user.preferred_language,
                        ),
                    )
                except errors.UniqueViolation as exc:
                    if exc.diag.constraint_name == "users_portal_email_key":
                        raise UserExists(token["email"]) from None
                    raise
                row = cursor.fetchone()
        return _user_from_row(row)

    def undo_signup(self, secret: str, user_id: UUID) -> None:
        with self._pool.connection() as conn, conn.transaction():
            conn.execute("DELETE FROM users WHERE user_id = %s", (user_id,))
            conn.execute(
                "UPDATE signup_tokens SET consumed_at = NULL WHERE signup_token = %s",
                (secret,),
            )

    def change_email(self, user_id: UUID, new_email: str) -> None:
        """
        Swap the email; the unique constraint decides races for the same address.

        Raises:
            EmailTaken: If another user of the same portal holds new_email
        """
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    "UPDATE users SET email = %s WHERE user_id = %s",
                    (new_email, user_id),
                )
                conn.commit()
        except errors.UniqueViolation:
            raise EmailTaken(new_email) from None

    def set_preferred_language(self, user_id: UUID, language: str) -> None:
        with self._pool.connection() as conn:
            conn.execute(
                "UPDATE users SET preferred_language = %s WHERE user_id = %s",
                (language, user_id),
            )
            conn.commit()

    def set_status(self, user_id: UUID, status: UserStatus) -> bool:
        with self._pool.connection() as conn:
            cursor = conn.execute(
                "UPDATE users SET status = %s WHERE user_id = %s AND status <> %s",
                (status.value, user_id, status.value),
            )
            conn.commit()
            return cursor.rowcount == 1

    def purge_expired(self) -> int:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                "DELETE FROM signup_tokens WHERE expires_at <= NOW() OR consumed_at IS NOT NULL"
            )
            conn.commit()
            return cursor.rowcount


@dataclass(frozen=True)
class _TokenTable:
    """Table layout of one regional token kind."""

    name: str
    key: str
    # consumed_at for single-use kinds, revoked_at for sessions, None for TFA
    spent_column: str | None
    extra: tuple[str, ...] = ()


_TOKEN_TABLES: dict[TokenKind, _TokenTable] = {
    TokenKind.TFA: _TokenTable("tfa_tokens", "tfa_token", None, ("tfa_code",)),
    TokenKind.SESSION: _TokenTable("sessions", "session_token", "revoked_at"),
    TokenKind.PASSWORD_RESET: _TokenTable(
        "password_reset_tokens", "reset_token", "consumed_at"
    ),
    TokenKind.EMAIL_CHANGE: _TokenTable(
        "email_change_tokens", "verification_token", "consumed_at", ("new_email",)
    ),
}


def _table(kind: TokenKind) -> _TokenTable:
    try:
        return _TOKEN_TABLES[kind]
    except KeyError:
        raise ValueError(f"{kind.value} tokens are not stored regionally") from None


def _returning(table: _TokenTable) -> sql.Composed:
    """Column list shared by every statement that yields a TokenRecord."""
    spent = (
        sql.SQL("{} IS NOT NULL").format(sql.Identifier(table.spent_column))
        if table.spent_column
        else sql.SQL("FALSE")
    )
    columns = [
        sql.SQL("{} AS secret").format(sql.Identifier(table.key)),
        sql.SQL("user_id"),
        sql.SQL("expires_at"),
        sql.SQL("expires_at <= NOW() AS expired"),
        sql.SQL("{} AS consumed").format(spent),
    ]
    columns += [sql.Identifier(column) for column in table.extra]
    return sql.SQL(", ").join(columns)


class PostgresRegionalStore:
    """
    Implements RegionalStore protocol via psycopg3 against one regional DB.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, pool: ConnectionPool, region: Region) -> None:
        self._pool = pool
        self.region = region

    def _record(self, kind: TokenKind, row: dict[str, Any]) -> TokenRecord:
        return TokenRecord(
            kind=kind,
            secret=row["secret"],
            expires_at=row["expires_at"],
            expired=row["expired"],
            consumed=row["consumed"],
            region=self.region,
            user_id=row["user_id"],
            code=row.get("tfa_code"),
            new_email=row.get("new_email"),
        )

    def create_credentials(self, user_id: UUID, password_hash: str, roles: frozenset[str]) -> None:
        with self._pool.connection() as conn:
            conn.execute(
                "INSERT INTO user_credentials (user_id, password_hash, roles) VALUES (%s, %s, %s)",
                (user_id, password_hash, sorted(roles)),
            )
            conn.commit()

    def delete_credentials(self, user_id: UUID) -> None:
        # Token tables cascade from user_credentials
        with self._pool.connection() as conn:
            conn.execute("DELETE FROM user_credentials WHERE user_id = %s", (user_id,))
            conn.commit()

    def get_password_hash(self, user_id: UUID) -> str | None:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                "SELECT password_hash FROM user_credentials WHERE user_id = %s", (user_id,)
            )
            row = cursor.fetchone()
        return row[0] if row else None

    def get_roles(self, user_id: UUID) -> frozenset[str]:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute("SELECT roles FROM user_credentials WHERE user_id = %s", (user_id,))
            row = cursor.fetchone()
        return frozenset(row[0]) if row else frozenset()

    def create_token(
        self,
        kind: TokenKind,
        secret: str,
        user_id: UUID,
        ttl_seconds: int,
        code: str | None = None,
        new_email: str | None = None,
    ) -> TokenRecord:
        table = _table(kind)
        payload = {"tfa_code": code, "new_email": new_email}
        columns = [table.key, "user_id", *table.extra]
        values = [secret, user_id, *(payload[column] for column in table.extra)]
        query = sql.SQL(
            "INSERT INTO {table} ({columns}, expires_at) "
            "VALUES ({values}, NOW() + %s * INTERVAL '1 second') "
            "RETURNING {returning}"
        ).format(
            table=sql.Identifier(table.name),
            columns=sql.SQL(", ").join(map(sql.Identifier, columns)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(values)),
            returning=_returning(table),
        )
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (*values, ttl_seconds))
            row = cursor.fetchone()
            conn.commit()
        return self._record(kind, row)

    def get_token(self, kind: TokenKind, secret: str) -> TokenRecord | None:
        table = _table(kind)
        query = sql.SQL("SELECT {returning} FROM {table} WHERE {key} = %s").format(
            returning=_returning(table),
            table=sql.Identifier(table.name),
            key=sql.Identifier(table.key),
        )
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (secret,))
            row = cursor.fetchone()
        return self._record(kind, row) if row else None

    def consume_token(self, kind: TokenKind, secret: str) -> TokenRecord | None:
        table = _table(kind)
        if table.spent_column != "consumed_at":
            raise ValueError(f"{kind.value} tokens are not single-use")
        query = sql.SQL(
            "UPDATE {table} SET consumed_at = NOW() "
            "WHERE {key} = %s AND consumed_at IS NULL AND expires_at > NOW() "
            "RETURNING {returning}"
        ).format(
            table=sql.Identifier(table.name),
            key=sql.Identifier(table.key),
            returning=_returning(table),
        )
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, (secret,))
            row = cursor.fetchone()
            conn.commit()
        return self._record(kind, row) if row else None

    def revoke_session(self, secret: str) -> bool:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                """
                UPDATE sessions SET revoked_at = NOW()
                WHERE session_token = %s AND revoked_at IS NULL AND expires_at > NOW()
                """,
                (secret,),
            )
            conn.commit()
            return cursor.rowcount == 1

    def revoke_all_sessions(self, user_id: UUID, except_secret: str | None = None) -> int:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            revoked = self._revoke_all(cursor, user_id, except_secret)
            conn.commit()
        return revoked

    @staticmethod
    def _revoke_all(cursor: Any, user_id: UUID, except_secret: str | None) -> int:
        if except_secret is None:
            cursor.execute(
                "UPDATE sessions SET revoked_at = NOW() WHERE user_id = %s AND revoked_at IS NULL",
                (user_id,),
            )
        else:
            cursor.execute(
                """
                UPDATE sessions SET revoked_at = NOW()
                WHERE user_id = %s AND revoked_at IS NULL AND session_token <> %s
                """,
                (user_id, except_secret),
            )
        return cursor.rowcount

    def change_password(self, user_id: UUID, password_hash: str, keep_session: str) -> None:
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor() as cursor:
                cursor.execute(
                    "UPDATE user_credentials SET password_hash = %s, updated_at = NOW() "
                    "WHERE user_id = %s",
                    (password_hash, user_id),
                )
                self._revoke_all(cursor, user_id, keep_session)

    def complete_password_reset(self, secret: str, password_hash: str) -> UUID | None:
        """
        Consume, re-hash and revoke in one transaction.

        The guarded UPDATE row-locks the token, so a concurrent completion
        of the same token waits and then matches zero rows.
        """
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor() as cursor:
                cursor.execute(
                    """
                    UPDATE password_reset_tokens SET consumed_at = NOW()
                    WHERE reset_token = %s AND consumed_at IS NULL AND expires_at > NOW()
                    RETURNING user_id
                    """,
                    (secret,),
                )
                row = cursor.fetchone()
                if row is None:
                    return None
                user_id = row[0]
                cursor.execute(
                    "UPDATE user_credentials SET password_hash = %s, updated_at = NOW() "
                    "WHERE user_id = %s",
                    (password_hash, user_id),
                )
                self._revoke_all(cursor, user_id, None)
        return user_id

    def complete_email_change(
        self, secret: str, apply: Callable[[UUID, str], None]
    ) -> TokenRecord | None:
        """
        Consume the token and revoke sessions, with the global swap in between.

        The regional transaction stays open while apply() runs, so an
        EmailTaken from the directory rolls back the consumption and the
        revocations. The token row stays locked for the duration.
        """
        table = _TOKEN_TABLES[TokenKind.EMAIL_CHANGE]
        query = sql.SQL(
            "UPDATE email_change_tokens SET consumed_at = NOW() "
            "WHERE verification_token = %s AND consumed_at IS NULL AND expires_at > NOW() "
            "RETURNING {returning}"
        ).format(returning=_returning(table))
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor(row_factory=dict_row) as cursor:
                cursor.execute(query, (secret,))
                row = cursor.fetchone()
                if row is None:
                    return None
                record = self._record(TokenKind.EMAIL_CHANGE, row)
                self._revoke_all(cursor, record.user_id, None)
                apply(record.user_id, record.new_email)
        return record

    def purge_expired(self) -> int:
        removed = 0
        with self._pool.connection() as conn:
            with conn.transaction(), conn.cursor() as cursor:
                for table in _TOKEN_TABLES.values():
                    condition = sql.SQL("expires_at <= NOW()")
                    if table.spent_column:
                        condition = sql.SQL("{} OR {} IS NOT NULL").format(
                            condition, sql.Identifier(table.spent_column)
                        )
                    cursor.execute(
                        sql.SQL("DELETE FROM {table} WHERE {condition}").format(
                            table=sql.Identifier(table.name), condition=condition
                        )
                    )
                    removed += cursor.rowcount
        logger.debug("Purged %d expired row(s) in %s", removed, self.region.value)
        return removed


def run_migrations(pool: ConnectionPool, scope: str) -> None:
    """
    Execute all SQL migration files for one database scope.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
        scope: "global" or "regional"
    """
    migrations_dir = MIGRATIONS_DIR / scope

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} {scope} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {scope}/{sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {scope}/{sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {scope}/{sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {scope}/{sql_file.name}") from e
