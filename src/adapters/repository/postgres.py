"""
PostgreSQL repository adapter - Implements IdentityRepository protocol.

This module provides the PostgreSQL implementation of the domain's
repository port using psycopg3 with raw SQL.

Concurrency Design - Conditional Updates:
-----------------------------------------
Every state change is one ``UPDATE ... WHERE <condition> RETURNING`` statement.
The WHERE clause carries the precondition (expected registration stage, resend
spacing, send ceiling, unexpired reset token), so two concurrent requests can
never both pass a check the other invalidates. An empty RETURNING means the
condition failed and the domain re-reads the row to explain why.

1. **Stage advance**: ``registration_stage = ANY(expected)`` guards every
   registration write.

2. **Code resend**: ``last_code_sent_at <= sent_before AND code_attempts < max``
   lets exactly one of several simultaneous resends through.

3. **Lockout counter**: increments happen in SQL (``failed_attempts + 1``)
   so parallel failures are all counted.

4. **Reset token**: consumed and cleared by the same statement, so a token
   works at most once.

Email and phone are UNIQUE columns; registration races resolve through
``INSERT ... ON CONFLICT DO NOTHING``.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from src.domain.exceptions import DuplicateIdentity
from src.domain.models import (
    ActorKind,
    ConstitutionProfile,
    IdentityRecord,
    RegistrationStage,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, kind, email, phone, first_name, last_name, profile, medical_history, "
    "constitution_profile, password_hash, active, contact_verified, registration_stage, "
    "staged_payloads, failed_attempts, locked_until, pending_code, code_expires_at, "
    "code_attempts, last_code_sent_at, reset_token_hash, reset_expires_at, last_login_at, "
    "created_at, updated_at"
)

# Columns each dynamic update may touch
_STAGE_COLUMNS = {"medical_history", "constitution_profile", "password_hash"}
_PROFILE_COLUMNS = {"first_name", "last_name", "phone", "contact_verified", "profile", "medical_history"}
_JSON_COLUMNS = {"profile", "medical_history", "constitution_profile", "staged_payloads"}

_CLEAR_CODE = """
    pending_code = NULL,
    code_expires_at = NULL,
    code_attempts = 0,
    last_code_sent_at = NULL
"""


def _adapt(name: str, value: Any) -> Any:
    if isinstance(value, ConstitutionProfile):
        return Jsonb(value.to_dict())
    if name in _JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value


def _row_to_record(row: dict[str, Any] | None) -> IdentityRecord | None:
    if row is None:
        return None
    constitution = row["constitution_profile"]
    return IdentityRecord(
        id=str(row["id"]),
        kind=ActorKind(row["kind"]),
        email=row["email"],
        phone=row["phone"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        profile=row["profile"] or {},
        medical_history=row["medical_history"] or {},
        constitution_profile=ConstitutionProfile.from_dict(constitution) if constitution else None,
        password_hash=row["password_hash"],
        active=row["active"],
        contact_verified=row["contact_verified"],
        registration_stage=RegistrationStage(row["registration_stage"]),
        staged_payloads=row["staged_payloads"] or {},
        failed_attempts=row["failed_attempts"],
        locked_until=row["locked_until"],
        pending_code=row["pending_code"],
        code_expires_at=row["code_expires_at"],
        code_attempts=row["code_attempts"],
        last_code_sent_at=row["last_code_sent_at"],
        reset_token_hash=row["reset_token_hash"],
        reset_expires_at=row["reset_expires_at"],
        last_login_at=row["last_login_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresIdentityRepository:
    """
    Implements IdentityRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    # Reads

    def get(self, identity_id: str) -> IdentityRecord | None:
        query = f"SELECT {_COLUMNS} FROM identities WHERE id = %s"
        return self._fetch_one(query, (identity_id,))

    def find_by_email(self, email: str, kind: ActorKind | None = None) -> IdentityRecord | None:
        if kind is None:
            query = f"SELECT {_COLUMNS} FROM identities WHERE email = %s"
            return self._fetch_one(query, (email,))
        query = f"SELECT {_COLUMNS} FROM identities WHERE email = %s AND kind = %s"
        return self._fetch_one(query, (email, kind.value))

    def find_by_contact(self, email: str | None, phone: str | None) -> IdentityRecord | None:
        # Email match wins over phone match
        query = f"""
            SELECT {_COLUMNS} FROM identities
            WHERE email = %(email)s OR phone = %(phone)s
            ORDER BY (email = %(email)s) DESC NULLS LAST
            LIMIT 1
        """
        return self._fetch_one(query, {"email": email, "phone": phone})

    # Registration

    def start_registration(self, draft: IdentityRecord) -> IdentityRecord | None:
        """
        Insert a new registration or re-enter a non-completed one.

        Matching rows are locked with SELECT FOR UPDATE; a concurrent insert
        that wins the UNIQUE race makes the INSERT return nothing and the
        lookup is repeated once.
        """
        select_sql = f"""
            SELECT {_COLUMNS} FROM identities
            WHERE email = %s OR phone = %s
            FOR UPDATE
        """
        insert_sql = f"""
            INSERT INTO identities (
                id, kind, email, phone, first_name, last_name, profile,
                active, registration_stage, staged_payloads
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING {_COLUMNS}
        """
        reenter_sql = f"""
            UPDATE identities
            SET email = %s,
                phone = %s,
                first_name = %s,
                last_name = %s,
                profile = %s,
                registration_stage = 'personal-info',
                staged_payloads = staged_payloads || %s,
                {_CLEAR_CODE},
                updated_at = NOW()
            WHERE id = %s AND registration_stage <> 'completed'
            RETURNING {_COLUMNS}
        """

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            for _ in range(2):
                cursor.execute(select_sql, (draft.email, draft.phone))
                rows = cursor.fetchall()

                if not rows:
                    cursor.execute(
                        insert_sql,
                        (
                            draft.id,
                            draft.kind.value,
                            draft.email,
                            draft.phone,
                            draft.first_name,
                            draft.last_name,
                            Jsonb(draft.profile),
                            draft.active,
                            draft.registration_stage.value,
                            Jsonb(draft.staged_payloads),
                        ),
                    )
                    inserted = cursor.fetchone()
                    if inserted is not None:
                        conn.commit()
                        return _row_to_record(inserted)
                    continue

                if len(rows) > 1 or rows[0]["registration_stage"] == RegistrationStage.COMPLETED.value:
                    conn.commit()
                    return None

                cursor.execute(
                    reenter_sql,
                    (
                        draft.email,
                        draft.phone,
                        draft.first_name,
                        draft.last_name,
                        Jsonb(draft.profile),
                        Jsonb(draft.staged_payloads),
                        rows[0]["id"],
                    ),
                )
                row = cursor.fetchone()
                conn.commit()
                return _row_to_record(row)

            conn.commit()
            return None

    def create(self, record: IdentityRecord) -> bool:
        """
        Insert a complete record.

        Returns:
            True if inserted, False if email or phone is already taken
        """
        insert_sql = """
            INSERT INTO identities (
                id, kind, email, phone, first_name, last_name, profile, medical_history,
                password_hash, active, contact_verified, registration_stage
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
        """

        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(
                insert_sql,
                (
                    record.id,
                    record.kind.value,
                    record.email,
                    record.phone,
                    record.first_name,
                    record.last_name,
                    Jsonb(record.profile),
                    Jsonb(record.medical_history),
                    record.password_hash,
                    record.active,
                    record.contact_verified,
                    record.registration_stage.value,
                ),
            )
            conn.commit()
            return cursor.rowcount == 1

    def advance_stage(
        self,
        identity_id: str,
        expected: tuple[RegistrationStage, ...],
        new_stage: RegistrationStage,
        changes: dict[str, Any],
        snapshot: tuple[str, dict[str, Any]] | None = None,
    ) -> IdentityRecord | None:
        unknown = set(changes) - _STAGE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported stage columns: {sorted(unknown)}")

        assignments = [sql.SQL("registration_stage = %s"), sql.SQL("updated_at = NOW()")]
        params: list[Any] = [new_stage.value]
        for name, value in changes.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
            params.append(_adapt(name, value))
        if snapshot is not None:
            key, payload = snapshot
            assignments.append(sql.SQL("staged_payloads = staged_payloads || %s"))
            params.append(Jsonb({key: payload}))

        query = sql.SQL(
            "UPDATE identities SET {} WHERE id = %s AND registration_stage = ANY(%s) RETURNING {}"
        ).format(sql.SQL(", ").join(assignments), sql.SQL(_COLUMNS))
        params.extend([identity_id, [stage.value for stage in expected]])

        return self._update_returning(query, params)

    # One-time codes

    def issue_code(
        self, identity_id: str, code: str, expires_at: datetime, now: datetime
    ) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET pending_code = %s,
                code_expires_at = %s,
                code_attempts = 0,
                last_code_sent_at = %s,
                updated_at = NOW()
            WHERE id = %s AND registration_stage = 'contact-verification'
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (code, expires_at, now, identity_id))

    def resend_code(
        self,
        identity_id: str,
        code: str,
        expires_at: datetime,
        now: datetime,
        sent_before: datetime,
        max_sends: int,
    ) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET pending_code = %s,
                code_expires_at = %s,
                code_attempts = code_attempts + 1,
                last_code_sent_at = %s,
                updated_at = NOW()
            WHERE id = %s
              AND registration_stage = 'contact-verification'
              AND (last_code_sent_at IS NULL OR last_code_sent_at <= %s)
              AND code_attempts < %s
            RETURNING {_COLUMNS}
        """
        return self._update_returning(
            query, (code, expires_at, now, identity_id, sent_before, max_sends)
        )

    def record_code_mismatch(self, identity_id: str) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET code_attempts = code_attempts + 1, updated_at = NOW()
            WHERE id = %s AND registration_stage = 'contact-verification'
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (identity_id,))

    def complete_verification(
        self, identity_id: str, code: str, now: datetime
    ) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET {_CLEAR_CODE},
                staged_payloads = '{{}}'::jsonb,
                contact_verified = TRUE,
                active = TRUE,
                registration_stage = 'completed',
                updated_at = NOW()
            WHERE id = %s
              AND registration_stage = 'contact-verification'
              AND pending_code = %s
              AND code_expires_at >= %s
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (identity_id, code, now))

    # Lockout

    def register_login_failure(
        self, identity_id: str, now: datetime, threshold: int, lock_until: datetime
    ) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET failed_attempts = CASE
                    WHEN locked_until IS NOT NULL AND locked_until <= %(now)s THEN 1
                    ELSE failed_attempts + 1
                END,
                locked_until = CASE
                    WHEN locked_until IS NOT NULL AND locked_until <= %(now)s THEN NULL
                    WHEN locked_until IS NULL AND failed_attempts + 1 >= %(threshold)s
                        THEN %(lock_until)s
                    ELSE locked_until
                END,
                updated_at = NOW()
            WHERE id = %(id)s
            RETURNING {_COLUMNS}
        """
        params = {"now": now, "threshold": threshold, "lock_until": lock_until, "id": identity_id}
        return self._update_returning(query, params)

    def register_login_success(self, identity_id: str, now: datetime) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET failed_attempts = 0,
                locked_until = NULL,
                last_login_at = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (now, identity_id))

    # Password lifecycle

    def set_reset_token(
        self, identity_id: str, token_hash: str | None, expires_at: datetime | None
    ) -> None:
        query = """
            UPDATE identities
            SET reset_token_hash = %s, reset_expires_at = %s, updated_at = NOW()
            WHERE id = %s
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(query, (token_hash, expires_at, identity_id))
            conn.commit()

    def consume_reset_token(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET password_hash = %s,
                reset_token_hash = NULL,
                reset_expires_at = NULL,
                updated_at = NOW()
            WHERE reset_token_hash = %s AND reset_expires_at > %s
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (password_hash, token_hash, now))

    def update_password(self, identity_id: str, password_hash: str) -> IdentityRecord | None:
        query = f"""
            UPDATE identities
            SET password_hash = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_COLUMNS}
        """
        return self._update_returning(query, (password_hash, identity_id))

    def update_profile(self, identity_id: str, changes: dict[str, Any]) -> IdentityRecord | None:
        unknown = set(changes) - _PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported profile columns: {sorted(unknown)}")

        assignments = [sql.SQL("updated_at = NOW()")]
        params: list[Any] = []
        for name, value in changes.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
            params.append(_adapt(name, value))

        query = sql.SQL("UPDATE identities SET {} WHERE id = %s RETURNING {}").format(
            sql.SQL(", ").join(assignments), sql.SQL(_COLUMNS)
        )
        params.append(identity_id)

        try:
            return self._update_returning(query, params)
        except errors.UniqueViolation as e:
            raise DuplicateIdentity("Phone number already registered") from e

    # Helpers

    def _fetch_one(self, query: Any, params: Any) -> IdentityRecord | None:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, params)
            return _row_to_record(cursor.fetchone())

    def _update_returning(self, query: Any, params: Any) -> IdentityRecord | None:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            conn.commit()
            return _row_to_record(row)


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            with pool.connection() as conn:
                conn.execute(sql_file.read_text())

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
