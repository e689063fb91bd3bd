"""
PostgreSQL repository adapters - Implement the domain persistence ports.

This module provides the PostgreSQL implementations of the developer,
identifier and credential repositories using psycopg3 with raw SQL.

Concurrency Design:
-------------------
Uniqueness is enforced by the database, never by a read-then-write in
Python. Email, payment customer id, identifier name and uri, credential
uuid and issuance key all carry UNIQUE constraints; a losing concurrent
insert surfaces as psycopg.errors.UniqueViolation and is translated to
ConflictError for the domain to settle.

The single-use guarantee of verification codes relies on
consume_challenge(), a compare-and-set UPDATE whose WHERE clause matches
the hash the caller verified against. Only one of several concurrent
callers sees rowcount == 1.

There is no whole-row save. Each onboarding step has its own UPDATE that
sets only the columns the step owns, guarded by a WHERE clause on the
state it requires (no verified email for a new challenge, no paid
subscription for a checkout), and moves lifecycle_state forward only.
A caller acting on a stale read cannot undo a committed step.

Any other driver error is translated to PersistenceError so the domain
never sees psycopg types.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from src.domain.exceptions import ConflictError, NotFoundError, PersistenceError
from src.domain.models import (
    CredentialRecord,
    CredentialStatus,
    DeveloperRecord,
    ExtensionType,
    IdentifierRecord,
    IdentifierStatus,
    IdentifierType,
    LifecycleState,
    PlanType,
    SubscriptionRecord,
)

logger = logging.getLogger(__name__)

_DEVELOPER_COLUMNS = (
    "id, email, first_name, last_name, company_name, description, web_link, "
    "linked_in, github, hugging_face, domain_name, extension_type, extension_name, "
    "email_verified, verification_code_hash, verification_code_expiry, "
    "payment_customer_id, subscription, lifecycle_state, created_at, updated_at"
)

_IDENTIFIER_COLUMNS = (
    "name, uri, document, owner_id, identifier_type, description, status, "
    "key_material, created_at, updated_at"
)

_CREDENTIAL_COLUMNS = (
    "uuid, issuer, subject, issuance_date, expiration_date, credential_type, "
    "credential, owner_id, signed_jwt, status, issuance_key, created_at"
)

_LIFECYCLE_VALUES = [state.value for state in LifecycleState]

# Keeps the stored state when it is already at or beyond %(state)s.
_ADVANCE_LIFECYCLE = """lifecycle_state = CASE
        WHEN array_position(%(states)s::text[], lifecycle_state::text)
             >= array_position(%(states)s::text[], %(state)s::text)
        THEN lifecycle_state ELSE %(state)s END"""

# JSON null reads back as SQL NULL through ->>
_NO_PAID_SUBSCRIPTION = "(subscription IS NULL OR subscription->>'subscription_id' IS NULL)"


class _PostgresRepository:
    """Shared connection handling and error translation."""

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
                cursor.execute(sql, params)
                return cursor.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"Read failed: {e}") from e

    def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"Read failed: {e}") from e

    def _execute(
        self, sql: str, params: tuple[Any, ...] | dict[str, Any], conflict: str = ""
    ) -> int:
        """
        Run one write statement and commit.

        Returns:
            Number of affected rows
        """
        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, params)
                conn.commit()
                return cursor.rowcount
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError(conflict or "Record already exists") from e
        except psycopg.Error as e:
            raise PersistenceError(f"Write failed: {e}") from e

    def _execute_returning(
        self, sql: str, params: tuple[Any, ...], conflict: str = ""
    ) -> tuple[Any, ...] | None:
        """Run one write statement with a RETURNING clause and commit."""
        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, params)
                row = cursor.fetchone()
                conn.commit()
                return row
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError(conflict or "Record already exists") from e
        except psycopg.Error as e:
            raise PersistenceError(f"Write failed: {e}") from e


class PostgresDeveloperRepository(_PostgresRepository):
    """
    Implements DeveloperRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def create(self, developer: DeveloperRecord) -> None:
        sql = f"""
            INSERT INTO developers ({_DEVELOPER_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                developer.id,
                developer.email,
                developer.first_name,
                developer.last_name,
                developer.company_name,
                developer.description,
                developer.web_link,
                developer.linked_in,
                developer.github,
                developer.hugging_face,
                developer.domain_name,
                developer.extension_type.value,
                developer.extension_name,
                developer.email_verified,
                developer.verification_code_hash,
                developer.verification_code_expiry,
                developer.payment_customer_id,
                _subscription_to_json(developer.subscription),
                developer.lifecycle_state.value,
                developer.created_at,
                developer.updated_at,
            ),
            conflict="Email already registered",
        )

    def get(self, developer_id: str) -> DeveloperRecord | None:
        row = self._fetch_one(
            f"SELECT {_DEVELOPER_COLUMNS} FROM developers WHERE id = %s", (developer_id,)
        )
        return _developer_from_row(row) if row else None

    def get_by_email(self, email: str) -> DeveloperRecord | None:
        row = self._fetch_one(
            f"SELECT {_DEVELOPER_COLUMNS} FROM developers WHERE email = %s", (email,)
        )
        return _developer_from_row(row) if row else None

    def get_by_customer_id(self, customer_id: str) -> DeveloperRecord | None:
        row = self._fetch_one(
            f"SELECT {_DEVELOPER_COLUMNS} FROM developers WHERE payment_customer_id = %s",
            (customer_id,),
        )
        return _developer_from_row(row) if row else None

    def store_challenge(self, developer_id: str, code_hash: str, expiry: datetime) -> bool:
        sql = f"""
            UPDATE developers
            SET verification_code_hash = %(code_hash)s,
                verification_code_expiry = %(expiry)s,
                {_ADVANCE_LIFECYCLE}, updated_at = NOW()
            WHERE id = %(id)s AND NOT email_verified
        """
        params = {"code_hash": code_hash, "expiry": expiry, "id": developer_id}
        return self._conditional_update(sql, params, LifecycleState.CODE_ISSUED)

    def consume_challenge(self, developer_id: str, code_hash: str, sentinel: str) -> bool:
        sql = """
            UPDATE developers
            SET verification_code_hash = %s, updated_at = NOW()
            WHERE id = %s AND verification_code_hash = %s
        """
        # Returns 1 only for the caller whose hash still matched
        return self._execute(sql, (sentinel, developer_id, code_hash)) == 1

    def link_customer(self, developer_id: str, customer_id: str) -> str:
        sql = """
            UPDATE developers
            SET payment_customer_id = COALESCE(payment_customer_id, %s), updated_at = NOW()
            WHERE id = %s
            RETURNING payment_customer_id
        """
        row = self._execute_returning(
            sql,
            (customer_id, developer_id),
            conflict="Payment customer already linked to another developer",
        )
        if row is None:
            raise NotFoundError(f"Developer {developer_id} not found")
        return row[0]

    def mark_email_verified(self, developer_id: str) -> None:
        sql = f"""
            UPDATE developers
            SET email_verified = TRUE, {_ADVANCE_LIFECYCLE}, updated_at = NOW()
            WHERE id = %(id)s
        """
        self._conditional_update(sql, {"id": developer_id}, LifecycleState.EMAIL_VERIFIED)

    def attach_checkout(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        sql = f"""
            UPDATE developers
            SET subscription = %(subscription)s, {_ADVANCE_LIFECYCLE}, updated_at = NOW()
            WHERE id = %(id)s AND {_NO_PAID_SUBSCRIPTION}
        """
        params = {"subscription": _subscription_to_json(subscription), "id": developer_id}
        return self._conditional_update(sql, params, LifecycleState.PAYMENT_PENDING)

    def record_subscription(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        sql = f"""
            UPDATE developers
            SET subscription = %(subscription)s, {_ADVANCE_LIFECYCLE}, updated_at = NOW()
            WHERE id = %(id)s AND {_NO_PAID_SUBSCRIPTION}
        """
        params = {"subscription": _subscription_to_json(subscription), "id": developer_id}
        return self._conditional_update(sql, params, LifecycleState.SUBSCRIBED)

    def advance_lifecycle(self, developer_id: str, state: LifecycleState) -> None:
        sql = f"""
            UPDATE developers SET {_ADVANCE_LIFECYCLE}, updated_at = NOW()
            WHERE id = %(id)s
        """
        self._conditional_update(sql, {"id": developer_id}, state)

    def _conditional_update(
        self, sql: str, params: dict[str, Any], state: LifecycleState
    ) -> bool:
        """
        Run a lifecycle-advancing UPDATE.

        Returns:
            True if the row matched the WHERE clause

        Raises:
            NotFoundError: If no row matched because the developer does not exist
        """
        params = {**params, "states": _LIFECYCLE_VALUES, "state": state.value}
        if self._execute(sql, params) == 1:
            return True
        if self._fetch_one("SELECT 1 FROM developers WHERE id = %s", (params["id"],)) is None:
            raise NotFoundError(f"Developer {params['id']} not found")
        return False


class PostgresIdentifierRepository(_PostgresRepository):
    """Implements IdentifierRepository protocol via psycopg3."""

    def create(self, identifier: IdentifierRecord) -> None:
        sql = f"""
            INSERT INTO identifiers ({_IDENTIFIER_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                identifier.name,
                identifier.uri,
                Jsonb(identifier.document),
                identifier.owner_id,
                identifier.identifier_type.value,
                identifier.description,
                identifier.status.value,
                Jsonb(identifier.key_material) if identifier.key_material is not None else None,
                identifier.created_at,
                identifier.updated_at,
            ),
            conflict=f"Identifier {identifier.name} already exists",
        )

    def get_by_name(self, name: str) -> IdentifierRecord | None:
        row = self._fetch_one(
            f"SELECT {_IDENTIFIER_COLUMNS} FROM identifiers WHERE name = %s", (name,)
        )
        return _identifier_from_row(row) if row else None

    def get_by_uri(self, uri: str) -> IdentifierRecord | None:
        row = self._fetch_one(
            f"SELECT {_IDENTIFIER_COLUMNS} FROM identifiers WHERE uri = %s", (uri,)
        )
        return _identifier_from_row(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[IdentifierRecord]:
        rows = self._fetch_all(
            f"SELECT {_IDENTIFIER_COLUMNS} FROM identifiers "
            "WHERE owner_id = %s ORDER BY created_at",
            (owner_id,),
        )
        return [_identifier_from_row(row) for row in rows]

    def update_document(self, uri: str, document: dict[str, Any]) -> None:
        rowcount = self._execute(
            "UPDATE identifiers SET document = %s, updated_at = NOW() WHERE uri = %s",
            (Jsonb(document), uri),
        )
        if rowcount == 0:
            raise NotFoundError(f"Identifier {uri} not found")

    def revoke(self, uri: str) -> bool:
        revoked = IdentifierStatus.REVOKED.value
        rowcount = self._execute(
            "UPDATE identifiers SET status = %s, updated_at = NOW() WHERE uri = %s AND status <> %s",
            (revoked, uri, revoked),
        )
        if rowcount == 0 and self.get_by_uri(uri) is None:
            raise NotFoundError(f"Identifier {uri} not found")
        return rowcount == 1


class PostgresCredentialRepository(_PostgresRepository):
    """Implements CredentialRepository protocol via psycopg3."""

    def create(self, credential: CredentialRecord) -> None:
        sql = f"""
            INSERT INTO credentials ({_CREDENTIAL_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                credential.uuid,
                credential.issuer,
                credential.subject,
                credential.issuance_date,
                credential.expiration_date,
                list(credential.credential_type),
                Jsonb(credential.credential),
                credential.owner_id,
                credential.signed_jwt,
                credential.status.value,
                credential.issuance_key,
                credential.created_at,
            ),
            conflict=f"Credential {credential.uuid} already exists",
        )

    def get(self, uuid: str) -> CredentialRecord | None:
        row = self._fetch_one(
            f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials WHERE uuid = %s", (uuid,)
        )
        return _credential_from_row(row) if row else None

    def get_by_issuance_key(self, issuance_key: str) -> CredentialRecord | None:
        row = self._fetch_one(
            f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials WHERE issuance_key = %s",
            (issuance_key,),
        )
        return _credential_from_row(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        rows = self._fetch_all(
            f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials "
            "WHERE owner_id = %s ORDER BY issuance_date",
            (owner_id,),
        )
        return [_credential_from_row(row) for row in rows]

    def mark_verified(self, uuid: str) -> bool:
        sql = "UPDATE credentials SET status = %s WHERE uuid = %s AND status = %s"
        rowcount = self._execute(
            sql, (CredentialStatus.VERIFIED.value, uuid, CredentialStatus.UNVERIFIED.value)
        )
        return rowcount == 1

    def revoke(self, uuid: str) -> bool:
        revoked = CredentialStatus.REVOKED.value
        rowcount = self._execute(
            "UPDATE credentials SET status = %s WHERE uuid = %s AND status <> %s",
            (revoked, uuid, revoked),
        )
        if rowcount == 0 and self.get(uuid) is None:
            raise NotFoundError(f"Credential {uuid} not found")
        return rowcount == 1


def _subscription_to_json(subscription: SubscriptionRecord | None) -> Jsonb | None:
    if subscription is None:
        return None
    return Jsonb(
        {
            "session_id": subscription.session_id,
            "subscription_id": subscription.subscription_id,
            "plan_id": subscription.plan_id,
            "plan_type": subscription.plan_type.value if subscription.plan_type else None,
            "start_date": _iso(subscription.start_date),
            "end_date": _iso(subscription.end_date),
            "duration_days": subscription.duration_days,
        }
    )


def _subscription_from_json(data: dict[str, Any] | None) -> SubscriptionRecord | None:
    if not data:
        return None
    return SubscriptionRecord(
        session_id=data["session_id"],
        subscription_id=data.get("subscription_id"),
        plan_id=data.get("plan_id"),
        plan_type=PlanType(data["plan_type"]) if data.get("plan_type") else None,
        start_date=_from_iso(data.get("start_date")),
        end_date=_from_iso(data.get("end_date")),
        duration_days=data.get("duration_days"),
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _developer_from_row(row: dict[str, Any]) -> DeveloperRecord:
    return DeveloperRecord(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        company_name=row["company_name"],
        description=row["description"],
        web_link=row["web_link"],
        linked_in=row["linked_in"],
        github=row["github"],
        hugging_face=row["hugging_face"],
        domain_name=row["domain_name"],
        extension_type=ExtensionType(row["extension_type"]),
        extension_name=row["extension_name"],
        email_verified=row["email_verified"],
        verification_code_hash=row["verification_code_hash"],
        verification_code_expiry=row["verification_code_expiry"],
        payment_customer_id=row["payment_customer_id"],
        subscription=_subscription_from_json(row["subscription"]),
        lifecycle_state=LifecycleState(row["lifecycle_state"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _identifier_from_row(row: dict[str, Any]) -> IdentifierRecord:
    return IdentifierRecord(
        name=row["name"],
        uri=row["uri"],
        document=row["document"],
        owner_id=row["owner_id"],
        identifier_type=IdentifierType(row["identifier_type"]),
        description=row["description"],
        status=IdentifierStatus(row["status"]),
        key_material=row["key_material"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _credential_from_row(row: dict[str, Any]) -> CredentialRecord:
    return CredentialRecord(
        uuid=row["uuid"],
        issuer=row["issuer"],
        subject=row["subject"],
        issuance_date=row["issuance_date"],
        expiration_date=row["expiration_date"],
        credential_type=list(row["credential_type"]),
        credential=row["credential"],
        owner_id=row["owner_id"],
        signed_jwt=row["signed_jwt"],
        status=CredentialStatus(row["status"]),
        issuance_key=row["issuance_key"],
        created_at=row["created_at"],
    )


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
        logger.warning("Migrations directory not found: %s", migrations_dir)
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info("Running %d migration(s)", len(sql_files))

    for sql_file in sql_files:
        logger.info("Executing migration: %s", sql_file.name)
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info("Migration complete: %s", sql_file.name)
        except psycopg.Error as e:
            logger.error("Migration failed: %s - %s", sql_file.name, e)
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
