"""
db/schema.py -- Table definition and idempotent bootstrap for authorization grants.

ensure_schema() runs on every process start, possibly from several RADIUS
servers at once against the same database. It only ever performs additive,
idempotent operations:

  1. metadata.create_all(checkfirst=True) -- create the table (with its unique
     constraint and indexes) if it is absent. When two instances race, the
     loser's CREATE fails with "already exists"; that is success as long as the
     table is present afterwards.
  2. ADD COLUMN for the credential fields on tables created before those
     columns existed. A "duplicate column" failure means another instance won
     the race and is treated as success.

Column names match existing deployments (displayName and createdAt are mixed
case) so an existing table is adopted without a rename.

Schema migration notes:
  metadata.create_all() never alters an existing table, so columns added after
  the first release are listed in _CREDENTIAL_COLUMNS and patched in by
  _migrate_credential_columns().
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
    inspect,
)
from sqlalchemy.exc import SQLAlchemyError

from core.errors import QueryError, SchemaError
from db.client import DatabaseClient

logger = logging.getLogger("radiusauthz.db.schema")

TABLE_NAME = "user_radius_access"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

# Principal names are case-insensitive in Azure AD. MySQL gets that from the
# table collation; SQLite needs it on the column so equality, the unique
# constraint and the index all ignore case.
_PRINCIPAL_NAME = String(255).with_variant(String(255, collation="NOCASE"), "sqlite")

user_radius_access = Table(
    TABLE_NAME,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_principal_name", _PRINCIPAL_NAME, nullable=False, comment="Azure AD User Principal Name (email)"),
    Column("displayName", String(255), comment="User display name"),
    Column("radius_server_id", String(100), nullable=False, comment="RADIUS server identifier"),
    Column("password_hash", String(255), comment="Hashed password for local validation"),
    Column("last_password_update", DateTime, nullable=True, comment="When password was last updated"),
    Column("createdAt", DateTime, server_default=func.current_timestamp()),
    UniqueConstraint("user_principal_name", "radius_server_id", name="user_server_unique"),
    Index("idx_user_radius", "user_principal_name", "radius_server_id"),
    Index("idx_radius_server", "radius_server_id"),
    comment="Stores allowed users for RADIUS authentication",
    mysql_engine="InnoDB",
    mysql_charset="utf8mb4",
    mysql_collate="utf8mb4_unicode_ci",
)

# Added after the first release; patched onto older tables at startup.
_CREDENTIAL_COLUMNS = ("password_hash", "last_password_update")


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


def table_exists(db: DatabaseClient, table_name: str) -> bool:
    """Return True if table_name exists in the connected database. False on any error."""
    try:
        return inspect(db.engine).has_table(table_name)
    except SQLAlchemyError as exc:
        logger.error("Error checking table %s: %s", table_name, exc)
        return False


def _existing_columns(db: DatabaseClient) -> set[str]:
    return {col["name"] for col in inspect(db.engine).get_columns(TABLE_NAME)}


def _create_table(db: DatabaseClient) -> None:
    try:
        metadata.create_all(db.engine, checkfirst=True)
    except SQLAlchemyError as exc:
        # Another instance created the table between our check and our CREATE.
        if table_exists(db, TABLE_NAME):
            logger.info("Table %s created concurrently by another instance", TABLE_NAME)
            return
        raise SchemaError(f"Could not create table {TABLE_NAME}: {exc}") from exc


def _migrate_credential_columns(db: DatabaseClient) -> None:
    """Add credential columns missing from an older table.

    Column names and types come from the Table definition above, never from
    input, so interpolating them into ALTER TABLE is safe: DDL identifiers
    cannot be bound parameters.
    """
    existing = _existing_columns(db)
    for name in _CREDENTIAL_COLUMNS:
        if name in existing:
            continue
        column = user_radius_access.c[name]
        ddl_type = column.type.compile(dialect=db.engine.dialect)
        try:
            db.execute(f"ALTER TABLE {TABLE_NAME} ADD COLUMN {name} {ddl_type} NULL")  # nosemgrep
            logger.info("Added column %s.%s", TABLE_NAME, name)
        except QueryError as exc:
            if name in _existing_columns(db) or "duplicate column" in str(exc).lower():
                logger.info("Column %s.%s already exists", TABLE_NAME, name)
                continue
            raise SchemaError(f"Could not add column {TABLE_NAME}.{name}: {exc}") from exc


def ensure_schema(db: DatabaseClient) -> None:
    """Create and migrate the authorization table. Safe to call on every start.

    Raises:
        SchemaError: the table could not be created or a column could not be added.
    """
    logger.info("Checking and initializing database tables...")
    try:
        _create_table(db)
        _migrate_credential_columns(db)
    except SQLAlchemyError as exc:
        raise SchemaError(f"Schema inspection failed: {exc}") from exc
    logger.info("Database tables verified/initialized successfully")
