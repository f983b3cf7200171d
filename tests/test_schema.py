"""Unit tests for db/schema.py -- ensure_schema() and table_exists().

Covers:
- Fresh database: table, unique constraint, and both secondary indexes created
- Idempotency: a second run neither fails nor changes the table definition
- Legacy tables gain the credential columns without losing rows
- Races with another instance (table or column created concurrently) succeed
- Genuine failures surface as SchemaError
"""

from unittest.mock import patch

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from core.errors import ConstraintViolation, SchemaError
from db.client import DatabaseClient
from db.schema import TABLE_NAME, ensure_schema, metadata, table_exists

_LEGACY_DDL = """
CREATE TABLE user_radius_access (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_principal_name VARCHAR(255) NOT NULL,
    displayName VARCHAR(255),
    radius_server_id VARCHAR(100) NOT NULL,
    createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT user_server_unique UNIQUE (user_principal_name, radius_server_id)
)
"""


def _definition(db):
    insp = inspect(db.engine)
    columns = [(c["name"], str(c["type"]), c["nullable"]) for c in insp.get_columns(TABLE_NAME)]
    indexes = sorted((i["name"], tuple(i["column_names"])) for i in insp.get_indexes(TABLE_NAME))
    uniques = sorted((u["name"], tuple(u["column_names"])) for u in insp.get_unique_constraints(TABLE_NAME))
    return columns, indexes, uniques


@pytest.fixture
def empty_db(db_url):
    client = DatabaseClient(db_url)
    yield client
    client.close()


class TestFreshDatabase:
    def test_creates_table(self, empty_db):
        assert table_exists(empty_db, TABLE_NAME) is False
        ensure_schema(empty_db)
        assert table_exists(empty_db, TABLE_NAME) is True

    def test_columns_present(self, empty_db):
        ensure_schema(empty_db)
        names = [c[0] for c in _definition(empty_db)[0]]
        assert names == [
            "id",
            "user_principal_name",
            "displayName",
            "radius_server_id",
            "password_hash",
            "last_password_update",
            "createdAt",
        ]

    def test_unique_constraint_and_indexes(self, empty_db):
        ensure_schema(empty_db)
        _, indexes, uniques = _definition(empty_db)
        assert ("user_server_unique", ("user_principal_name", "radius_server_id")) in uniques
        assert ("idx_user_radius", ("user_principal_name", "radius_server_id")) in indexes
        assert ("idx_radius_server", ("radius_server_id",)) in indexes

    def test_created_at_set_on_insert(self, empty_db):
        ensure_schema(empty_db)
        empty_db.execute(
            "INSERT INTO user_radius_access (user_principal_name, radius_server_id) VALUES (:u, :s)",
            {"u": "alice@example.com", "s": "site-A"},
        )
        row = empty_db.execute("SELECT createdAt FROM user_radius_access").first()
        assert row[0] is not None

    def test_principal_name_unique_ignores_case(self, empty_db):
        ensure_schema(empty_db)
        insert = "INSERT INTO user_radius_access (user_principal_name, radius_server_id) VALUES (:u, :s)"
        empty_db.execute(insert, {"u": "alice@example.com", "s": "site-A"})
        with pytest.raises(ConstraintViolation):
            empty_db.execute(insert, {"u": "ALICE@Example.com", "s": "site-A"})


class TestIdempotency:
    def test_twice_in_sequence_is_a_no_op(self, empty_db):
        ensure_schema(empty_db)
        before = _definition(empty_db)
        ensure_schema(empty_db)
        assert _definition(empty_db) == before

    def test_second_run_keeps_rows(self, db):
        db.execute(
            "INSERT INTO user_radius_access (user_principal_name, radius_server_id) VALUES (:u, :s)",
            {"u": "alice@example.com", "s": "site-A"},
        )
        ensure_schema(db)
        assert db.execute("SELECT COUNT(*) FROM user_radius_access").first()[0] == 1


class TestMigration:
    def test_legacy_table_gains_credential_columns(self, empty_db):
        empty_db.execute(_LEGACY_DDL)
        empty_db.execute(
            "INSERT INTO user_radius_access (user_principal_name, displayName, radius_server_id) VALUES (:u, :d, :s)",
            {"u": "alice@example.com", "d": "Alice", "s": "site-A"},
        )

        ensure_schema(empty_db)

        names = {c[0] for c in _definition(empty_db)[0]}
        assert {"password_hash", "last_password_update"} <= names
        row = empty_db.execute("SELECT user_principal_name, password_hash FROM user_radius_access").first()
        assert row[0] == "alice@example.com"
        assert row[1] is None

    def test_duplicate_column_race_is_success(self, empty_db):
        """Another instance adds the columns between our inspection and our ALTER."""
        ensure_schema(empty_db)
        full = {c[0] for c in _definition(empty_db)[0]}
        legacy = full - {"password_hash", "last_password_update"}

        with patch("db.schema._existing_columns", side_effect=[legacy, full, full]):
            ensure_schema(empty_db)

        assert {c[0] for c in _definition(empty_db)[0]} == full


class TestConcurrentCreate:
    def test_table_created_by_other_instance_is_success(self, empty_db):
        real_create_all = metadata.create_all

        def create_then_fail(engine, checkfirst=True):
            real_create_all(engine, checkfirst=checkfirst)
            raise OperationalError("CREATE TABLE user_radius_access", {}, Exception("table already exists"))

        with patch.object(metadata, "create_all", side_effect=create_then_fail):
            ensure_schema(empty_db)

        assert table_exists(empty_db, TABLE_NAME)

    def test_create_failure_without_table_raises_schema_error(self, empty_db):
        failure = OperationalError("CREATE TABLE user_radius_access", {}, Exception("disk I/O error"))
        with patch.object(metadata, "create_all", side_effect=failure):
            with pytest.raises(SchemaError):
                ensure_schema(empty_db)


class TestTableExists:
    def test_false_for_missing_table(self, db):
        assert table_exists(db, "not_a_table") is False

    def test_false_when_database_unreachable(self, tmp_path):
        client = DatabaseClient(f"sqlite:///{tmp_path / 'missing-dir' / 'grants.db'}")
        try:
            assert table_exists(client, TABLE_NAME) is False
        finally:
            client.close()
