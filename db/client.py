"""
db/client.py -- Parameterized statement execution over a bounded connection pool.

DatabaseClient is deliberately thin: it runs one statement per transaction,
returns the rows, and translates driver errors into the core.errors taxonomy.
It performs no retries and never interprets results -- deciding what a missing
row or a constraint hit means is the caller's job.

Pool model:
  QueuePool with pool_size connections and max_overflow=0 gives a hard upper
  bound on concurrent database work. pool_timeout=None means callers beyond
  that bound wait in line for a free connection instead of failing.

  In-memory SQLite URLs keep SQLAlchemy's default pool (a QueuePool would hand
  each connection its own empty database).

Bounded pings:
  ping(timeout=...) bypasses the pool and opens one throwaway DBAPI connection
  with the driver's connect timeout set, so a blackholed host costs at most
  `timeout` seconds instead of the driver default (10s for PyMySQL).

Security: statements are SQLAlchemy Core constructs or text() with bound
parameters. No f-strings in SQL.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql import Executable

from core.errors import ConstraintViolation, QueryError

logger = logging.getLogger("radiusauthz.db")

DEFAULT_POOL_SIZE = 10

# Driver keyword that bounds connection setup, per backend. PyMySQL also gets a
# read timeout so a server that accepts but never answers cannot stall a ping.
_TIMEOUT_ARGS = {
    "mysql": ("connect_timeout", "read_timeout"),
    "sqlite": ("timeout",),
}


@dataclass
class QueryResult:
    """Materialized outcome of one statement.

    rows is empty for statements that return no rows. rowcount is whatever the
    driver reports for DML (matched rows for UPDATE/DELETE) and -1 otherwise.
    """

    rows: list[Any] = field(default_factory=list)
    rowcount: int = -1

    def first(self) -> Any | None:
        return self.rows[0] if self.rows else None


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the write-back insert.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_sqlite(url) -> bool:
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


class DatabaseClient:
    """Pooled statement executor.

    Usage:
        db = DatabaseClient("mysql+pymysql://radius:pw@db/radius")
        result = db.execute("SELECT * FROM user_radius_access WHERE radius_server_id = :sid", {"sid": "site-A"})
        db.close()
    """

    def __init__(self, db_url: str, pool_size: int = DEFAULT_POOL_SIZE) -> None:
        url = make_url(db_url)
        is_sqlite = url.get_backend_name() == "sqlite"
        kwargs: dict[str, Any] = {}
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
        if not (is_sqlite and _is_memory_sqlite(url)):
            kwargs.update(pool_size=pool_size, max_overflow=0, pool_timeout=None, pool_pre_ping=True)
        self.engine: Engine = create_engine(url, **kwargs)
        self.pool_size = pool_size
        if is_sqlite and not _is_memory_sqlite(url):
            event.listen(self.engine, "connect", _set_wal_mode)

    def describe(self) -> str:
        """Return the connection target with the password masked, for log lines."""
        return self.engine.url.render_as_string(hide_password=True)

    def execute(self, statement: Executable | str, params: Mapping[str, Any] | None = None) -> QueryResult:
        """Run one statement in its own transaction and return its rows.

        Raises:
            ConstraintViolation: the statement hit a unique/integrity constraint.
            QueryError: any other database failure (connection, syntax, lock).
        """
        stmt = text(statement) if isinstance(statement, str) else statement
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt, dict(params) if params else {})
                rows = result.fetchall() if result.returns_rows else []
                return QueryResult(rows=rows, rowcount=result.rowcount)
        except IntegrityError as exc:
            raise ConstraintViolation(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            logger.error("Database query error: %s", exc.__class__.__name__)
            raise QueryError(str(exc)) from exc

    def ping(self, timeout: float | None = None) -> bool:
        """Return True when a trivial query succeeds. Never raises.

        Without a timeout the check goes through the pool. With one, it opens a
        dedicated connection whose setup and read are bounded by timeout seconds.
        """
        if timeout is None:
            try:
                self.execute("SELECT 1")
            except QueryError as exc:
                logger.debug("Database ping failed: %s", exc)
                return False
            return True
        return self._ping_direct(timeout)

    def _ping_direct(self, timeout: float) -> bool:
        dialect = self.engine.dialect
        cargs, opts = dialect.create_connect_args(self.engine.url)
        cparams = dict(opts)
        for name in _TIMEOUT_ARGS.get(dialect.name, ()):
            cparams[name] = timeout
        try:
            conn = dialect.connect(*cargs, **cparams)
        except (dialect.loaded_dbapi.Error, OSError) as exc:
            logger.debug("Direct database ping failed to connect: %s", exc)
            return False
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchall()
            cursor.close()
        except (dialect.loaded_dbapi.Error, OSError) as exc:
            logger.debug("Direct database ping query failed: %s", exc)
            return False
        finally:
            conn.close()
        return True

    def close(self) -> None:
        self.engine.dispose()
