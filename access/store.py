"""
access/store.py -- Repository for authorization grants of one RADIUS server.

Pattern: Repository + Data Mapper. AccessStore is the repository, _row_to_record
is the mapper. The resolver and the credential store never build SQL themselves.

Every statement is scoped by the server context given to the constructor, so
several RADIUS servers can share one table without seeing each other's grants.

Errors are NOT swallowed here: DatabaseError (and its ConstraintViolation
subclass) propagate so each caller can apply its own policy -- denial on the
read path, a False return on admin mutations, "already present" on write-back.

Security: all statements use bound parameters.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func

from core.models import AuthorizationRecord
from db.client import DatabaseClient
from db.schema import user_radius_access as _grants


class AccessStore:
    """Grants for a single server context.

    Usage:
        store = AccessStore(db, server_id="site-A")
        store.insert("alice@example.com", "Alice")
        record = store.find("alice@example.com")
    """

    def __init__(self, db: DatabaseClient, server_id: str) -> None:
        if not server_id:
            raise ValueError("server_id must be a non-empty string")
        self.db = db
        self.server_id = server_id

    def _scoped(self, username: str):
        return (_grants.c.user_principal_name == username) & (_grants.c.radius_server_id == self.server_id)

    def find(self, username: str) -> Optional[AuthorizationRecord]:
        """Return the grant for username in this server context, or None."""
        result = self.db.execute(_grants.select().where(self._scoped(username)))
        row = result.first()
        return _row_to_record(row) if row is not None else None

    def list_all(self) -> list[AuthorizationRecord]:
        """Return all grants for this server context ordered by principal name."""
        result = self.db.execute(
            _grants.select()
            .where(_grants.c.radius_server_id == self.server_id)
            .order_by(_grants.c.user_principal_name)
        )
        return [_row_to_record(r) for r in result.rows]

    def insert(self, username: str, display_name: Optional[str] = None) -> None:
        """Insert a grant.

        Raises ConstraintViolation if (username, server_id) already exists.
        """
        self.db.execute(
            _grants.insert().values(
                user_principal_name=username,
                displayName=display_name,
                radius_server_id=self.server_id,
            )
        )

    def delete(self, username: str) -> int:
        """Delete the grant for username. Returns the number of rows removed (0 or 1)."""
        return self.db.execute(_grants.delete().where(self._scoped(username))).rowcount

    def set_password_hash(self, username: str, password_hash: str) -> int:
        """Store a digest and stamp last_password_update. Returns rows matched (0 or 1)."""
        result = self.db.execute(
            _grants.update()
            .where(self._scoped(username))
            .values(password_hash=password_hash, last_password_update=func.current_timestamp())
        )
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> AuthorizationRecord:
    # Rows read before the credential migration ran lack the hash columns.
    return AuthorizationRecord(
        id=row.id,
        user_principal_name=row.user_principal_name,
        display_name=row.displayName,
        server_id=row.radius_server_id,
        password_hash=getattr(row, "password_hash", None),
        last_password_update=getattr(row, "last_password_update", None),
        created_at=row.createdAt,
    )
