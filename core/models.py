"""
core/models.py -- Domain dataclasses for authorization grants and directory identities.

Pure data containers. Persistence lives in access/store.py; the directory
projection is produced by directory/graph.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class AuthorizationRecord:
    """One grant of access for one user under one RADIUS server context.

    (user_principal_name, server_id) is unique in the database. password_hash
    and last_password_update stay None until the credential store writes a
    digest for this user.

    id and created_at are None before the record is written.
    """

    user_principal_name: str
    server_id: str
    display_name: str | None = None
    password_hash: str | None = None  # SHA-256 hex, cache only
    last_password_update: datetime | None = None
    created_at: datetime | None = None
    id: int | None = None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)


@dataclass(frozen=True)
class IdentityRecord:
    """Read-only projection of a directory user. Never persisted as-is."""

    principal_name: str
    display_name: str | None = None
