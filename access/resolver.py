"""
access/resolver.py -- Tiered authorization decisions with write-back caching.

Decision order for is_allowed(username):

  1. Local store (AccessStore.find). A cached grant is authoritative: return
     True with no directory call.
  2. Directory lookup. A hit is the source of truth for a first-time grant:
     write a record back (best effort) and return True whatever the write-back
     outcome. A miss -- including a disabled or failing directory -- is False.

Fail-closed: is_allowed() never raises. A database error on the read path, or
any exception from the directory, is logged and treated as a denial.

Concurrency: there is no lock around read-then-write-back. Two requests for the
same new user may both miss locally, both hit the directory and both insert;
the unique constraint on (user_principal_name, radius_server_id) lets exactly
one insert through and the other surfaces as ConstraintViolation, which the
write-back classifies as ALREADY_PRESENT. Unrelated users never contend.

Cached grants are never re-validated, expired, or invalidated here. A user
removed from the directory stays allowed until an administrator calls
remove_allowed_user().

Administrative operations report success as a bool and never raise.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional, Protocol

from core.errors import ConstraintViolation, DatabaseError
from core.models import AuthorizationRecord, IdentityRecord
from access.store import AccessStore

logger = logging.getLogger("radiusauthz.access.resolver")


class Directory(Protocol):
    """Anything that can resolve a principal name to an identity (or None)."""

    def lookup(self, principal_name: str) -> Optional[IdentityRecord]: ...


class WriteBackOutcome(enum.Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"
    FAILED = "failed"


class AuthorizationResolver:
    """Decides whether a user may authenticate against this RADIUS server.

    The directory is injected, not imported, so tests and degraded
    deployments can pass any object with a lookup() method.
    """

    def __init__(self, store: AccessStore, directory: Directory) -> None:
        self.store = store
        self.directory = directory

    @property
    def server_id(self) -> str:
        return self.store.server_id

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def is_allowed(self, username: str) -> bool:
        if not username:
            return False

        logger.info("Checking if user %s is allowed for RADIUS server %s", username, self.server_id)
        try:
            if self.store.find(username) is not None:
                logger.info("User %s found in local database", username)
                return True
        except DatabaseError as exc:
            logger.error("Error checking user %s in local database: %s", username, exc)
            return False

        logger.info("User %s not in local database, checking directory", username)
        try:
            identity = self.directory.lookup(username)
        except Exception:
            # Fail closed whatever the directory raises.
            logger.exception("Directory lookup failed for %s; denying", username)
            return False
        if identity is None:
            logger.info("User %s not found in directory either", username)
            return False

        logger.info("User %s exists in directory", username)
        self._write_back(identity)
        return True

    def _write_back(self, identity: IdentityRecord) -> WriteBackOutcome:
        """Cache a directory hit locally. Failure is logged, never raised."""
        try:
            self.store.insert(identity.principal_name, identity.display_name)
        except ConstraintViolation:
            logger.info("User %s already cached by a concurrent request", identity.principal_name)
            return WriteBackOutcome.ALREADY_PRESENT
        except DatabaseError as exc:
            logger.warning("Could not auto-add user %s to database: %s", identity.principal_name, exc)
            return WriteBackOutcome.FAILED
        logger.info("User %s added to local database", identity.principal_name)
        return WriteBackOutcome.INSERTED

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_allowed_user(self, identity: IdentityRecord | AuthorizationRecord) -> bool:
        """Grant access in this server context, independent of the directory.

        Accepts either an IdentityRecord or an AuthorizationRecord; the record's
        own server_id is ignored in favour of this resolver's context.
        Returns False when the grant already exists or the insert fails.
        """
        if isinstance(identity, AuthorizationRecord):
            name, display_name = identity.user_principal_name, identity.display_name
        else:
            name, display_name = identity.principal_name, identity.display_name
        try:
            self.store.insert(name, display_name)
        except ConstraintViolation:
            logger.warning("User %s is already allowed on %s", name, self.server_id)
            return False
        except DatabaseError as exc:
            logger.error("Error adding allowed user %s: %s", name, exc)
            return False
        logger.info("User %s added to database", name)
        return True

    def remove_allowed_user(self, username: str) -> bool:
        """Revoke access in this server context. True only when a grant was deleted."""
        try:
            removed = self.store.delete(username)
        except DatabaseError as exc:
            logger.error("Error removing allowed user %s: %s", username, exc)
            return False
        if not removed:
            logger.warning("User %s had no grant on %s", username, self.server_id)
            return False
        logger.info("User %s removed from database", username)
        return True

    def get_allowed_users(self) -> list[AuthorizationRecord]:
        """All grants for this server context. DatabaseError propagates."""
        return self.store.list_all()

    def sync_from_directory(self) -> int:
        """Cache every directory user not yet granted here. Returns how many were added.

        Requires a directory exposing list_users(); returns 0 otherwise.
        """
        list_users = getattr(self.directory, "list_users", None)
        if list_users is None:
            logger.warning("Directory does not support listing users; nothing to sync")
            return 0
        added = 0
        for identity in list_users():
            if self._write_back(identity) is WriteBackOutcome.INSERTED:
                added += 1
        logger.info("Directory sync added %d user(s) to %s", added, self.server_id)
        return added
