"""
access/credentials.py -- Cached password digests for offline verification.

When the directory cannot verify a password (outage, protocol limits), the
RADIUS layer can fall back to a digest cached on the user's grant row.

Security note:
  The digest is a single unsalted SHA-256 over the UTF-8 password. That is a
  fast equality check for a cache, NOT a password store: identical passwords
  share a digest and the hash is cheap to brute-force. Use it only as a
  secondary/offline factor. Comparison is constant-time.

Read paths (verify, get_credential, authenticate_offline) never raise.
update_password reports success as a bool.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

from core.errors import DatabaseError
from core.models import AuthorizationRecord
from access.store import AccessStore

logger = logging.getLogger("radiusauthz.access.credentials")


def hash_password(password: str) -> str:
    """Return the SHA-256 hex digest of password (64 lowercase hex chars)."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, digest: Optional[str]) -> bool:
    """Return True if hash_password(password) equals digest."""
    if not isinstance(password, str) or not isinstance(digest, str) or not digest:
        return False
    return hmac.compare_digest(hash_password(password), digest.lower())


class CredentialStore:
    """Digest read/write for grants in one server context.

    Usage:
        creds = CredentialStore(store)
        creds.update_password("alice@example.com", "s3cret")
        record = creds.get_credential("alice@example.com")
        creds.verify("s3cret", record.password_hash)   # True
    """

    def __init__(self, store: AccessStore) -> None:
        self.store = store

    hash = staticmethod(hash_password)
    verify = staticmethod(verify_password)

    def update_password(self, username: str, password: str) -> bool:
        """Store the digest of password on username's grant.

        Returns False without writing anything when the user has no grant in
        this server context or the update fails.
        """
        try:
            matched = self.store.set_password_hash(username, hash_password(password))
        except DatabaseError as exc:
            logger.error("Error updating password for %s: %s", username, exc)
            return False
        if not matched:
            logger.warning("Password not updated: %s has no grant on %s", username, self.store.server_id)
            return False
        logger.info("Password updated for user %s", username)
        return True

    def get_credential(self, username: str) -> Optional[AuthorizationRecord]:
        """Return the grant (including digest) for username, or None."""
        try:
            return self.store.find(username)
        except DatabaseError as exc:
            logger.error("Error getting user %s: %s", username, exc)
            return None

    def authenticate_offline(self, username: str, password: str) -> bool:
        """Verify password against the cached digest. False when nothing is cached."""
        record = self.get_credential(username)
        if record is None or not record.has_password:
            return False
        return verify_password(password, record.password_hash)
