"""
directory/graph.py -- Azure AD user lookups through Microsoft Graph.

Authentication is the OAuth 2.0 client-credentials flow: the service's tenant
ID, client ID and secret are exchanged for a bearer token at construction time
(process startup). The client instance is then reused for the process lifetime
and refreshes the token shortly before it expires.

Degraded mode:
  Missing credentials, or credentials the token endpoint rejects, disable the
  client permanently. A disabled client answers every lookup with None, so the
  access gate keeps working from the local store alone. A network failure
  during the startup exchange does NOT disable the client -- the next lookup
  tries again.

Fail-closed:
  lookup() tells "user absent" (HTTP 404) apart from transport/auth failures
  in its log lines, but returns None for both. DirectoryError never leaves
  this module. There is no retry logic at this layer.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import requests

from core.errors import DirectoryError
from core.models import IdentityRecord

logger = logging.getLogger("radiusauthz.directory")

AUTHORITY_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_API = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

_USER_FIELDS = "userPrincipalName,displayName"

# Refresh this many seconds before the token's stated expiry.
_TOKEN_REFRESH_MARGIN = 300


class GraphDirectoryClient:
    """Microsoft Graph identity directory.

    Usage:
        directory = GraphDirectoryClient(tenant_id, client_id, client_secret)
        identity = directory.lookup("alice@example.com")   # IdentityRecord or None
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        graph_url: str = GRAPH_API,
    ) -> None:
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._graph_url = graph_url.rstrip("/")
        self._session = session or requests.Session()
        # Graph never legitimately needs long redirect chains.
        self._session.max_redirects = 3
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._disabled = False

        if not (tenant_id and client_id and client_secret):
            logger.error("Missing Azure AD credentials for user queries; directory lookups disabled")
            self._disabled = True
            return

        try:
            self._acquire_token()
            logger.info("Azure AD directory client initialized")
        except DirectoryError as exc:
            if exc.status_code in (400, 401):
                logger.error("Azure AD rejected the service credentials; directory lookups disabled")
                self._disabled = True
            else:
                logger.warning("Azure AD token request failed at startup, will retry on first lookup: %s", exc)

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "GraphDirectoryClient":
        return cls(
            settings.azure_tenant_id,
            settings.azure_client_id,
            settings.azure_client_secret,
            timeout=settings.directory_timeout_seconds,
            session=session,
        )

    @property
    def enabled(self) -> bool:
        return not self._disabled

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    def _acquire_token(self) -> str:
        """Exchange the service credentials for a bearer token.

        Raises:
            DirectoryError: transport failure or non-2xx from the token endpoint.
                status_code is set when the endpoint answered.
        """
        url = AUTHORITY_URL.format(tenant_id=quote(self._tenant_id, safe=""))
        data = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            resp = self._session.post(url, data=data, timeout=self._timeout)
        except requests.RequestException as exc:
            raise DirectoryError(f"token request failed: {exc}") from exc
        if not resp.ok:
            raise DirectoryError(f"token endpoint returned HTTP {resp.status_code}", status_code=resp.status_code)
        payload = _json_object(resp, "token response")
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise DirectoryError("token response has no access_token")
        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise DirectoryError(f"token response has an invalid expires_in: {payload.get('expires_in')!r}") from exc

        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_REFRESH_MARGIN, 0)
        return token

    def _bearer(self) -> str:
        if self._token is None or time.monotonic() >= self._token_expires_at:
            return self._acquire_token()
        return self._token

    def _get(self, url: str, params: Optional[dict[str, str]] = None) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._bearer()}", "Accept": "application/json"}
        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise DirectoryError(f"Graph request failed: {exc}") from exc
        if resp.status_code == 401:
            # Token revoked or expired early -- force a fresh exchange next time.
            self._token = None
        return resp

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(self, principal_name: str) -> Optional[IdentityRecord]:
        """Return the directory identity for principal_name, or None.

        None covers: disabled client, user absent (404), and every transport,
        auth, or HTTP failure (fail-closed).
        """
        if self._disabled:
            logger.warning("Azure AD client not initialized; skipping lookup for %s", principal_name)
            return None
        try:
            return self._lookup(principal_name)
        except DirectoryError as exc:
            logger.error("Error querying Azure AD for %s: %s", principal_name, exc)
            return None

    def _lookup(self, principal_name: str) -> Optional[IdentityRecord]:
        logger.info("Querying Azure AD for user: %s", principal_name)
        url = f"{self._graph_url}/users/{quote(principal_name, safe='@')}"
        resp = self._get(url, params={"$select": _USER_FIELDS})
        if resp.status_code == 404:
            logger.warning("User %s not found in Azure AD", principal_name)
            return None
        if not resp.ok:
            raise DirectoryError(f"Graph returned HTTP {resp.status_code}", status_code=resp.status_code)
        identity = _to_identity(_json_object(resp, "Graph user record"))
        logger.info("Found user in Azure AD: %s (%s)", identity.display_name, identity.principal_name)
        return identity

    def list_users(self) -> list[IdentityRecord]:
        """Return every user in the tenant, following @odata.nextLink paging.

        Returns an empty list on any failure so bulk callers always get a list.
        """
        if self._disabled:
            logger.warning("Azure AD client not initialized; cannot list users")
            return []
        users: list[IdentityRecord] = []
        url: Optional[str] = f"{self._graph_url}/users"
        params: Optional[dict[str, str]] = {"$select": _USER_FIELDS}
        try:
            while url:
                resp = self._get(url, params=params)
                if not resp.ok:
                    raise DirectoryError(f"Graph returned HTTP {resp.status_code}", status_code=resp.status_code)
                page = _json_object(resp, "Graph user page")
                entries = page.get("value", [])
                if not isinstance(entries, list):
                    raise DirectoryError("Graph user page has no value list")
                users.extend(_to_identity(entry) for entry in entries)
                # nextLink already carries the query string.
                url = page.get("@odata.nextLink")
                params = None
        except DirectoryError as exc:
            logger.error("Error fetching all users from Azure AD: %s", exc)
            return []
        logger.info("Found %d users in Azure AD", len(users))
        return users

    def close(self) -> None:
        self._session.close()


def _json_object(resp: requests.Response, what: str) -> dict[str, Any]:
    """Decode a response body that must be a JSON object."""
    try:
        payload = resp.json()
    except ValueError as exc:
        raise DirectoryError(f"{what} is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise DirectoryError(f"{what} is not a JSON object")
    return payload


def _to_identity(entry: Any) -> IdentityRecord:
    if not isinstance(entry, dict):
        raise DirectoryError("Graph user entry is not a JSON object")
    principal_name = entry.get("userPrincipalName")
    if not isinstance(principal_name, str) or not principal_name:
        raise DirectoryError("Graph user entry has no userPrincipalName")
    display_name = entry.get("displayName")
    return IdentityRecord(
        principal_name=principal_name,
        display_name=display_name if isinstance(display_name, str) else None,
    )
