"""
api/dependencies.py -- FastAPI Depends() helpers for the admin API.

Operator tooling authenticates with a static key in the X-API-Key header,
compared in constant time against ADMIN_API_KEY (stored on app.state by the
lifespan). An empty ADMIN_API_KEY rejects every request: the admin API is off
unless explicitly configured.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from access.credentials import CredentialStore
from access.resolver import AuthorizationResolver


def require_admin_key(request: Request) -> None:
    """Raise HTTP 401 unless X-API-Key matches the configured admin key.

    Use as a router-level dependency:
        router = APIRouter(dependencies=[Depends(require_admin_key)])
    """
    expected: str = getattr(request.app.state, "admin_api_key", "") or ""
    supplied = request.headers.get("X-API-Key", "")
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "A valid X-API-Key header is required."},
        )


def get_resolver(request: Request) -> AuthorizationResolver:
    return request.app.state.resolver


def get_credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials
