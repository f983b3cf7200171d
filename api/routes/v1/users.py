"""
api/routes/v1/users.py -- Admin routes for authorization grants of this RADIUS server.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /users                      -- list grants for this server context
  POST   /users                      -- add a grant (409 when already present)
  POST   /users/sync                 -- cache every directory user
  GET    /users/{upn}                -- grant detail (digest never returned)
  DELETE /users/{upn}                -- remove a grant
  PUT    /users/{upn}/password       -- store a new cached digest
  GET    /users/{upn}/access         -- run the authorization decision

Every mutation goes through AuthorizationResolver / CredentialStore, which
return bool instead of raising; handlers map False onto 404/409.

The access check can reach the directory and write back a grant, so it is
rate limited.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from access.credentials import CredentialStore
from access.resolver import AuthorizationResolver
from api.dependencies import get_credentials, get_resolver, require_admin_key
from api.limiter import limiter
from api.models import AccessCheckResponse, ErrorDetail, GrantCreate, GrantResponse, PasswordUpdate, SyncResponse
from core.models import IdentityRecord

# Every route on this router requires the admin key.
router = APIRouter(dependencies=[Depends(require_admin_key)])


def _not_found(upn: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"No grant for {upn} on this server.").model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /users -- list grants
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[GrantResponse])
def list_grants(resolver: AuthorizationResolver = Depends(get_resolver)) -> list[GrantResponse]:
    """Return every grant for this server context, ordered by principal name."""
    return [GrantResponse.from_record(r) for r in resolver.get_allowed_users()]


# ---------------------------------------------------------------------------
# POST /users -- add a grant
# ---------------------------------------------------------------------------


@router.post("/users", response_model=GrantResponse, status_code=201)
def create_grant(
    body: GrantCreate,
    resolver: AuthorizationResolver = Depends(get_resolver),
) -> GrantResponse:
    """Grant access without consulting the directory.

    409 when the user already has a grant on this server (or the insert failed;
    the resolver does not distinguish the two for callers).
    """
    identity = IdentityRecord(principal_name=body.user_principal_name, display_name=body.display_name)
    if not resolver.add_allowed_user(identity):
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(
                code="conflict",
                message=f"Could not add {body.user_principal_name}; it may already be allowed.",
            ).model_dump(),
        )
    record = resolver.store.find(body.user_principal_name)
    if record is None:
        raise _not_found(body.user_principal_name)
    return GrantResponse.from_record(record)


# ---------------------------------------------------------------------------
# POST /users/sync -- bulk cache from the directory
# ---------------------------------------------------------------------------


@router.post("/users/sync", response_model=SyncResponse)
def sync_grants(resolver: AuthorizationResolver = Depends(get_resolver)) -> SyncResponse:
    """Insert a grant for every directory user that does not have one yet."""
    return SyncResponse(added=resolver.sync_from_directory())


# ---------------------------------------------------------------------------
# GET /users/{upn} -- grant detail
# ---------------------------------------------------------------------------


@router.get("/users/{upn}", response_model=GrantResponse)
def get_grant(upn: str, credentials: CredentialStore = Depends(get_credentials)) -> GrantResponse:
    record = credentials.get_credential(upn)
    if record is None:
        raise _not_found(upn)
    return GrantResponse.from_record(record)


# ---------------------------------------------------------------------------
# DELETE /users/{upn} -- remove a grant
# ---------------------------------------------------------------------------


@router.delete("/users/{upn}", status_code=204)
def delete_grant(upn: str, resolver: AuthorizationResolver = Depends(get_resolver)) -> Response:
    if not resolver.remove_allowed_user(upn):
        raise _not_found(upn)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# PUT /users/{upn}/password -- cache a new digest
# ---------------------------------------------------------------------------


@router.put("/users/{upn}/password", status_code=204)
def update_password(
    upn: str,
    body: PasswordUpdate,
    credentials: CredentialStore = Depends(get_credentials),
) -> Response:
    """Store the digest of the given password. 404 when the user has no grant."""
    if not credentials.update_password(upn, body.password):
        raise _not_found(upn)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# GET /users/{upn}/access -- authorization decision
# ---------------------------------------------------------------------------


@router.get("/users/{upn}/access", response_model=AccessCheckResponse)
@limiter.limit("60/minute")
def check_access(
    request: Request,
    upn: str,
    resolver: AuthorizationResolver = Depends(get_resolver),
) -> AccessCheckResponse:
    """Run is_allowed(upn). May query the directory and cache a first-time grant."""
    return AccessCheckResponse(user_principal_name=upn, server_id=resolver.server_id, allowed=resolver.is_allowed(upn))
