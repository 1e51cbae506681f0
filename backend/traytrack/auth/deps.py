"""FastAPI dependencies for identity and authorization.

Dependencies:
  get_current_actor        → decode JWT, return Actor (no DB hit)
  require_permission(...)  → restrict to specific granular permissions
  require_client_type(...) → restrict to handheld or desktop clients

The core trusts the identity layer for who the operator is and which
station they are bound to; it only checks that the request is consistent
with those claims.
"""

from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from traytrack.auth.jwt import decode_token
from traytrack.auth.permissions import has_permission

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

HANDHELD = "handheld"
DESKTOP = "desktop"

# X-Client-Type header values → client kind
CLIENT_TYPES = {
    "HH": HANDHELD,
    "FLUTTER": HANDHELD,
    "PC": DESKTOP,
    "REACT": DESKTOP,
}


@dataclass
class Actor:
    id: str
    role: str
    permissions: list[str] = field(default_factory=list)
    station_id: str | None = None
    name: str | None = None


# ── Core actor dependency ───────────────────────────────────

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    payload = decode_token(token)
    actor_id: str | None = payload.get("sub")
    if not actor_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(
        id=actor_id,
        role=payload.get("role", ""),
        permissions=list(payload.get("permissions", [])),
        station_id=payload.get("station_id"),
        name=payload.get("name"),
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory — restrict to actors who hold ALL listed permissions.

    Usage:
        @router.post("/start")
        async def start(actor: Actor = Depends(require_permission("scan.start"))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        missing = [p for p in perms if not has_permission(actor.permissions, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return actor

    return _check


# ── Client type ─────────────────────────────────────────────

def normalize_client_type(raw: str | None) -> str | None:
    if not raw:
        return None
    return CLIENT_TYPES.get(raw.strip().upper())


def require_client_type(*kinds: str):
    """Dependency factory — restrict to requests from the given client kinds."""
    async def _check(x_client_type: str | None = Header(None)) -> str:
        kind = normalize_client_type(x_client_type)
        if kind not in kinds:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires client type: {', '.join(kinds)}",
            )
        return kind

    return _check
