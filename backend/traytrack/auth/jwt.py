"""JWT token creation and decoding.

Tokens are issued by the identity service; this side only decodes them.
``create_access_token`` exists for tooling and tests.

Token claims:
  - sub:          operator ID
  - name:         display name
  - role:         admin | manager | operator
  - permissions:  list of effective permission strings
  - station_id:   station the operator is bound to (handheld sessions)
  - type:         "access"
  - exp:          expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from traytrack.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    operator_id: str,
    role: str,
    permissions: list[str],
    station_id: str | None = None,
    name: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": operator_id,
        "role": role,
        "permissions": permissions,
        "type": "access",
        "exp": expire,
    }
    if name:
        payload["name"] = name
    if station_id:
        payload["station_id"] = station_id
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
