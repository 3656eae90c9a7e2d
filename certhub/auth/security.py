import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings


http_bearer = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


@dataclass
class Actor:
    """Caller identity taken from the bearer token. Users live in the identity provider, not here."""
    id: str
    roles: List[str] = field(default_factory=list)


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(actor_id: str, roles: Optional[List[str]] = None) -> str:
    return _create_token(actor_id, settings.jwt_ttl_seconds, extra={"roles": roles or []})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_actor(creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)) -> Actor:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        roles = [str(roles)]
    return Actor(id=str(subject), roles=[str(r) for r in roles])


def require_roles(*required_roles: str):
    """At least one of the roles (OR); admin always passes."""
    def _dep(actor: Actor = Depends(get_current_actor)):
        role_names = {r.lower() for r in actor.roles}
        if ADMIN_ROLE in role_names:
            return actor
        if not role_names.intersection(r.lower() for r in required_roles):
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor

    return _dep
