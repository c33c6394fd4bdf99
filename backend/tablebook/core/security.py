"""
Caller identity resolution.

The core never handles credentials. It receives an Actor (user id + role)
decoded from a bearer JWT issued elsewhere.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from tablebook.core.config import get_settings

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_CUSTOMER = "customer"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLE_SYSTEM = "system"

STAFF_ROLES = frozenset({ROLE_MANAGER, ROLE_ADMIN, ROLE_SYSTEM})


@dataclass(frozen=True)
class Actor:
    user_id: Optional[int]
    role: str = ROLE_CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can_access(self, owner_id: int) -> bool:
        return self.is_staff or self.user_id == owner_id


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_actor(token: str) -> Optional[Actor]:
    """Returns the Actor for a valid token, None if invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        return Actor(user_id=int(subject), role=payload.get("role", ROLE_CUSTOMER))
    except (JWTError, ValueError):
        return None


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    actor = decode_actor(credentials.credentials) if credentials else None
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def get_staff_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Admin privileges required.",
        )
    return actor
