"""
Password hashing, JWT issuing and the bearer-token dependency.

Handlers that need an identity declare an ``AuthContext`` parameter resolved by
``get_auth_context``; nothing is attached to the request object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from foodshare.config import Settings, get_settings
from foodshare.db import DbClient, UserRecord
from foodshare.dependencies import get_db_client
from foodshare.errors import AuthenticationError
from foodshare.types import UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """The verified identity of the caller."""

    user_id: str
    role: UserRole


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_access_token(user: UserRecord, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.user_id,
        "role": UserRole(user.role).value,
        "iat": now,
        "exp": now + timedelta(minutes=settings.token_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError as exc:
        raise AuthenticationError(f"Not authorized: {exc}")
    if not claims.get("sub"):
        raise AuthenticationError("Not authorized: token has no subject")
    return claims


def get_auth_context(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not creds:
        raise AuthenticationError("Not authorized to access this route")
    claims = decode_access_token(creds.credentials, settings)
    user = db.get_user(claims["sub"])
    if not user:
        logger.warning("Token for unknown user %s rejected", claims["sub"])
        raise AuthenticationError("Not authorized: user no longer exists")
    return AuthContext(user_id=user.user_id, role=UserRole(user.role))
