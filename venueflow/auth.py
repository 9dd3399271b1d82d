from typing import Annotated, Optional
import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False


def is_admin_uid(uid: str, admin_uids: set[str]) -> bool:
    return uid in admin_uids


def is_owner_or_admin(user: CurrentUser, owner_uid: Optional[str]) -> bool:
    return user.is_admin or (owner_uid is not None and owner_uid == user.uid)


def decode_token(token: str, settings: Settings) -> dict:
    """Verify signature, expiry, audience and issuer; return the claims."""
    if not settings.AUTH_SECRET_KEY:
        raise InvalidTokenError("AUTH_SECRET_KEY is missing")
    return jwt.decode(
        token,
        settings.AUTH_SECRET_KEY,
        algorithms=[settings.AUTH_ALGORITHM],
        audience=settings.AUTH_AUDIENCE,
        issuer=settings.AUTH_ISSUER,
        options={"verify_aud": settings.AUTH_AUDIENCE is not None},
    )


def user_from_claims(claims: dict, settings: Settings) -> CurrentUser:
    uid = claims.get("sub") or claims.get("uid")
    if not uid:
        raise InvalidTokenError("token has no subject")
    return CurrentUser(
        uid=uid,
        display_name=claims.get("name"),
        email=claims.get("email"),
        is_admin=is_admin_uid(uid, settings.ADMIN_UIDS),
    )


def get_current_user(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)
    ],
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception
    try:
        claims = decode_token(credentials.credentials, settings)
        return user_from_claims(claims, settings)
    except InvalidTokenError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise credentials_exception


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return current_user
