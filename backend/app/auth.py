"""Authentication helpers and FastAPI security dependencies.

This module provides `decode_token` for access tokens and the FastAPI
dependencies `get_current_user` (validates the bearer token and returns
the corresponding `User` from the database) and `require_admin`.

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

import uuid

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session
from .database import get_session
from .errors import UnauthorizedError
from .services import ACCESS_TOKEN, decode_jwt
from . import models, repositories

bearer_scheme = HTTPBearer(auto_error=False)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


def decode_token(token: str) -> dict:
    """Decode and verify an access token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure. Refresh tokens are rejected here.
    """
    try:
        return decode_jwt(token, ACCESS_TOKEN)
    except UnauthorizedError as e:
        raise HTTPException(status_code=401, detail=e.message, headers=_UNAUTHORIZED_HEADERS)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and looks the user up in the request's session. It raises an
    HTTPException(401) for any authentication issue.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail='Please authenticate', headers=_UNAUTHORIZED_HEADERS)
    payload = decode_token(credentials.credentials)
    try:
        user_id = uuid.UUID(payload['sub'])
    except ValueError:
        raise HTTPException(status_code=401, detail='invalid token payload', headers=_UNAUTHORIZED_HEADERS)
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found', headers=_UNAUTHORIZED_HEADERS)
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    """Dependency that only lets `admin` users through (403 otherwise)."""
    if user.role != models.UserRole.ADMIN:
        raise HTTPException(status_code=403, detail='Forbidden')
    return user
