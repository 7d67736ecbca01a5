"""FastAPI security dependencies.

The access token is read from the `Authorization: Bearer` header or,
for browser clients, from the httponly `access_token` cookie. Failures
raise HTTPException(401) so the dependencies can be used directly in
route signatures.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .database import get_session
from .errors import AuthenticationError
from .services.auth import decode_access_token

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

bearer_scheme = HTTPBearer(auto_error=False)


def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE)


def resolve_user(token: str, db: Session) -> models.User:
    try:
        payload = decode_access_token(token)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.message)
    user = repositories.UserRepository(db).get(payload["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="account is inactive")
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """Return the authenticated, active user or raise 401."""
    token = extract_access_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="not authenticated")
    return resolve_user(token, db)


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> Optional[models.User]:
    """Like `get_current_user` but returns None for anonymous requests."""
    token = extract_access_token(request, credentials)
    if not token:
        return None
    return resolve_user(token, db)


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != models.UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="admin access required")
    return user


def require_staff(user: models.User = Depends(get_current_user)) -> models.User:
    """Admins and instructors."""
    if user.role not in (models.UserRole.ADMIN, models.UserRole.INSTRUCTOR):
        raise HTTPException(status_code=403, detail="instructor or admin access required")
    return user
