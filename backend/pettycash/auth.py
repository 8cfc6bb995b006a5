"""Authentication helpers and FastAPI security dependencies.

Sessions are signed JWT tokens carried in an HttpOnly cookie set by the
login endpoint. API clients may send the same token as a bearer header
instead. `get_current_user` resolves either form to an active `User`;
`require_role` narrows an endpoint to a set of roles.

Token verification raises HTTPExceptions on failure so the helpers can be
used directly inside route dependencies.
"""

import threading
import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

bearer_scheme = HTTPBearer(auto_error=False)


class RevokedTokens:
    """In-memory set of logged-out token ids, kept until the tokens expire."""

    def __init__(self):
        self._revoked = {}
        self._lock = threading.Lock()

    def revoke(self, jti: str, expires_at: int) -> None:
        now = time.time()
        with self._lock:
            for stale in [k for k, exp in self._revoked.items() if exp <= now]:
                del self._revoked[stale]
            self._revoked[jti] = expires_at

    def is_revoked(self, jti: Optional[str]) -> bool:
        if not jti:
            return False
        with self._lock:
            return jti in self._revoked


revoked_tokens = RevokedTokens()


def decode_token(token: str):
    """Decode and verify a session token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.SESSION_SECRET, algorithms=[settings.SESSION_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(status_code=401, detail='session expired') from e
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail='invalid session') from e


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The role is read from the database on every request so role changes
    and deactivation take effect without a new login.
    """
    token = _extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail='not authenticated')
    payload = decode_token(token)
    if revoked_tokens.is_revoked(payload.get('jti')):
        raise HTTPException(status_code=401, detail='session revoked')
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid session payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    if not user.is_active:
        raise HTTPException(status_code=403, detail='account is deactivated')
    return user


def require_role(*roles: models.Role):
    """Build a dependency that only lets users with one of `roles` through."""
    allowed = {r.value for r in roles}

    def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail='insufficient permissions')
        return user

    return _dependency


def revoke_session(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> bool:
    """Revoke the caller's session token, if any. Returns True when a token was revoked.

    Invalid or expired tokens are ignored since they already grant nothing.
    """
    token = _extract_token(request, credentials)
    if not token:
        return False
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[settings.SESSION_ALGORITHM])
    except jwt.InvalidTokenError:
        return False
    if not payload.get('jti'):
        return False
    revoked_tokens.revoke(payload['jti'], int(payload.get('exp', 0)))
    return True
