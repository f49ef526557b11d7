"""
Request authentication.

get_current_user resolves the Bearer token on a request to an active User.
Its id is the requester id every authorization decision is made against.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.security import verify_token

logger = logging.getLogger(__name__)

# Missing credentials are reported by get_current_user as 401
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the requesting user.

    Raises:
        HTTPException: 401 when the token is absent, fails verification, is
            not an access token or names no known user; 403 when the user
            has been deactivated
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    claims = verify_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid or expired token")
    if claims.get("type") != "access":
        logger.info(f"Token of type {claims.get('type')!r} presented as access token")
        raise _unauthorized("Invalid token type")

    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        logger.info(f"Token subject {claims.get('sub')!r} is not a user id")
        raise _unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.info(f"Token names unknown user {user_id}")
        raise _unauthorized("User not found")
    if not user.is_active:
        logger.info(f"Deactivated user {user_id} attempted access")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return user
