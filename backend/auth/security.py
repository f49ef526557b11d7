"""
Password hashing and access-token helpers.

Configuration is read from the environment once, at import:

- JWT_SECRET_KEY: signing key; mandatory when ENVIRONMENT is production or staging
- JWT_ALGORITHM: one of HS256/HS384/HS512 (default HS256)
- ACCESS_TOKEN_EXPIRE_MINUTES: token lifetime, 1..10080 (default 1440)

Route handlers only ever see the User that get_current_user resolved from a
verified token.
"""

import logging
import os
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from time_utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRE_MINUTES = 1440
MAX_EXPIRE_MINUTES = 10080  # one week
SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def is_production_like() -> bool:
    return os.environ.get("ENVIRONMENT", "development").lower() in ("production", "staging")


def _load_secret_key() -> str:
    key = os.environ.get("JWT_SECRET_KEY")
    if key:
        return key
    if is_production_like():
        raise ValueError("JWT_SECRET_KEY must be set when ENVIRONMENT is production or staging")
    logger.warning("JWT_SECRET_KEY is not set, signing tokens with a random per-process key")
    return "dev-" + secrets.token_urlsafe(32)


def _load_algorithm() -> str:
    algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    if algorithm not in SUPPORTED_ALGORITHMS:
        logger.warning(f"JWT_ALGORITHM={algorithm} is not supported, falling back to HS256")
        return "HS256"
    return algorithm


def _load_expire_minutes() -> int:
    raw = os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_EXPIRE_MINUTES))
    try:
        minutes = int(raw)
    except ValueError:
        logger.warning(f"ACCESS_TOKEN_EXPIRE_MINUTES={raw!r} is not an integer, using {DEFAULT_EXPIRE_MINUTES}")
        return DEFAULT_EXPIRE_MINUTES
    if not 1 <= minutes <= MAX_EXPIRE_MINUTES:
        logger.warning(
            f"ACCESS_TOKEN_EXPIRE_MINUTES={minutes} outside 1..{MAX_EXPIRE_MINUTES}, using {DEFAULT_EXPIRE_MINUTES}"
        )
        return DEFAULT_EXPIRE_MINUTES
    return minutes


SECRET_KEY = _load_secret_key()
ALGORITHM = _load_algorithm()
ACCESS_TOKEN_EXPIRE_MINUTES = _load_expire_minutes()


def hash_password(password: str) -> str:
    """Argon2id hash suitable for storing in User.password_hash."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token.

    Args:
        data: Claims to embed; ``sub`` carries the user id as a string
        expires_delta: Lifetime override (negative values yield an already
            expired token, which tests rely on)

    Returns:
        Encoded JWT
    """
    claims = dict(data)
    expire = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims["exp"] = expire
    claims["type"] = "access"
    logger.debug(f"Issuing access token for sub={data.get('sub')} valid until {expire}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning its claims, or None if the signature or expiry check fails."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        return None
