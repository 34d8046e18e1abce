"""
Signed bearer tokens for API clients (the mobile app).

Tokens are HS256 JWTs carrying ``id``, ``email`` and ``name`` with an absolute expiry; there is no refresh and
no server-side revocation list.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError as PydanticValidationError

from family_ledger.config import settings
from family_ledger.managers.logging_manager import get_logger

logger = get_logger(prefix="[Auth Service Tokens]")


class TokenClaims(BaseModel):
    id: str
    email: str
    name: str


def _secret_key() -> str:
    secret_key = settings.SECRET_KEY
    if hasattr(secret_key, "get_secret_value"):
        secret_key = secret_key.get_secret_value()
    if not isinstance(secret_key, str) or not secret_key:
        logger.error("JWT secret key is missing or invalid. Check your settings.SECRET_KEY.")
        raise RuntimeError("JWT secret key is missing or invalid. Check your settings.SECRET_KEY.")
    return secret_key


def issue_bearer_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a bearer token for the given user claims.

    Args:
        claims: Must contain ``id``, ``email`` and ``name``.
        expires_delta: Lifetime override; defaults to ``BEARER_TOKEN_EXPIRE_DAYS``.

    Returns:
        str: Encoded JWT.
    """
    subject = TokenClaims.model_validate(claims)
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(days=settings.BEARER_TOKEN_EXPIRE_DAYS))
    to_encode = subject.model_dump()
    to_encode.update({"iat": now, "exp": expire})
    token = jwt.encode(to_encode, _secret_key(), algorithm=settings.ALGORITHM)
    logger.debug("Bearer token issued for user %s, expires %s", subject.id, expire.isoformat())
    return token


def verify_bearer_token(token: str) -> Optional[TokenClaims]:
    """Return the claims of a valid token, or None for a bad signature, a malformed or expired token, or missing claims."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, _secret_key(), algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.debug("Bearer token rejected: %s", e)
        return None
    try:
        return TokenClaims.model_validate(payload)
    except PydanticValidationError:
        logger.debug("Bearer token rejected: required claims missing")
        return None
