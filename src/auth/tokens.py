"""
API Access Tokens

HS256 JWTs identifying a dashboard user (uid + email). Tokens are issued
by the identity provider in production; `create_access_token` exists for
the CLI and tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict

import jwt

from ..core.exceptions import InvalidTokenError, TokenExpiredError


logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def create_access_token(uid: str, email: str, secret: str, expires_hours: int = 8) -> str:
    """
    Issue a signed token.

    Args:
        uid: User id (becomes the owner id of records the user creates)
        email: User email
        secret: JWT_SECRET_KEY
        expires_hours: Lifetime

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": uid,
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Dict[str, str]:
    """
    Verify a token and return the identity it carries.

    Returns:
        {"uid": ..., "email": ...}

    Raises:
        TokenExpiredError: Token is past its exp claim
        InvalidTokenError: Signature, format or claims are invalid
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid API token: {e}")
        raise InvalidTokenError(f"Invalid token: {e}") from e

    uid = payload.get("sub")
    if not uid:
        raise InvalidTokenError("Token has no subject")
    return {"uid": uid, "email": payload.get("email", "")}
