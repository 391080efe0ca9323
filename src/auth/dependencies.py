"""
FastAPI Authentication Dependencies

Resolves the calling user from a bearer token (or the session_token
cookie the dashboard sets) and exposes the service container to routes.
"""

import logging
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..auth.tokens import decode_access_token
from ..core.exceptions import InvalidTokenError, TokenExpiredError


logger = logging.getLogger(__name__)


# auto_error=False so a missing header falls through to the cookie
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request):
    """
    Dependency returning the app's ServiceContainer.

    Returns:
        ServiceContainer stored on app.state by create_app()
    """
    return request.app.state.services


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session_token: Optional[str] = Cookie(None, alias="session_token"),
) -> dict:
    """
    Dependency to get current authenticated user.

    Returns:
        User info dictionary with:
            - uid: User id
            - email: User email

    Raises:
        HTTPException: 401 if no valid token was presented
    """
    token = credentials.credentials if credentials else session_token
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User must be authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    secret = request.app.state.services.config.jwt_secret_key
    try:
        return decode_access_token(token, secret)
    except TokenExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired, please login again",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
