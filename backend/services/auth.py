"""Bearer-token authentication for Supabase-issued JWTs."""
import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import get_settings
from services.errors import AuthError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: str) -> str:
    """
    Validate a session token and return the user id (``sub`` claim).

    Raises AuthError for missing, expired or tampered tokens.
    """
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        raise AuthError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected token: {e}")
        raise AuthError("Invalid authorization")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid authorization")
    return user_id


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency: the authenticated user's id."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_token(credentials.credentials)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
