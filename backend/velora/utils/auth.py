"""
Authentication utilities.

Users are managed by the identity provider; the API only reads the user id
from the `sub` claim of the bearer token it issued.
"""
from fastapi import HTTPException, Request, status
from jose import jwt, JWTError
import logging

from ..config import settings

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict:
    """Verify a bearer token and return its claims."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def get_current_user_id(request: Request) -> str:
    """
    Dependency to get the authenticated user's id.

    Raises:
        HTTPException: 401 if the token is missing, invalid or has no subject
    """
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    token = auth_header.split(' ', 1)[1]
    try:
        payload = decode_token(token)
    except JWTError as e:
        logger.warning(f"❌ Token decode error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    user_id = payload.get('sub')
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing 'sub' claim"
        )
    return user_id
