"""Supabase access-token verification for the chat API."""
from typing import Optional
import logging

from fastapi import HTTPException, status

from app.core.ai.types import AuthenticatedUser
from app.services.data_gateway import DataGateway

logger = logging.getLogger(__name__)

MISSING_SESSION = "Oturum bulunamadı. Lütfen tekrar giriş yapın."
EXPIRED_SESSION = "Oturum süresi dolmuş. Lütfen tekrar giriş yapın."


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    token = authorization.replace("Bearer ", "", 1).strip()
    return token or None


async def verify_supabase_token(token: str, gateway: DataGateway) -> Optional[AuthenticatedUser]:
    """
    Verify a Supabase access token using Supabase's built-in auth methods.
    Returns None when the token is invalid or expired.
    """
    result = await gateway.get_user(token)
    if not result.ok or result.data is None:
        return None

    user = result.data
    user_id = getattr(user, "id", None)
    if not user_id:
        return None
    return AuthenticatedUser(id=str(user_id), email=getattr(user, "email", None))


async def get_current_supabase_user(authorization: Optional[str], gateway: DataGateway) -> AuthenticatedUser:
    """
    Get current authenticated user from the Authorization header.

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid or expired
    """
    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=MISSING_SESSION,
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await verify_supabase_token(token, gateway)
    if user is None:
        logger.warning("Rejected expired or invalid access token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=EXPIRED_SESSION,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
