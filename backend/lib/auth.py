"""
Optional authentication for tutoring requests.

Guests may chat without a token; an identified user gets durable
sessions. A token that is present but invalid is rejected.
"""
import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

# Supabase signs access tokens with the project's JWT secret
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def decode_user_id(token: str, secret: str) -> str:
    """
    Validate a Supabase access token and return its subject (user id).

    Raises:
        HTTPException: 401 if the token is invalid or has no subject
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning(f"⚠️ [Auth] Rejected token: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return user_id


async def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """
    FastAPI dependency resolving the caller's user id, or None for guests.

    Raises:
        HTTPException: malformed header, invalid token, or auth not configured
    """
    if not authorization:
        return None

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if not secret:
        raise HTTPException(status_code=503, detail="Authentication is not configured")

    return decode_user_id(authorization[len("Bearer "):], secret)
