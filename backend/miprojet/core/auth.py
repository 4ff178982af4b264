# core/auth.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth
from typing import Optional
import logging

from miprojet.core.firebase import init_firebase
from miprojet.models.user_model import AuthenticatedUser

logger = logging.getLogger("miprojet.auth")
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> AuthenticatedUser:
    """
    Returns the caller behind `Authorization: Bearer <id token>`.
    Raises 401 if the token is missing or does not verify.
    """
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization required")

    try:
        decoded = auth.verify_id_token(credentials.credentials, app=init_firebase())
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    uid = decoded.get("uid")
    if not uid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    return AuthenticatedUser(
        uid=uid,
        email=decoded.get("email"),
        phone_number=decoded.get("phone_number"),
    )
