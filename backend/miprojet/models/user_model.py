from pydantic import BaseModel
from typing import Optional


class AuthenticatedUser(BaseModel):
    """Caller identity taken from a verified Firebase ID token."""
    uid: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
