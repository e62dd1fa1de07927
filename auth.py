"""
Bearer token authentication.

Tokens are issued by the account service and stored on the user document
(``users.tokens``); this API only looks them up.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException
from pymongo.database import Database

from database import get_db
from mock_data import mock_data
from utils import serialize


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Optional[Database] = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Invalid auth scheme")
    token = authorization.split(" ", 1)[1].strip()

    if mock_data.is_fallback_mode(db):
        user = mock_data.find_user_by_token(token)
    else:
        user = db["users"].find_one({"tokens": token})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")
    return serialize(user)


def require_roles(*roles: str):
    """Dependency factory restricting an endpoint to the given user types."""

    def dependency(current=Depends(get_current_user)) -> Dict[str, Any]:
        if current.get("user_type") not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"User role {current.get('user_type')} is not authorized to access this route",
            )
        return current

    return dependency


require_admin = require_roles("admin")
require_provider_or_admin = require_roles("provider", "admin")
