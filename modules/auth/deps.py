"""
Auth Module - Dependencies
===========================
FastAPI dependencies for identity. Sign-in itself happens elsewhere; the
storefront only needs "current user or none", read from the auth_token cookie.
"""

from fastapi import Request, Depends, HTTPException, status
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import safe_int
from common.security import decode_token
from modules.user.models import User

AUTH_COOKIE_NAME = "auth_token"


def get_current_user(request: Request, db: Session = Depends(get_db)):
    """
    Identify the current user from the auth_token cookie.
    Returns User object or None.
    """
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = safe_int(payload.get("sub"))
    if not user_id:
        return None

    return db.query(User).filter(User.id == user_id, User.is_active == True).first()


def require_login(user=Depends(get_current_user)):
    """Require any authenticated active user. Raises 401 if not logged in."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    return user


def require_admin(user=Depends(get_current_user)):
    """Only allow admin users. Raises 401/403 otherwise."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
