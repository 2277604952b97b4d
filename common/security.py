"""
Verdant Store - Security Utilities
===================================
JWT tokens (auth, anonymous cart cookie, guest order payment token) and
HMAC signature checks for payment gateway callbacks and webhooks.
"""

import hmac
import hashlib
import logging
from datetime import timedelta
from typing import Optional, Union

from jose import jwt, JWTError

from config.settings import (
    SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES,
    COOKIE_SECURE, COOKIE_SAMESITE,
)
from common.helpers import now_utc

logger = logging.getLogger("verdant.security")

CART_TOKEN_EXPIRE_DAYS = 30
ORDER_TOKEN_EXPIRE_DAYS = 7


# ==========================================
# JWT Tokens
# ==========================================

def create_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Create a signed JWT carrying `data`."""
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def create_cart_token(lines: list, coupon: Optional[dict] = None) -> str:
    """Sign the anonymous cart so a tampered cookie is detected on read."""
    return create_token(
        {"sub": "cart", "lines": lines, "coupon": coupon},
        expires_minutes=CART_TOKEN_EXPIRE_DAYS * 24 * 60,
    )


def decode_cart_token(token: str) -> Optional[dict]:
    payload = decode_token(token)
    if not payload or payload.get("sub") != "cart":
        return None
    return payload


def create_order_token(order_id: int) -> str:
    """Bearer proof for paying a guest order; returned once, when the order is placed."""
    return create_token({"sub": "order", "oid": order_id}, expires_minutes=ORDER_TOKEN_EXPIRE_DAYS * 24 * 60)


def order_token_matches(token: Optional[str], order_id: int) -> bool:
    if not token:
        return False
    payload = decode_token(token)
    return bool(payload) and payload.get("sub") == "order" and payload.get("oid") == order_id


# ==========================================
# Cookie Helpers
# ==========================================

def get_cookie_kwargs(max_age_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> dict:
    """Standard cookie settings for auth and cart tokens."""
    return dict(
        httponly=True,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
        max_age=max_age_minutes * 60,
    )


# ==========================================
# HMAC Signatures
# ==========================================

def hmac_sha256_hex(secret: str, message: Union[str, bytes]) -> str:
    """Hex-encoded HMAC-SHA256 of `message` under `secret`."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: str, message: Union[str, bytes], signature: Optional[str]) -> bool:
    """Constant-time comparison of a supplied hex signature against the expected one."""
    if not secret or not signature:
        return False
    expected = hmac_sha256_hex(secret, message)
    supplied = signature.strip().lower().encode("utf-8", "replace")
    return hmac.compare_digest(expected.encode("ascii"), supplied)
