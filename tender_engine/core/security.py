# tender_engine/core/security.py
from __future__ import annotations

from typing import Any, Dict

from jose import jwt

from tender_engine.core.config import get_settings


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token minted by the identity service.
    Raises jose.JWTError on a bad signature or an expired token.
    """
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
