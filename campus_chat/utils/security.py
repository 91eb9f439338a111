from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from campus_chat.config import get_settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a token issued by the auth platform and return its claims.

    Raises ``jwt.PyJWTError`` when the signature, expiry or audience is wrong.
    """
    settings = get_settings()
    options = {"require": ["sub", "exp"], "verify_aud": settings.jwt_audience is not None}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options=options,
    )


def create_access_token(user_id: str, email: Optional[str] = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    payload: Dict[str, Any] = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
