from __future__ import annotations

from datetime import timedelta
from typing import Any

import jwt

from premiumcollect.core.config import get_settings
from premiumcollect.core.timeutils import utc_now


class SessionTokenError(Exception):
    """Staff session token is missing claims, expired or badly signed."""


def issue_session_token(*, user_id: str, email: str, role: str, ttl_hours: int | None = None) -> str:
    # Mint a signed staff session token; used by operator tooling and tests.
    settings = get_settings()
    now = utc_now()
    lifetime = timedelta(hours=ttl_hours if ttl_hours is not None else settings.session_ttl_hours)
    claims = {
        "sub": user_id,
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(claims, settings.session_secret, algorithm=settings.session_algorithm)


def decode_session_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[settings.session_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise SessionTokenError("Session token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise SessionTokenError("Invalid session token") from exc
    return claims
