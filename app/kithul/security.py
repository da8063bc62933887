from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.kithul.models import User

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class TokenError(Exception):
    pass


def parse_duration(raw: str, default: timedelta = timedelta(days=7)) -> timedelta:
    """Parse "7d", "12h", "30m", "45s" or bare seconds."""
    m = _DURATION_RE.match(raw or "")
    if not m:
        return default
    return timedelta(seconds=int(m.group(1)) * _UNIT_SECONDS[m.group(2)])


def issue_token(user: User, *, secret: str, expires: str = "7d") -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "userId": user.user_id,
        "role": user.role,
        "iat": now,
        "exp": now + parse_duration(expires),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_token(token: str, *, secret: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError as e:
        raise TokenError(str(e)) from e
    if not isinstance(claims.get("id"), int):
        raise TokenError("token missing subject")
    return claims


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
