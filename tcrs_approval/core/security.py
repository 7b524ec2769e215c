import os, jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

# Tokens are minted by the identity layer in front of this API; we only verify them.
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-prod")
JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

ACCESS_TTL_MIN = int(os.getenv("JWT_ACCESS_TTL_MIN", "30"))

VALID_ROLES = ("requester", "approver", "admin")

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _encode(payload: Dict[str, Any]) -> str:
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)

def _decode(token: str) -> Dict[str, Any]:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])

def create_access_token(email: str, role: str, ttl_min: int | None = None) -> str:
    """Issue a token the way the identity layer does (used by dev tooling and tests)."""
    if role not in VALID_ROLES:
        raise ValueError(f"role must be one of {'|'.join(VALID_ROLES)}")
    now = _now()
    exp = now + timedelta(minutes=ttl_min if ttl_min is not None else ACCESS_TTL_MIN)
    payload = {
        "sub": email,
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return _encode(payload)

def decode_token(token: str, expected_type: str | None = None) -> Dict[str, Any]:
    data = _decode(token)
    if expected_type and data.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"unexpected token type: {data.get('type')}")
    return data
