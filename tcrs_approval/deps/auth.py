from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
from typing import Callable
from tcrs_approval.core.security import decode_token, VALID_ROLES

class CurrentUser(BaseModel):
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

def get_current_user(authorization: str | None = Header(default=None)) -> CurrentUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
    email = (data.get("sub") or "").strip()
    role = data.get("role")
    if not email:
        raise HTTPException(status_code=401, detail="Token has no subject")
    if role not in VALID_ROLES:
        raise HTTPException(status_code=403, detail="User not authorized - not in any TCRS group")
    return CurrentUser(email=email, role=role)

def require_role(*allowed: str) -> Callable:
    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if allowed and user.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return checker
