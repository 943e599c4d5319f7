from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from subly.core.config import get_settings


ROLE_ADMIN = "ADMIN"
ROLE_INTERNAL_USER = "INTERNAL_USER"
ROLE_USER = "USER"
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_INTERNAL_USER})


@dataclass
class AuthUser:
    user_id: str
    role: str
    email: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header[len("Bearer ") :] if auth_header.startswith("Bearer ") else ""

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    role = str(payload.get("role") or ROLE_USER).upper()
    email = payload.get("email")
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(user_id)
    return AuthUser(user_id=str(user_id), role=role, email=str(email) if email else None)
