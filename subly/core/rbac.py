from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from subly.core.auth import AuthUser, get_current_user


def require_roles(*roles: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions: requires one of {', '.join(roles)}",
            )
        return user

    return checker
