from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from subly.business.billing.api import router as billing_router
from subly.business.renewal.api import router as renewal_router
from subly.business.subscription.api import router as subscription_router
from subly.core.auth import STAFF_ROLES, AuthUser, get_current_user
from subly.core.config import get_settings
from subly.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(subscription_router)
router.include_router(billing_router)
router.include_router(renewal_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | None]:
    return {
        "user_id": user.user_id,
        "role": user.role,
        "email": user.email,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
