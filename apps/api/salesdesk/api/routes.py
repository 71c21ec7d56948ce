from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from salesdesk.core.config import get_settings
from salesdesk.crm.api import clients_router, deals_router, get_current_user, leads_router, meetings_router
from salesdesk.metrics import generate_metrics_payload, metrics_content_type
from salesdesk.security import ActorUser, Role

router = APIRouter()
router.include_router(leads_router)
router.include_router(clients_router)
router.include_router(deals_router)
router.include_router(meetings_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(user: ActorUser = Depends(get_current_user)) -> dict[str, str]:
    return {
        "user_id": str(user.user_id),
        "role": user.role.value,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: ActorUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="metrics are restricted to administrators")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
