from fastapi import APIRouter, Depends
from fastapi.responses import Response

from crm_access.access.api import assignees_router, permissions_router, router as access_router
from crm_access.core.config import get_settings
from crm_access.crm.api import activities_router, customers_router, leads_router, opportunities_router
from crm_access.directory.api import admin_router as directory_admin_router
from crm_access.directory.api import get_current_viewer, router as directory_router
from crm_access.directory.service import Viewer
from crm_access.metrics import generate_metrics_payload, metrics_content_type
from crm_access.platform.security.errors import ForbiddenError, NotFoundError

router = APIRouter()
router.include_router(directory_router)
router.include_router(directory_admin_router)
router.include_router(access_router)
router.include_router(permissions_router)
router.include_router(assignees_router)
router.include_router(customers_router)
router.include_router(leads_router)
router.include_router(opportunities_router)
router.include_router(activities_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(viewer: Viewer = Depends(get_current_viewer)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise NotFoundError("not found")
    if not viewer.is_admin:
        raise ForbiddenError("only admins can read metrics")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
