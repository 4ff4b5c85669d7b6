from fastapi import APIRouter, Depends
from fastapi.responses import Response

from buildmart.attendance.api import router as attendance_router
from buildmart.core.auth import AuthUser
from buildmart.core.config import get_settings
from buildmart.core.errors import NotFoundError
from buildmart.core.rbac import require_permissions
from buildmart.crm.api import clients_router, leads_router
from buildmart.dashboard.api import router as dashboard_router
from buildmart.documents.api import router as documents_router
from buildmart.inquiries.api import router as inquiries_router
from buildmart.marketing.api import router as marketing_router
from buildmart.metrics import generate_metrics_payload, metrics_content_type
from buildmart.products.api import router as products_router
from buildmart.quotations.api import router as quotations_router
from buildmart.sales_orders.api import router as sales_orders_router
from buildmart.users.api import auth_router, router as users_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(leads_router)
router.include_router(clients_router)
router.include_router(inquiries_router)
router.include_router(products_router)
router.include_router(documents_router)
router.include_router(attendance_router)
router.include_router(quotations_router)
router.include_router(sales_orders_router)
router.include_router(dashboard_router)
router.include_router(marketing_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


def _metrics_enabled() -> None:
    if not get_settings().metrics_enabled:
        raise NotFoundError("not found")


@router.get("/metrics", tags=["system"], dependencies=[Depends(_metrics_enabled)])
def metrics(_user: AuthUser = Depends(require_permissions("read:metrics"))) -> Response:
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
