from fastapi import APIRouter

from app.factu.core.config import settings
from app.factu.routers.health import router as health_router
from app.factu.routers.metrics import router as metrics_router
from app.factu.routers.payments import router as payments_router
from app.factu.routers.sales import router as sales_router
from app.factu.routers.webhooks import dev_router as webhooks_dev_router
from app.factu.routers.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(webhooks_router, tags=["webhooks"])
api_router.include_router(payments_router, tags=["payments"])
api_router.include_router(sales_router, tags=["sales"])
if settings.is_development:
    api_router.include_router(webhooks_dev_router, tags=["webhooks"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
