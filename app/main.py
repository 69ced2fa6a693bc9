from fastapi import FastAPI

from app.factu.api import api_router
from app.factu.core.config import settings
from app.factu.core.errors import setup_exception_handlers
from app.factu.core.logging import configure_logging
from app.factu.middleware.branch import BranchContextMiddleware
from app.factu.middleware.observability import ObservabilityMiddleware
from app.factu.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(BranchContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
