"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import auth, billing, health, payments, stats, users
from app.core.config import settings
from app.core.database import Base, engine
from app.core.exceptions import PowertrackrError

# Import models for Base.metadata.create_all - order matters for foreign keys
from app.models import (
    user,  # noqa: F401
    auth as auth_models,  # noqa: F401
    billing_period,  # noqa: F401
    sub_meter,  # noqa: F401
    payment,  # noqa: F401
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup: Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("%s %s started", settings.PROJECT_NAME, settings.VERSION)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Electricity billing with sub-meter reconciliation",
    lifespan=lifespan,
)


@app.exception_handler(PowertrackrError)
async def powertrackr_error_handler(request: Request, exc: PowertrackrError) -> JSONResponse:
    """Render domain errors as JSON with their mapped status code."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include API routers
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(billing.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(stats.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
