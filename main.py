"""
FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import shutdown_gateway
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from api.routes import admin_orders, audit, fraud, inventory, webhooks
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.cache import init_redis_client, shutdown_redis_client
from infrastructure.database import create_tables


# configure logging at the entry point, never as an import side effect
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tables are auto-created in development only; production runs `alembic upgrade head`
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info("database_migrations_required", message="Run alembic upgrade head")

    if settings.redis.url:
        try:
            await init_redis_client()
            logger.info("redis_initialized")
        except Exception as exc:
            if payment_settings.idempotency.backend == "redis":
                # webhooks cannot be processed without their idempotency store
                raise
            logger.error("redis_init_failed", error=str(exc))

    logger.info(
        "application_started",
        gateway=payment_settings.gateway,
        idempotency_backend=payment_settings.idempotency.backend,
    )
    yield

    await shutdown_gateway()
    if settings.redis.url:
        await shutdown_redis_client()
        logger.info("redis_shutdown")
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Payment webhook reconciliation: orders, payments, inventory, fraud and audit",
)

# middleware runs bottom-up: request id first, then logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(admin_orders.router, prefix="/api/v1")
app.include_router(fraud.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
