import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.database import init_storage
from app.core.exceptions import AppError, QuotaExceeded
from app.core.logging_config import configure_logging
from app.controllers import (
    account_controller,
    admin_controller,
    analytics_controller,
    chat_controller,
    subscription_controller,
)
from app.utils.response import error_response

configure_logging(settings.log_level)
logger = logging.getLogger("main")

API_PREFIX = getattr(settings, "api_prefix", "/api/v1")


async def sweep_expired_sessions(storage, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await storage.expire_sessions()
        except Exception as e:
            logger.error(f"Session sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "storage", None) is None:
        app.state.storage = await init_storage(settings)
    storage = app.state.storage
    status = storage.status()
    logger.info(f"Storage backend: {status['type']} (degraded={status['degraded']})")

    sweeper = None
    if settings.session_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(sweep_expired_sessions(storage, settings.session_sweep_interval_seconds))
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        await storage.close()


async def app_error_handler(request: Request, exc: AppError):
    details = {}
    if isinstance(exc, QuotaExceeded):
        details = {"plan": exc.plan, "limit": exc.limit}
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(message=exc.message, code=exc.code, **details).model_dump(),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", [])), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_response(message="Invalid input", code="VALIDATION_ERROR", details=details).model_dump(),
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware, the widget is embedded on customer sites
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include routers
    app.include_router(chat_controller.router, prefix=API_PREFIX)
    app.include_router(account_controller.router, prefix=API_PREFIX)
    app.include_router(account_controller.config_router, prefix=API_PREFIX)
    app.include_router(analytics_controller.router, prefix=API_PREFIX)
    app.include_router(subscription_controller.router, prefix=API_PREFIX)
    app.include_router(admin_controller.router, prefix=API_PREFIX)

    @app.get("/")
    async def root():
        return {
            "message": settings.app_name,
            "version": "1.0.0",
            "status": "running",
            "endpoints": [
                f"{API_PREFIX}/chat/",
                f"{API_PREFIX}/accounts/",
                f"{API_PREFIX}/analytics",
                f"{API_PREFIX}/subscriptions/",
                "/docs",
            ],
        }

    @app.get("/health")
    async def health_check(request: Request):
        storage = request.app.state.storage
        return {"status": "healthy", "app": settings.app_name, "storage": storage.status()}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
