from __future__ import annotations

import os
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import mount_v1
from app.core.config import settings
from app.core.db import dispose_engine, health_check_db
from app.core.exceptions import register_exception_handlers
from app.core.logging import bind_context, configure_logging, get_logger, integrate_uvicorn_loggers

configure_logging()
integrate_uvicorn_loggers()
logger = get_logger(__name__)

_START_TS = time.time()


def _uptime_seconds() -> int:
    return int(time.time() - _START_TS)


# ======================================================================================
# LIFESPAN
# ======================================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup", env=settings.ENVIRONMENT, version=settings.VERSION)
    if not settings.smtp_configured:
        logger.warning("SMTP not configured; invoice email delivery will fail")
    if not settings.cloudinary_configured:
        logger.warning("Cloudinary not configured; product media will not be removed from storage")
    try:
        yield
    finally:
        dispose_engine()
        logger.info("Application shutdown complete")


# ======================================================================================
# APP FACTORY
# ======================================================================================
def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time-ms"],
        max_age=86400,
    )
    app.add_middleware(GZipMiddleware, minimum_size=1024)

    @app.middleware("http")
    async def request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        t0 = time.perf_counter()
        with bind_context(
            request_id=req_id,
            actor_id=request.headers.get("X-Actor-Id"),
            actor_role=request.headers.get("X-Actor-Role"),
        ):
            response = await call_next(request)
            elapsed_ms = int((time.perf_counter() - t0) * 1000)
            response.headers["X-Request-ID"] = req_id
            response.headers["X-Response-Time-ms"] = str(elapsed_ms)
            logger.info(
                "request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        return response

    @app.middleware("http")
    async def security_headers_mw(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Server", settings.PROJECT_NAME)
        return response

    register_exception_handlers(app)

    def _build_info() -> dict[str, Any]:
        return {
            "app_name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "git_sha": os.getenv("GIT_SHA", ""),
        }

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        return {"message": f"{settings.PROJECT_NAME} API is running", **_build_info()}

    @app.get("/health", tags=["health"])
    async def health() -> JSONResponse:
        db_ok = await run_in_threadpool(health_check_db)
        body = {
            "status": "ok" if db_ok else "degraded",
            "checks": {
                "database": db_ok,
                "smtp_configured": settings.smtp_configured,
                "cloudinary_configured": settings.cloudinary_configured,
                "sms_provider": settings.SMS_PROVIDER,
            },
            "uptime_seconds": _uptime_seconds(),
            **_build_info(),
        }
        return JSONResponse(status_code=200 if db_ok else 503, content=body)

    mount_v1(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.DEBUG,
    )
