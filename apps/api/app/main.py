from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.database import async_session_factory, engine
from app.core.errors import (
    global_exception_handler,
    http_exception_handler,
    version_control_exception_handler,
)
from app.core.sentry import init_sentry

import app.models  # noqa: F401 (register all models at startup)

from app.middleware.tenant import TenantMiddleware
from app.modules.policy_versions.exceptions import VersionControlError
from app.modules.policy_versions.router import router as policy_versions_router

# ── Sentry: must be initialised BEFORE the FastAPI app is created ────────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting Policy Version Control API", env=settings.APP_ENV)
    yield
    logger.info("Shutting down Policy Version Control API")
    await engine.dispose()


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Policy Version Control API",
    description="Append-only version history, diffing and rollback for governed policy documents.",
    version=settings.APP_VERSION or "0.1.0",
    # Disable interactive docs in production; use /openapi.json directly if needed
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Request-ID", "X-User-Id", "X-Org-Id", "X-User-Role"],
)
app.add_middleware(TenantMiddleware)

app.add_exception_handler(VersionControlError, version_control_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check() -> dict:
    """Deep health check: probes the database."""
    checks: dict[str, dict] = {}

    try:
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as exc:  # noqa: BLE001
        logger.warning("health_check.database_unhealthy", error=str(exc))
        checks["database"] = {"status": "unhealthy", "error": str(exc)}

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "policy-versions-api", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")

api_v1.include_router(policy_versions_router)

app.include_router(api_v1)
