import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sqlalchemy as sa
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from metacfg.api.v1.router import router as v1_router
from metacfg.core.config import settings
from metacfg.core.errors import RepositoryError
from metacfg.repositories.db import DbConfigRepository
from metacfg.schemas.config import OperationResponse
from metacfg.services.config_service import ConfigService

# ── Logging ────────────────────────────────────────────────────────────────────
# Keep SQLAlchemy query logging at WARNING so config values never appear in logs.
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ── App ────────────────────────────────────────────────────────────────────────
def create_app(service: Optional[ConfigService] = None) -> FastAPI:
    """
    Build the API. Without an explicit ``service`` the database repository is
    created from settings at startup (tables are created if missing).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "config_service", None) is None:
            app.state.config_service = ConfigService(DbConfigRepository.from_settings(settings))
            logger.info("Config repository ready")
        yield

    app = FastAPI(
        title="metacfg API",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.config_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/api/v1")

    @app.exception_handler(RepositoryError)
    async def repository_error(request: Request, exc: RepositoryError) -> JSONResponse:
        logger.error("Repository failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content=OperationResponse.failed(str(exc)).model_dump(),
        )

    # ── Health ─────────────────────────────────────────────────────────────────
    @app.get("/health", tags=["health"], summary="Liveness + database health check")
    def health() -> JSONResponse:
        """
        Returns HTTP 200 when the config store is reachable, 503 otherwise.
        Safe to poll from container orchestrators and load-balancers.
        """
        checks: dict[str, str] = {}

        repository = app.state.config_service.repository
        engine = getattr(repository, "engine", None)
        if engine is None:
            checks["database"] = "n/a"
        else:
            try:
                with engine.connect() as conn:
                    conn.execute(sa.text("SELECT 1"))
                checks["database"] = "ok"
            except SQLAlchemyError as exc:
                logger.warning("Health: DB check failed: %s", exc)
                checks["database"] = "error"

        ok = checks["database"] != "error"
        return JSONResponse(
            status_code=200 if ok else 503,
            content={"status": "ok" if ok else "degraded", "checks": checks},
        )

    return app


app = create_app()
