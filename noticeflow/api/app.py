"""FastAPI application entry point for the Noticeflow operations API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from noticeflow.api.routes import router
from noticeflow.config.settings import NoticeflowConfig
from noticeflow.telemetry.errors import configure_logging

VERSION = "1.0.0"

API_METHODS = ["GET", "PUT", "POST", "DELETE"]


def create_app(config: NoticeflowConfig | None = None) -> FastAPI:
    """Build the operations API from ``config`` (environment when omitted).

    Raises ``RuntimeError`` when a non-development environment names no
    allowed origins.
    """
    config = config or NoticeflowConfig()
    configure_logging(config.log_level)

    try:
        cors_origins = config.api.cors_origins()
    except ValueError as exc:
        raise RuntimeError(f"Production CORS configuration error: {exc}") from exc

    app = FastAPI(
        title="Noticeflow",
        description="Procurement notice ingestion: operations API",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=config.api.cors_allow_credentials and "*" not in cors_origins,
        allow_methods=API_METHODS,
        allow_headers=["Authorization", "Content-Type", config.api.tenant_header],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "noticeflow", "version": VERSION}

    return app


app = create_app()
