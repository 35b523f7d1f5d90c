"""DocVault Main FastAPI App - Encrypted document storage for client files

Run with: uvicorn docvault.main:app --reload
Access at: http://localhost:8000/docs

Pipeline:
1. Upload: per-document AES-256-GCM key, wrapped by the master key (KMS/local)
2. Ciphertext to the object store (S3/MinIO), metadata to the catalog (SQL)
3. Retrieval: access gate, then streaming decrypt to the caller
4. Delete: soft-delete, blob delete, purge (sweeper retries deferred purges)
"""

import asyncio
import logging
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from docvault.documents.router import router as documents_router
from docvault.documents.services import Services, build_services
from docvault.errors import DocVaultError, to_response_body
from docvault.utils.health_check import HealthChecker
from docvault.utils.metrics import get_metrics_text

logging.basicConfig(format="%(message)s", level=logging.INFO)

# Structured JSON logs; key material is never passed to the logger
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def create_app(services: Optional[Services] = None, run_sweeper: bool = True) -> FastAPI:
    """Build the app; pass `services` to inject stores (tests, tooling)"""
    app = FastAPI(
        title="DocVault - Encrypted Client Document Storage",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services
    app.state.health = HealthChecker(services)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(documents_router, prefix="/documents", tags=["Documents"])

    @app.exception_handler(DocVaultError)
    async def docvault_error_handler(request: Request, exc: DocVaultError):
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.code)
        return JSONResponse(status_code=exc.status_code, content=to_response_body(exc))

    # ========================================================================
    # HEALTH CHECKS + METRICS
    # ========================================================================

    @app.get("/health/live")
    async def health_live():
        """Kubernetes liveness probe"""
        return await app.state.health.liveness_check()

    @app.get("/health/ready")
    async def health_ready():
        """Kubernetes readiness probe"""
        return await app.state.health.readiness_check()

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint"""
        return get_metrics_text()

    # ========================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        if app.state.services is None:
            app.state.services = build_services()
            app.state.health.services = app.state.services
        if run_sweeper:
            app.state.sweeper = asyncio.create_task(app.state.services.deletion.sweeper())
            logger.info("Pending-delete sweeper started")
        logger.info("DocVault ready", store=type(app.state.services.store).__name__)

    @app.on_event("shutdown")
    async def shutdown_event():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        logger.info("Shutting down DocVault...")

    return app


app = create_app()


if __name__ == "__main__":
    logger.info("Starting DocVault server...")
    uvicorn.run("docvault.main:app", host="0.0.0.0", port=8000, reload=True)
