"""
FastAPI Application Factory

Creates and configures the FastAPI web application with all routers and middleware.
"""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..core.config import get_config
from ..core.logging_config import setup_logging


logger = logging.getLogger(__name__)

# Rate limiter instance (shared across routes)
limiter = Limiter(key_func=get_remote_address)


def create_app(services=None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        services: Pre-built ServiceContainer (tests); built from config if None

    Returns:
        Configured FastAPI app
    """
    if services is None:
        from .services import build_services
        services = build_services(get_config())

    app = FastAPI(
        title="Client Pulse",
        description="Client relationship sentiment analysis from meeting transcripts",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict to the dashboard origin in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.state.services = services
    app.state.config = services.config

    # Imported here to avoid circular imports (routers import limiter)
    from .routers import analysis, clients, health, pod_leaders, webhooks

    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
    app.include_router(analysis.router, prefix="/api/analysis", tags=["Analysis"])
    app.include_router(clients.router, prefix="/api/clients", tags=["Clients"])
    app.include_router(pod_leaders.router, prefix="/api/pod-leaders", tags=["Pod Leaders"])
    app.include_router(health.router, prefix="/api", tags=["Health"])

    @app.on_event("shutdown")
    async def drain_background_tasks():
        """Let in-flight history updates and notifications finish."""
        pending = services.orchestrator.pending_background_tasks
        if pending:
            logger.info(f"Waiting for {pending} background task(s) before shutdown")
            await services.orchestrator.wait_for_background()

    logger.info("FastAPI application created successfully")

    return app


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_file: Optional[str] = "logs/web.log"):
    """
    Run the FastAPI server using uvicorn.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload on code changes
        log_file: Log file path
    """
    setup_logging(log_file=log_file)

    logger.info(f"Starting web server on {host}:{port} (reload: {reload})")

    if reload:
        # Reload needs an import string
        uvicorn.run("src.web.app:create_app", factory=True, host=host, port=port, reload=True, log_level="info")
        return

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_server(reload=True)
