"""
Health Check Router

System health monitoring endpoints.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends

from ...auth.dependencies import get_services


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Basic health check (no authentication required).

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "client-pulse"
    }


@router.get("/health/detailed")
async def detailed_health_check(services=Depends(get_services)):
    """
    Detailed health check with component status.

    Returns:
        Detailed health status for all components
    """
    config = services.config
    health = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "components": {}
    }

    # Check database
    try:
        services.db.ping()
        health["components"]["database"] = {
            "status": "healthy",
            "message": "Database connection OK",
            "stats": services.db.get_stats(),
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health["components"]["database"] = {
            "status": "unhealthy",
            "message": f"Database error: {str(e)}"
        }
        health["status"] = "degraded"

    # Analyzer: report configuration only, a real call costs money
    if services.analyzer.is_configured():
        providers = []
        if config.gemini.is_configured():
            providers.append("gemini")
        if config.claude.is_configured():
            providers.append("claude")
        health["components"]["analyzer"] = {
            "status": "healthy",
            "message": f"Analyzer configured ({', '.join(providers) or 'custom'})"
        }
    else:
        health["components"]["analyzer"] = {
            "status": "not_configured",
            "message": "No Gemini or Claude API key configured"
        }
        health["status"] = "degraded"

    health["components"]["fathom"] = {
        "status": "healthy" if config.fathom.webhook_secret else "not_configured",
        "webhook_secret": bool(config.fathom.webhook_secret),
        "api_key": bool(config.fathom.api_key),
    }

    health["components"]["notifications"] = {
        "slack_enabled": config.app.slack_enabled,
        "email_enabled": config.app.email_enabled,
        "background_tasks": services.orchestrator.pending_background_tasks,
    }

    try:
        runs = services.sync_runs.recent(limit=1)
        health["components"]["sync"] = {
            "status": runs[0]["status"] if runs else "never_run",
            "last_run": runs[0] if runs else None,
        }
    except Exception as e:
        logger.error(f"Sync health check failed: {e}")
        health["components"]["sync"] = {
            "status": "unhealthy",
            "message": f"Sync history error: {str(e)}"
        }

    return health
