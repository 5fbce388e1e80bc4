"""
Health check endpoints.
"""
from fastapi import APIRouter
from typing import Dict, Any
from datetime import datetime, UTC

from omniverse.config.settings import settings
from omniverse.model.channel_profiles import get_channel_profiles

router = APIRouter()

VERSION = "1.0.0"


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.env.value,
        "version": VERSION
    }


@router.get("/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """Detailed health check with system information."""
    import psutil
    import sys

    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.env.value,
        "version": VERSION,
        "system": {
            "python_version": sys.version,
            "cpu_usage": psutil.cpu_percent(),
            "memory_usage": psutil.virtual_memory().percent,
            "disk_usage": psutil.disk_usage("/").percent
        },
        "configuration": {
            "optimization_iterations": settings.optimization.iterations,
            "strict_constraints": settings.optimization.strict_constraints,
            "rebalance": settings.optimization.rebalance,
            "channel_profiles": len(get_channel_profiles())
        }
    }


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Kubernetes readiness probe endpoint."""
    get_channel_profiles()
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness probe endpoint."""
    return {"status": "alive"}
