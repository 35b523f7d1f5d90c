"""Health Check - Service and dependency health

Self-Explanatory: Liveness (process up) and readiness (catalog + object store reachable).
How: Each check returns a status dict; readiness answers 503 if anything is unhealthy.

K8s Integration:
- /health/live: Liveness probe (is service running?)
- /health/ready: Readiness probe (can serve traffic?)
"""

import time
from datetime import datetime, timezone
from typing import Dict

import structlog
from fastapi import status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from docvault.errors import DocVaultError

logger = structlog.get_logger()


class HealthStatus:
    """Health status constants"""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthChecker:
    """Dependency checks against the live service handles"""

    def __init__(self, services=None):
        self.services = services
        self.start_time = time.time()

    async def _timed(self, name: str, probe) -> Dict:
        try:
            start = time.time()
            await run_in_threadpool(probe)
            latency_ms = (time.time() - start) * 1000
            return {
                "status": HealthStatus.HEALTHY,
                "latency_ms": round(latency_ms, 2),
                "message": f"{name} reachable",
            }
        except DocVaultError as e:
            logger.error("Health check failed", component=name, error=e.message)
            return {
                "status": HealthStatus.UNHEALTHY,
                "error": e.message,
                "message": f"{name} unreachable",
            }

    async def check_catalog(self) -> Dict:
        return await self._timed("catalog", self.services.catalog.ping)

    async def check_object_store(self) -> Dict:
        return await self._timed("object_store", self.services.store.ping)

    async def liveness_check(self) -> Dict:
        return {
            "status": HealthStatus.HEALTHY,
            "uptime_seconds": round(time.time() - self.start_time, 1),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def readiness_check(self):
        checks = {
            "catalog": await self.check_catalog(),
            "object_store": await self.check_object_store(),
        }
        healthy = all(c["status"] == HealthStatus.HEALTHY for c in checks.values())
        body = {
            "status": HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            "checks": checks,
        }
        if not healthy:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
        return body
