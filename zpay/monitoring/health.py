"""
Dependency probes behind /health, /health/live and /health/ready.

Each probe either returns a ``{"status": "healthy", ...}`` dict or raises
``HealthCheckError``. Probes run concurrently and report their latency.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import redis.asyncio as aioredis
import structlog
from sqlalchemy import text

from zpay.config import Settings, get_settings
from zpay.database.connection import session_scope

logger = structlog.get_logger(__name__)

Probe = Callable[[], Awaitable[Dict[str, Any]]]

# Redis only backs phone verification and the payment API is external, so
# neither decides readiness.
READINESS_GATES = ("database",)


class HealthCheckError(Exception):
    """A dependency did not answer."""


class HealthCheck:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    def _probes(self) -> Dict[str, Probe]:
        return {
            "database": self.check_database,
            "redis": self.check_redis,
            "payment_api": self.check_payment_api,
        }

    async def check_database(self) -> Dict[str, Any]:
        try:
            async with session_scope() as db:
                await db.scalar(text("SELECT 1"))
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}") from e
        return {"status": "healthy", "service": "database"}

    async def check_redis(self) -> Dict[str, Any]:
        client = aioredis.from_url(self.settings.redis_url)
        try:
            await client.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {e}") from e
        finally:
            await client.aclose()
        return {"status": "healthy", "service": "redis"}

    async def check_payment_api(self) -> Dict[str, Any]:
        """
        HEAD the payment automation host.

        Any HTTP answer, including 4xx/5xx, means the host is reachable;
        only transport failures count as unhealthy.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.payment_api_timeout, transport=self._transport
            ) as client:
                response = await client.head(self.settings.payment_api_base_url)
        except httpx.HTTPError as e:
            logger.warning("payment_api_health_check_failed", error=str(e))
            raise HealthCheckError(f"Payment API health check failed: {e}") from e
        return {
            "status": "healthy",
            "service": "payment_api",
            "status_code": response.status_code,
        }

    async def _run(self, name: str, probe: Probe) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            result = await probe()
        except HealthCheckError as e:
            result = {"status": "unhealthy", "service": name, "error": str(e)}
        result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        return result

    async def check_all(self) -> Dict[str, Any]:
        probes = self._probes()
        results = await asyncio.gather(
            *(self._run(name, probe) for name, probe in probes.items())
        )
        checks = dict(zip(probes, results))
        healthy = all(check["status"] == "healthy" for check in checks.values())
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        result = await self.check_all()
        ready = all(result["checks"][name]["status"] == "healthy" for name in READINESS_GATES)
        result["status"] = "ready" if ready else "not_ready"
        return result
