"""
Gateway service tying the proxy handler to the running application.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from .models import ProxyRequest, ProxyResponse, ProxyStats
from .proxy import ProxyHandler, UpstreamFailure
from ..config.settings import Settings
from ..monitoring.metrics import (
    INVALID_TARGET_LABEL,
    proxy_request_duration,
    proxy_requests_total,
    proxy_upstream_failures_total,
)

logger = logging.getLogger(__name__)


class GatewayService:
    """Owns the outbound HTTP client and per-process proxy statistics."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or Settings()
        self.proxy_handler = ProxyHandler(
            timeout=self.settings.timeout_seconds,
            max_connections=self.settings.max_connections,
            transport=transport,
        )
        self.stats = ProxyStats()
        self._running = False

    async def start(self):
        """Start the gateway service."""
        if self._running:
            return

        await self.proxy_handler.start()
        self._running = True
        logger.info("Gateway service started")

    async def stop(self):
        """Stop the gateway service."""
        if not self._running:
            return

        await self.proxy_handler.stop()
        self._running = False
        logger.info("Gateway service stopped")

    async def handle_request(self, request: ProxyRequest) -> ProxyResponse:
        """Forward a validated proxy request upstream.

        Raises UpstreamFailure when no upstream response could be obtained.
        """
        self._count(request.target)
        logger.info(f"Proxying {request.method} request to: {request.url}")

        start_time = time.perf_counter()
        try:
            response = await self.proxy_handler.forward(request)
        except UpstreamFailure:
            self.stats.failed_requests += 1
            proxy_upstream_failures_total.labels(request.target).inc()
            proxy_requests_total.labels(request.target, request.method, "502").inc()
            raise
        finally:
            proxy_request_duration.labels(request.target, request.method).observe(
                time.perf_counter() - start_time
            )

        self.stats.forwarded_requests += 1
        proxy_requests_total.labels(
            request.target, request.method, str(response.status_code)
        ).inc()
        return response

    def record_rejected(self, target: str, method: str) -> None:
        """Account for a request refused because of an unknown target."""
        self._count(INVALID_TARGET_LABEL)
        self.stats.rejected_requests += 1
        proxy_requests_total.labels(INVALID_TARGET_LABEL, method, "400").inc()

    def _count(self, target: str) -> None:
        self.stats.total_requests += 1
        by_target = self.stats.requests_by_target
        by_target[target] = by_target.get(target, 0) + 1

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.model_dump()
