"""
Proxy handler for allowlisted upstream requests.

Request and response rebuilding are plain functions so they can be
exercised without a live upstream; ``ProxyHandler`` owns the network I/O.
"""

import asyncio
import logging
import re
from typing import AsyncIterator, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote

import httpx

from .allowlists import (
    ALLOWED_TARGETS,
    CORS_HEADERS,
    FORWARDED_REQUEST_HEADERS,
    FORWARDED_RESPONSE_HEADERS,
    GATEWAY_ORIGIN,
    GATEWAY_REFERER,
    GATEWAY_USER_AGENT,
)
from .models import (
    BODYLESS_METHODS,
    HeaderAllowlist,
    ProxyRequest,
    ProxyResponse,
    TargetAllowlist,
)

logger = logging.getLogger(__name__)

PROXY_MOUNT_PREFIX = "/api/proxy"


class InvalidTargetError(ValueError):
    """Target identifier is not in the allowlist."""

    def __init__(self, target: str):
        super().__init__(f"Invalid proxy target: {target}")
        self.target = target


class UpstreamFailure(RuntimeError):
    """The outbound call failed before an upstream response was available."""


def parse_proxy_path(
    raw_path: str, prefix: str = PROXY_MOUNT_PREFIX
) -> Optional[Tuple[str, str]]:
    """Split a raw request path into ``(target, rest)``.

    ``rest`` is everything after the target segment, still percent-encoded,
    without its leading separator. Returns None when the path does not have
    the ``{prefix}/{target}[/{rest}]`` shape.
    """
    pattern = rf"^{re.escape(prefix.rstrip('/'))}/([^/]+)(?:/(.*))?$"
    match = re.match(pattern, raw_path, flags=re.DOTALL)
    if not match:
        return None
    return unquote(match.group(1)), match.group(2) or ""


def resolve_target(target: str, targets: TargetAllowlist = ALLOWED_TARGETS) -> str:
    base_url = targets.resolve(target)
    if base_url is None:
        raise InvalidTargetError(target)
    return base_url


def build_outbound_url(base_url: str, rest: str, query: str) -> str:
    return f"{base_url}/{rest}" + (f"?{query}" if query else "")


def build_outbound_request(
    method: str,
    target: str,
    rest: str,
    query: str,
    headers: Mapping[str, str],
    body: Optional[bytes] = None,
    *,
    targets: TargetAllowlist = ALLOWED_TARGETS,
    request_headers: HeaderAllowlist = FORWARDED_REQUEST_HEADERS,
) -> ProxyRequest:
    """Rebuild an inbound call as the request to send upstream."""
    method = method.upper()
    base_url = resolve_target(target, targets)

    outbound_headers: Dict[str, str] = {
        "Origin": GATEWAY_ORIGIN,
        "Referer": GATEWAY_REFERER,
        "User-Agent": GATEWAY_USER_AGENT,
    }
    outbound_headers.update(request_headers.pick(headers))

    return ProxyRequest(
        method=method,
        target=target,
        path=rest,
        query=query,
        url=build_outbound_url(base_url, rest, query),
        headers=outbound_headers,
        body=None if method in BODYLESS_METHODS else (body or b""),
    )


def preflight_headers() -> Dict[str, str]:
    return dict(CORS_HEADERS)


async def relay_stream(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the upstream body as received on the wire, then close it."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except Exception as e:
        logger.error(f"Upstream stream interrupted: {e!r}")
        raise
    finally:
        await upstream.aclose()


def build_inbound_response(
    upstream: httpx.Response,
    *,
    response_headers: HeaderAllowlist = FORWARDED_RESPONSE_HEADERS,
) -> ProxyResponse:
    """Rebuild an upstream response for the caller."""
    headers = preflight_headers()
    headers.update(response_headers.pick(upstream.headers))
    return ProxyResponse(
        status_code=upstream.status_code,
        status_text=upstream.reason_phrase,
        headers=headers,
        body=relay_stream(upstream),
        close=upstream.aclose,
    )


class ProxyHandler:
    """Issues outbound requests to allowlisted upstreams."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_connections: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_connections = max_connections
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Start the proxy handler."""
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(
                max_keepalive_connections=20, max_connections=self.max_connections
            ),
            follow_redirects=False,
            transport=self._transport,
        )
        # Only the headers built per request may reach an upstream
        self._http_client.headers.clear()
        logger.info("Proxy handler started")

    async def stop(self):
        """Stop the proxy handler."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("Proxy handler stopped")

    @property
    def started(self) -> bool:
        return self._http_client is not None

    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        """Send one upstream attempt and wrap the streamed response."""
        try:
            upstream = await self._make_http_request(request)
        except Exception as e:
            logger.error(f"Proxy error for target {request.target}: {e!r}")
            raise UpstreamFailure("Proxy request failed") from e

        try:
            return build_inbound_response(upstream)
        except Exception as e:
            await upstream.aclose()
            logger.error(f"Proxy error for target {request.target}: {e!r}")
            raise UpstreamFailure("Proxy request failed") from e

    async def _make_http_request(self, request: ProxyRequest) -> httpx.Response:
        """Make the actual HTTP request."""
        if not self._http_client:
            raise RuntimeError("HTTP client not initialized")

        outbound = self._http_client.build_request(
            method=request.method,
            url=request.url,
            headers=request.headers,
            content=request.body,
        )
        # httpx timeouts bound each network step; this bounds the whole wait
        # for response headers
        return await asyncio.wait_for(
            self._http_client.send(outbound, stream=True), self.timeout
        )
