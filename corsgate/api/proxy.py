from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from ..gateway.models import BODYLESS_METHODS
from ..gateway.proxy import (
    PROXY_MOUNT_PREFIX,
    InvalidTargetError,
    UpstreamFailure,
    build_outbound_request,
    parse_proxy_path,
    preflight_headers,
    resolve_target,
)
from ..gateway.service import GatewayService
from ..monitoring.metrics import INVALID_TARGET_LABEL, proxy_requests_total

logger = logging.getLogger(__name__)

proxy_router = APIRouter(prefix=PROXY_MOUNT_PREFIX, tags=["proxy"])

FORWARDED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]

_svc: Optional[GatewayService] = None


def configure_proxy_api(*, svc: Optional[GatewayService]) -> None:
    global _svc
    _svc = svc


def _resolve_svc() -> GatewayService:
    if _svc is None:
        raise RuntimeError("Gateway service unavailable")
    return _svc


def _split_path(request: Request, target: str) -> tuple[str, str]:
    # Router captures decode the path; re-derive from the raw bytes instead
    raw_path = request.scope.get("raw_path")
    if raw_path:
        parsed = parse_proxy_path(raw_path.split(b"?", 1)[0].decode("latin-1"))
        if parsed is not None:
            return parsed
    # Servers that omit raw_path still provide the matched path
    parsed = parse_proxy_path(request.scope.get("path", ""))
    if parsed is None:
        raise InvalidTargetError(target)
    return parsed


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@proxy_router.options("/{target}")
@proxy_router.options("/{target}/{rest:path}")
async def proxy_preflight(target: str):
    return Response(status_code=204, headers=preflight_headers())


@proxy_router.api_route("/{target}", methods=FORWARDED_METHODS)
@proxy_router.api_route("/{target}/{rest:path}", methods=FORWARDED_METHODS)
async def proxy_forward(request: Request, target: str):
    method = request.method.upper()

    try:
        target, rest = _split_path(request, target)
        resolve_target(target)
    except InvalidTargetError as e:
        logger.error(str(e))
        if _svc is not None:
            _svc.record_rejected(target, method)
        else:
            proxy_requests_total.labels(INVALID_TARGET_LABEL, method, "400").inc()
        return _error(str(e), 400)

    try:
        svc = _resolve_svc()
        body = None if method in BODYLESS_METHODS else await request.body()
        proxy_request = build_outbound_request(
            method,
            target,
            rest,
            request.scope.get("query_string", b"").decode("latin-1"),
            request.headers,
            body,
        )
        proxy_response = await svc.handle_request(proxy_request)
    except UpstreamFailure:
        return _error("Proxy request failed", 502)
    except Exception as e:  # noqa: BLE001
        logger.exception("Proxy error: %s", e)
        return _error("Proxy request failed", 502)

    return StreamingResponse(
        proxy_response.body,
        status_code=proxy_response.status_code,
        headers=proxy_response.headers,
        # Runs even when the caller goes away before the body is read
        background=BackgroundTask(proxy_response.close),
    )
