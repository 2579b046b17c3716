"""
Gateway service for reaching allowlisted upstream APIs from the browser.

This module provides:
- Target and header allowlists
- Outbound request and inbound response rebuilding
- Streaming passthrough of upstream responses
- CORS preflight headers
"""

from .service import GatewayService
from .models import ProxyRequest, ProxyResponse, TargetAllowlist, HeaderAllowlist
from .proxy import (
    InvalidTargetError,
    ProxyHandler,
    UpstreamFailure,
    build_inbound_response,
    build_outbound_request,
    parse_proxy_path,
    preflight_headers,
)

__all__ = [
    "GatewayService",
    "ProxyRequest",
    "ProxyResponse",
    "TargetAllowlist",
    "HeaderAllowlist",
    "InvalidTargetError",
    "ProxyHandler",
    "UpstreamFailure",
    "build_inbound_response",
    "build_outbound_request",
    "parse_proxy_path",
    "preflight_headers",
]
