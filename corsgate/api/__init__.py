"""
HTTP endpoints of the gateway.

Provides:
- Proxy forwarding under /api/proxy/{target}
- CORS preflight answers for the same paths
"""

from .proxy import proxy_router, configure_proxy_api

__all__ = ["proxy_router", "configure_proxy_api"]
