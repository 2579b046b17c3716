"""
Compiled-in allowlists for the proxy gateway.

These tables are the security boundary of the gateway and are intentionally
not configurable from the environment; changing them requires a redeploy.
"""

from .models import HeaderAllowlist, TargetAllowlist

ALLOWED_TARGETS = TargetAllowlist(
    targets={
        "trading-api": "https://trading-api-labs.interface.gateway.uniswap.org",
        "graphql": "https://beta.gateway.uniswap.org",
        "gateway": "https://interface.gateway.uniswap.org",
        "amplitude": "https://metrics.interface.gateway.uniswap.org",
        "trade-api": "https://trade-api.gateway.uniswap.org",
        "beta": "https://beta.gateway.uniswap.org",
        "entry-gateway": "https://entry-gateway.backend-prod.api.uniswap.org",
    }
)

# Headers copied from the caller to the upstream
FORWARDED_REQUEST_HEADERS = HeaderAllowlist(
    names=(
        "content-type",
        "accept",
        "x-api-key",
        "x-request-id",
        "x-request-source",
        "authorization",
    )
)

# Headers copied from the upstream back to the caller
FORWARDED_RESPONSE_HEADERS = HeaderAllowlist(
    names=(
        "content-type",
        "content-encoding",
        "cache-control",
        "etag",
        "last-modified",
    )
)

# Identity presented to every upstream in place of the caller's
GATEWAY_ORIGIN = "https://app.uniswap.org"
GATEWAY_REFERER = "https://app.uniswap.org/"
GATEWAY_USER_AGENT = "Mozilla/5.0 (compatible; UniswapInterface/1.0)"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-API-Key, X-Request-Id",
    "Access-Control-Max-Age": "86400",
}
