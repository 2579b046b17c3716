import asyncio
import logging
import time

import httpx
import pytest

from conftest import upstream_response
from corsgate.gateway.allowlists import ALLOWED_TARGETS
from corsgate.gateway.proxy import (
    InvalidTargetError,
    ProxyHandler,
    UpstreamFailure,
    build_inbound_response,
    build_outbound_request,
    parse_proxy_path,
    preflight_headers,
)
from corsgate.gateway.models import ProxyRequest


@pytest.mark.parametrize(
    "raw_path, expected",
    [
        ("/api/proxy/graphql", ("graphql", "")),
        ("/api/proxy/graphql/", ("graphql", "")),
        ("/api/proxy/graphql/v1/tokens", ("graphql", "v1/tokens")),
        ("/api/proxy/graphql//double", ("graphql", "/double")),
        ("/api/proxy/trade-api/a%2Fb/c", ("trade-api", "a%2Fb/c")),
        ("/api/proxy/entry%2Dgateway/x", ("entry-gateway", "x")),
    ],
)
def test_parse_proxy_path(raw_path, expected):
    assert parse_proxy_path(raw_path) == expected


@pytest.mark.parametrize("raw_path", ["/api/proxy", "/api/proxy/", "/other/graphql/x"])
def test_parse_proxy_path_rejects_other_shapes(raw_path):
    assert parse_proxy_path(raw_path) is None


def test_parse_proxy_path_custom_prefix():
    assert parse_proxy_path("/proxy/beta/v1", prefix="/proxy") == ("beta", "v1")


def test_build_outbound_request_url_and_identity():
    req = build_outbound_request(
        "get",
        "graphql",
        "v1/tokens",
        "chain=1",
        {"origin": "https://caller.example", "accept": "application/json"},
    )
    assert req.method == "GET"
    assert req.url == "https://beta.gateway.uniswap.org/v1/tokens?chain=1"
    assert req.headers["Origin"] == "https://app.uniswap.org"
    assert req.headers["Referer"] == "https://app.uniswap.org/"
    assert req.headers["User-Agent"] == "Mozilla/5.0 (compatible; UniswapInterface/1.0)"
    assert req.headers["accept"] == "application/json"
    assert req.body is None


def test_build_outbound_request_omits_question_mark_for_empty_query():
    req = build_outbound_request("GET", "beta", "v1", "", {})
    assert req.url == "https://beta.gateway.uniswap.org/v1"


def test_build_outbound_request_unknown_target():
    with pytest.raises(InvalidTargetError) as exc:
        build_outbound_request("POST", "evil.com", "x", "", {}, b"{}")
    assert str(exc.value) == "Invalid proxy target: evil.com"
    assert exc.value.target == "evil.com"


def test_build_outbound_request_drops_unlisted_headers():
    req = build_outbound_request(
        "POST",
        "gateway",
        "v1",
        "",
        {"cookie": "a=b", "x-forwarded-for": "1.2.3.4", "x-api-key": "k"},
        b"{}",
    )
    assert set(req.headers) == {"Origin", "Referer", "User-Agent", "x-api-key"}


@pytest.mark.parametrize("method", ["GET", "HEAD"])
def test_bodyless_methods_carry_no_body(method):
    req = build_outbound_request(method, "gateway", "v1", "", {}, b"payload")
    assert req.body is None


def test_other_methods_carry_body_unchanged():
    req = build_outbound_request("PATCH", "gateway", "v1", "", {}, b"\x00\x01")
    assert req.body == b"\x00\x01"
    empty = build_outbound_request("DELETE", "gateway", "v1", "", {}, None)
    assert empty.body == b""


def test_build_inbound_response_filters_headers():
    upstream = httpx.Response(
        201,
        headers={
            "content-type": "text/plain",
            "etag": '"1"',
            "set-cookie": "t=1",
            "server": "upstream",
        },
        content=b"created",
    )
    resp = build_inbound_response(upstream)
    assert resp.status_code == 201
    assert resp.status_text == "Created"
    assert resp.headers == {**preflight_headers(), "content-type": "text/plain", "etag": '"1"'}


def test_preflight_headers_are_fresh_copies():
    headers = preflight_headers()
    headers["Access-Control-Allow-Origin"] = "https://x"
    assert preflight_headers()["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_proxy_handler_streams_raw_body():
    seen = []

    def respond(request):
        seen.append(request)
        return upstream_response(200, b"chunked body", {"content-type": "text/plain"})

    handler = ProxyHandler(transport=httpx.MockTransport(respond))
    await handler.start()
    try:
        req = build_outbound_request("GET", "beta", "v1", "a=1", {"x-request-id": "r"})
        resp = await handler.forward(req)
        body = b"".join([chunk async for chunk in resp.body])
    finally:
        await handler.stop()

    assert body == b"chunked body"
    assert resp.headers["content-type"] == "text/plain"
    assert seen[0].headers["x-request-id"] == "r"


@pytest.mark.asyncio
async def test_proxy_handler_not_started_is_upstream_failure():
    handler = ProxyHandler()
    req = ProxyRequest(method="GET", target="beta", url="https://beta.gateway.uniswap.org/")
    with pytest.raises(UpstreamFailure):
        await handler.forward(req)


@pytest.mark.asyncio
async def test_proxy_handler_wraps_transport_errors():
    def broken(request):
        raise httpx.RemoteProtocolError("bad upstream", request=request)

    handler = ProxyHandler(transport=httpx.MockTransport(broken))
    await handler.start()
    try:
        req = build_outbound_request("GET", "beta", "", "", {})
        with pytest.raises(UpstreamFailure) as exc:
            await handler.forward(req)
    finally:
        await handler.stop()
    assert isinstance(exc.value.__cause__, httpx.RemoteProtocolError)


def test_default_targets_loaded():
    assert ALLOWED_TARGETS.resolve("graphql") == "https://beta.gateway.uniswap.org"
    assert ALLOWED_TARGETS.resolve("unknown") is None


class FailingBody(httpx.AsyncByteStream):
    """Upstream body that breaks after its first chunk."""

    def __init__(self, error: Exception):
        self.error = error
        self.closed = False

    async def __aiter__(self):
        yield b"partial"
        raise self.error

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [httpx.ReadError("connection reset"), httpx.StreamClosed()],
)
async def test_mid_stream_failure_is_logged_raised_and_closed(caplog, error):
    body = FailingBody(error)
    handler = ProxyHandler(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=body))
    )
    await handler.start()
    try:
        resp = await handler.forward(build_outbound_request("GET", "beta", "v1", "", {}))
        received = []
        with caplog.at_level(logging.ERROR, logger="corsgate.gateway.proxy"):
            with pytest.raises(type(error)):
                async for chunk in resp.body:
                    received.append(chunk)
    finally:
        await handler.stop()

    assert received == [b"partial"]
    assert body.closed
    assert "Upstream stream interrupted" in caplog.text


@pytest.mark.asyncio
async def test_close_releases_upstream_without_reading_body():
    body = FailingBody(httpx.ReadError("unused"))
    handler = ProxyHandler(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=body))
    )
    await handler.start()
    try:
        resp = await handler.forward(build_outbound_request("GET", "beta", "v1", "", {}))
        await resp.close()
        await resp.close()
    finally:
        await handler.stop()
    assert body.closed


@pytest.mark.asyncio
async def test_timeout_bounds_whole_wait_for_response_headers():
    drips = []

    async def drip(reader, writer):
        drips.append(asyncio.current_task())
        try:
            await reader.readuntil(b"\r\n\r\n")
            # Each byte arrives well inside the per-read timeout
            for byte in b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nok":
                writer.write(bytes([byte]))
                await writer.drain()
                await asyncio.sleep(0.1)
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(drip, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    handler = ProxyHandler(timeout=0.5, transport=httpx.AsyncHTTPTransport())
    await handler.start()
    req = ProxyRequest(method="GET", target="local", url=f"http://127.0.0.1:{port}/")
    started = time.monotonic()
    try:
        with pytest.raises(UpstreamFailure) as exc:
            await handler.forward(req)
        elapsed = time.monotonic() - started
    finally:
        await handler.stop()
        for task in drips:
            task.cancel()
        await asyncio.gather(*drips, return_exceptions=True)
        server.close()
        await server.wait_closed()

    assert elapsed < 2.0
    assert isinstance(exc.value.__cause__, asyncio.TimeoutError)
