import asyncio
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from corsgate.api import configure_proxy_api
from corsgate.gateway.service import GatewayService
from corsgate.main import app


def upstream_response(
    status_code: int = 200, body: bytes = b"", headers: Optional[dict] = None
) -> httpx.Response:
    # Streamed so the gateway reads it the way it reads a network response
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


class RecordingUpstream:
    """MockTransport handler that records every request it receives."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = (
            lambda request: upstream_response(200, b"ok")
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


@pytest.fixture
def upstream() -> RecordingUpstream:
    return RecordingUpstream()


@pytest.fixture
def gateway(upstream):
    service = GatewayService(transport=httpx.MockTransport(upstream))
    asyncio.run(service.start())
    configure_proxy_api(svc=service)
    yield service
    configure_proxy_api(svc=None)
    asyncio.run(service.stop())


@pytest.fixture
def client(gateway) -> TestClient:
    return TestClient(app)
