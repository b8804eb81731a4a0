"""Shared fixtures: a fake upstream behind httpx.MockTransport."""
from typing import Any, Dict, List, Tuple

import httpx
import pytest

from f1_mcp.cache import Cache
from f1_mcp.config import Settings
from f1_mcp.gateway import FetchGateway
from f1_mcp.metrics import MetricsCollector
from f1_mcp.service import F1DataService

OPENF1 = "/v1"
ERGAST = "/ergast/f1"


class FakeUpstream:
    """Answers requests by URL path with canned JSON and records every request."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, Any]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path not in self.routes:
            return httpx.Response(404, json={"detail": "Not Found"})
        status, body = self.routes[request.url.path]
        return httpx.Response(status, json=body)

    def calls_to(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def ergast(table: str, key: str, items: List[Any]) -> Dict[str, Any]:
    """Build an Ergast envelope, e.g. ergast("RaceTable", "Races", [...])."""
    return {"MRData": {"series": "f1", table: {key: items}}}


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def gateway(upstream, metrics):
    """Gateway without retries, so failing responses are seen exactly once."""
    return FetchGateway(upstream.client(), Cache(), metrics, max_retries=0)


@pytest.fixture
def service(gateway, settings):
    return F1DataService(gateway, settings)
