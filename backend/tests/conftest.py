"""Shared fixtures: an in-memory Graph API served through httpx.MockTransport."""

from typing import Any, Callable, Dict, List, Union

import httpx
import pytest

from campaign_insights.config import Settings
from campaign_insights.services.graph_client import GraphAPIClient

RouteResult = Union[Dict[str, Any], httpx.Response]


def graph_error(status: int = 400, message: str = "Invalid parameter") -> httpx.Response:
    return httpx.Response(
        status,
        json={"error": {"message": message, "type": "OAuthException", "code": 100}},
    )


class FakeGraphAPI:
    """
    Routes requests by Graph path (version prefix stripped) to canned
    payloads or handlers, recording every request it serves.
    """

    def __init__(self):
        self.routes: Dict[str, Union[RouteResult, Callable[[httpx.Request], RouteResult]]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, result) -> None:
        if isinstance(result, httpx.Response):
            # a fresh response per request; httpx binds each one to its request
            status, content, headers = result.status_code, result.content, result.headers
            result = lambda request: httpx.Response(status, content=content, headers=headers)
        self.routes[path] = result

    @staticmethod
    def graph_path(request: httpx.Request) -> str:
        # "/v24.0/123/insights" -> "123/insights"
        return request.url.path.lstrip("/").split("/", 1)[1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self.graph_path(request)
        route = self.routes.get(path)
        if route is None:
            return graph_error(404, f"Unknown path {path}")

        result = route(request) if callable(route) else route
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if self.graph_path(r) == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def graph() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        brand_connections={"brand-1": {"access_token": "brand-token", "ad_account_id": "act_42"}},
        business_timezone="America/New_York",
    )


def make_client(graph: FakeGraphAPI) -> GraphAPIClient:
    return GraphAPIClient("test-token", transport=graph.transport)


def insights(**metrics) -> Dict[str, Any]:
    """Embedded ``insights`` edge with one row."""
    return {"data": [{k: str(v) for k, v in metrics.items()}]}
