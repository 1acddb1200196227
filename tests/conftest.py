import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from aip_insights.main import app
from tests.helpers.metrics_stub import StubMetrics


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def stub_metrics(monkeypatch):
    """Route analyzer metrics into a capturing stub."""
    stub = StubMetrics()
    for module in (
        "aip_insights.services.analysis.budget_allocation",
        "aip_insights.services.analysis.data_validation",
        "aip_insights.services.analysis.document_intelligence",
        "aip_insights.services.analysis.project_prioritization",
        "aip_insights.services.analysis.risk_assessment",
    ):
        monkeypatch.setattr(f"{module}.metrics", stub)
    return stub
