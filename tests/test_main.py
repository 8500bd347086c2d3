"""Tests for the HTTP surface of the quote service."""

from fastapi.testclient import TestClient
from pytest_httpx import HTTPXMock

from quote_service.config import Settings
from quote_service.fetcher import ApiQuoteFetcher, FetcherConfig, FetchResult, TransportError
from quote_service.main import create_app
from tests.support import UPSTREAM_URL, FailingRepository, StubFetcher


def _client(fetcher, repository, **settings):
    app = create_app(Settings(**settings), fetcher=fetcher, repository=repository)
    return TestClient(app)


class TestCotacaoEndpoint:

    def test_returns_and_saves_quote(self, repository):
        fetcher = StubFetcher(FetchResult("5.43", attempts=1))
        client = _client(fetcher, repository, request_timeout_s=0.2, db_timeout_s=0.01)

        response = client.get("/cotacao")

        assert response.status_code == 200
        assert response.json() == {"Cotacao": "5.43"}
        assert repository.rows == ["5.43"]
        assert fetcher.timeouts == [0.2]

    def test_bid_formatting_is_preserved_end_to_end(self, httpx_mock: HTTPXMock, repository):
        httpx_mock.add_response(url=UPSTREAM_URL, json={"USDBRL": {"bid": "5.4300"}})
        fetcher = ApiQuoteFetcher(FetcherConfig(url=UPSTREAM_URL))
        client = _client(fetcher, repository)

        response = client.get("/cotacao")

        assert response.status_code == 200
        assert response.text == '{"Cotacao":"5.4300"}'
        assert repository.latest() == "5.4300"

    def test_exhausted_fetch_is_internal_error(self, repository):
        error = TransportError("upstream returned status 500", status_code=500)
        fetcher = StubFetcher(FetchResult("1.00", error=error, source="fallback", attempts=4))
        client = _client(fetcher, repository)

        response = client.get("/cotacao")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch cotacao"}
        assert repository.rows == []

    def test_exhausted_fetch_served_when_stale_fallback_enabled(self, repository):
        error = TransportError("connection refused")
        fetcher = StubFetcher(FetchResult("1.00", error=error, source="fallback", attempts=4))
        client = _client(fetcher, repository, serve_stale_fallback=True)

        response = client.get("/cotacao")

        assert response.status_code == 200
        assert response.json() == {"Cotacao": "1.00"}

    def test_bypass_is_served(self, repository):
        fetcher = StubFetcher(FetchResult("1.00", source="bypass"))
        client = _client(fetcher, repository)

        assert client.get("/cotacao").json() == {"Cotacao": "1.00"}

    def test_persistence_failure_is_internal_error(self, httpx_mock: HTTPXMock):
        httpx_mock.add_response(url=UPSTREAM_URL, json={"USDBRL": {"bid": "5.43"}})
        fetcher = ApiQuoteFetcher(FetcherConfig(url=UPSTREAM_URL, failure_threshold=1))
        client = _client(fetcher, FailingRepository())

        response = client.get("/cotacao")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to save cotacao"}
        assert fetcher.breaker.state == "CLOSED"
        assert fetcher.breaker.failure_count == 0


class TestOperationalEndpoints:

    def test_healthz_reports_breaker_state(self, repository):
        fetcher = ApiQuoteFetcher(FetcherConfig(url=UPSTREAM_URL, failure_threshold=1))
        fetcher.breaker.record_failure(0.0)
        client = _client(fetcher, repository)

        body = client.get("/healthz").json()

        assert body == {"ok": True, "cb_state": "OPEN", "failure_count": 1}

    def test_healthz_with_fetcher_without_breaker(self, repository):
        client = _client(StubFetcher(), repository)

        assert client.get("/healthz").json()["cb_state"] == "UNKNOWN"

    def test_metrics_exposes_counters(self, repository):
        client = _client(StubFetcher(FetchResult("5.43", attempts=1)), repository)
        client.get("/cotacao")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "total_requests_total" in response.text
        assert "upstream_attempts_total" in response.text
