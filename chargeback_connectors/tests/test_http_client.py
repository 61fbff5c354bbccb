"""
Tests for the resilient HTTP client's error mapping and call composition
"""

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.errors import (
    AuthenticationError,
    CircuitOpenError,
    NotFoundError,
    RetryExhaustedError,
    VendorAPIError,
)
from chargeback_connectors.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from chargeback_connectors.resilience.http_client import (
    HttpClientConfig,
    ResilientHttpClient,
    parse_retry_after,
)
from chargeback_connectors.resilience.retry import RetryConfig

BASE_URL = "https://vendor.test"


@pytest.fixture
def breaker():
    return CircuitBreaker(CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60, name="vendor"))


@pytest_asyncio.fixture
async def client(breaker):
    http = ResilientHttpClient(
        HttpClientConfig(
            base_url=BASE_URL,
            headers={"User-Agent": "tests"},
            retry=RetryConfig(max_attempts=3, base_delay=0, max_delay=0, jitter=0),
        ),
        vendor="vendor",
        circuit_breaker=breaker,
    )
    yield http
    await http.aclose()


@pytest.mark.asyncio
async def test_success_returns_response(client, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/ping", json={"ok": True})

    response = await client.get("/ping")

    assert response.json() == {"ok": True}
    request = httpx_mock.get_request()
    assert request.headers["User-Agent"] == "tests"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_server_errors_retried_then_exhausted(client, breaker, httpx_mock: HTTPXMock):
    for _ in range(3):
        httpx_mock.add_response(method="GET", url=f"{BASE_URL}/flaky", status_code=503)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await client.get("/flaky")

    assert exc_info.value.attempts == 3
    assert len(httpx_mock.get_requests()) == 3
    # one logical call is one breaker failure
    assert breaker.failure_count == 1


@pytest.mark.asyncio
async def test_transient_then_success(client, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/flaky", status_code=502)
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/flaky", status_code=429, headers={"Retry-After": "0"})
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/flaky", json={"ok": True})

    response = await client.get("/flaky")

    assert response.status_code == 200
    assert len(httpx_mock.get_requests()) == 3


@pytest.mark.asyncio
async def test_timeouts_are_transient(client, httpx_mock: HTTPXMock):
    httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/slow", json={})

    response = await client.get("/slow")
    assert response.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error",
    [(401, AuthenticationError), (403, AuthenticationError), (404, NotFoundError), (422, VendorAPIError)],
)
async def test_client_errors_not_retried(client, breaker, httpx_mock: HTTPXMock, status, error):
    httpx_mock.add_response(method="GET", url=f"{BASE_URL}/thing", status_code=status, json={"message": "nope"})

    with pytest.raises(error) as exc_info:
        await client.get("/thing")

    assert exc_info.value.status_code == status
    assert "nope" in exc_info.value.message
    assert len(httpx_mock.get_requests()) == 1
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_error_messages_are_scrubbed(client, httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        method="GET", url=f"{BASE_URL}/thing", status_code=422, json={"message": "guest jane@example.com invalid"}
    )

    with pytest.raises(VendorAPIError) as exc_info:
        await client.get("/thing")

    assert "jane@example.com" not in exc_info.value.message
    assert "<EMAIL>" in exc_info.value.message


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_without_io(client, breaker, httpx_mock: HTTPXMock):
    for _ in range(6):
        httpx_mock.add_response(method="GET", url=f"{BASE_URL}/down", status_code=500)

    for _ in range(2):
        with pytest.raises(RetryExhaustedError):
            await client.get("/down")
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError):
        await client.get("/down")
    assert len(httpx_mock.get_requests()) == 6


def test_parse_retry_after():
    assert parse_retry_after("5") == 5.0
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
    assert parse_retry_after(None) is None


@pytest.mark.asyncio
async def test_stats_shape(client):
    stats = client.get_stats()
    assert stats["circuit_breaker"]["state"] == "closed"
    assert "available_tokens" in stats["rate_limiter"]
