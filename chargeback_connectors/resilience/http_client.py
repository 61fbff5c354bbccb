"""
Resilient HTTP client for vendor APIs

Every outbound call is composed as:
rate-limit admission -> circuit-breaker admission -> retry loop -> httpx request
"""

import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

import httpx

from ..errors import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    TransientError,
    VendorAPIError,
)
from ..utils.logging import ConnectorLogger, sanitize_url
from ..utils.pii_redactor import redact_pii
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .rate_limiter import RateLimitConfig, TokenBucketRateLimiter
from .retry import RetryConfig, call_with_retry

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class HttpClientConfig:
    """Per-adapter transport settings"""
    base_url: str
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    retryable_status_codes: FrozenSet[int] = DEFAULT_RETRYABLE_STATUS_CODES
    cert: Optional[Union[str, Tuple[str, str]]] = None
    max_connections: int = 20


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored"""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error_description", "error", "Message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    return response.reason_phrase


class ResilientHttpClient:
    """
    httpx.AsyncClient wrapped in the adapter's rate limiter, circuit breaker
    and retry policy. One instance per adapter; breaker and limiter may be
    injected so that they survive client rebuilds.
    """

    def __init__(
        self,
        config: HttpClientConfig,
        *,
        vendor: str,
        logger: Optional[ConnectorLogger] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.vendor = vendor
        self.logger = logger or ConnectorLogger(f"chargeback_connectors.http.{vendor.lower()}", vendor)
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(RateLimitConfig(name=vendor))
        self.circuit_breaker = circuit_breaker or CircuitBreaker(CircuitBreakerConfig(name=vendor))

        client_kwargs: Dict[str, Any] = dict(
            base_url=config.base_url,
            headers={"Accept": "application/json", **config.headers},
            timeout=httpx.Timeout(config.timeout),
            limits=httpx.Limits(max_connections=config.max_connections),
        )
        if config.cert:
            # mutual TLS: client certificate chain loaded into the verify context
            certfile, keyfile = config.cert if isinstance(config.cert, tuple) else (config.cert, None)
            ssl_context = ssl.create_default_context()
            ssl_context.load_cert_chain(certfile, keyfile)
            client_kwargs["verify"] = ssl_context
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Optional[httpx.Auth] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send one logical request through the resilience stack."""
        await self.rate_limiter.acquire()
        return await self.circuit_breaker.call(
            call_with_retry,
            self._send,
            method,
            url,
            params=params,
            json=json,
            data=data,
            headers=headers,
            auth=auth,
            timeout=timeout,
            config=self.config.retry,
            service_name=self.vendor,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params=None,
        json=None,
        data=None,
        headers=None,
        auth=None,
        timeout=None,
    ) -> httpx.Response:
        operation = f"{method.upper()} {sanitize_url(url)}"
        start = time.perf_counter()
        request_kwargs: Dict[str, Any] = {}
        if params:
            request_kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if json is not None:
            request_kwargs["json"] = json
        if data is not None:
            request_kwargs["data"] = data
        if headers:
            request_kwargs["headers"] = dict(headers)
        if auth is not None:
            request_kwargs["auth"] = auth
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = await self._client.request(method.upper(), url, **request_kwargs)
        except httpx.TimeoutException as e:
            error = TransientError(f"Timeout calling {self.vendor}: {operation}", vendor=self.vendor)
            self.logger.log_api_call(operation, duration_ms=_elapsed_ms(start), error=error)
            raise error from e
        except httpx.TransportError as e:
            error = TransientError(f"Network error calling {self.vendor}: {e}", vendor=self.vendor)
            self.logger.log_api_call(operation, duration_ms=_elapsed_ms(start), error=error)
            raise error from e

        duration_ms = _elapsed_ms(start)
        if response.is_success:
            self.logger.log_api_call(operation, duration_ms=duration_ms, status_code=response.status_code)
            return response

        error = self._map_error(response)
        self.logger.log_api_call(
            operation, duration_ms=duration_ms, status_code=response.status_code, error=error
        )
        raise error

    def _map_error(self, response: httpx.Response) -> Exception:
        status = response.status_code
        message = f"{self.vendor} API error {status}: {redact_pii(_error_message(response))}"
        kwargs = dict(vendor=self.vendor, status_code=status)

        if status == 429:
            return RateLimitError(
                message,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                **kwargs,
            )
        if status in (401, 403):
            return AuthenticationError(message, **kwargs)
        if status in self.config.retryable_status_codes or status >= 500:
            return TransientError(message, **kwargs)
        if status == 404:
            return NotFoundError(message, **kwargs)
        return VendorAPIError(message, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "circuit_breaker": self.circuit_breaker.get_stats().model_dump(mode="json"),
            "rate_limiter": self.rate_limiter.get_stats().model_dump(mode="json"),
        }

    async def aclose(self):
        await self._client.aclose()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
