"""
Shared plumbing for every vendor adapter (PMS and dispute portals)

An adapter instance is scoped to one integration: one credential set, one
rate limiter, one circuit breaker, one HTTP client. Nothing here is shared
across instances.
"""

import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from .auth import AuthState, AuthStrategy, AuthType
from .config import ConnectorSettings, get_settings
from .errors import AuthenticationError, CircuitOpenError, ValidationError, WebhookSignatureError
from .resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .resilience.http_client import HttpClientConfig, ResilientHttpClient
from .resilience.rate_limiter import RateLimitConfig, TokenBucketRateLimiter
from .resilience.retry import RetryConfig
from .utils.logging import ConnectorLogger
from .webhooks import WebhookBody, verify_and_load, verify_signature


class BaseIntegration(ABC):
    """Base class with common functionality for all vendor adapters"""

    vendor_name: str = "unknown"
    display_name: str = ""
    auth_type: AuthType = AuthType.API_KEY
    default_base_url: str = ""
    required_credentials: Tuple[str, ...] = ()
    requests_per_minute: Optional[int] = None
    probe_path: str = "/"
    signature_headers: Tuple[str, ...] = ("x-webhook-signature", "x-signature")

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        settings: Optional[ConnectorSettings] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = dict(config)
        self.settings = settings or get_settings()
        self.property_id = self.config.get("property_id") or self.config.get("propertyId")
        self.integration_id = self.config.get("integration_id") or self.config.get("integrationId")
        self.base_url = str(self.config.get("base_url") or self.default_base_url).rstrip("/")

        self.auth_state = AuthState.from_credentials(self.auth_type, self.config.get("credentials"))
        self._validate_credentials()

        self.logger = ConnectorLogger(
            name=f"{self.__class__.__module__}.{self.__class__.__name__}",
            vendor=self.vendor_name,
            property_id=self.property_id,
            level=self.settings.log_level,
        )

        scope = self.integration_id or self.property_id or hex(id(self))
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(self._rate_limit_config(f"{self.vendor_name}:{scope}"))
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=self.settings.circuit_breaker.failure_threshold,
                recovery_timeout=self.settings.circuit_breaker.recovery_timeout,
                name=f"{self.vendor_name}:{scope}",
            )
        )
        self._transport = transport
        self.http = self._build_http_client()
        self.auth = self._build_auth_strategy()

        self.webhook_secret: Optional[str] = self.auth_state.get("webhook_secret")
        self._authenticated = False

    # -- construction -----------------------------------------------------

    @property
    def credentials(self) -> Dict[str, Any]:
        return self.auth_state.credentials

    def _validate_credentials(self):
        missing = [key for key in self.required_credentials if not self.auth_state.get(key)]
        if missing:
            raise ValidationError(
                f"{self.vendor_name} credentials missing required fields: {', '.join(missing)}",
                field="credentials",
                vendor=self.vendor_name,
                details={"missing": missing},
            )

    def _rate_limit_config(self, name: str) -> RateLimitConfig:
        defaults = self.settings.rate_limit
        if self.requests_per_minute:
            return RateLimitConfig(
                max_tokens=self.requests_per_minute,
                refill_rate=self.requests_per_minute,
                interval_seconds=60.0,
                max_wait=defaults.max_wait_seconds,
                name=name,
            )
        return RateLimitConfig(
            max_tokens=defaults.max_tokens,
            refill_rate=defaults.refill_rate,
            interval_seconds=defaults.interval_seconds,
            max_wait=defaults.max_wait_seconds,
            name=name,
        )

    def _default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.settings.user_agent}

    def _client_cert(self):
        return None

    def _http_client_config(self) -> HttpClientConfig:
        retry = self.settings.retry
        return HttpClientConfig(
            base_url=self.base_url,
            headers=self._default_headers(),
            timeout=self.settings.request_timeout,
            retry=RetryConfig(
                max_attempts=retry.max_attempts,
                base_delay=retry.base_delay,
                max_delay=retry.max_delay,
                jitter=retry.jitter,
            ),
            retryable_status_codes=frozenset(retry.retryable_status_codes),
            cert=self._client_cert(),
        )

    def _build_http_client(self) -> ResilientHttpClient:
        return ResilientHttpClient(
            self._http_client_config(),
            vendor=self.vendor_name,
            logger=self.logger,
            rate_limiter=self.rate_limiter,
            circuit_breaker=self.circuit_breaker,
            transport=self._transport,
        )

    @abstractmethod
    def _build_auth_strategy(self) -> AuthStrategy:
        """Return the strategy matching ``auth_type``"""

    # -- lifecycle ----------------------------------------------------------

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        await self.authenticate()

    async def disconnect(self):
        await self.http.aclose()

    async def authenticate(self) -> None:
        """Establish a usable credential. Safe to call repeatedly."""
        if self.auth.requires_probe:
            await self._probe()
        else:
            await self.auth.ensure_valid(self.http)
        self._authenticated = True
        self.logger.info("Authenticated", auth_type=self.auth_type.value)

    async def refresh_auth(self) -> None:
        """
        Renew the credential.

        OAuth2 adapters run a grant; static-credential adapters rebuild their
        HTTP client so rotated secrets take effect.
        """
        if self.auth.requires_probe:
            old = self.http
            self.http = self._build_http_client()
            await old.aclose()
            self.logger.info("HTTP client rebuilt for credential rotation")
        else:
            await self.auth.refresh(self.http)

    def update_credentials(self, credentials: Mapping[str, Any]):
        """Merge rotated credentials; takes effect on the next call"""
        rotated = AuthState.from_credentials(self.auth_type, credentials)
        self.auth_state.credentials.update(rotated.credentials)
        if rotated.access_token:
            self.auth_state.access_token = rotated.access_token
            self.auth_state.token_expires_at = rotated.token_expires_at
        if rotated.refresh_token:
            self.auth_state.refresh_token = rotated.refresh_token
        self._authenticated = False

    async def ensure_authenticated(self) -> None:
        if self.auth.requires_probe:
            if not self._authenticated:
                await self.authenticate()
        else:
            await self.auth.ensure_valid(self.http)

    async def _probe(self, timeout: Optional[float] = None) -> Any:
        """Cheapest authenticated call the vendor offers"""
        return await self._request("GET", self.probe_path, ensure_auth=False, timeout=timeout)

    # -- requests -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        ensure_auth: bool = True,
    ) -> Any:
        """Authenticated request returning the decoded body"""
        if ensure_auth:
            await self.ensure_authenticated()

        try:
            response = await self.http.request(
                method, path, params=params, json=json, data=data,
                headers={**self.auth.auth_headers(), **(headers or {})}, timeout=timeout,
            )
        except AuthenticationError:
            if not ensure_auth or self.auth.requires_probe:
                raise
            # Token revoked before its expiry: renew once and replay
            self.logger.warning("Access token rejected, renewing", path=path)
            self.auth.invalidate()
            await self.auth.ensure_valid(self.http)
            response = await self.http.request(
                method, path, params=params, json=json, data=data,
                headers={**self.auth.auth_headers(), **(headers or {})}, timeout=timeout,
            )
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    @staticmethod
    def _idempotency_key(prefix: str) -> str:
        return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"

    # -- health -------------------------------------------------------------

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id}

    async def health_check(self) -> Dict[str, Any]:
        """Probe the vendor. Never raises; failures are reported in ``details``."""
        start = time.perf_counter()
        details = self._health_details()
        try:
            if not self.auth.requires_probe:
                await self.auth.ensure_valid(self.http)
            await self._probe(timeout=self.settings.health_check_timeout)
            self._authenticated = True
            healthy, status = True, "healthy"
        except Exception as e:
            healthy = False
            status = "degraded" if isinstance(e, CircuitOpenError) else "unhealthy"
            details.update(error=str(e), error_type=type(e).__name__)
            self.logger.warning("Health check failed", error_type=type(e).__name__)

        details["circuit_state"] = self.circuit_breaker.state.value
        if self.auth_type == AuthType.OAUTH2:
            details["token_valid"] = self.auth_state.is_token_fresh(0)
        return {
            "healthy": healthy,
            "status": status,
            "vendor": self.vendor_name,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        }

    # -- webhooks -----------------------------------------------------------

    def verify_webhook_signature(self, body: WebhookBody, signature: Optional[str], secret: Optional[str] = None) -> bool:
        return verify_signature(secret or self.webhook_secret or "", body, signature)

    def _load_webhook(self, headers: Mapping[str, str], body: WebhookBody) -> Dict[str, Any]:
        try:
            return verify_and_load(
                headers,
                body,
                secret=self.webhook_secret,
                signature_headers=self.signature_headers,
                vendor=self.vendor_name,
            )
        except WebhookSignatureError as e:
            self.logger.warning("Webhook rejected", reason=e.message)
            raise

    @staticmethod
    def _clean(params: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in params.items() if v not in (None, "", [])}

    @staticmethod
    def _unwrap(value: Any, *keys: str) -> Any:
        """Strip a ``{"result": {...}}`` style envelope"""
        if isinstance(value, Mapping):
            for key in keys:
                inner = value.get(key)
                if inner not in (None, "", {}, []):
                    return inner
        return value

    @staticmethod
    def _as_list(value: Any, *keys: str) -> list:
        """Extract a list from a response that may wrap it under one of ``keys``"""
        if isinstance(value, list):
            return value
        if isinstance(value, Mapping):
            for key in keys:
                inner = value.get(key)
                if isinstance(inner, list):
                    return inner
                if isinstance(inner, Mapping):
                    return [inner]
        return []
