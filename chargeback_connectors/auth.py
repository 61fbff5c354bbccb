"""
Authentication lifecycle for vendor adapters

Each adapter owns exactly one AuthState and one strategy. The strategy is the
only thing that mutates the state; OAuth2 renewals are single-flight so that
concurrent callers on one adapter never issue parallel grant requests.
"""

import asyncio
import base64
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from .errors import AuthenticationError, IntegrationError, ValidationError, VendorAPIError
from .utils.logging import get_safe_logger

if TYPE_CHECKING:
    from .resilience.http_client import ResilientHttpClient

logger = get_safe_logger("chargeback_connectors.auth")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_credential_keys(credentials: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """``clientId`` -> ``client_id``; snake_case keys are kept as given."""
    return {
        _CAMEL_BOUNDARY.sub("_", str(key)).lower(): value
        for key, value in (credentials or {}).items()
    }


class AuthType(str, Enum):
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC = "basic"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AuthState:
    """
    Credential material and token cache for one adapter instance.

    ``token_expires_at`` is the vendor-reported expiry in epoch milliseconds;
    the refresh buffer is applied when deciding whether to renew.
    """

    auth_type: AuthType
    credentials: Dict[str, Any] = field(default_factory=dict)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[int] = None

    @classmethod
    def from_credentials(cls, auth_type: AuthType, credentials: Optional[Mapping[str, Any]]) -> "AuthState":
        creds = normalize_credential_keys(credentials)
        expires_at = creds.get("expires_at")
        return cls(
            auth_type=auth_type,
            credentials=creds,
            access_token=creds.get("access_token"),
            refresh_token=creds.get("refresh_token"),
            token_expires_at=int(expires_at) if expires_at not in (None, "") else None,
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.credentials.get(key, default)

    def is_token_fresh(self, buffer_seconds: float, now_ms: Optional[int] = None) -> bool:
        if not self.access_token or self.token_expires_at is None:
            return False
        now_ms = _now_ms() if now_ms is None else now_ms
        return now_ms < self.token_expires_at - int(buffer_seconds * 1000)

    def apply_token_response(self, data: Mapping[str, Any], now_ms: Optional[int] = None):
        token = data.get("access_token")
        if not token:
            raise AuthenticationError("Token response did not contain an access_token")
        now_ms = _now_ms() if now_ms is None else now_ms
        self.access_token = token
        if data.get("refresh_token"):
            self.refresh_token = data["refresh_token"]
        self.token_expires_at = now_ms + int(float(data.get("expires_in") or 3600) * 1000)

    def clear_token(self):
        self.access_token = None
        self.token_expires_at = None

    def to_persistable(self) -> Dict[str, Any]:
        """Rotated token fields for the owning integration record to store"""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.token_expires_at,
        }


class AuthStrategy(ABC):
    """Uniform credential interface used by every adapter"""

    auth_type: AuthType

    def __init__(self, state: AuthState):
        self.state = state

    @property
    def requires_probe(self) -> bool:
        """Static credentials are validated by the adapter's cheap probe call"""
        return True

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Headers to attach to every authenticated request"""

    async def ensure_valid(self, http: "ResilientHttpClient") -> None:
        """Make sure a usable credential exists before a call is dispatched"""

    async def refresh(self, http: "ResilientHttpClient") -> None:
        """Renew the credential"""

    def invalidate(self) -> None:
        """Forget any cached credential so the next call renews it"""


class OAuth2ClientCredentialsAuth(AuthStrategy):
    """
    OAuth2 with refresh-token and client-credentials grants

    Tokens are reused until they enter the expiry buffer (5 minutes by default).
    Renewal tries the refresh-token grant first when a refresh token is cached
    and falls back to client credentials if that grant fails.
    """

    auth_type = AuthType.OAUTH2

    def __init__(
        self,
        state: AuthState,
        token_url: str,
        *,
        scope: Optional[str] = None,
        buffer_seconds: float = 300,
        client_auth: str = "body",
        timeout: float = 15.0,
        extra_params: Optional[Dict[str, str]] = None,
    ):
        super().__init__(state)
        if client_auth not in ("body", "basic"):
            raise ValidationError(f"Unsupported OAuth2 client authentication: {client_auth}", field="client_auth")
        self.token_url = token_url
        self.scope = scope
        self.buffer_seconds = buffer_seconds
        self.client_auth = client_auth
        self.timeout = timeout
        self.extra_params = extra_params or {}
        self._lock = asyncio.Lock()
        self.grant_count = 0

    @property
    def requires_probe(self) -> bool:
        return False

    def auth_headers(self) -> Dict[str, str]:
        if not self.state.access_token:
            return {}
        return {"Authorization": f"Bearer {self.state.access_token}"}

    def is_token_fresh(self) -> bool:
        return self.state.is_token_fresh(self.buffer_seconds)

    async def ensure_valid(self, http: "ResilientHttpClient") -> None:
        if self.is_token_fresh():
            return
        async with self._lock:
            # Another caller may have renewed while we waited
            if self.is_token_fresh():
                return
            await self._renew(http)

    async def refresh(self, http: "ResilientHttpClient") -> None:
        async with self._lock:
            await self._renew(http)

    def invalidate(self) -> None:
        self.state.clear_token()

    async def _renew(self, http: "ResilientHttpClient") -> None:
        if self.state.refresh_token:
            try:
                await self._grant(http, {"grant_type": "refresh_token", "refresh_token": self.state.refresh_token})
                logger.info("oauth_token_refreshed", token_url=self.token_url, grant="refresh_token")
                return
            except IntegrationError as e:
                logger.warning(
                    "oauth_refresh_grant_failed",
                    token_url=self.token_url,
                    error=str(e),
                    fallback="client_credentials",
                )
                self.state.refresh_token = None

        await self._grant(http, {"grant_type": "client_credentials"})
        logger.info("oauth_token_acquired", token_url=self.token_url, grant="client_credentials")

    async def _grant(self, http: "ResilientHttpClient", params: Dict[str, str]) -> None:
        client_id = self.state.get("client_id")
        client_secret = self.state.get("client_secret")
        if not client_id or not client_secret:
            raise AuthenticationError("OAuth2 credentials require client_id and client_secret")

        form = dict(params)
        if self.scope:
            form["scope"] = self.scope
        form.update(self.extra_params)

        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.client_auth == "basic":
            encoded = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"
        else:
            form["client_id"] = client_id
            form["client_secret"] = client_secret

        self.grant_count += 1
        try:
            response = await http.post(self.token_url, data=form, headers=headers, timeout=self.timeout)
        except VendorAPIError as e:
            # invalid_client / invalid_grant come back as 400
            raise AuthenticationError(
                f"Token request rejected: {e.message}", vendor=e.vendor, status_code=e.status_code
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError("Token endpoint returned a non-JSON body") from e
        self.state.apply_token_response(payload)


class ApiKeyAuth(AuthStrategy):
    """
    Static API key sent in a header

    ``header_name=None`` means the vendor expects the key inside the request
    body; the adapter reads it from the state itself.
    """

    auth_type = AuthType.API_KEY

    def __init__(
        self,
        state: AuthState,
        header_name: Optional[str] = "Authorization",
        scheme: Optional[str] = "Bearer",
        key_field: str = "api_key",
    ):
        super().__init__(state)
        self.header_name = header_name
        self.scheme = scheme
        self.key_field = key_field

    def auth_headers(self) -> Dict[str, str]:
        key = self.state.get(self.key_field)
        if not self.header_name or not key:
            return {}
        return {self.header_name: f"{self.scheme} {key}" if self.scheme else str(key)}


class BasicAuth(AuthStrategy):
    auth_type = AuthType.BASIC

    def auth_headers(self) -> Dict[str, str]:
        username = self.state.get("username", "")
        password = self.state.get("password", "")
        encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
        return {"Authorization": f"Basic {encoded}"}
