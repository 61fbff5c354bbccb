"""
Shared test fixtures for connector tests
Uses pytest-httpx for mocking HTTP calls
"""

import json
import re
from typing import Any, Dict

import pytest

from chargeback_connectors.config import ConnectorSettings
from chargeback_connectors.webhooks import compute_signature


def route(base_url: str, path: str = "") -> "re.Pattern[str]":
    """URL matcher for ``base_url + path`` with any query string"""
    return re.compile(re.escape(base_url.rstrip("/") + path) + r"(\?.*)?$")


def signed(secret: str, payload: Dict[str, Any], header: str = "x-webhook-signature"):
    """(headers, raw body) pair for an inbound webhook"""
    body = json.dumps(payload).encode("utf-8")
    return {header: compute_signature(secret, body)}, body


@pytest.fixture
def settings() -> ConnectorSettings:
    """Settings with instant retries so failure paths run quickly"""
    return ConnectorSettings(
        retry={"max_attempts": 3, "base_delay": 0, "max_delay": 0, "jitter": 0},
        circuit_breaker={"failure_threshold": 3, "recovery_timeout": 30},
        rate_limit={"max_tokens": 100, "refill_rate": 100, "interval_seconds": 1, "max_wait_seconds": 5},
    )


@pytest.fixture
def oauth_token_response() -> Dict[str, Any]:
    """Standard OAuth token response"""
    return {
        "access_token": "test-token-123",
        "token_type": "Bearer",
        "expires_in": 3600,
        "scope": "read write",
    }


@pytest.fixture
def webhook_secret() -> str:
    return "whsec_test_secret"
