"""
Golden Contract Test Suite
Every PMS connector must look identical from the application's perspective
"""

import inspect
from typing import Any, Dict

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.contracts import BaseConnector, Capabilities, PMSConnector
from chargeback_connectors.errors import WebhookSignatureError
from chargeback_connectors.factory import BUILTIN_CONNECTORS, PMSType, load_capability_matrix
from chargeback_connectors.webhooks import CANONICAL_EVENTS

TEST_CREDENTIALS: Dict[PMSType, Dict[str, Any]] = {
    PMSType.OPERA_CLOUD: {"clientId": "c", "clientSecret": "s", "hotelId": "H1"},
    PMSType.MEWS: {"clientToken": "ct", "accessToken": "at"},
    PMSType.HOSTAWAY: {"apiKey": "k", "accountId": "a"},
    PMSType.LODGIFY: {"apiKey": "k"},
    PMSType.MAESTRO: {"username": "u", "password": "p", "hotelCode": "H1"},
    PMSType.HOTELOGIX: {"apiKey": "k", "hotelCode": "H1"},
    PMSType.PROTEL: {"username": "u", "password": "p", "apiKey": "k", "hotelCode": "H1"},
    PMSType.STAYNTOUCH: {"clientId": "c", "clientSecret": "s", "hotelId": 1},
}

CONTRACT_METHODS = [
    name
    for name, member in inspect.getmembers(PMSConnector)
    if not name.startswith("_") and inspect.iscoroutinefunction(member)
] + ["parse_webhook_payload"]

pytestmark = pytest.mark.golden


@pytest.fixture(params=list(BUILTIN_CONNECTORS), ids=lambda t: t.value.lower())
def pms_type(request) -> PMSType:
    return request.param


@pytest_asyncio.fixture
async def connector(pms_type, settings, webhook_secret):
    credentials = {**TEST_CREDENTIALS[pms_type], "webhookSecret": webhook_secret}
    adapter = BUILTIN_CONNECTORS[pms_type]({"property_id": "GOLDEN", "credentials": credentials}, settings=settings)
    yield adapter
    await adapter.disconnect()


def test_contract_methods_are_discovered():
    assert {"get_reservation", "push_chargeback_alert", "register_webhook"} <= set(CONTRACT_METHODS)


def test_every_connector_exposes_contract(pms_type):
    connector_class = BUILTIN_CONNECTORS[pms_type]
    assert issubclass(connector_class, BaseConnector)
    assert not inspect.isabstract(connector_class)
    for name in CONTRACT_METHODS:
        assert callable(getattr(connector_class, name)), f"{pms_type.value} lacks {name}"


def test_capabilities_cover_standard_flags(pms_type):
    capabilities = BUILTIN_CONNECTORS[pms_type].capabilities
    assert set(capabilities) == {c.value for c in Capabilities}
    assert all(isinstance(enabled, bool) for enabled in capabilities.values())


def test_capability_matrix_matches_connector(pms_type):
    connector_class = BUILTIN_CONNECTORS[pms_type]
    entry = load_capability_matrix()["pms"][pms_type.value]

    assert entry["capabilities"] == connector_class.capabilities
    assert entry["authentication"] == connector_class.auth_type.value
    assert entry["display_name"] == connector_class.display_name
    assert entry["rate_limits"]["requests_per_minute"] == connector_class.requests_per_minute
    assert entry["supports_documents"] == connector_class.capabilities["documents"]


def test_event_names_are_canonical(pms_type):
    event_names = BUILTIN_CONNECTORS[pms_type].event_names
    assert set(event_names.canonical_events) <= set(CANONICAL_EVENTS)


class TestConnectorBehaviour:
    @pytest.mark.asyncio
    async def test_identity(self, connector, pms_type):
        assert connector.pms_type == pms_type.value
        assert connector.vendor_name == pms_type.value.lower()
        assert connector.property_id == "GOLDEN"

    @pytest.mark.asyncio
    async def test_empty_payloads_normalize_to_nothing(self, connector):
        assert connector.normalize_reservation(None) is None
        assert connector.normalize_reservation({}) is None
        assert connector.normalize_guest_profile({}) is None
        assert connector.map_status_to_vendor(None) is None

    @pytest.mark.asyncio
    async def test_health_check_never_raises(self, connector, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), is_reusable=True)

        health = await connector.health_check()

        assert health["healthy"] is False
        assert health["status"] == "unhealthy"
        assert health["vendor"] == connector.vendor_name
        assert health["details"]["error_type"]
        assert "timestamp" in health
        assert "circuit_state" in health["details"]

    @pytest.mark.asyncio
    async def test_unsigned_webhook_rejected(self, connector):
        with pytest.raises(WebhookSignatureError):
            connector.parse_webhook_payload({}, b'{"event": "reservation.created"}')
