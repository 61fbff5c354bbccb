"""
Unit tests for the Fiserv dispute adapter
"""

import json
from decimal import Decimal
from urllib.parse import parse_qs

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.disputes import (
    DisputeQuery,
    DisputeStage,
    DisputeStatus,
    EvidenceDocument,
    EvidencePackage,
    FiservAdapter,
    ReasonCategory,
    RepresentmentRequest,
)
from chargeback_connectors.errors import RetryExhaustedError

from .fixtures import route, signed

BASE = "https://connect.fiservapis.com"
TOKEN_URL = f"{BASE}/oauth2/token"
MERCHANT = f"{BASE}/api/v2/merchants/FM-9"


@pytest.fixture
def config(webhook_secret):
    return {
        "integration_id": "int-fiserv",
        "credentials": {
            "clientId": "fiserv-client",
            "clientSecret": "fiserv-secret",
            "merchantId": "FM-9",
            "webhookSecret": webhook_secret,
        },
    }


@pytest_asyncio.fixture
async def adapter(config, settings):
    fiserv = FiservAdapter(config, settings=settings)
    yield fiserv
    await fiserv.disconnect()


@pytest.fixture
def mock_token(httpx_mock: HTTPXMock, oauth_token_response):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json=oauth_token_response)


@pytest.fixture
def fiserv_chargeback():
    return {
        "chargebackId": "CB-501",
        "caseNumber": "FSV-77",
        "chargebackAmount": "1,280.00",
        "currency": "EUR",
        "maskedPan": "5454********5454",
        "cardBrand": "mastercard",
        "customerName": "Ana Silva",
        "reasonCode": "4837",
        "chargebackDate": "2024-07-01T09:30:00Z",
        "status": "awaiting_response",
        "arn": "85000000000000000000042",
    }


class TestFiservInbound:
    @pytest.mark.asyncio
    async def test_receive_mastercard_dispute(self, adapter, fiserv_chargeback):
        case = await adapter.receive_dispute(fiserv_chargeback)

        assert case.dispute_id == "CB-501"
        assert case.portal_type == "FISERV"
        assert case.amount == Decimal("1280.00")
        assert case.currency == "EUR"
        assert case.card_brand == "MASTERCARD"
        assert case.card_last_four == "5454"
        assert case.guest_name == "Ana Silva"
        assert case.reason_category == ReasonCategory.FRAUD
        assert case.status == DisputeStatus.PENDING
        assert case.transaction_id == "85000000000000000000042"
        assert case.due_date == "2024-07-31T09:30:00+00:00"

    @pytest.mark.asyncio
    async def test_get_dispute_status(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{MERCHANT}/disputes/CB-501",
            json={"status": "second_chargeback", "chargebackStage": "pre-arbitration", "notes": "Issuer declined"},
        )

        info = await adapter.get_dispute_status("CB-501")

        assert info.status == DisputeStatus.LOST
        assert info.stage == DisputeStage.PRE_ARBITRATION
        assert info.notes == "Issuer declined"

        token_request, api_request = httpx_mock.get_requests()
        grant = {k: v[0] for k, v in parse_qs(token_request.content.decode()).items()}
        assert grant["client_id"] == "fiserv-client"
        assert grant["scope"] == "disputes chargebacks merchants"
        assert "Authorization" not in token_request.headers
        assert api_request.headers["X-Merchant-ID"] == "FM-9"

    @pytest.mark.asyncio
    async def test_custom_token_url(self, settings, httpx_mock: HTTPXMock, oauth_token_response):
        token_url = "https://auth.example.com/token"
        httpx_mock.add_response(method="POST", url=token_url, json=oauth_token_response)
        fiserv = FiservAdapter(
            {"token_url": token_url, "credentials": {"clientId": "c", "clientSecret": "s", "merchantId": "m"}},
            settings=settings,
        )
        try:
            await fiserv.authenticate()
        finally:
            await fiserv.disconnect()

        assert fiserv.auth_state.access_token == "test-token-123"

    @pytest.mark.asyncio
    async def test_list_disputes(self, adapter, mock_token, httpx_mock: HTTPXMock, fiserv_chargeback):
        httpx_mock.add_response(
            method="GET",
            url=route(MERCHANT, "/disputes"),
            json={"chargebacks": [fiserv_chargeback], "total": 1, "page": 2, "totalPages": 2},
        )

        page = await adapter.list_disputes(DisputeQuery(since="2024-07-01", page=2, limit=25))

        assert page.total_count == 1
        assert page.page == 2
        assert page.has_more is False
        assert page.disputes[0].case_number == "FSV-77"
        params = httpx_mock.get_requests()[-1].url.params
        assert params["fromDate"] == "2024-07-01"
        assert params["limit"] == "25"
        assert "status" not in params

    @pytest.mark.asyncio
    async def test_server_errors_surface_after_retries(self, adapter, mock_token, httpx_mock: HTTPXMock):
        for _ in range(3):
            httpx_mock.add_response(method="GET", url=f"{MERCHANT}/disputes/CB-1", status_code=503)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await adapter.get_dispute_status("CB-1")

        assert exc_info.value.attempts == 3


class TestFiservOutbound:
    @pytest.mark.asyncio
    async def test_submit_evidence(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url=f"{BASE}/api/v2/disputes/CB-501/documents", json={"submissionId": "DOC-1"}
        )

        result = await adapter.submit_evidence(
            "CB-501",
            EvidencePackage(
                documents=[
                    EvidenceDocument(file_name="regcard.pdf", data=b"card", document_type="registration_card")
                ],
                guest_name="Ana Silva",
                transaction_amount=Decimal("1280"),
            ),
        )

        assert result.id == "DOC-1"
        assert result.status == "submitted"
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body["chargebackId"] == "CB-501"
        assert body["merchantId"] == "FM-9"
        assert body["documents"][0]["type"] == "registration_card"
        assert body["transactionInfo"]["amount"] == "1280.00"
        assert body["requestId"].startswith("evidence_")

    @pytest.mark.asyncio
    async def test_push_response(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/api/v2/disputes/CB-501/represent",
            json={"responseId": "RSP-3", "status": "under_review", "message": "Queued"},
        )

        result = await adapter.push_response(
            "CB-501", RepresentmentRequest(stay_details={"no_show": True}, evidence_ids=["DOC-1"])
        )

        assert result.id == "RSP-3"
        assert result.status == "under_review"
        assert result.message == "Queued"
        assert result.stage == DisputeStage.REPRESENTMENT
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body["stayDetails"]["noShow"] is True
        assert body["documentIds"] == ["DOC-1"]

    @pytest.mark.asyncio
    async def test_accept_dispute(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v2/disputes/CB-501/accept", json={"id": 12})

        result = await adapter.accept_dispute("CB-501")

        assert result.id == "12"
        assert result.accepted is True


class TestFiservWebhooks:
    @pytest.mark.asyncio
    async def test_register_webhook_translates_events(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v2/webhooks", json={"id": "wh-4"})

        registration = await adapter.register_webhook(
            "https://hooks.example.com/fiserv", ["dispute.created", "pre_arbitration.initiated"]
        )

        assert registration.webhook_id == "wh-4"
        assert adapter.webhook_secret == registration.secret
        body = json.loads(httpx_mock.get_requests()[-1].content)
        assert body["events"] == ["chargeback.created", "chargeback.second_presentment"]
        assert body["signingSecret"] == registration.secret

    @pytest.mark.asyncio
    async def test_parse_webhook(self, adapter, webhook_secret):
        headers, raw = signed(
            webhook_secret,
            {"eventType": "chargeback.resolved", "data": {"chargebackId": 501, "outcome": "won"}},
            header="x-fiserv-signature",
        )

        event = adapter.parse_webhook_payload(headers, raw)

        assert event.event_type == "dispute.resolved"
        assert event.vendor_event_type == "chargeback.resolved"
        assert event.data["dispute_id"] == "501"
        assert event.data["outcome"] == "won"
