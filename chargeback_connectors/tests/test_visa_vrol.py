"""
Unit tests for the Visa Resolve Online dispute adapter
"""

import base64
import json
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.disputes import (
    ArbitrationFiling,
    CE3Submission,
    DisputeQuery,
    DisputeStage,
    DisputeStatus,
    EvidenceDocument,
    EvidencePackage,
    PreArbitrationResponse,
    PriorTransaction,
    ReasonCategory,
    RepresentmentRequest,
    VisaVROLAdapter,
)
from chargeback_connectors.errors import ValidationError, WebhookSignatureError

from .fixtures import route, signed

BASE = "https://sandbox.api.visa.com"
API = f"{BASE}/visadirect/v1"
TOKEN_URL = f"{BASE}/oauth2/token"


@pytest.fixture
def config(webhook_secret):
    return {
        "integration_id": "int-visa",
        "credentials": {
            "clientId": "visa-client",
            "clientSecret": "visa-secret",
            "merchantId": "M-100",
            "acquirerBIN": "411111",
            "webhookSecret": webhook_secret,
        },
    }


@pytest_asyncio.fixture
async def adapter(config, settings):
    vrol = VisaVROLAdapter(config, settings=settings)
    yield vrol
    await vrol.disconnect()


@pytest.fixture
def mock_token(httpx_mock: HTTPXMock, oauth_token_response):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json=oauth_token_response)


@pytest.fixture
def vrol_case():
    return {
        "disputeId": "VD-1",
        "vrolCaseNumber": "VROL-2024-0001",
        "amount": "450.00",
        "currency": "840",
        "maskedPAN": "411111******1111",
        "cardholderName": "Jane Doe",
        "reasonCode": "13.1",
        "disputeDate": "2024-03-01T00:00:00Z",
        "status": "pending_merchant_response",
        "stage": "first_chargeback",
        "transactionId": "TX-9",
        "acquirerReferenceNumber": "74000000000000000000001",
    }


def sent_json(httpx_mock: HTTPXMock) -> dict:
    return json.loads(httpx_mock.get_requests()[-1].content)


def test_missing_merchant_id(settings):
    with pytest.raises(ValidationError) as exc_info:
        VisaVROLAdapter({"credentials": {"clientId": "a", "clientSecret": "b"}}, settings=settings)
    assert exc_info.value.details["missing"] == ["merchant_id"]


class TestInbound:
    @pytest.mark.asyncio
    async def test_receive_dispute_fills_deadline(self, adapter, vrol_case):
        case = await adapter.receive_dispute(vrol_case)

        assert case.dispute_id == "VD-1"
        assert case.portal_type == "VISA_VROL"
        assert case.case_number == "VROL-2024-0001"
        assert case.amount == Decimal("450.00")
        assert case.currency == "USD"
        assert case.card_last_four == "1111"
        assert case.reason_category == ReasonCategory.CONSUMER_DISPUTE
        assert case.status == DisputeStatus.PENDING
        assert case.stage == DisputeStage.FIRST_CHARGEBACK
        assert case.due_date == "2024-03-31T00:00:00+00:00"
        assert case.tc40_report is None

    @pytest.mark.asyncio
    async def test_receive_dispute_keeps_portal_deadline(self, adapter, vrol_case):
        case = await adapter.receive_dispute({**vrol_case, "responseDeadline": "2024-03-20"})
        assert case.due_date == "2024-03-20T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_tc40_alert(self, adapter, vrol_case):
        case = await adapter.receive_dispute(
            {
                **vrol_case,
                "reasonCode": "10.4",
                "tc40Data": {"tc40ReportId": "TC-1", "fraudType": "card_not_present", "transactionAmount": 450},
            }
        )

        assert case.alert_type == "TC40"
        assert case.requires_enhanced_review is True
        assert case.tc40_report.report_id == "TC-1"
        assert case.tc40_report.fraud_amount == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_get_dispute_status(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/disputes/VD-1",
            json={"status": "merchant_won", "stage": "representment", "outcome": "won", "outcomeDate": "2024-04-10"},
        )

        info = await adapter.get_dispute_status("VD-1")

        assert info.status == DisputeStatus.WON
        assert info.portal_status == "merchant_won"
        assert info.stage == DisputeStage.REPRESENTMENT
        assert info.outcome_date == "2024-04-10T00:00:00+00:00"

        token_request, api_request = httpx_mock.get_requests()
        assert token_request.headers["Authorization"] == "Basic " + base64.b64encode(b"visa-client:visa-secret").decode()
        assert api_request.headers["Authorization"] == "Bearer test-token-123"
        assert api_request.headers["X-Merchant-ID"] == "M-100"
        assert api_request.headers["X-Acquirer-BIN"] == "411111"

    @pytest.mark.asyncio
    async def test_unknown_portal_status_is_pending(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{API}/disputes/VD-2", json={"status": "something_new"})

        info = await adapter.get_dispute_status("VD-2")

        assert info.status == DisputeStatus.PENDING
        assert info.stage == DisputeStage.FIRST_CHARGEBACK

    @pytest.mark.asyncio
    async def test_evidence_requirements_merge(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{API}/disputes/VD-1",
            json={"reasonCode": "10.4", "requiredEvidenceTypes": ["invoice", "avs_cvv_match"]},
        )

        requirements = await adapter.get_evidence_requirements("VD-1")

        assert requirements.required_types[:3] == ["invoice", "avs_cvv_match", "delivery_confirmation"]
        assert requirements.required_types.count("avs_cvv_match") == 1
        assert requirements.ce3_eligible is True
        assert requirements.ce3_requirements["minimum_prior_transactions"] == 2
        assert requirements.deadline_days == 30

    @pytest.mark.asyncio
    async def test_list_disputes_pages(self, adapter, mock_token, httpx_mock: HTTPXMock, vrol_case):
        httpx_mock.add_response(
            method="GET",
            url=route(API, "/disputes"),
            json={"disputes": [vrol_case], "totalCount": 120, "page": 1, "totalPages": 2},
        )

        page = await adapter.list_disputes(DisputeQuery(status="open", limit=500))

        assert page.total_count == 120
        assert page.has_more is True
        assert page.disputes[0].dispute_id == "VD-1"
        params = httpx_mock.get_requests()[-1].url.params
        assert params["pageSize"] == "100"
        assert params["status"] == "open"


class TestOutbound:
    @pytest.mark.asyncio
    async def test_submit_evidence(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{API}/disputes/VD-1/evidence", json={"submissionId": "S-1"})

        result = await adapter.submit_evidence(
            "VD-1",
            EvidencePackage(
                documents=[EvidenceDocument(file_name="folio.pdf", data=b"%PDF", document_type="folio")],
                confirmation_number="CONF123",
                transaction_amount=Decimal("450"),
                ce3=True,
                ce3_transaction_history=[
                    PriorTransaction("T1", "2023-11-01", Decimal("200"), ip_address="10.0.0.1"),
                ],
            ),
        )

        assert result.id == "S-1"
        assert result.status == "submitted"
        body = sent_json(httpx_mock)
        assert body["merchantId"] == "M-100"
        assert body["acquirerBIN"] == "411111"
        assert body["compellingEvidenceVersion"] == "3.0"
        assert body["documents"][0]["data"] == base64.b64encode(b"%PDF").decode()
        assert body["documents"][0]["description"] == "Evidence document 1"
        assert body["transactionDetails"]["transactionAmount"] == "450.00"
        assert body["compellingEvidence3"]["matchingSummary"]["ipMatches"] == 1
        assert body["idempotencyKey"].startswith("vrol_evidence_")

    @pytest.mark.asyncio
    async def test_push_response(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{API}/disputes/VD-1/represent", json={"representmentId": "R-1"})

        result = await adapter.push_response(
            "VD-1",
            RepresentmentRequest(
                guest_details={"name": "Jane Doe", "id_verified": True},
                stay_details={"confirmation_number": "CONF123", "room_rate": 150, "total_charges": "450"},
                narrative="Guest stayed three nights",
            ),
        )

        assert result.id == "R-1"
        assert result.stage == DisputeStage.REPRESENTMENT
        body = sent_json(httpx_mock)
        assert body["disputeStage"] == "representment"
        assert body["guestDetails"]["idVerified"] is True
        assert body["stayDetails"]["roomRate"] == "150.00"
        assert body["stayDetails"]["noShow"] is False

    @pytest.mark.asyncio
    async def test_accept_dispute(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{API}/disputes/VD-1/accept", json={})

        result = await adapter.accept_dispute("VD-1")

        assert result.accepted is True
        assert result.status == "accepted"
        assert sent_json(httpx_mock)["action"] == "accept_liability"

    @pytest.mark.asyncio
    async def test_pre_arbitration(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url=f"{API}/disputes/VD-1/pre-arbitration", json={"responseId": "PA-1", "status": "received"}
        )

        result = await adapter.respond_to_pre_arbitration("VD-1", PreArbitrationResponse(request_arbitration=True))

        assert result.id == "PA-1"
        assert result.status == "received"
        assert result.stage == DisputeStage.PRE_ARBITRATION
        assert sent_json(httpx_mock)["requestArbitration"] is True

    @pytest.mark.asyncio
    async def test_pre_arbitration_rejects_unknown_action(self, adapter):
        with pytest.raises(ValidationError):
            await adapter.respond_to_pre_arbitration("VD-1", PreArbitrationResponse(action="ignore"))

    @pytest.mark.asyncio
    async def test_file_arbitration(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/disputes/VD-1/arbitration",
            json={"arbitrationId": "AR-1", "estimatedDecisionDate": "2024-06-30", "filingFee": 500},
        )

        result = await adapter.file_arbitration("VD-1", ArbitrationFiling(accept_filing_fee=True))

        assert result.id == "AR-1"
        assert result.details == {"estimated_decision_date": "2024-06-30T00:00:00+00:00", "filing_fee": 500}
        assert sent_json(httpx_mock)["financialLiabilityAccepted"] is True

    @pytest.mark.asyncio
    async def test_fetch_tc40_reports(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(API, "/tc40-reports"),
            json={
                "reports": [
                    {
                        "reportId": "TC-9",
                        "fraudType": "counterfeit",
                        "maskedPAN": "4111********1234",
                        "transactionAmount": 99.5,
                        "fraudAmount": 50,
                        "cardPresent": True,
                    }
                ],
                "hasMore": False,
            },
        )

        page = await adapter.fetch_tc40_reports(since="2024-01-01", fraud_type="counterfeit")

        report = page.reports[0]
        assert report.card_last_four == "1234"
        assert report.transaction_amount == Decimal("99.50")
        assert report.fraud_amount == Decimal("50.00")
        assert report.card_present is True
        assert page.total_count == 1
        assert httpx_mock.get_requests()[-1].url.params["fraudType"] == "counterfeit"


class TestCompellingEvidence3:
    def prior(self, n, disputed=False):
        return [
            PriorTransaction(f"T{i}", f"2023-0{i}-01", Decimal("100"), ip_address="10.0.0.1", disputed=disputed)
            for i in range(1, n + 1)
        ]

    @pytest.mark.asyncio
    async def test_too_few_prior_transactions(self, adapter):
        with pytest.raises(ValidationError) as exc_info:
            await adapter.submit_ce3_evidence("VD-1", CE3Submission(prior_transactions=self.prior(1)))
        assert exc_info.value.details["provided"] == 1

    @pytest.mark.asyncio
    async def test_disputed_prior_transactions_rejected(self, adapter):
        with pytest.raises(ValidationError) as exc_info:
            await adapter.submit_ce3_evidence("VD-1", CE3Submission(prior_transactions=self.prior(2, disputed=True)))
        assert exc_info.value.details["disputed"] == ["T1", "T2"]

    @pytest.mark.asyncio
    async def test_submit(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/disputes/VD-1/compelling-evidence-3",
            json={"submissionId": "CE-1", "ce3Accepted": True, "matchScore": 0.92},
        )

        result = await adapter.submit_ce3_evidence(
            "VD-1", CE3Submission(prior_transactions=self.prior(2), disputed_amount=Decimal("450"))
        )

        assert result.id == "CE-1"
        assert result.accepted is True
        assert result.details == {"match_score": 0.92}
        body = sent_json(httpx_mock)
        assert [t["sequenceNumber"] for t in body["priorUndisputedTransactions"]] == [1, 2]
        assert body["disputedTransaction"]["amount"] == "450.00"


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_register_webhook(self, adapter, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{API}/webhooks", json={"webhookId": "W-1"})

        registration = await adapter.register_webhook("https://hooks.example.com/visa")

        assert registration.webhook_id == "W-1"
        assert "tc40.received" in registration.events
        body = sent_json(httpx_mock)
        assert body["secret"] == registration.secret
        assert "disputeId" not in body

    @pytest.mark.asyncio
    async def test_parse_webhook(self, adapter, webhook_secret):
        headers, raw = signed(
            webhook_secret,
            {"eventType": "pre_arbitration.initiated", "caseId": 771, "timestamp": "2024-05-01T10:00:00Z", "data": {}},
            header="x-visa-signature",
        )

        event = adapter.parse_webhook_payload(headers, raw)

        assert event.event_type == "pre_arbitration.initiated"
        assert event.data["dispute_id"] == "771"
        assert event.vendor == "visa_vrol"

    @pytest.mark.asyncio
    async def test_generic_signature_header_not_accepted(self, adapter, webhook_secret):
        headers, raw = signed(webhook_secret, {"eventType": "dispute.created"})

        with pytest.raises(WebhookSignatureError):
            adapter.parse_webhook_payload(headers, raw)


@pytest.mark.asyncio
async def test_health_check(adapter, mock_token, httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=f"{API}/health", json={"status": "ok"})

    health = await adapter.health_check()

    assert health["healthy"] is True
    assert health["details"]["merchant_id"] == "M-100"
    assert health["details"]["token_valid"] is True
