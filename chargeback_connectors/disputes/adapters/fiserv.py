"""
Fiserv dispute management adapter

Processor-side chargebacks across Visa, Mastercard, Amex and Discover.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from ...auth import AuthType, OAuth2ClientCredentialsAuth
from ...normalizers import (
    last_four,
    normalize_amount,
    normalize_currency,
    normalize_date,
    normalize_int,
    pick,
    sanitize_pii,
)
from ...utils.logging import get_safe_logger, log_performance
from ...webhooks import EventNameMap
from ..contracts import (
    BaseDisputeAdapter,
    DisputeCase,
    DisputePage,
    DisputeQuery,
    DisputeStage,
    DisputeStatus,
    DisputeStatusInfo,
    EvidencePackage,
    RepresentmentRequest,
    SubmissionResult,
    money,
)
from ..reason_codes import NETWORK_REASON_CODES, VISA_REASON_CODES

logger = get_safe_logger("chargeback_connectors.disputes.fiserv")

API = "/api/v2"
TOKEN_SCOPE = "disputes chargebacks merchants"

S = DisputeStatus


class FiservAdapter(BaseDisputeAdapter):
    """Fiserv chargeback portal adapter"""

    vendor_name = "fiserv"
    display_name = "Fiserv Dispute Management"
    auth_type = AuthType.OAUTH2
    required_credentials = ("client_id", "client_secret", "merchant_id")
    requests_per_minute = 60
    probe_path = f"{API}/health"
    signature_headers = ("x-fiserv-signature", "x-webhook-signature")
    reason_codes = {**VISA_REASON_CODES, **NETWORK_REASON_CODES}

    capabilities = {
        "receive_disputes": True,
        "submit_evidence": True,
        "push_response": True,
        "accept_dispute": True,
        "pre_arbitration": False,
        "arbitration": False,
        "tc40_reports": False,
        "ce3_evidence": False,
        "webhooks": True,
    }

    status_map = {
        "new": S.PENDING,
        "open": S.PENDING,
        "pending": S.PENDING,
        "awaiting_response": S.PENDING,
        "under_review": S.IN_REVIEW,
        "in_review": S.IN_REVIEW,
        "documents_received": S.IN_REVIEW,
        "represented": S.SUBMITTED,
        "responded": S.SUBMITTED,
        "won": S.WON,
        "merchant_won": S.WON,
        "chargeback_reversed": S.WON,
        "lost": S.LOST,
        "merchant_lost": S.LOST,
        "second_chargeback": S.LOST,
        "expired": S.EXPIRED,
        "closed": S.RESOLVED,
    }

    event_names = EventNameMap(
        {
            "dispute.created": "chargeback.created",
            "dispute.updated": "chargeback.updated",
            "dispute.status_changed": "chargeback.status_changed",
            "dispute.evidence_due": "chargeback.evidence_due",
            "dispute.resolved": "chargeback.resolved",
            "pre_arbitration.initiated": "chargeback.second_presentment",
        }
    )

    @property
    def default_base_url(self) -> str:
        return self.settings.fiserv_base_url

    @property
    def merchant_id(self) -> Optional[str]:
        return self.auth_state.get("merchant_id")

    def _build_auth_strategy(self):
        return OAuth2ClientCredentialsAuth(
            self.auth_state,
            self.config.get("token_url") or self.settings.fiserv_token_url,
            scope=TOKEN_SCOPE,
            buffer_seconds=self.settings.token_refresh_buffer_seconds,
            timeout=self.settings.auth_timeout,
        )

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        headers["X-Merchant-ID"] = str(self.merchant_id or "")
        return headers

    def _health_details(self) -> Dict[str, Any]:
        return {"portal_type": self.portal_type, "merchant_id": self.merchant_id, "api_version": "v2"}

    def _merchant(self, path: str) -> str:
        return f"{API}/merchants/{self.merchant_id}/{path}"

    @log_performance("get_dispute_status")
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusInfo:
        data = await self._request("GET", self._merchant(f"disputes/{dispute_id}"))
        portal_status = pick(data, "status")
        return DisputeStatusInfo(
            dispute_id=dispute_id,
            status=self.normalize_dispute_status(portal_status),
            portal_status=portal_status,
            stage=DisputeStage.parse(pick(data, "chargebackStage", "stage")),
            last_updated=normalize_date(pick(data, "lastUpdated", "updatedAt")),
            due_date=normalize_date(pick(data, "responseDeadline", "dueDate")),
            notes=pick(data, "notes", "statusNotes", default=""),
            outcome=pick(data, "outcome"),
            outcome_date=normalize_date(pick(data, "outcomeDate")),
        )

    @log_performance("list_disputes")
    async def list_disputes(self, query: Optional[DisputeQuery] = None) -> DisputePage:
        query = query or DisputeQuery()
        params = self._clean(
            {
                "fromDate": query.since,
                "toDate": query.until,
                "status": query.status,
                "page": query.page or 1,
                "limit": min(query.limit or 50, 100),
            }
        )
        data = await self._request("GET", self._merchant("disputes"), params=params)
        items = self._as_list(data, "chargebacks", "disputes", "data")
        page = normalize_int(pick(data, "page"), default=params["page"])
        total_pages = pick(data, "totalPages")
        return DisputePage(
            disputes=[self.normalize_dispute(item) for item in items],
            total_count=normalize_int(pick(data, "totalCount", "total"), default=len(items)),
            has_more=bool(pick(data, "hasMore")) or (total_pages is not None and page < normalize_int(total_pages)),
            page=page,
        )

    async def submit_evidence(self, dispute_id: str, evidence: EvidencePackage) -> SubmissionResult:
        payload = {
            "chargebackId": dispute_id,
            "merchantId": self.merchant_id,
            "representmentType": evidence.evidence_category,
            "documents": [
                {
                    "type": doc.document_type,
                    "name": doc.file_name,
                    "mimeType": doc.mime_type,
                    "content": doc.encoded,
                    "description": doc.description or f"Evidence document {index}",
                    "category": doc.category,
                }
                for index, doc in enumerate(evidence.documents, 1)
            ],
            "transactionInfo": {
                "guestName": evidence.guest_name,
                "confirmationNumber": evidence.confirmation_number,
                "checkInDate": evidence.check_in_date,
                "checkOutDate": evidence.check_out_date,
                "amount": money(evidence.transaction_amount),
                "date": evidence.transaction_date,
                "transactionId": evidence.transaction_id,
                "authCode": evidence.authorization_code,
            },
            "notes": evidence.notes,
            "requestId": self._idempotency_key("evidence"),
        }
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/documents", json=payload)
        result = self._result(data, "submissionId", status="submitted", message="Evidence submitted successfully")
        logger.info("fiserv_evidence_submitted", dispute_id=dispute_id, submission_id=result.id)
        return result

    async def push_response(self, dispute_id: str, response: RepresentmentRequest) -> SubmissionResult:
        evidence = response.compelling_evidence
        guest = response.guest_details
        stay = response.stay_details
        payload = {
            "chargebackId": dispute_id,
            "merchantId": self.merchant_id,
            "representmentType": response.representment_type,
            "compellingEvidence": {
                "type": evidence.get("type", "generic"),
                "description": evidence.get("description", ""),
                "priorTransactions": evidence.get("prior_transactions", []),
                "deviceInfo": evidence.get("device_info"),
            },
            "guestDetails": {
                "name": guest.get("name"),
                "email": guest.get("email"),
                "phone": guest.get("phone"),
                "loyaltyId": guest.get("loyalty_number"),
            },
            "stayDetails": {
                "propertyName": stay.get("property_name"),
                "confirmationNumber": stay.get("confirmation_number"),
                "checkInDate": stay.get("check_in_date"),
                "checkOutDate": stay.get("check_out_date"),
                "roomType": stay.get("room_type"),
                "roomRate": money(stay.get("room_rate")),
                "totalCharges": money(stay.get("total_charges")),
                "noShow": bool(stay.get("no_show", False)),
                "earlyCheckout": bool(stay.get("early_checkout", False)),
            },
            "documentIds": list(response.evidence_ids),
            "merchantNarrative": response.narrative,
            "requestId": self._idempotency_key("response"),
        }
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/represent", json=payload)
        logger.info("fiserv_representment_submitted", dispute_id=dispute_id)
        return self._result(
            data, "responseId", status="submitted", message="Representment submitted successfully",
            stage=DisputeStage.REPRESENTMENT,
        )

    async def accept_dispute(self, dispute_id: str) -> SubmissionResult:
        payload = {
            "chargebackId": dispute_id,
            "merchantId": self.merchant_id,
            "action": "accept",
            "reason": "Liability accepted by merchant",
            "requestId": self._idempotency_key("accept"),
        }
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/accept", json=payload)
        logger.info("fiserv_dispute_accepted", dispute_id=dispute_id)
        return self._result(data, "responseId", status="accepted", message="Dispute accepted", accepted=True)

    async def _register_webhook(self, callback_url: str, vendor_events: List[str], secret: str) -> Optional[str]:
        payload = {
            "merchantId": self.merchant_id,
            "url": callback_url,
            "events": vendor_events,
            "active": True,
            "signingSecret": secret,
            "description": "Chargeback defense integration",
        }
        data = await self._request("POST", f"{API}/webhooks", json=payload)
        return pick(data, "webhookId", "id")

    def _parse_event(self, payload: Mapping[str, Any]) -> Tuple[Optional[str], Dict[str, Any], Any]:
        inner = payload.get("data") or payload.get("payload") or {}
        data = dict(inner) if isinstance(inner, Mapping) else {"value": inner}
        data["dispute_id"] = pick(data, "chargebackId", "disputeId") or pick(payload, "chargebackId", "disputeId")
        data["webhook_id"] = pick(payload, "webhookId", "id")
        return pick(payload, "eventType", "event", "type"), data, payload.get("timestamp")

    def normalize_dispute(self, data: Mapping[str, Any]) -> DisputeCase:
        reason = self.normalize_reason_code(pick(data, "reasonCode", "chargebackReasonCode"))
        portal_status = pick(data, "status")
        return DisputeCase(
            dispute_id=pick(data, "chargebackId", "disputeId", "id"),
            portal_type=self.portal_type,
            case_number=pick(data, "caseNumber", "referenceNumber", "arn"),
            amount=normalize_amount(pick(data, "amount", "chargebackAmount", "transactionAmount")),
            currency=normalize_currency(pick(data, "currency", "transactionCurrency")),
            card_last_four=last_four(pick(data, "cardLastFour", "last4", "maskedPan")),
            card_brand=str(pick(data, "cardBrand", "network", "cardType", default="UNKNOWN")).upper(),
            guest_name=pick(data, "cardholderName", "customerName", default=""),
            reason_code=reason.code,
            reason_category=reason.category,
            reason_description=reason.description,
            dispute_date=normalize_date(pick(data, "chargebackDate", "disputeDate", "createdAt")),
            due_date=normalize_date(pick(data, "responseDeadline", "dueDate")),
            status=self.normalize_dispute_status(portal_status),
            portal_status=portal_status,
            stage=DisputeStage.parse(pick(data, "stage", "chargebackStage")),
            transaction_id=str(pick(data, "transactionId", "arn", default="")),
            transaction_date=normalize_date(pick(data, "transactionDate")),
            acquirer_reference_number=pick(data, "arn", default=""),
            merchant_descriptor=pick(data, "merchantDescriptor", default=""),
            raw=sanitize_pii(dict(data)),
        )
