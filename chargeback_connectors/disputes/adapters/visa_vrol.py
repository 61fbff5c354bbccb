"""
Visa Resolve Online (VROL) dispute adapter

Covers the full Visa chargeback lifecycle (first chargeback, representment,
pre-arbitration, arbitration, compliance), TC40 fraud reports and Compelling
Evidence 3.0. Production access requires a mutual TLS client certificate.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from ...auth import AuthType, OAuth2ClientCredentialsAuth
from ...errors import ValidationError
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
    ArbitrationFiling,
    BaseDisputeAdapter,
    CE3Submission,
    DisputeCase,
    DisputePage,
    DisputeQuery,
    DisputeStage,
    DisputeStatus,
    DisputeStatusInfo,
    EvidencePackage,
    EvidenceRequirements,
    PreArbitrationResponse,
    PriorTransaction,
    RepresentmentRequest,
    SubmissionResult,
    TC40Report,
    TC40ReportPage,
    money,
)
from ..reason_codes import (
    CE3_REQUIREMENTS,
    VISA_REASON_CODES,
    deadline_days,
    evidence_instructions,
    recommended_evidence,
)

logger = get_safe_logger("chargeback_connectors.disputes.visa_vrol")

API = "/visadirect/v1"
MAX_PAGE_SIZE = 100

S = DisputeStatus


def _prior_transaction(txn: PriorTransaction, sequence: int) -> Dict[str, Any]:
    return {
        "sequenceNumber": sequence,
        "transactionId": txn.transaction_id,
        "transactionDate": txn.transaction_date,
        "amount": money(txn.amount),
        "currency": txn.currency,
        "ipAddress": txn.ip_address,
        "deviceFingerprint": txn.device_fingerprint,
        "shippingAddress": txn.shipping_address,
        "authorizationCode": txn.authorization_code,
        "outcome": txn.outcome,
    }


def _ce3_history(history: List[PriorTransaction]) -> Dict[str, Any]:
    return {
        "version": "3.0",
        "transactionCount": len(history),
        "transactions": [_prior_transaction(txn, i) for i, txn in enumerate(history, 1)],
        "matchingSummary": {
            "ipMatches": sum(1 for t in history if t.ip_address),
            "deviceMatches": sum(1 for t in history if t.device_fingerprint),
            "addressMatches": sum(1 for t in history if t.shipping_address),
        },
    }


class VisaVROLAdapter(BaseDisputeAdapter):
    """Visa Resolve Online portal adapter"""

    vendor_name = "visa_vrol"
    display_name = "Visa Resolve Online"
    auth_type = AuthType.OAUTH2
    required_credentials = ("client_id", "client_secret", "merchant_id")
    requests_per_minute = 60
    probe_path = f"{API}/health"
    signature_headers = ("x-visa-signature", "x-vrol-signature")
    reason_codes = VISA_REASON_CODES

    capabilities = {
        "receive_disputes": True,
        "submit_evidence": True,
        "push_response": True,
        "accept_dispute": True,
        "pre_arbitration": True,
        "arbitration": True,
        "tc40_reports": True,
        "ce3_evidence": True,
        "webhooks": True,
    }

    status_map = {
        "new": S.PENDING,
        "open": S.PENDING,
        "pending_merchant_response": S.PENDING,
        "under_review": S.IN_REVIEW,
        "issuer_review": S.IN_REVIEW,
        "pre_arbitration_pending": S.IN_REVIEW,
        "arbitration_pending": S.IN_REVIEW,
        "evidence_submitted": S.SUBMITTED,
        "representment_filed": S.SUBMITTED,
        "merchant_won": S.WON,
        "representment_accepted": S.WON,
        "merchant_lost": S.LOST,
        "representment_declined": S.LOST,
        "expired": S.EXPIRED,
        "closed": S.RESOLVED,
        "accepted_by_merchant": S.RESOLVED,
    }

    # VROL already speaks the canonical event names
    event_names = EventNameMap(
        {
            name: name
            for name in (
                "dispute.created",
                "dispute.updated",
                "dispute.status_changed",
                "representment.accepted",
                "representment.declined",
                "pre_arbitration.initiated",
                "arbitration.initiated",
                "tc40.received",
                "compliance.case_opened",
            )
        }
    )

    @property
    def default_base_url(self) -> str:
        return self.settings.visa_vrol_base_url

    @property
    def merchant_id(self) -> Optional[str]:
        return self.auth_state.get("merchant_id")

    @property
    def acquirer_bin(self) -> Optional[str]:
        return self.auth_state.get("acquirer_bin")

    def _build_auth_strategy(self):
        return OAuth2ClientCredentialsAuth(
            self.auth_state,
            f"{self.base_url}/oauth2/token",
            buffer_seconds=self.settings.token_refresh_buffer_seconds,
            client_auth="basic",
            timeout=self.settings.auth_timeout,
        )

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        headers["X-Merchant-ID"] = str(self.merchant_id or "")
        if self.acquirer_bin:
            headers["X-Acquirer-BIN"] = str(self.acquirer_bin)
        return headers

    def _client_cert(self):
        cert_path = self.auth_state.get("mtls_cert_path")
        if not cert_path:
            return None
        key_path = self.auth_state.get("mtls_key_path")
        return (cert_path, key_path) if key_path else cert_path

    def _health_details(self) -> Dict[str, Any]:
        return {"portal_type": self.portal_type, "merchant_id": self.merchant_id, "api_version": "v1"}

    def _envelope(self, dispute_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {"merchantId": self.merchant_id, "acquirerBIN": self.acquirer_bin}
        if dispute_id is not None:
            body["disputeId"] = dispute_id
        body.update(fields)
        return body

    # Inbound

    async def receive_dispute(self, payload: Mapping[str, Any]) -> DisputeCase:
        case = await super().receive_dispute(payload)
        if payload.get("tc40Data") or payload.get("fraudType") == "TC40":
            case.tc40_report = self.parse_tc40_report(payload.get("tc40Data") or payload)
            case.alert_type = "TC40"
            case.requires_enhanced_review = True
        return case

    @log_performance("get_dispute_status")
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusInfo:
        data = await self._request("GET", f"{API}/disputes/{dispute_id}")
        portal_status = pick(data, "status", "caseStatus")
        return DisputeStatusInfo(
            dispute_id=dispute_id,
            status=self.normalize_dispute_status(portal_status),
            portal_status=portal_status,
            stage=DisputeStage.parse(pick(data, "stage", "disputeStage")),
            last_updated=normalize_date(pick(data, "lastUpdatedDate", "updatedAt")),
            due_date=normalize_date(pick(data, "responseDeadline", "dueDate")),
            notes=pick(data, "statusNotes", "notes", default=""),
            outcome=pick(data, "outcome"),
            outcome_date=normalize_date(pick(data, "outcomeDate")),
        )

    @log_performance("get_evidence_requirements")
    async def get_evidence_requirements(self, dispute_id: str) -> EvidenceRequirements:
        """Portal-required evidence merged with what the reason code calls for"""
        data = await self._request("GET", f"{API}/disputes/{dispute_id}")
        reason = self.normalize_reason_code(pick(data, "reasonCode", "conditionCode"))
        portal_required = list(pick(data, "requiredEvidenceTypes", default=[]) or [])
        recommended = recommended_evidence(reason.code)
        stage = DisputeStage.parse(pick(data, "stage"))
        ce3_eligible = reason.ce3_eligible
        return EvidenceRequirements(
            dispute_id=dispute_id,
            required_types=list(dict.fromkeys(portal_required + recommended)),
            portal_required_types=portal_required,
            recommended_types=recommended,
            reason_code=reason.code,
            reason_category=reason.category,
            instructions=pick(data, "evidenceInstructions") or evidence_instructions(reason.code),
            deadline=normalize_date(pick(data, "responseDeadline", "dueDate")),
            deadline_days=deadline_days(stage, reason.code),
            stage=stage,
            ce3_eligible=ce3_eligible,
            ce3_requirements=CE3_REQUIREMENTS.to_dict() if ce3_eligible else None,
        )

    @log_performance("list_disputes")
    async def list_disputes(self, query: Optional[DisputeQuery] = None) -> DisputePage:
        query = query or DisputeQuery()
        params = self._clean(
            {
                "startDate": query.since,
                "endDate": query.until,
                "status": query.status,
                "stage": query.stage,
                "reasonCode": query.reason_code,
                "page": query.page or 1,
                "pageSize": min(query.limit or 50, MAX_PAGE_SIZE),
            }
        )
        data = await self._request("GET", f"{API}/disputes", params=params)
        items = self._as_list(data, "disputes", "cases", "data")
        page = normalize_int(pick(data, "page"), default=params["page"])
        total_pages = pick(data, "totalPages")
        return DisputePage(
            disputes=[self.normalize_dispute(item) for item in items],
            total_count=normalize_int(pick(data, "totalCount", "totalRecords"), default=len(items)),
            has_more=bool(pick(data, "hasMore")) or (total_pages is not None and page < normalize_int(total_pages)),
            page=page,
        )

    # Outbound

    async def submit_evidence(self, dispute_id: str, evidence: EvidencePackage) -> SubmissionResult:
        payload = self._envelope(
            dispute_id,
            evidenceCategory=evidence.evidence_category,
            compellingEvidenceVersion="3.0" if evidence.ce3 else "2.0",
            documents=[
                {
                    "documentType": doc.document_type,
                    "documentCategory": doc.category,
                    "fileName": doc.file_name,
                    "mimeType": doc.mime_type,
                    "data": doc.encoded,
                    "description": doc.description or f"Evidence document {index}",
                    "sequenceNumber": index,
                }
                for index, doc in enumerate(evidence.documents, 1)
            ],
            transactionDetails={
                "cardholderName": evidence.guest_name,
                "confirmationNumber": evidence.confirmation_number,
                "checkInDate": evidence.check_in_date,
                "checkOutDate": evidence.check_out_date,
                "transactionAmount": money(evidence.transaction_amount),
                "transactionDate": evidence.transaction_date,
                "transactionId": evidence.transaction_id,
                "authorizationCode": evidence.authorization_code,
                "acquirerReferenceNumber": evidence.acquirer_reference_number,
            },
            merchantNarrative=evidence.notes,
            idempotencyKey=self._idempotency_key("vrol_evidence"),
        )
        if evidence.ce3 and evidence.ce3_transaction_history:
            payload["compellingEvidence3"] = _ce3_history(evidence.ce3_transaction_history)

        data = await self._request("POST", f"{API}/disputes/{dispute_id}/evidence", json=payload)
        result = self._result(data, "submissionId", status="submitted", message="Evidence submitted successfully")
        logger.info("vrol_evidence_submitted", dispute_id=dispute_id, submission_id=result.id,
                    documents=len(evidence.documents))
        return result

    async def push_response(self, dispute_id: str, response: RepresentmentRequest) -> SubmissionResult:
        evidence = response.compelling_evidence
        guest = response.guest_details
        stay = response.stay_details
        stage = DisputeStage.parse(response.stage)
        payload = self._envelope(
            dispute_id,
            representmentType=response.representment_type,
            disputeStage=stage.value,
            compellingEvidence={
                "type": evidence.get("type", "generic"),
                "version": evidence.get("version", "2.0"),
                "description": evidence.get("description", ""),
                "priorUndisputedTransactions": evidence.get("prior_transactions", []),
                "deviceFingerprint": evidence.get("device_fingerprint"),
                "ipAddress": evidence.get("ip_address"),
                "authenticationData": evidence.get("authentication_data"),
            },
            guestDetails={
                "name": guest.get("name"),
                "email": guest.get("email"),
                "phone": guest.get("phone"),
                "loyaltyNumber": guest.get("loyalty_number"),
                "idVerified": bool(guest.get("id_verified", False)),
            },
            stayDetails={
                "propertyName": stay.get("property_name"),
                "confirmationNumber": stay.get("confirmation_number"),
                "checkInDate": stay.get("check_in_date"),
                "checkOutDate": stay.get("check_out_date"),
                "roomType": stay.get("room_type"),
                "roomRate": money(stay.get("room_rate")),
                "totalCharges": money(stay.get("total_charges")),
                "noShow": bool(stay.get("no_show", False)),
                "earlyCheckout": bool(stay.get("early_checkout", False)),
                "folioNumber": stay.get("folio_number"),
            },
            evidenceIds=list(response.evidence_ids),
            merchantNarrative=response.narrative,
            idempotencyKey=self._idempotency_key("vrol_response"),
        )
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/represent", json=payload)
        logger.info("vrol_representment_filed", dispute_id=dispute_id, stage=stage.value)
        return self._result(
            data, "responseId", "representmentId",
            status="filed", message="Representment filed successfully", stage=stage,
        )

    async def accept_dispute(self, dispute_id: str) -> SubmissionResult:
        payload = self._envelope(
            dispute_id,
            action="accept_liability",
            merchantNotes="Liability accepted by merchant",
            idempotencyKey=self._idempotency_key("vrol_accept"),
        )
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/accept", json=payload)
        logger.info("vrol_dispute_accepted", dispute_id=dispute_id)
        return self._result(
            data, "responseId", status="accepted", message="Dispute liability accepted", accepted=True,
        )

    # Pre-arbitration and arbitration

    async def respond_to_pre_arbitration(self, dispute_id: str, response: PreArbitrationResponse) -> SubmissionResult:
        """Answer an issuer's pre-arbitration challenge to the representment"""
        if response.action not in ("contest", "accept"):
            raise ValidationError(
                f"Pre-arbitration action must be 'contest' or 'accept', got {response.action!r}",
                field="action",
                vendor=self.vendor_name,
            )
        payload = self._envelope(
            dispute_id,
            stage=DisputeStage.PRE_ARBITRATION.value,
            action=response.action,
            additionalEvidence=response.additional_evidence,
            merchantNarrative=response.narrative,
            requestArbitration=response.request_arbitration,
            evidenceIds=list(response.evidence_ids),
            idempotencyKey=self._idempotency_key("vrol_prearb"),
        )
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/pre-arbitration", json=payload)
        logger.info("vrol_pre_arbitration_filed", dispute_id=dispute_id, action=response.action)
        return self._result(
            data, "responseId", status="filed", message="Pre-arbitration response filed",
            stage=DisputeStage.PRE_ARBITRATION,
        )

    async def file_arbitration(self, dispute_id: str, filing: ArbitrationFiling) -> SubmissionResult:
        """Ask Visa for a binding decision"""
        payload = self._envelope(
            dispute_id,
            stage=DisputeStage.ARBITRATION.value,
            arbitrationReason=filing.reason,
            merchantNarrative=filing.narrative,
            evidenceIds=list(filing.evidence_ids),
            requestedOutcome=filing.requested_outcome,
            financialLiabilityAccepted=filing.accept_filing_fee,
            idempotencyKey=self._idempotency_key("vrol_arb"),
        )
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/arbitration", json=payload)
        logger.info("vrol_arbitration_filed", dispute_id=dispute_id)
        data = data if isinstance(data, Mapping) else {}
        return self._result(
            data, "arbitrationId", status="filed", message="Arbitration case filed with Visa",
            stage=DisputeStage.ARBITRATION,
            details=self._clean(
                {
                    "estimated_decision_date": normalize_date(data.get("estimatedDecisionDate")),
                    "filing_fee": data.get("filingFee"),
                }
            ),
        )

    # TC40

    @log_performance("fetch_tc40_reports")
    async def fetch_tc40_reports(
        self,
        since: Optional[str] = None,
        until: Optional[str] = None,
        fraud_type: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> TC40ReportPage:
        params = self._clean(
            {
                "startDate": since,
                "endDate": until,
                "fraudType": fraud_type,
                "page": page or 1,
                "pageSize": min(limit or 50, MAX_PAGE_SIZE),
            }
        )
        data = await self._request("GET", f"{API}/tc40-reports", params=params)
        items = self._as_list(data, "reports", "data")
        return TC40ReportPage(
            reports=[self.parse_tc40_report(item) for item in items],
            total_count=normalize_int(pick(data, "totalCount"), default=len(items)),
            has_more=bool(pick(data, "hasMore", default=False)),
            page=normalize_int(pick(data, "page"), default=params["page"]),
        )

    # Compelling Evidence 3.0

    async def submit_ce3_evidence(self, dispute_id: str, submission: CE3Submission) -> SubmissionResult:
        """
        Submit a CE3.0 package.

        Visa only accepts CE3.0 with at least two prior undisputed transactions
        from the same cardholder; smaller packages are refused locally.
        """
        prior = list(submission.prior_transactions or [])
        minimum = CE3_REQUIREMENTS.minimum_prior_transactions
        if len(prior) < minimum:
            raise ValidationError(
                f"CE3.0 requires at least {minimum} prior undisputed transactions from the same cardholder",
                field="prior_transactions",
                vendor=self.vendor_name,
                details={"provided": len(prior), "required": minimum},
            )
        disputed_prior = [txn.transaction_id for txn in prior if txn.disputed]
        if disputed_prior:
            raise ValidationError(
                "CE3.0 prior transactions must be undisputed",
                field="prior_transactions",
                vendor=self.vendor_name,
                details={"disputed": disputed_prior},
            )

        payload = self._envelope(
            dispute_id,
            compellingEvidenceVersion="3.0",
            disputedTransaction={
                "transactionId": submission.disputed_transaction_id,
                "transactionDate": submission.disputed_transaction_date,
                "amount": money(submission.disputed_amount),
                "ipAddress": submission.disputed_ip_address,
                "deviceFingerprint": submission.disputed_device_fingerprint,
                "shippingAddress": submission.disputed_shipping_address,
            },
            priorUndisputedTransactions=[_prior_transaction(txn, i) for i, txn in enumerate(prior, 1)],
            matchingCriteria={
                "ipAddressMatch": submission.ip_address_match,
                "deviceFingerprintMatch": submission.device_fingerprint_match,
                "shippingAddressMatch": submission.shipping_address_match,
                "cardholderNameMatch": submission.cardholder_name_match,
            },
            merchantNarrative=submission.narrative,
            idempotencyKey=self._idempotency_key("vrol_ce3"),
        )
        data = await self._request("POST", f"{API}/disputes/{dispute_id}/compelling-evidence-3", json=payload)
        data = data if isinstance(data, Mapping) else {}
        logger.info("vrol_ce3_submitted", dispute_id=dispute_id, prior_transactions=len(prior))
        return self._result(
            data, "submissionId", status="submitted", message="CE3.0 evidence submitted for review",
            accepted=bool(data.get("ce3Accepted") or data.get("accepted")),
            details=self._clean({"match_score": data.get("matchScore")}),
        )

    # Webhooks

    async def _register_webhook(self, callback_url: str, vendor_events: List[str], secret: str) -> Optional[str]:
        payload = self._envelope(
            callbackUrl=callback_url,
            events=vendor_events,
            active=True,
            secret=secret,
            format="json",
            apiVersion="v1",
        )
        data = await self._request("POST", f"{API}/webhooks", json=payload)
        return pick(data, "webhookId", "id")

    def _parse_event(self, payload: Mapping[str, Any]) -> Tuple[Optional[str], Dict[str, Any], Any]:
        inner = payload.get("data") or payload.get("payload") or {}
        data = dict(inner) if isinstance(inner, Mapping) else {"value": inner}
        data["dispute_id"] = pick(payload, "caseId", "disputeId") or pick(data, "caseId", "disputeId")
        data["webhook_id"] = pick(payload, "webhookId")
        return pick(payload, "eventType", "event"), data, payload.get("timestamp")

    # Normalization

    def normalize_dispute(self, data: Mapping[str, Any]) -> DisputeCase:
        reason = self.normalize_reason_code(pick(data, "reasonCode", "conditionCode"))
        portal_status = pick(data, "status", "caseStatus")
        return DisputeCase(
            dispute_id=pick(data, "disputeId", "caseId", "vrolCaseNumber", "id"),
            portal_type=self.portal_type,
            case_number=pick(data, "vrolCaseNumber", "caseNumber", "referenceNumber"),
            amount=normalize_amount(pick(data, "amount", "disputeAmount", "transactionAmount")),
            currency=normalize_currency(pick(data, "currency", "transactionCurrency")),
            card_last_four=last_four(pick(data, "cardLastFour", "cardLast4", "maskedPAN")),
            card_brand="VISA",
            guest_name=pick(data, "cardholderName", "guestName", default=""),
            reason_code=reason.code,
            reason_category=reason.category,
            reason_description=reason.description,
            dispute_date=normalize_date(pick(data, "disputeDate", "chargebackDate", "createdAt")),
            due_date=normalize_date(pick(data, "responseDeadline", "dueDate")),
            status=self.normalize_dispute_status(portal_status),
            portal_status=portal_status,
            stage=DisputeStage.parse(pick(data, "stage", "disputeStage")),
            alert_type=pick(data, "alertType", default="DISPUTE"),
            transaction_id=str(pick(data, "transactionId", "acquirerReferenceNumber", default="")),
            transaction_date=normalize_date(pick(data, "transactionDate")),
            authorization_code=pick(data, "authorizationCode", "approvalCode", default=""),
            acquirer_reference_number=pick(data, "acquirerReferenceNumber", "arn", default=""),
            merchant_descriptor=pick(data, "merchantDescriptor", default=""),
            raw=sanitize_pii(dict(data)),
        )

    def parse_tc40_report(self, data: Mapping[str, Any]) -> TC40Report:
        transaction_amount = normalize_amount(pick(data, "transactionAmount", "amount"))
        return TC40Report(
            report_id=pick(data, "tc40ReportId", "reportId", "id"),
            fraud_type=pick(data, "fraudType", "fraudClassification", default="unknown"),
            report_date=normalize_date(pick(data, "reportDate", "filingDate")),
            card_last_four=last_four(pick(data, "maskedPAN", "cardLastFour")),
            transaction_amount=transaction_amount,
            fraud_amount=normalize_amount(pick(data, "fraudAmount")) if pick(data, "fraudAmount") else transaction_amount,
            transaction_date=normalize_date(pick(data, "transactionDate")),
            merchant_name=pick(data, "merchantName", "merchantDescriptor", default=""),
            issuer_name=pick(data, "issuerName", default=""),
            issuer_country=pick(data, "issuerCountry", default=""),
            account_device_type=pick(data, "accountDeviceType", default=""),
            card_present=bool(data.get("cardPresent", False)),
            ecommerce_indicator=pick(data, "ecommerceIndicator", default=""),
            raw=sanitize_pii(dict(data)),
        )
