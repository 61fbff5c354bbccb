"""
Chargeback Connectors - Dispute Contracts
Case model, lifecycle stages and the interface every dispute portal adapter implements
"""

import base64
from abc import abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..base import BaseIntegration
from ..errors import ValidationError
from ..normalizers import normalize_amount, normalize_date, sanitize_pii
from ..utils.logging import get_safe_logger
from ..webhooks import EventNameMap, WebhookBody, WebhookEvent, WebhookRegistration, generate_webhook_secret
from .reason_codes import ReasonCategory, ReasonCode, calculate_response_deadline, normalize_reason_code

logger = get_safe_logger("chargeback_connectors.disputes")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def money(value: Any) -> Optional[str]:
    """Amount as a 2-place decimal string for JSON bodies; None stays None"""
    return str(normalize_amount(value)) if value is not None else None


class DisputeStage(str, Enum):
    """Ordered chargeback lifecycle; cases only move forward"""

    FIRST_CHARGEBACK = "first_chargeback"
    REPRESENTMENT = "representment"
    PRE_ARBITRATION = "pre_arbitration"
    ARBITRATION = "arbitration"
    COMPLIANCE = "compliance"

    @property
    def order(self) -> int:
        return list(DisputeStage).index(self)

    @classmethod
    def parse(cls, value: Any) -> "DisputeStage":
        if isinstance(value, DisputeStage):
            return value
        text = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        for stage in cls:
            if stage.value == text:
                return stage
        return cls.FIRST_CHARGEBACK


class DisputeStatus(str, Enum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    SUBMITTED = "SUBMITTED"
    WON = "WON"
    LOST = "LOST"
    EXPIRED = "EXPIRED"
    RESOLVED = "RESOLVED"


# Canonical dispute webhook event names
DISPUTE_CREATED = "dispute.created"
DISPUTE_UPDATED = "dispute.updated"
DISPUTE_STATUS_CHANGED = "dispute.status_changed"
DISPUTE_EVIDENCE_DUE = "dispute.evidence_due"
DISPUTE_RESOLVED = "dispute.resolved"
REPRESENTMENT_ACCEPTED = "representment.accepted"
REPRESENTMENT_DECLINED = "representment.declined"
PRE_ARBITRATION_INITIATED = "pre_arbitration.initiated"
ARBITRATION_INITIATED = "arbitration.initiated"
TC40_RECEIVED = "tc40.received"
COMPLIANCE_CASE_OPENED = "compliance.case_opened"


@dataclass
class TC40Report:
    """Issuer fraud notification; usually precedes a chargeback"""

    report_id: Optional[str]
    fraud_type: str = "unknown"
    report_date: Optional[str] = None
    card_last_four: str = ""
    transaction_amount: Decimal = Decimal("0.00")
    fraud_amount: Decimal = Decimal("0.00")
    transaction_date: Optional[str] = None
    merchant_name: str = ""
    issuer_name: str = ""
    issuer_country: str = ""
    account_device_type: str = ""
    card_present: bool = False
    ecommerce_indicator: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DisputeCase:
    dispute_id: Optional[str]
    portal_type: str
    case_number: Optional[str] = None
    amount: Decimal = Decimal("0.00")
    currency: str = "USD"
    card_last_four: str = ""
    card_brand: str = "UNKNOWN"
    guest_name: str = ""
    reason_code: str = "UNKNOWN"
    reason_category: ReasonCategory = ReasonCategory.UNKNOWN
    reason_description: str = ""
    dispute_date: Optional[str] = None
    due_date: Optional[str] = None
    status: DisputeStatus = DisputeStatus.PENDING
    portal_status: Optional[str] = None
    stage: DisputeStage = DisputeStage.FIRST_CHARGEBACK
    stage_entered_at: Optional[str] = None
    alert_type: str = "DISPUTE"
    transaction_id: str = ""
    transaction_date: Optional[str] = None
    authorization_code: str = ""
    acquirer_reference_number: str = ""
    merchant_descriptor: str = ""
    requires_enhanced_review: bool = False
    tc40_report: Optional[TC40Report] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def advance_stage(self, stage: Union[DisputeStage, str], entered_at: Any = None) -> bool:
        """
        Move the case to a later stage and recompute its response deadline.

        Returns False when ``stage`` is the current stage. Raises
        ValidationError for an unknown stage or a backward move.
        """
        try:
            target = DisputeStage(stage)
        except ValueError as e:
            raise ValidationError(
                f"Unknown dispute stage: {stage!r}", field="stage", details={"requested": str(stage)}
            ) from e
        if target == self.stage:
            return False
        if target.order < self.stage.order:
            raise ValidationError(
                f"Cannot move dispute {self.dispute_id} back from {self.stage.value} to {target.value}",
                field="stage",
                details={"current": self.stage.value, "requested": target.value},
            )
        previous = self.stage
        self.stage = target
        self.stage_entered_at = normalize_date(entered_at) or _utcnow_iso()
        self.due_date = calculate_response_deadline(self.stage_entered_at, target, self.reason_code)
        logger.info(
            "dispute_stage_advanced",
            dispute_id=self.dispute_id,
            from_stage=previous.value,
            to_stage=target.value,
            due_date=self.due_date,
        )
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EvidenceDocument:
    file_name: str
    data: Union[bytes, str]
    document_type: str = "supporting_document"
    category: str = "evidence"
    mime_type: str = "application/pdf"
    description: str = ""

    @property
    def encoded(self) -> str:
        """Base64 content; str data is assumed to be encoded already"""
        if isinstance(self.data, bytes):
            return base64.b64encode(self.data).decode("ascii")
        return self.data


@dataclass
class PriorTransaction:
    transaction_id: str
    transaction_date: str
    amount: Decimal
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    shipping_address: Optional[str] = None
    currency: str = "USD"
    authorization_code: Optional[str] = None
    outcome: str = "settled"
    disputed: bool = False


@dataclass
class EvidencePackage:
    documents: List[EvidenceDocument] = field(default_factory=list)
    evidence_category: str = "compelling_evidence"
    guest_name: Optional[str] = None
    confirmation_number: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    transaction_date: Optional[str] = None
    transaction_id: Optional[str] = None
    authorization_code: Optional[str] = None
    acquirer_reference_number: Optional[str] = None
    notes: str = ""
    ce3: bool = False
    ce3_transaction_history: List[PriorTransaction] = field(default_factory=list)


@dataclass
class RepresentmentRequest:
    """Formal contest of a chargeback, with the stay facts behind it"""

    representment_type: str = "first_representment"
    stage: DisputeStage = DisputeStage.REPRESENTMENT
    compelling_evidence: Dict[str, Any] = field(default_factory=dict)
    guest_details: Dict[str, Any] = field(default_factory=dict)
    stay_details: Dict[str, Any] = field(default_factory=dict)
    evidence_ids: List[str] = field(default_factory=list)
    narrative: str = ""


@dataclass
class PreArbitrationResponse:
    action: str = "contest"  # contest / accept
    additional_evidence: List[Dict[str, Any]] = field(default_factory=list)
    evidence_ids: List[str] = field(default_factory=list)
    narrative: str = ""
    request_arbitration: bool = False


@dataclass
class ArbitrationFiling:
    reason: str = "compelling_evidence"
    requested_outcome: str = "reverse_chargeback"
    evidence_ids: List[str] = field(default_factory=list)
    narrative: str = ""
    accept_filing_fee: bool = False


@dataclass
class CE3Submission:
    """Visa Compelling Evidence 3.0 package for a card-absent fraud dispute"""

    prior_transactions: List[PriorTransaction]
    disputed_transaction_id: Optional[str] = None
    disputed_transaction_date: Optional[str] = None
    disputed_amount: Optional[Decimal] = None
    disputed_ip_address: Optional[str] = None
    disputed_device_fingerprint: Optional[str] = None
    disputed_shipping_address: Optional[str] = None
    ip_address_match: bool = True
    device_fingerprint_match: bool = True
    shipping_address_match: bool = False
    cardholder_name_match: bool = False
    narrative: str = "CE3.0 evidence: prior undisputed transactions from same device/IP"


@dataclass
class DisputeQuery:
    since: Optional[str] = None
    until: Optional[str] = None
    status: Optional[str] = None
    stage: Optional[str] = None
    reason_code: Optional[str] = None
    page: int = 1
    limit: int = 50


@dataclass
class DisputeStatusInfo:
    dispute_id: str
    status: DisputeStatus
    portal_status: Optional[str] = None
    stage: DisputeStage = DisputeStage.FIRST_CHARGEBACK
    last_updated: Optional[str] = None
    due_date: Optional[str] = None
    notes: str = ""
    outcome: Optional[str] = None
    outcome_date: Optional[str] = None


@dataclass
class EvidenceRequirements:
    dispute_id: str
    required_types: List[str]
    portal_required_types: List[str]
    recommended_types: List[str]
    reason_code: str
    reason_category: ReasonCategory
    instructions: str
    deadline: Optional[str] = None
    deadline_days: int = 30
    stage: DisputeStage = DisputeStage.FIRST_CHARGEBACK
    ce3_eligible: bool = False
    ce3_requirements: Optional[Dict[str, Any]] = None


@dataclass
class DisputePage:
    disputes: List[DisputeCase]
    total_count: int
    has_more: bool
    page: int


@dataclass
class TC40ReportPage:
    reports: List[TC40Report]
    total_count: int
    has_more: bool
    page: int


@dataclass
class SubmissionResult:
    """Portal acknowledgement of an outbound action"""

    id: Optional[str]
    status: str
    message: str = ""
    stage: Optional[DisputeStage] = None
    accepted: Optional[bool] = None
    timestamp: str = field(default_factory=_utcnow_iso)
    details: Dict[str, Any] = field(default_factory=dict)


class BaseDisputeAdapter(BaseIntegration):
    """
    Base class for dispute portal adapters (card networks and processors).

    Shares the credential, resilience and webhook plumbing with the PMS
    adapters; subclasses supply the portal endpoints and vocabulary.
    """

    capabilities: Dict[str, bool] = {}
    # portal status (lowercase) -> canonical status
    status_map: Dict[str, DisputeStatus] = {}
    event_names: EventNameMap = EventNameMap({})
    reason_codes: Optional[Mapping[str, ReasonCode]] = None

    @property
    def portal_type(self) -> str:
        return self.vendor_name.upper()

    def normalize_dispute_status(self, portal_status: Optional[str]) -> DisputeStatus:
        if not portal_status:
            return DisputeStatus.PENDING
        return self.status_map.get(str(portal_status).strip().lower(), DisputeStatus.PENDING)

    def normalize_reason_code(self, code: Any) -> ReasonCode:
        return normalize_reason_code(code, self.reason_codes)

    @staticmethod
    def _result(data: Any, *id_keys: str, status: str, message: str, **extra: Any) -> SubmissionResult:
        data = data if isinstance(data, Mapping) else {}
        record_id = next((data[k] for k in (*id_keys, "id") if data.get(k) not in (None, "")), None)
        return SubmissionResult(
            id=str(record_id) if record_id is not None else None,
            status=data.get("status") or status,
            message=data.get("message") or message,
            timestamp=data.get("timestamp") or _utcnow_iso(),
            **extra,
        )

    # -- inbound --------------------------------------------------------------

    async def receive_dispute(self, payload: Mapping[str, Any]) -> DisputeCase:
        """Normalize a pushed or polled portal case; fills in a missing deadline"""
        case = self.normalize_dispute(payload)
        if not case.due_date:
            case.due_date = calculate_response_deadline(case.dispute_date, case.stage, case.reason_code)
        logger.info(
            "dispute_received",
            portal=self.portal_type,
            dispute_id=case.dispute_id,
            stage=case.stage.value,
            reason_code=case.reason_code,
            due_date=case.due_date,
        )
        return case

    @abstractmethod
    async def get_dispute_status(self, dispute_id: str) -> DisputeStatusInfo:
        pass

    @abstractmethod
    async def list_disputes(self, query: Optional[DisputeQuery] = None) -> DisputePage:
        pass

    # -- outbound -------------------------------------------------------------

    @abstractmethod
    async def submit_evidence(self, dispute_id: str, evidence: EvidencePackage) -> SubmissionResult:
        pass

    @abstractmethod
    async def push_response(self, dispute_id: str, response: RepresentmentRequest) -> SubmissionResult:
        """File a representment contesting the chargeback"""

    @abstractmethod
    async def accept_dispute(self, dispute_id: str) -> SubmissionResult:
        """Concede liability"""

    # -- webhooks ---------------------------------------------------------------

    @abstractmethod
    async def _register_webhook(self, callback_url: str, vendor_events: List[str], secret: str) -> Optional[str]:
        pass

    @abstractmethod
    def _parse_event(self, payload: Mapping[str, Any]) -> Tuple[Optional[str], Dict[str, Any], Any]:
        """(portal event name, event data, portal timestamp) from a verified payload"""

    async def register_webhook(self, callback_url: str, events: Optional[List[str]] = None) -> WebhookRegistration:
        canonical = list(events) if events else self.event_names.canonical_events
        secret = generate_webhook_secret()
        webhook_id = await self._register_webhook(callback_url, self.event_names.to_vendor_list(canonical), secret)
        self.webhook_secret = secret
        logger.info("dispute_webhook_registered", portal=self.portal_type, webhook_id=webhook_id, events=canonical)
        return WebhookRegistration(
            webhook_id=str(webhook_id) if webhook_id is not None else None,
            secret=secret,
            status="active",
            callback_url=callback_url,
            events=canonical,
        )

    def parse_webhook_payload(self, headers: Mapping[str, str], body: WebhookBody) -> WebhookEvent:
        """Verify the portal signature, then translate to a canonical event"""
        payload = self._load_webhook(headers, body)
        vendor_event, data, timestamp = self._parse_event(payload)
        data = dict(data)
        if data.get("dispute_id") is not None:
            data["dispute_id"] = str(data["dispute_id"])
        return WebhookEvent(
            event_type=self.event_names.to_canonical(vendor_event),
            timestamp=normalize_date(timestamp) or _utcnow_iso(),
            data=data,
            vendor=self.vendor_name,
            vendor_event_type=vendor_event,
            raw=sanitize_pii(dict(payload)),
        )

    # -- mapping ----------------------------------------------------------------

    @abstractmethod
    def normalize_dispute(self, data: Mapping[str, Any]) -> DisputeCase:
        pass
