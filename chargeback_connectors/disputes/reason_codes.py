"""
Card-network reason codes and response deadlines
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..normalizers import parse_datetime

DEFAULT_DEADLINE_DAYS = 30

# Stage overrides; first chargeback and representment use the reason-code default
STAGE_DEADLINE_DAYS = {
    "pre_arbitration": 30,
    "arbitration": 10,
    "compliance": 45,
}


class ReasonCategory(str, Enum):
    FRAUD = "FRAUD"
    AUTHORIZATION = "AUTHORIZATION"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    CONSUMER_DISPUTE = "CONSUMER_DISPUTE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ReasonCode:
    code: str
    category: ReasonCategory
    description: str
    compelling_evidence_types: Tuple[str, ...] = ()
    response_deadline_days: int = DEFAULT_DEADLINE_DAYS
    ce3_eligible: bool = False


def _visa(code: str, category: ReasonCategory, description: str, *evidence: str, ce3: bool = False) -> ReasonCode:
    return ReasonCode(code, category, description, tuple(evidence), DEFAULT_DEADLINE_DAYS, ce3)


_F = ReasonCategory.FRAUD
_A = ReasonCategory.AUTHORIZATION
_P = ReasonCategory.PROCESSING_ERROR
_C = ReasonCategory.CONSUMER_DISPUTE

VISA_REASON_CODES: Dict[str, ReasonCode] = {
    rc.code: rc
    for rc in (
        _visa("10.1", _F, "EMV Liability Shift Counterfeit Fraud",
              "emv_chip_transaction_log", "terminal_capability_certificate"),
        _visa("10.2", _F, "EMV Liability Shift Non-Counterfeit Fraud",
              "emv_chip_transaction_log", "terminal_capability_certificate", "pin_validation_log"),
        _visa("10.3", _F, "Other Fraud - Card-Present Environment",
              "signed_receipt", "chip_read_log", "surveillance_footage", "id_verification"),
        _visa("10.4", _F, "Other Fraud - Card-Absent Environment",
              "avs_cvv_match", "delivery_confirmation", "device_fingerprint",
              "ip_address_match", "prior_undisputed_transactions", "3ds_authentication", ce3=True),
        _visa("10.5", _F, "Visa Fraud Monitoring Program",
              "transaction_receipt", "proof_of_delivery", "signed_registration"),
        _visa("11.1", _A, "Card Recovery Bulletin", "authorization_approval_code", "transaction_receipt"),
        _visa("11.2", _A, "Declined Authorization", "authorization_approval_code", "authorization_log"),
        _visa("11.3", _A, "No Authorization",
              "authorization_approval_code", "authorization_log", "transaction_receipt"),
        _visa("12.1", _P, "Late Presentment", "transaction_date_proof", "authorization_date"),
        _visa("12.2", _P, "Incorrect Transaction Code", "original_transaction_receipt", "corrected_transaction_data"),
        _visa("12.3", _P, "Incorrect Currency", "currency_conversion_receipt", "cardholder_agreement"),
        _visa("12.4", _P, "Incorrect Account Number", "account_verification", "transaction_receipt"),
        _visa("12.5", _P, "Incorrect Amount", "signed_receipt", "folio", "itemized_charges"),
        _visa("12.6", _P, "Duplicate Processing/Paid by Other Means",
              "transaction_log", "unique_transaction_ids", "separate_service_proof"),
        _visa("12.7", _P, "Invalid Data", "valid_transaction_data", "authorization_log"),
        _visa("13.1", _C, "Merchandise/Services Not Received",
              "proof_of_delivery", "check_in_confirmation", "folio",
              "guest_registration_card", "id_verification", "key_card_access_log"),
        _visa("13.2", _C, "Cancelled Recurring Transaction",
              "terms_and_conditions", "cancellation_policy", "signed_agreement"),
        _visa("13.3", _C, "Not as Described or Defective Merchandise/Services",
              "service_description", "terms_accepted", "guest_correspondence",
              "folio", "quality_documentation", "photos"),
        _visa("13.4", _C, "Counterfeit Merchandise", "authenticity_proof", "supplier_documentation"),
        _visa("13.5", _C, "Misrepresentation", "accurate_listing", "terms_accepted", "guest_correspondence"),
        _visa("13.6", _C, "Credit Not Processed",
              "refund_policy", "terms_and_conditions", "no_refund_entitlement", "credit_issued_proof"),
        _visa("13.7", _C, "Cancelled Merchandise/Services",
              "cancellation_policy", "no_show_documentation", "terms_accepted",
              "guest_folio", "reservation_confirmation"),
    )
}

# Processor portals relay Mastercard, Amex and Discover codes alongside Visa's
NETWORK_REASON_CODES: Dict[str, ReasonCode] = {
    "4837": ReasonCode("4837", _F, "No Cardholder Authorization (MC)"),
    "4853": ReasonCode("4853", _C, "Cardholder Dispute (MC)"),
    "4863": ReasonCode("4863", _C, "Cardholder Does Not Recognize (MC)"),
    "A01": ReasonCode("A01", _F, "Charge Amount Exceeds Authorization (Amex)"),
    "C28": ReasonCode("C28", _C, "Cancelled Recurring (Discover)"),
    "F10": ReasonCode("F10", _F, "Missing Imprint (Amex)"),
    "F29": ReasonCode("F29", _F, "Card Not Present (Amex)"),
}

_VISA_PREFIXES = (
    ("10.", _F, "Visa Fraud"),
    ("11.", _A, "Visa Authorization"),
    ("12.", _P, "Visa Processing Error"),
    ("13.", _C, "Visa Consumer Dispute"),
)

UNKNOWN_REASON = ReasonCode("UNKNOWN", ReasonCategory.UNKNOWN, "Unknown reason code")


@dataclass(frozen=True)
class CE3Requirements:
    """Visa Compelling Evidence 3.0 eligibility rules"""

    minimum_prior_transactions: int = 2
    required_match_fields: Tuple[str, ...] = ("ip_address", "device_fingerprint")
    optional_match_fields: Tuple[str, ...] = ("shipping_address", "cardholder_name")
    lookback_days: int = 365
    description: str = (
        "Visa Compelling Evidence 3.0 requires at least 2 prior undisputed transactions "
        "from the same cardholder with matching IP address and/or device fingerprint, "
        "within 365 days of the disputed transaction."
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minimum_prior_transactions": self.minimum_prior_transactions,
            "required_match_fields": list(self.required_match_fields),
            "optional_match_fields": list(self.optional_match_fields),
            "lookback_days": self.lookback_days,
            "description": self.description,
        }


CE3_REQUIREMENTS = CE3Requirements()

EVIDENCE_INSTRUCTIONS = {
    "10.4": (
        "Provide compelling evidence for card-absent fraud: AVS/CVV match, device fingerprint, "
        "IP address logs, 3-D Secure authentication data, and at least two prior undisputed "
        "transactions from the same device or IP (CE3.0 eligible)."
    ),
    "13.1": (
        "Provide proof the guest received hotel services: check-in confirmation, signed "
        "registration card, room folio, key card access logs and ID verification."
    ),
    "13.2": (
        "Provide the signed agreement with recurring charge terms and the cancellation policy "
        "as disclosed at booking."
    ),
    "13.3": (
        "Provide the booking confirmation showing room type and amenities, the guest folio, "
        "property photos and any correspondence with the guest about the stay."
    ),
    "13.6": (
        "Provide the refund policy accepted by the guest, proof no cancellation was received, "
        "or proof that a credit has already been issued."
    ),
    "13.7": (
        "Provide the cancellation policy accepted at booking, no-show documentation, the "
        "reservation confirmation with terms and the guest folio."
    ),
}

DEFAULT_EVIDENCE_INSTRUCTIONS = (
    "Submit all available evidence including guest folio, signed registration, booking "
    "confirmation, authorization records and any other relevant documentation."
)


def normalize_reason_code(
    code: Any, table: Optional[Mapping[str, ReasonCode]] = None
) -> ReasonCode:
    """
    Look up a reason code.

    Unknown Visa sub-codes fall back to their major category (``10.x`` is
    fraud, ``11.x`` authorization, ``12.x`` processing error, ``13.x``
    consumer dispute); Mastercard ``48xx`` codes are treated as consumer
    disputes. Anything else is UNKNOWN rather than an error.
    """
    if code is None or str(code).strip() == "":
        return UNKNOWN_REASON

    normalized = str(code).strip()
    lookup = table if table is not None else {**VISA_REASON_CODES, **NETWORK_REASON_CODES}
    known = lookup.get(normalized) or lookup.get(normalized.upper())
    if known:
        return known

    for prefix, category, label in _VISA_PREFIXES:
        if normalized.startswith(prefix):
            return ReasonCode(normalized, category, f"{label} - Code {normalized}")
    if normalized.startswith("48"):
        return ReasonCode(normalized, _C, f"Mastercard Dispute - Code {normalized}")
    return ReasonCode(normalized, ReasonCategory.UNKNOWN, f"Reason Code {normalized}")


def deadline_days(stage: Any, reason_code: Any = None) -> int:
    stage_value = getattr(stage, "value", stage)
    if stage_value in STAGE_DEADLINE_DAYS:
        return STAGE_DEADLINE_DAYS[stage_value]
    known = VISA_REASON_CODES.get(str(reason_code).strip()) if reason_code else None
    return known.response_deadline_days if known else DEFAULT_DEADLINE_DAYS


def calculate_response_deadline(dispute_date: Any, stage: Any, reason_code: Any = None) -> str:
    """ISO-8601 UTC deadline: stage override, else the reason-code default"""
    base = parse_datetime(dispute_date) or datetime.now(timezone.utc)
    return (base + timedelta(days=deadline_days(stage, reason_code))).isoformat()


def evidence_instructions(reason_code: Any) -> str:
    return EVIDENCE_INSTRUCTIONS.get(str(reason_code or "").strip(), DEFAULT_EVIDENCE_INSTRUCTIONS)


def recommended_evidence(reason_code: Any) -> List[str]:
    known = VISA_REASON_CODES.get(str(reason_code or "").strip())
    return list(known.compelling_evidence_types) if known else []
