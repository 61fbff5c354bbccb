"""
Canonical PMS domain models (vendor-agnostic)
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class GuestName:
    first_name: str = ""
    last_name: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass
class Address:
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


@dataclass
class PaymentMethod:
    card_brand: str = "Unknown"
    card_last_four: str = ""
    auth_code: str = ""


@dataclass
class Reservation:
    confirmation_number: str
    pms_reservation_id: str
    status: str
    pms_source: str
    guest_profile_id: Optional[str] = None
    guest_name: GuestName = field(default_factory=GuestName)
    email: str = ""
    phone: Optional[str] = None
    address: Address = field(default_factory=Address)
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    room_number: str = ""
    room_type: str = ""
    rate_code: str = ""
    total_amount: Decimal = Decimal("0.00")
    currency: str = "USD"
    number_of_guests: int = 1
    number_of_nights: int = 0
    payment_method: PaymentMethod = field(default_factory=PaymentMethod)
    booking_source: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    special_requests: str = ""
    loyalty_number: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FolioItem:
    transaction_id: str
    category: str
    amount: Decimal
    currency: str = "USD"
    folio_id: str = ""
    window_number: int = 1
    transaction_code: str = ""
    description: str = ""
    post_date: Optional[str] = None
    card_last_four: str = ""
    auth_code: str = ""
    reference: str = ""
    reversal_flag: bool = False
    quantity: int = 1


@dataclass
class GuestProfile:
    guest_id: str
    pms_source: str
    name: GuestName = field(default_factory=GuestName)
    email: str = ""
    phone: Optional[str] = None
    address: Address = field(default_factory=Address)
    loyalty_number: Optional[str] = None
    loyalty_level: Optional[str] = None
    vip_status: Optional[str] = None
    total_stays: int = 0
    total_revenue: Decimal = Decimal("0.00")
    last_stay_date: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RatePlan:
    rate_code: str
    pms_source: str
    name: str = ""
    description: str = ""
    category: str = ""
    base_amount: Decimal = Decimal("0.00")
    currency: str = "USD"
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    room_types: List[str] = field(default_factory=list)
    cancellation_policy: str = ""


@dataclass
class ReservationDocument:
    document_id: str
    document_type: str
    file_name: str = ""
    content_type: str = ""
    url: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class SearchCriteria:
    confirmation_number: Optional[str] = None
    guest_name: Optional[str] = None
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    card_last_four: Optional[str] = None
    status: Optional[str] = None
    limit: int = 50
    offset: int = 0


@dataclass
class RateQuery:
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    room_type: Optional[str] = None
    rate_code: Optional[str] = None


# Outbound notes and alerts

@dataclass
class GuestNote:
    title: str
    content: str
    category: str = "chargeback"
    priority: str = "medium"


@dataclass
class GuestFlag:
    reason: str
    severity: str = "high"
    chargeback_id: Optional[str] = None
    amount: Optional[Decimal] = None
    set_by: str = "Chargeback Defense"


@dataclass
class ChargebackAlert:
    case_number: str
    amount: Decimal
    reason_code: str
    dispute_date: str
    currency: str = "USD"
    case_id: Optional[str] = None
    status: str = "PENDING"
    due_date: Optional[str] = None


@dataclass
class DisputeOutcome:
    case_number: str
    outcome: str  # WON / LOST
    amount: Decimal
    currency: str = "USD"
    case_id: Optional[str] = None
    resolved_date: Optional[str] = None


@dataclass
class PushAck:
    success: bool
    id: Optional[str]
    pms_type: str
    created_at: str = field(default_factory=_utcnow_iso)
