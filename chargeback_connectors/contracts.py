"""
Chargeback Connectors - PMS Contracts
Universal interface that all PMS adapters must implement
"""

from abc import abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from .base import BaseIntegration
from .errors import NotFoundError
from .models import (
    Address,
    ChargebackAlert,
    DisputeOutcome,
    FolioItem,
    GuestFlag,
    GuestName,
    GuestNote,
    GuestProfile,
    PaymentMethod,
    PushAck,
    RatePlan,
    RateQuery,
    Reservation,
    ReservationDocument,
    SearchCriteria,
)
from .normalizers import calculate_nights, normalize_date, sanitize_pii
from .webhooks import (
    CANONICAL_EVENTS,
    EventNameMap,
    WebhookBody,
    WebhookEvent,
    WebhookRegistration,
    generate_webhook_secret,
)

__all__ = [
    "Address",
    "BaseConnector",
    "Capabilities",
    "ChargebackAlert",
    "DisputeOutcome",
    "FolioItem",
    "GuestFlag",
    "GuestName",
    "GuestNote",
    "GuestProfile",
    "PMSConnector",
    "PaymentMethod",
    "PushAck",
    "RatePlan",
    "RateQuery",
    "Reservation",
    "ReservationDocument",
    "SearchCriteria",
    "build_reservation",
]


class Capabilities(Enum):
    """Standard capability flags"""

    RESERVATIONS = "reservations"
    FOLIOS = "folios"
    PROFILES = "profiles"
    RATES = "rates"
    NOTES = "notes"
    FLAGS = "flags"
    WEBHOOKS = "webhooks"
    DOCUMENTS = "documents"


# Main Protocol
class PMSConnector(Protocol):
    """
    Universal PMS connector interface.
    All network methods are async.
    """

    @property
    def vendor_name(self) -> str:
        """Return the PMS vendor name (e.g., 'opera_cloud', 'mews')"""
        ...

    @property
    def capabilities(self) -> Dict[str, bool]:
        """Return capability matrix for this connector"""
        ...

    async def health_check(self) -> Dict[str, Any]:
        """Check if PMS connection is healthy"""
        ...

    # Reservation Operations
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        ...

    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        ...

    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        ...

    async def get_reservation_documents(self, reservation_id: str) -> List[ReservationDocument]:
        ...

    # Guest Operations
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        ...

    # Rate Operations
    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        ...

    # Write-back Operations
    async def push_note(self, guest_id: str, note: GuestNote) -> PushAck:
        ...

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        ...

    async def push_chargeback_alert(self, reservation_id: str, alert: ChargebackAlert) -> PushAck:
        ...

    async def push_dispute_outcome(self, reservation_id: str, outcome: DisputeOutcome) -> PushAck:
        ...

    # Webhooks
    async def register_webhook(self, callback_url: str, events: Optional[List[str]] = None) -> WebhookRegistration:
        ...

    async def deregister_webhook(self, webhook_id: str) -> bool:
        ...

    def parse_webhook_payload(self, headers: Mapping[str, str], body: WebhookBody) -> WebhookEvent:
        ...


def build_reservation(pms_source: str, raw: Mapping[str, Any], **fields: Any) -> Reservation:
    """Reservation with derived night count and a scrubbed raw payload"""
    reservation = Reservation(pms_source=pms_source, raw=sanitize_pii(dict(raw)), **fields)
    reservation.number_of_nights = calculate_nights(reservation.check_in_date, reservation.check_out_date)
    return reservation


def format_alert(alert: ChargebackAlert) -> str:
    lines = [
        f"Chargeback case {alert.case_number}",
        f"Amount: {alert.amount} {alert.currency}",
        f"Reason code: {alert.reason_code}",
        f"Dispute date: {alert.dispute_date}",
        f"Status: {alert.status}",
    ]
    if alert.due_date:
        lines.append(f"Response due: {alert.due_date}")
    return "\n".join(lines)


def format_outcome(outcome: DisputeOutcome) -> str:
    lines = [
        f"Dispute {outcome.case_number} {outcome.outcome.upper()}",
        f"Amount: {outcome.amount} {outcome.currency}",
    ]
    if outcome.resolved_date:
        lines.append(f"Resolved: {outcome.resolved_date}")
    return "\n".join(lines)


def format_flag(flag: GuestFlag) -> str:
    text = f"[{flag.severity.upper()}] {flag.reason}"
    if flag.chargeback_id:
        text += f" (chargeback {flag.chargeback_id}"
        text += f", {flag.amount})" if flag.amount is not None else ")"
    return text


# Base implementation with common functionality
class BaseConnector(BaseIntegration):
    """
    Base class for PMS adapters.

    Subclasses provide the vendor's endpoints, status and event tables and
    the ``normalize_*`` mapping functions; the write-back and webhook
    operations are assembled here from two small hooks per vendor.
    """

    capabilities: Dict[str, bool] = {}
    # canonical status -> vendor status
    status_map: Dict[str, str] = {}
    event_names: EventNameMap = EventNameMap({})

    @property
    def pms_type(self) -> str:
        return self.vendor_name.upper()

    def map_status_to_vendor(self, status: Optional[str]) -> Optional[str]:
        if not status:
            return None
        return self.status_map.get(status.lower(), status)

    def _ack(self, record_id: Any) -> PushAck:
        return PushAck(success=True, id=str(record_id) if record_id not in (None, "") else None, pms_type=self.pms_type)

    async def _get_optional(self, path: str, **kwargs) -> Optional[Any]:
        """GET that maps a vendor 404 to None"""
        try:
            return await self._request("GET", path, **kwargs)
        except NotFoundError:
            return None

    # -- reads ----------------------------------------------------------------

    @abstractmethod
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        """Fetch one reservation; None when the vendor does not know it"""

    @abstractmethod
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        pass

    @abstractmethod
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        pass

    @abstractmethod
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        pass

    @abstractmethod
    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        pass

    async def get_reservation_documents(self, reservation_id: str) -> List[ReservationDocument]:
        """Registration cards and signed folios, where the vendor exposes them"""
        return []

    # -- write-back -------------------------------------------------------------

    @abstractmethod
    async def _create_guest_note(self, guest_id: str, title: str, text: str, *, alert: bool) -> Any:
        """Create a note on the guest profile; returns the vendor record id"""

    @abstractmethod
    async def _create_reservation_note(self, reservation_id: str, title: str, text: str, *, alert: bool) -> Any:
        """Create a note on the reservation; returns the vendor record id"""

    async def push_note(self, guest_id: str, note: GuestNote) -> PushAck:
        record_id = await self._create_guest_note(
            guest_id, note.title, note.content, alert=note.priority.lower() in ("high", "urgent")
        )
        self.logger.info("Guest note pushed", guest_id=guest_id, category=note.category)
        return self._ack(record_id)

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        record_id = await self._create_guest_note(guest_id, "Chargeback flag", format_flag(flag), alert=True)
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(record_id)

    async def push_chargeback_alert(self, reservation_id: str, alert: ChargebackAlert) -> PushAck:
        record_id = await self._create_reservation_note(
            reservation_id, f"Chargeback alert {alert.case_number}", format_alert(alert), alert=True
        )
        self.logger.info("Chargeback alert pushed", reservation_id=reservation_id, case_number=alert.case_number)
        return self._ack(record_id)

    async def push_dispute_outcome(self, reservation_id: str, outcome: DisputeOutcome) -> PushAck:
        record_id = await self._create_reservation_note(
            reservation_id, f"Dispute {outcome.outcome.lower()}", format_outcome(outcome), alert=False
        )
        self.logger.info("Dispute outcome pushed", reservation_id=reservation_id, outcome=outcome.outcome)
        return self._ack(record_id)

    # -- webhooks ---------------------------------------------------------------

    @abstractmethod
    async def _register_webhook(self, callback_url: str, vendor_events: List[str], secret: str) -> Optional[str]:
        """Create the vendor subscription; returns its id"""

    @abstractmethod
    async def _deregister_webhook(self, webhook_id: str) -> None:
        pass

    @abstractmethod
    def _parse_event(self, payload: Mapping[str, Any]) -> Tuple[Optional[str], Dict[str, Any], Any]:
        """(vendor event name, event data, vendor timestamp) from a verified payload"""

    async def register_webhook(self, callback_url: str, events: Optional[List[str]] = None) -> WebhookRegistration:
        canonical = list(events) if events else list(CANONICAL_EVENTS)
        secret = generate_webhook_secret()
        webhook_id = await self._register_webhook(callback_url, self.event_names.to_vendor_list(canonical), secret)
        self.webhook_secret = secret
        self.logger.info("Webhook registered", webhook_id=webhook_id, events=canonical)
        return WebhookRegistration(
            webhook_id=str(webhook_id) if webhook_id is not None else None,
            secret=secret,
            status="active",
            callback_url=callback_url,
            events=canonical,
        )

    async def deregister_webhook(self, webhook_id: str) -> bool:
        try:
            await self._deregister_webhook(webhook_id)
        except NotFoundError:
            self.logger.warning("Webhook already removed", webhook_id=webhook_id)
            return False
        self.logger.info("Webhook deregistered", webhook_id=webhook_id)
        return True

    def parse_webhook_payload(self, headers: Mapping[str, str], body: WebhookBody) -> WebhookEvent:
        """Verify, decode and translate an inbound vendor webhook"""
        payload = self._load_webhook(headers, body)
        vendor_event, data, timestamp = self._parse_event(payload)
        data = dict(data)
        for key in ("reservation_id", "guest_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
            else:
                data[key] = None
        return WebhookEvent(
            event_type=self.event_names.to_canonical(vendor_event),
            timestamp=normalize_date(timestamp) or datetime.now(timezone.utc).isoformat(),
            data=data,
            vendor=self.vendor_name,
            vendor_event_type=vendor_event,
            raw=sanitize_pii(dict(payload)),
        )

    # -- mapping ------------------------------------------------------------------

    @abstractmethod
    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        pass

    @abstractmethod
    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        pass

    @abstractmethod
    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        pass

    @abstractmethod
    def normalize_rates(self, data: Any) -> List[RatePlan]:
        pass
