"""
Mews Systems PMS Connector
Connector API: every call is a POST carrying ClientToken/AccessToken in the body
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from ...auth import ApiKeyAuth, AuthType
from ...contracts import (
    BaseConnector,
    Capabilities,
    FolioItem,
    GuestProfile,
    PaymentMethod,
    RatePlan,
    RateQuery,
    Reservation,
    SearchCriteria,
    build_reservation,
)
from ...normalizers import (
    FolioCategory,
    dig,
    first_present,
    last_four,
    normalize_address,
    normalize_amount,
    normalize_card_brand,
    normalize_currency,
    normalize_date,
    normalize_folio_category,
    normalize_guest_name,
    normalize_int,
    normalize_phone,
    normalize_reservation_status,
    normalize_stay_date,
    sanitize_pii,
)
from ...utils.logging import log_performance
from ...webhooks import EventNameMap

# Look-back window when a search carries no dates
DEFAULT_SEARCH_DAYS = 30


def _localized(value: Any) -> str:
    """Mews localizes names as ``{"en-US": ...}``; take English or the first entry"""
    if isinstance(value, Mapping):
        for key in ("en", "en-US", "en-GB"):
            if value.get(key):
                return str(value[key])
        return str(next(iter(value.values()), ""))
    return str(value or "")


def _money(value: Any) -> Any:
    if isinstance(value, Mapping):
        return first_present(value.get("Value"), value.get("GrossValue"), value.get("NetValue"))
    return value


def _money_currency(value: Any, fallback: Any = None) -> Any:
    if isinstance(value, Mapping):
        return first_present(value.get("Currency"), fallback)
    return fallback


class MewsConnector(BaseConnector):
    """Mews connector implementation"""

    vendor_name = "mews"
    display_name = "Mews Systems"
    auth_type = AuthType.API_KEY
    default_base_url = "https://api.mews.com/api/connector/v1"
    required_credentials = ("client_token", "access_token")
    requests_per_minute = 120
    signature_headers = ("x-mews-signature", "x-webhook-signature")

    capabilities = {
        Capabilities.RESERVATIONS.value: True,
        Capabilities.FOLIOS.value: True,
        Capabilities.PROFILES.value: True,
        Capabilities.RATES.value: True,
        Capabilities.NOTES.value: True,
        Capabilities.FLAGS.value: True,
        Capabilities.WEBHOOKS.value: True,
        Capabilities.DOCUMENTS.value: False,
    }

    # Mews has no distinct no-show state
    status_map = {
        "confirmed": "Confirmed",
        "checked_in": "Started",
        "checked_out": "Processed",
        "cancelled": "Canceled",
        "no_show": "Canceled",
        "pending": "Optional",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "ReservationCreated",
            "reservation.updated": "ReservationUpdated",
            "reservation.cancelled": "ReservationCanceled",
            "guest.checked_in": "ReservationStarted",
            "guest.checked_out": "ReservationProcessed",
            "payment.received": "PaymentCreated",
            "folio.updated": "BillUpdated",
        }
    )

    def __init__(self, config: Dict[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        self.client_name = self.auth_state.get("client") or "ChargebackDefense"
        self.enterprise_id = self.auth_state.get("enterprise_id") or ""

    def _build_auth_strategy(self):
        # Tokens travel in the body, not in headers
        return ApiKeyAuth(self.auth_state, header_name=None, key_field="access_token")

    def _body(self, **extra: Any) -> Dict[str, Any]:
        return {
            "ClientToken": self.auth_state.get("client_token"),
            "AccessToken": self.auth_state.get("access_token"),
            "Client": self.client_name,
            **{k: v for k, v in extra.items() if v is not None},
        }

    async def _post(self, path: str, **extra: Any) -> Dict[str, Any]:
        return await self._request("POST", path, json=self._body(**extra))

    async def _probe(self, timeout: Optional[float] = None) -> Any:
        result = await self._request(
            "POST", "/configuration/get", json=self._body(), ensure_auth=False, timeout=timeout
        )
        self.enterprise_id = dig(result, "Enterprise", "Id", default=self.enterprise_id)
        return result

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "enterprise_id": self.enterprise_id}

    # Reservation Operations

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._post(
            "/reservations/getAll",
            ReservationIds=[confirmation_number],
            Extent={"Reservations": True, "Customers": True, "Items": True},
        )
        reservations = result.get("Reservations") or []
        if not reservations:
            return None
        return self.normalize_reservation(reservations[0], customers=self._by_id(result.get("Customers")))

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        now = datetime.now(timezone.utc)
        if criteria.check_in_date or criteria.check_out_date:
            time_filter = "Start"
            start = normalize_date(criteria.check_in_date) or (now - timedelta(days=DEFAULT_SEARCH_DAYS)).isoformat()
            end = normalize_date(criteria.check_out_date) or now.isoformat()
        else:
            time_filter = "Updated"
            start = (now - timedelta(days=DEFAULT_SEARCH_DAYS)).isoformat()
            end = now.isoformat()

        result = await self._post(
            "/reservations/getAll",
            Extent={"Reservations": True, "Customers": True, "Items": True},
            TimeFilter=time_filter,
            StartUtc=start,
            EndUtc=end,
            ReservationIds=[criteria.confirmation_number] if criteria.confirmation_number else None,
            States=[self.map_status_to_vendor(criteria.status)] if criteria.status else None,
            Limitation={"Count": criteria.limit or 50},
        )
        customers = self._by_id(result.get("Customers"))
        reservations = [
            r for r in (self.normalize_reservation(item, customers=customers) for item in result.get("Reservations") or []) if r
        ]

        # Guest name and card filters are not supported server-side
        if criteria.guest_name:
            needle = criteria.guest_name.lower()
            reservations = [r for r in reservations if needle in r.guest_name.full_name.lower()]
        if criteria.card_last_four:
            reservations = [r for r in reservations if r.payment_method.card_last_four == criteria.card_last_four]
        return reservations

    @staticmethod
    def _by_id(items: Any) -> Dict[str, Dict[str, Any]]:
        return {item["Id"]: item for item in items or [] if isinstance(item, Mapping) and item.get("Id")}

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        bills, payments = await asyncio.gather(
            self._post("/bills/getAll", ReservationIds=[reservation_id], Extent={"Bills": True, "Items": True}),
            self._post("/payments/getAll", ReservationIds=[reservation_id]),
        )
        return self.normalize_folio_items(
            {"Bills": bills.get("Bills") or [], "Payments": payments.get("Payments") or []}
        )

    # Guest Operations

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._post(
            "/customers/getAll",
            CustomerIds=[guest_id],
            Extent={"Customers": True, "Addresses": True},
        )
        customers = result.get("Customers") or []
        return self.normalize_guest_profile(customers[0]) if customers else None

    # Rate Operations

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        result = await self._post("/services/getAll", Extent={"Services": True, "Rates": True})
        rates = self.normalize_rates(result)
        if params and params.rate_code:
            rates = [r for r in rates if r.rate_code == params.rate_code]
        return rates

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        update: Dict[str, Any] = {"CustomerId": guest_id, "Notes": {"Value": f"{title}\n{text}"}}
        if alert:
            update["Classifications"] = {"Value": ["Problematic"]}
        result = await self._post("/customers/update", CustomerUpdates=[update])
        return dig(result, "Customers", 0, "Id", default=guest_id)

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._post(
            "/reservations/update",
            ReservationUpdates=[{"ReservationId": reservation_id, "Notes": {"Value": f"{title}\n{text}"}}],
        )
        return dig(result, "Reservations", 0, "Id", default=reservation_id)

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._post(
            "/webhooks/subscribe", Url=callback_url, Events=vendor_events, Secret=secret, IsActive=True
        )
        return first_present(result.get("Id"), result.get("WebhookId"))

    async def _deregister_webhook(self, webhook_id):
        await self._post("/webhooks/unsubscribe", WebhookIds=[webhook_id])

    def _parse_event(self, payload):
        events = payload.get("Events") or [payload]
        first = events[0] if isinstance(events[0], Mapping) else {}
        data = {
            "reservation_id": first_present(first.get("ReservationId"), first.get("EntityId")),
            "guest_id": first.get("CustomerId"),
            "entity_type": first.get("EntityType"),
            "events": [
                {
                    "type": self.event_names.to_canonical(first_present(e.get("Type"), e.get("Event"))),
                    "entity_id": first_present(e.get("EntityId"), e.get("Id")),
                    "entity_type": e.get("EntityType"),
                }
                for e in events
                if isinstance(e, Mapping)
            ],
        }
        return (
            first_present(first.get("Type"), first.get("Event")),
            data,
            first_present(payload.get("CreatedUtc"), payload.get("Timestamp")),
        )

    # Normalization

    def normalize_reservation(
        self, data: Optional[Mapping[str, Any]], customers: Optional[Mapping[str, Any]] = None
    ) -> Optional[Reservation]:
        if not data:
            return None

        customer_id = first_present(data.get("CustomerId"), data.get("AccountId"), dig(data, "CompanionIds", 0))
        customer = (customers or {}).get(customer_id) or data.get("Customer") or {}
        companions = data.get("CompanionIds") or []

        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(first_present(data.get("Number"), data.get("Id"), default="")),
            pms_reservation_id=str(data.get("Id") or ""),
            status=normalize_reservation_status(first_present(data.get("State"), data.get("Status"))),
            guest_profile_id=customer_id,
            guest_name=normalize_guest_name(
                {"FirstName": customer.get("FirstName"), "LastName": customer.get("LastName")}
            ),
            email=customer.get("Email") or "",
            phone=normalize_phone(first_present(customer.get("Phone"), customer.get("CellPhone"))),
            address=normalize_address(customer.get("Address")),
            check_in_date=normalize_stay_date(first_present(data.get("StartUtc"), data.get("CheckInUtc"))),
            check_out_date=normalize_stay_date(first_present(data.get("EndUtc"), data.get("CheckOutUtc"))),
            room_number=str(first_present(data.get("AssignedResourceId"), data.get("RoomNumber"), default="")),
            room_type=first_present(data.get("RequestedCategoryId"), data.get("RoomCategoryId"), default=""),
            rate_code=data.get("RateId") or "",
            total_amount=normalize_amount(_money(first_present(data.get("TotalAmount"), data.get("Cost")))),
            currency=normalize_currency(
                _money_currency(data.get("TotalAmount"), first_present(data.get("Currency"), data.get("CurrencyCode")))
            ),
            number_of_guests=normalize_int(data.get("AdultCount"), default=len(companions) + 1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(customer.get("PaymentCardType")),
                card_last_four=last_four(customer.get("PaymentCardLast4")),
            ),
            booking_source="OTA" if data.get("ChannelManagerNumber") else (data.get("Origin") or "direct"),
            created_at=normalize_date(data.get("CreatedUtc")),
            updated_at=normalize_date(data.get("UpdatedUtc")),
            special_requests=data.get("Notes") or "",
            loyalty_number=customer.get("LoyaltyCode"),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        items = []
        for bill in dig(data, "Bills", default=[]):
            for item in first_present(bill.get("Items"), bill.get("Revenue"), default=[]):
                amount = first_present(item.get("Amount"), item.get("TotalAmount"))
                items.append(
                    FolioItem(
                        folio_id=str(bill.get("Id") or ""),
                        transaction_id=str(item.get("Id") or ""),
                        transaction_code=item.get("AccountingCategoryId") or "",
                        category=normalize_folio_category(
                            first_present(item.get("Type"), item.get("Category"), item.get("Name"))
                        ),
                        description=first_present(item.get("Name"), item.get("Description"), default=""),
                        amount=normalize_amount(_money(amount)),
                        currency=normalize_currency(_money_currency(amount, item.get("Currency"))),
                        post_date=normalize_date(first_present(item.get("ConsumedUtc"), item.get("CreatedUtc"))),
                        reference=item.get("OrderId") or "",
                        reversal_flag=item.get("IsCorrection") is True,
                        quantity=normalize_int(item.get("Count"), default=1),
                    )
                )

        for payment in dig(data, "Payments", default=[]):
            card = payment.get("CreditCard") or {}
            items.append(
                FolioItem(
                    folio_id=str(payment.get("BillId") or ""),
                    transaction_id=str(payment.get("Id") or ""),
                    transaction_code="PAYMENT",
                    category=FolioCategory.PAYMENT.value,
                    description=f"Payment - {payment.get('Type') or 'Card'}",
                    amount=normalize_amount(_money(payment.get("Amount"))),
                    currency=normalize_currency(_money_currency(payment.get("Amount"), payment.get("Currency"))),
                    post_date=normalize_date(first_present(payment.get("CreatedUtc"), payment.get("SettledUtc"))),
                    card_last_four=last_four(card.get("ObfuscatedNumber")),
                    auth_code=card.get("AuthorizationCode") or "",
                    reference=payment.get("ReceiptIdentifier") or "",
                    reversal_flag=payment.get("State") in ("Canceled", "Failed"),
                )
            )
        return items

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        loyalty = data.get("Loyalty") or {}
        stats = data.get("Statistics") or {}
        return GuestProfile(
            guest_id=str(data.get("Id") or ""),
            pms_source=self.pms_type,
            name=normalize_guest_name({"FirstName": data.get("FirstName"), "LastName": data.get("LastName")}),
            email=data.get("Email") or "",
            phone=normalize_phone(first_present(data.get("Phone"), data.get("CellPhone"))),
            address=normalize_address(data.get("Address")),
            loyalty_number=first_present(data.get("LoyaltyCode"), loyalty.get("MembershipId")),
            loyalty_level=loyalty.get("Level"),
            vip_status=loyalty.get("Code"),
            total_stays=normalize_int(stats.get("TotalStays")),
            total_revenue=normalize_amount(stats.get("TotalRevenue")),
            last_stay_date=normalize_stay_date(stats.get("LastStayDate")),
            raw=sanitize_pii(dict(data)),
        )

    def _rate_plan(self, rate: Mapping[str, Any], service: Optional[Mapping[str, Any]] = None) -> RatePlan:
        service = service or {}
        price = first_present(rate.get("Price"), rate.get("BasePrice"))
        return RatePlan(
            rate_code=str(rate.get("Id") or ""),
            pms_source=self.pms_type,
            name=_localized(first_present(rate.get("Name"), service.get("Name"))),
            description=_localized(rate.get("Description")),
            category=first_present(rate.get("Type"), service.get("Type"), default=""),
            base_amount=normalize_amount(_money(price)),
            currency=normalize_currency(_money_currency(price, rate.get("Currency"))),
            valid_from=normalize_stay_date(first_present(rate.get("StartUtc"), rate.get("ValidFrom"))),
            valid_to=normalize_stay_date(first_present(rate.get("EndUtc"), rate.get("ValidTo"))),
            room_types=list(rate.get("ApplicableCategoryIds") or []),
            cancellation_policy=rate.get("CancellationPolicy") or "",
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        services = dig(data, "Services", default=[])
        rates = dig(data, "Rates", default=[])

        plans = []
        for service in services:
            if service.get("Type") == "Reservable" or service.get("IsActive"):
                plans.extend(self._rate_plan(r, service) for r in rates if r.get("ServiceId") == service.get("Id"))
        if not plans:
            plans = [self._rate_plan(r) for r in rates]
        return plans
