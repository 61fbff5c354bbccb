"""
Lodgify PMS Connector
Vacation-rental booking API using an X-ApiKey header and snake_case payloads
"""

from typing import Any, Dict, List, Mapping, Optional

from ...auth import ApiKeyAuth, AuthType
from ...contracts import (
    BaseConnector,
    Capabilities,
    FolioItem,
    GuestFlag,
    GuestProfile,
    PaymentMethod,
    PushAck,
    RatePlan,
    RateQuery,
    Reservation,
    SearchCriteria,
    build_reservation,
)
from ...normalizers import (
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


class LodgifyConnector(BaseConnector):
    """Lodgify connector implementation"""

    vendor_name = "lodgify"
    display_name = "Lodgify"
    auth_type = AuthType.API_KEY
    default_base_url = "https://api.lodgify.com/v2"
    required_credentials = ("api_key",)
    requests_per_minute = 60
    probe_path = "/properties"
    signature_headers = ("x-lodgify-signature", "x-webhook-signature")

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

    status_map = {
        "confirmed": "Booked",
        "checked_in": "CheckedIn",
        "checked_out": "CheckedOut",
        "cancelled": "Declined",
        "no_show": "NoShow",
        "pending": "Open",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "booking_created",
            "reservation.updated": "booking_updated",
            "reservation.cancelled": "booking_cancelled",
            "guest.checked_in": "guest_checked_in",
            "guest.checked_out": "guest_checked_out",
            "payment.received": "payment_received",
            "folio.updated": "transaction_created",
        }
    )

    def _build_auth_strategy(self):
        return ApiKeyAuth(self.auth_state, header_name="X-ApiKey", scheme=None)

    @staticmethod
    def _record_id(result: Any) -> Any:
        return first_present(dig(result, "data", "id"), dig(result, "id"))

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(f"/reservations/{confirmation_number}")
        return self.normalize_reservation(self._unwrap(result, "data"))

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        # Lodgify pages rather than offsets
        size = criteria.limit or 50
        params = self._clean(
            {
                "id": criteria.confirmation_number,
                "guest_name": criteria.guest_name,
                "arrival_from": criteria.check_in_date,
                "departure_to": criteria.check_out_date,
                "card_last_four": criteria.card_last_four,
                "status": self.map_status_to_vendor(criteria.status),
            }
        )
        params.update(size=size, page=(criteria.offset or 0) // size + 1)
        result = await self._request("GET", "/reservations", params=params)
        return [r for r in map(self.normalize_reservation, self._as_list(result, "items", "data")) if r]

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", f"/reservations/{reservation_id}/payments")
        return self.normalize_folio_items(result)

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._get_optional(f"/guests/{guest_id}")
        return self.normalize_guest_profile(self._unwrap(result, "data"))

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        query = params or RateQuery()
        result = await self._request(
            "GET",
            "/properties",
            params=self._clean({"start": query.start_date, "end": query.end_date}),
        )
        rates = self.normalize_rates(result)
        if query.rate_code:
            rates = [r for r in rates if r.rate_code == query.rate_code]
        return rates

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/guests/{guest_id}/notes",
            json={
                "title": title,
                "content": text,
                "priority": "high" if alert else "normal",
                "category": "chargeback",
                "is_private": True,
            },
        )
        return self._record_id(result)

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/reservations/{reservation_id}/notes",
            json={
                "title": title,
                "content": text,
                "note_type": "chargeback_alert" if alert else "dispute_outcome",
                "is_private": True,
            },
        )
        return self._record_id(result)

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        result = await self._request(
            "POST",
            f"/guests/{guest_id}/flags",
            json={
                "reason": flag.reason,
                "severity": flag.severity,
                "flag_type": "chargeback_risk",
                "chargeback_id": flag.chargeback_id,
                "amount": str(flag.amount) if flag.amount is not None else None,
                "is_active": True,
            },
        )
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(self._record_id(result))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/webhooks",
            json={"target_url": callback_url, "events": vendor_events, "secret": secret},
        )
        return self._record_id(result)

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/webhooks/{webhook_id}")

    def _parse_event(self, payload):
        event_type = first_present(payload.get("event"), payload.get("action"), payload.get("type"))
        data = dict(first_present(payload.get("data"), payload.get("booking"), default={}))
        data["reservation_id"] = first_present(data.get("booking_id"), data.get("id"), data.get("reservation_id"))
        data["guest_id"] = first_present(data.get("guest_id"), dig(data, "guest", "id"))
        data["property_id"] = data.get("property_id")
        return event_type, data, first_present(payload.get("timestamp"), payload.get("created_at"))

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None
        guest = data.get("guest") or {}
        name = normalize_guest_name(guest) if guest else normalize_guest_name(data.get("guest_name"))
        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(first_present(data.get("booking_id"), data.get("id"), default="")),
            pms_reservation_id=str(first_present(data.get("id"), default="")),
            status=normalize_reservation_status(data.get("status")),
            guest_profile_id=str(first_present(guest.get("id"), data.get("guest_id"), default="")) or None,
            guest_name=name,
            email=first_present(guest.get("email"), data.get("guest_email"), default=""),
            phone=normalize_phone(first_present(guest.get("phone"), data.get("guest_phone"))),
            address=normalize_address(first_present(guest.get("address"), data.get("guest_address"))),
            check_in_date=normalize_stay_date(first_present(data.get("arrival"), data.get("date_arrival"))),
            check_out_date=normalize_stay_date(first_present(data.get("departure"), data.get("date_departure"))),
            room_number=first_present(data.get("property_name"), data.get("room_name"), default=""),
            room_type=first_present(data.get("property_type"), data.get("room_type"), default=""),
            rate_code=str(first_present(data.get("rate_id"), default="")),
            total_amount=normalize_amount(first_present(data.get("total_amount"), data.get("amount"))),
            currency=normalize_currency(first_present(data.get("currency"), data.get("currency_code"))),
            number_of_guests=normalize_int(first_present(data.get("people"), data.get("guests")), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(data.get("card_type")),
                card_last_four=last_four(data.get("card_last_four")),
                auth_code=data.get("auth_code") or "",
            ),
            booking_source=first_present(data.get("source"), data.get("source_text"), default=""),
            created_at=normalize_date(data.get("created_at")),
            updated_at=normalize_date(data.get("updated_at")),
            special_requests=first_present(data.get("special_requests"), data.get("notes"), default=""),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        items = self._as_list(data, "items", "data", "payments")
        return [
            FolioItem(
                folio_id=str(first_present(item.get("invoice_id"), default="")),
                transaction_id=str(first_present(item.get("id"), item.get("transaction_id"), default="")),
                transaction_code=first_present(item.get("type"), item.get("payment_type"), default=""),
                category=normalize_folio_category(first_present(item.get("type"), item.get("category"))),
                description=first_present(item.get("description"), item.get("name"), default=""),
                amount=normalize_amount(item.get("amount")),
                currency=normalize_currency(first_present(item.get("currency"), item.get("currency_code"))),
                post_date=normalize_date(first_present(item.get("date"), item.get("created_at"))),
                card_last_four=last_four(item.get("card_last_four")),
                auth_code=item.get("auth_code") or "",
                reference=first_present(item.get("reference"), item.get("transaction_ref"), default=""),
                reversal_flag=item.get("is_refund") is True or item.get("type") == "refund",
                quantity=normalize_int(item.get("quantity"), default=1),
            )
            for item in items
        ]

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        return GuestProfile(
            guest_id=str(first_present(data.get("id"), data.get("guest_id"), default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(data),
            email=data.get("email") or "",
            phone=normalize_phone(data.get("phone")),
            address=normalize_address(
                {
                    "line1": first_present(data.get("address"), data.get("street_address1")),
                    "line2": data.get("street_address2"),
                    "city": data.get("city"),
                    "state": data.get("state"),
                    "postal_code": first_present(data.get("postal_code"), data.get("zip")),
                    "country": first_present(data.get("country"), data.get("country_code")),
                }
            ),
            total_stays=normalize_int(first_present(data.get("total_bookings"), data.get("bookings_count")), default=0),
            total_revenue=normalize_amount(data.get("total_spent")),
            last_stay_date=normalize_stay_date(data.get("last_stay")),
            raw=sanitize_pii(dict(data)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        properties = self._as_list(data, "items", "data")
        return [
            RatePlan(
                rate_code=str(first_present(prop.get("id"), default="")),
                pms_source=self.pms_type,
                name=prop.get("name") or "",
                description=first_present(prop.get("description"), prop.get("subtitle"), default=""),
                category=first_present(prop.get("property_type"), prop.get("type"), default=""),
                base_amount=normalize_amount(first_present(prop.get("min_price"), prop.get("base_price"))),
                currency=normalize_currency(first_present(prop.get("currency_code"), prop.get("currency"))),
                room_types=[
                    str(first_present(room.get("name"), room.get("id"), default=""))
                    for room in prop.get("rooms") or []
                    if isinstance(room, Mapping)
                ],
                cancellation_policy=prop.get("cancellation_policy") or "",
            )
            for prop in properties
        ]
