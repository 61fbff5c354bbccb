"""
Hostaway PMS Connector
Vacation-rental REST API; Bearer API key, responses wrapped in ``result``
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


class HostawayConnector(BaseConnector):
    """Hostaway connector implementation"""

    vendor_name = "hostaway"
    display_name = "Hostaway"
    auth_type = AuthType.API_KEY
    default_base_url = "https://api.hostaway.com/v1"
    required_credentials = ("api_key",)
    requests_per_minute = 100
    probe_path = "/me"
    signature_headers = ("x-hostaway-signature", "x-webhook-signature")

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
        "confirmed": "confirmed",
        "checked_in": "checkedIn",
        "checked_out": "checkedOut",
        "cancelled": "cancelled",
        "no_show": "noShow",
        "pending": "inquiry",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "reservationCreated",
            "reservation.updated": "reservationUpdated",
            "reservation.cancelled": "reservationCancelled",
            "guest.checked_in": "reservationCheckedIn",
            "guest.checked_out": "reservationCheckedOut",
            "payment.received": "paymentReceived",
            "folio.updated": "financialsUpdated",
        }
    )

    def __init__(self, config: Dict[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        self.account_id = self.auth_state.get("account_id")

    def _build_auth_strategy(self):
        return ApiKeyAuth(self.auth_state)

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "account_id": self.account_id}

    @staticmethod
    def _record_id(result: Any) -> Any:
        return first_present(dig(result, "result", "id"), dig(result, "id"), dig(result, "data", "id"))

    # Reservation Operations

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(f"/reservations/{confirmation_number}")
        return self.normalize_reservation(self._unwrap(result, "result", "data"))

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        params = self._clean(
            {
                "hostawayReservationId": criteria.confirmation_number,
                "guestName": criteria.guest_name,
                "arrivalStartDate": criteria.check_in_date,
                "departureEndDate": criteria.check_out_date,
                "cardLastFour": criteria.card_last_four,
                "status": self.map_status_to_vendor(criteria.status),
            }
        )
        params.update(limit=criteria.limit or 50, offset=criteria.offset or 0)
        result = await self._request("GET", "/reservations", params=params)
        return [r for r in map(self.normalize_reservation, self._as_list(result, "result", "data")) if r]

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", f"/reservations/{reservation_id}/financials")
        return self.normalize_folio_items(result)

    # Guest Operations

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._get_optional(f"/guests/{guest_id}")
        return self.normalize_guest_profile(self._unwrap(result, "result", "data"))

    # Rate Operations

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        query = params or RateQuery()
        result = await self._request(
            "GET",
            "/listings",
            params=self._clean({"startDate": query.start_date, "endDate": query.end_date, "id": query.rate_code}),
        )
        return self.normalize_rates(result)

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/guests/{guest_id}/notes",
            json={
                "title": title,
                "body": text,
                "priority": "high" if alert else "medium",
                "type": "chargeback",
                "isInternal": True,
            },
        )
        return self._record_id(result)

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/reservations/{reservation_id}/notes",
            json={
                "title": title,
                "body": text,
                "priority": "high" if alert else "medium",
                "type": "chargeback_alert" if alert else "dispute_outcome",
                "isInternal": True,
            },
        )
        return self._record_id(result)

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        # Hostaway has first-class guest flags
        result = await self._request(
            "POST",
            f"/guests/{guest_id}/flags",
            json={
                "reason": flag.reason,
                "severity": flag.severity,
                "flagType": "chargeback_risk",
                "chargebackId": flag.chargeback_id,
                "amount": str(flag.amount) if flag.amount is not None else None,
                "isActive": True,
            },
        )
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(self._record_id(result))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/webhooks",
            json={
                "url": callback_url,
                "events": vendor_events,
                "secret": secret,
                "isActive": True,
                "name": "Chargeback Defense Integration",
            },
        )
        return self._record_id(result)

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/webhooks/{webhook_id}")

    def _parse_event(self, payload):
        event_type = first_present(payload.get("event"), payload.get("eventType"), payload.get("type"))
        data = dict(first_present(payload.get("data"), payload.get("reservation"), default={}))
        data["reservation_id"] = first_present(data.get("id"), data.get("hostawayReservationId"), data.get("reservationId"))
        data["guest_id"] = first_present(data.get("guestId"), dig(data, "guest", "id"))
        data["listing_id"] = first_present(data.get("listingMapId"), data.get("listingId"))
        return event_type, data, first_present(payload.get("timestamp"), payload.get("createdAt"))

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None
        guest = data.get("guest") or {}

        def pick(flat: str, nested: str) -> Any:
            return first_present(data.get(flat), guest.get(nested))

        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(
                first_present(data.get("hostawayReservationId"), data.get("channelReservationId"), data.get("id"), default="")
            ),
            pms_reservation_id=str(first_present(data.get("id"), data.get("hostawayReservationId"), default="")),
            status=normalize_reservation_status(data.get("status")),
            guest_profile_id=str(first_present(data.get("guestId"), guest.get("id"), default="")) or None,
            guest_name=normalize_guest_name(
                {
                    "firstName": pick("guestFirstName", "firstName"),
                    "lastName": pick("guestLastName", "lastName"),
                    "name": data.get("guestName"),
                }
            ),
            email=pick("guestEmail", "email") or "",
            phone=normalize_phone(pick("guestPhone", "phone")),
            address=normalize_address(
                {
                    "line1": pick("guestAddress", "address"),
                    "city": pick("guestCity", "city"),
                    "state": pick("guestState", "state"),
                    "postalCode": pick("guestZipCode", "zipCode"),
                    "country": pick("guestCountry", "country"),
                }
            ),
            check_in_date=normalize_stay_date(first_present(data.get("arrivalDate"), data.get("checkInDate"))),
            check_out_date=normalize_stay_date(first_present(data.get("departureDate"), data.get("checkOutDate"))),
            room_number=str(first_present(data.get("listingName"), data.get("listingMapId"), default="")),
            room_type=first_present(data.get("listingType"), data.get("propertyType"), default=""),
            total_amount=normalize_amount(first_present(data.get("totalPrice"), data.get("hostPayout"))),
            currency=normalize_currency(first_present(data.get("currency"), data.get("listingCurrency"))),
            number_of_guests=normalize_int(first_present(data.get("numberOfGuests"), data.get("guestsCount")), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(data.get("paymentMethod")),
                card_last_four=last_four(data.get("cardLastFour")),
                auth_code=data.get("authorizationCode") or "",
            ),
            booking_source=first_present(data.get("channelName"), data.get("source"), default=""),
            created_at=normalize_date(first_present(data.get("insertedOn"), data.get("createdAt"))),
            updated_at=normalize_date(first_present(data.get("updatedOn"), data.get("updatedAt"))),
            special_requests=first_present(
                data.get("guestNote"), data.get("specialRequests"), data.get("comment"), default=""
            ),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        financials = self._unwrap(data, "result", "data")
        items = financials if isinstance(financials, list) else self._as_list(
            financials, "items", "charges", "transactions"
        )
        return [
            FolioItem(
                folio_id=str(first_present(item.get("invoiceId"), item.get("folioId"), default="")),
                transaction_id=str(first_present(item.get("id"), item.get("transactionId"), default="")),
                transaction_code=first_present(item.get("type"), item.get("code"), default=""),
                category=normalize_folio_category(
                    first_present(item.get("type"), item.get("category"), item.get("description"))
                ),
                description=first_present(item.get("description"), item.get("title"), item.get("name"), default=""),
                amount=normalize_amount(first_present(item.get("amount"), item.get("total"))),
                currency=normalize_currency(item.get("currency")),
                post_date=normalize_date(first_present(item.get("date"), item.get("createdAt"), item.get("postedDate"))),
                card_last_four=last_four(first_present(item.get("cardLastFour"), item.get("last4"))),
                auth_code=item.get("authCode") or "",
                reference=first_present(item.get("reference"), item.get("transactionRef"), default=""),
                reversal_flag=item.get("isRefund") is True or item.get("type") == "refund" or item.get("voided") is True,
                quantity=normalize_int(item.get("quantity"), default=1),
            )
            for item in items
        ]

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        return GuestProfile(
            guest_id=str(first_present(data.get("id"), data.get("guestId"), default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(data),
            email=data.get("email") or "",
            phone=normalize_phone(first_present(data.get("phone"), data.get("phoneNumber"))),
            address=normalize_address(
                {
                    "line1": first_present(data.get("address"), data.get("street")),
                    "city": data.get("city"),
                    "state": data.get("state"),
                    "postalCode": first_present(data.get("zipCode"), data.get("postalCode")),
                    "country": first_present(data.get("country"), data.get("countryCode")),
                }
            ),
            total_stays=normalize_int(first_present(data.get("reservationCount"), data.get("totalStays")), default=0),
            total_revenue=normalize_amount(first_present(data.get("totalRevenue"), data.get("lifetimeSpend"))),
            last_stay_date=normalize_stay_date(first_present(data.get("lastDepartureDate"), data.get("lastStay"))),
            raw=sanitize_pii(dict(data)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        listings = self._as_list(data, "result", "data")
        return [
            RatePlan(
                rate_code=str(first_present(listing.get("id"), listing.get("listingMapId"), default="")),
                pms_source=self.pms_type,
                name=first_present(listing.get("name"), listing.get("internalName"), default=""),
                description=first_present(listing.get("description"), listing.get("publicDescription"), default=""),
                category=first_present(listing.get("propertyType"), listing.get("type"), default=""),
                base_amount=normalize_amount(first_present(listing.get("basePrice"), listing.get("price"))),
                currency=normalize_currency(first_present(listing.get("currency"), listing.get("currencyCode"))),
                room_types=[t for t in [first_present(listing.get("propertyType"), listing.get("type"))] if t],
                cancellation_policy=listing.get("cancellationPolicy") or "",
            )
            for listing in listings
        ]
