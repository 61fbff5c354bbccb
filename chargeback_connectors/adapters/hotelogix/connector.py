"""
Hotelogix PMS Connector
Cloud PMS for mid-scale hotels; API key plus hotel code headers
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


class HotelogixConnector(BaseConnector):
    """Hotelogix connector implementation"""

    vendor_name = "hotelogix"
    display_name = "Hotelogix"
    auth_type = AuthType.API_KEY
    default_base_url = "https://api.hotelogix.com"
    required_credentials = ("api_key",)
    requests_per_minute = 60
    probe_path = "/api/v2/hotel/info"
    signature_headers = ("x-hotelogix-signature", "x-webhook-signature")

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
        "confirmed": "CONFIRMED",
        "checked_in": "CHECKEDIN",
        "checked_out": "CHECKEDOUT",
        "cancelled": "CANCELLED",
        "no_show": "NOSHOW",
        "pending": "TENTATIVE",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "booking_created",
            "reservation.updated": "booking_modified",
            "reservation.cancelled": "booking_cancelled",
            "guest.checked_in": "guest_checkin",
            "guest.checked_out": "guest_checkout",
            "payment.received": "payment_posted",
            "folio.updated": "folio_updated",
        }
    )

    @property
    def hotel_code(self) -> Optional[str]:
        return self.auth_state.get("hotel_code") or self.property_id

    def _build_auth_strategy(self):
        return ApiKeyAuth(self.auth_state, header_name="X-Api-Key", scheme=None)

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        if self.hotel_code:
            headers["X-Hotel-Code"] = str(self.hotel_code)
        return headers

    async def _probe(self, timeout: Optional[float] = None) -> Any:
        return await self._request(
            "GET", self.probe_path, params=self._scoped(), ensure_auth=False, timeout=timeout
        )

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "hotel_code": self.hotel_code}

    def _scoped(self, **params: Any) -> Dict[str, Any]:
        return self._clean({**params, "hotelCode": self.hotel_code})

    @staticmethod
    def _record_id(result: Any, key: str) -> Any:
        return first_present(dig(result, key), dig(result, "id"))

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(
            "/api/v2/bookings", params=self._scoped(confirmationNo=confirmation_number, limit=1)
        )
        bookings = self._as_list(result, "bookings", "data")
        return self.normalize_reservation(bookings[0]) if bookings else None

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        params = self._scoped(
            confirmationNo=criteria.confirmation_number,
            guestName=criteria.guest_name,
            checkInFrom=criteria.check_in_date,
            checkOutTo=criteria.check_out_date,
            cardLast4=criteria.card_last_four,
            bookingStatus=self.map_status_to_vendor(criteria.status),
            limit=criteria.limit or 50,
            offset=criteria.offset or None,
        )
        result = await self._request("GET", "/api/v2/bookings", params=params)
        return [r for r in map(self.normalize_reservation, self._as_list(result, "bookings", "data")) if r]

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", f"/api/v2/bookings/{reservation_id}/folio", params=self._scoped())
        return self.normalize_folio_items(result)

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._get_optional(f"/api/v2/guests/{guest_id}", params=self._scoped())
        return self.normalize_guest_profile(result)

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        query = params or RateQuery()
        result = await self._request(
            "GET",
            "/api/v2/rates",
            params=self._scoped(
                fromDate=query.start_date,
                toDate=query.end_date,
                roomType=query.room_type,
                rateCode=query.rate_code,
            ),
        )
        return self.normalize_rates(result)

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v2/guests/{guest_id}/notes",
            json={
                "guestId": guest_id,
                "hotelCode": self.hotel_code,
                "noteType": "alert" if alert else "general",
                "subject": title,
                "content": text,
                "priority": "high" if alert else "medium",
                "isInternal": True,
            },
        )
        return self._record_id(result, "noteId")

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v2/bookings/{reservation_id}/notes",
            json={
                "bookingId": reservation_id,
                "hotelCode": self.hotel_code,
                "noteType": "alert" if alert else "info",
                "subject": title,
                "content": text,
                "priority": "high" if alert else "medium",
                "isInternal": True,
            },
        )
        return self._record_id(result, "noteId")

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        message = f"CHARGEBACK ALERT: {flag.reason}"
        if flag.amount is not None:
            message += f" | Amount: {flag.amount}"
        if flag.chargeback_id:
            message += f" | Case: {flag.chargeback_id}"
        result = await self._request(
            "POST",
            f"/api/v2/guests/{guest_id}/alerts",
            json={
                "guestId": guest_id,
                "hotelCode": self.hotel_code,
                "alertType": "chargeback_risk",
                "severity": flag.severity.lower(),
                "subject": f"Chargeback flag: {flag.severity.upper()}",
                "message": message,
                "isActive": True,
            },
        )
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(self._record_id(result, "alertId"))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/api/v2/webhooks",
            json={
                "callbackUrl": callback_url,
                "events": vendor_events,
                "signingSecret": secret,
                "active": True,
                "hotelCode": self.hotel_code,
                "description": "Chargeback defense webhook",
            },
        )
        return self._record_id(result, "webhookId")

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/api/v2/webhooks/{webhook_id}", params=self._scoped())

    def _parse_event(self, payload):
        event_type = first_present(payload.get("eventType"), payload.get("event"), payload.get("type"))
        data = dict(first_present(payload.get("data"), payload.get("payload"), default=payload))
        data["reservation_id"] = first_present(
            data.get("bookingId"), data.get("reservationId"), data.get("confirmationNo")
        )
        data["guest_id"] = first_present(data.get("guestId"), data.get("profileId"))
        data["hotel_code"] = first_present(payload.get("hotelCode"), default=self.hotel_code)
        return event_type, data, first_present(payload.get("timestamp"), payload.get("triggeredAt"))

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None
        guest = first_present(data.get("guest"), data.get("primaryGuest"), default={})
        room = first_present(data.get("room"), data.get("roomAssignment"), default={})
        rate = first_present(data.get("ratePlan"), data.get("rate"), default={})
        payment = first_present(data.get("payment"), data.get("paymentInfo"), default={})
        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(first_present(data.get("confirmationNo"), data.get("bookingNo"), default="")),
            pms_reservation_id=str(first_present(data.get("bookingId"), data.get("id"), default="")),
            status=normalize_reservation_status(first_present(data.get("bookingStatus"), data.get("status"))),
            guest_profile_id=str(first_present(guest.get("guestId"), guest.get("id"), default="")) or None,
            guest_name=normalize_guest_name(
                {
                    "firstName": first_present(guest.get("firstName"), guest.get("givenName")),
                    "lastName": first_present(guest.get("lastName"), guest.get("surName")),
                }
            ),
            email=first_present(guest.get("email"), guest.get("emailAddress"), default=""),
            phone=normalize_phone(first_present(guest.get("phone"), guest.get("mobile"))),
            address=normalize_address(guest.get("address")),
            check_in_date=normalize_stay_date(first_present(data.get("checkInDate"), data.get("arrivalDate"))),
            check_out_date=normalize_stay_date(first_present(data.get("checkOutDate"), data.get("departureDate"))),
            room_number=str(first_present(room.get("roomNo"), room.get("roomNumber"), default="")),
            room_type=first_present(room.get("roomType"), room.get("roomTypeName"), default=""),
            rate_code=first_present(rate.get("rateCode"), rate.get("ratePlanCode"), default=""),
            total_amount=normalize_amount(first_present(data.get("totalAmount"), data.get("totalCharges"))),
            currency=normalize_currency(first_present(data.get("currencyCode"), data.get("currency"))),
            number_of_guests=normalize_int(first_present(data.get("numberOfGuests"), data.get("pax")), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(first_present(payment.get("cardType"), payment.get("brand"))),
                card_last_four=last_four(first_present(payment.get("cardLast4"), payment.get("last4"))),
                auth_code=first_present(payment.get("authCode"), payment.get("authorizationCode"), default=""),
            ),
            booking_source=first_present(
                data.get("source"), data.get("channel"), data.get("bookingSource"), default=""
            ),
            created_at=normalize_date(first_present(data.get("createdOn"), data.get("createDate"))),
            updated_at=normalize_date(first_present(data.get("modifiedOn"), data.get("updateDate"))),
            special_requests=first_present(data.get("specialRequests"), data.get("guestRemarks"), default=""),
            loyalty_number=first_present(data.get("loyaltyNo"), data.get("membershipId")),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        items = []
        for folio in self._as_list(data, "folios", "folioList", "data"):
            folio_id = str(first_present(folio.get("folioId"), folio.get("id"), default=""))
            window = normalize_int(first_present(folio.get("windowNo"), folio.get("windowNumber")), default=1)
            charges = first_present(folio.get("charges"), folio.get("lineItems"), folio.get("transactions"), default=[])
            for charge in charges:
                items.append(
                    FolioItem(
                        folio_id=folio_id,
                        window_number=window,
                        transaction_id=str(first_present(charge.get("transactionId"), charge.get("id"), default="")),
                        transaction_code=first_present(
                            charge.get("chargeCode"), charge.get("transactionCode"), default=""
                        ),
                        category=normalize_folio_category(
                            first_present(charge.get("category"), charge.get("chargeCategory"), charge.get("chargeCode"))
                        ),
                        description=first_present(charge.get("description"), charge.get("chargeName"), default=""),
                        amount=normalize_amount(first_present(charge.get("amount"), charge.get("netAmount"))),
                        currency=normalize_currency(charge.get("currencyCode")),
                        post_date=normalize_date(first_present(charge.get("postDate"), charge.get("chargeDate"))),
                        card_last_four=last_four(charge.get("cardLast4")),
                        auth_code=charge.get("authCode") or "",
                        reference=first_present(charge.get("reference"), charge.get("receiptNo"), default=""),
                        reversal_flag=charge.get("isReversal") is True or charge.get("reversed") is True,
                        quantity=normalize_int(charge.get("quantity"), default=1),
                    )
                )
        return items

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        profile = first_present(data.get("guest"), data.get("profile"), default=data)
        return GuestProfile(
            guest_id=str(first_present(profile.get("guestId"), profile.get("id"), default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(profile),
            email=first_present(profile.get("email"), profile.get("emailAddress"), default=""),
            phone=normalize_phone(first_present(profile.get("phone"), profile.get("mobile"))),
            address=normalize_address(profile.get("address")),
            loyalty_number=first_present(profile.get("loyaltyNo"), profile.get("membershipId")),
            loyalty_level=first_present(profile.get("loyaltyLevel"), profile.get("membershipTier")),
            vip_status=first_present(profile.get("vipCode"), profile.get("vipStatus")),
            total_stays=normalize_int(first_present(profile.get("totalStays"), profile.get("stayCount")), default=0),
            total_revenue=normalize_amount(first_present(profile.get("totalRevenue"), profile.get("lifetimeValue"))),
            last_stay_date=normalize_stay_date(first_present(profile.get("lastStayDate"), profile.get("lastVisit"))),
            raw=sanitize_pii(dict(profile)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        return [
            RatePlan(
                rate_code=first_present(rate.get("rateCode"), rate.get("ratePlanCode"), default=""),
                pms_source=self.pms_type,
                name=first_present(rate.get("ratePlanName"), rate.get("name"), default=""),
                description=first_present(rate.get("description"), rate.get("longDescription"), default=""),
                category=first_present(rate.get("category"), rate.get("rateCategory"), default=""),
                base_amount=normalize_amount(first_present(rate.get("baseRate"), rate.get("amount"))),
                currency=normalize_currency(rate.get("currencyCode")),
                valid_from=normalize_stay_date(first_present(rate.get("startDate"), rate.get("validFrom"))),
                valid_to=normalize_stay_date(first_present(rate.get("endDate"), rate.get("validTo"))),
                room_types=list(first_present(rate.get("roomTypes"), rate.get("applicableRoomTypes"), default=[])),
                cancellation_policy=rate.get("cancellationPolicy") or "",
            )
            for rate in self._as_list(data, "ratePlans", "rates")
            if rate.get("isActive") is not False and rate.get("status") != "inactive"
        ]
