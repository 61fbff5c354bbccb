"""
protel PMS Connector
HTTP Basic auth with an optional API key; PascalCase payloads, some German field names
"""

from typing import Any, Dict, List, Mapping, Optional

from ...auth import AuthType, BasicAuth
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
    pick,
    sanitize_pii,
)
from ...utils.logging import log_performance
from ...webhooks import EventNameMap


class ProtelConnector(BaseConnector):
    """protel connector implementation"""

    vendor_name = "protel"
    display_name = "protel PMS"
    auth_type = AuthType.BASIC
    default_base_url = "https://api.protel.net"
    required_credentials = ("username", "password")
    requests_per_minute = 60
    probe_path = "/api/v1/hotel/info"
    signature_headers = ("x-protel-signature", "x-webhook-signature")

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
        "confirmed": "DEFINITE",
        "checked_in": "INHOUSE",
        "checked_out": "DEPARTED",
        "cancelled": "CANCELLED",
        "no_show": "NOSHOW",
        "pending": "TENTATIVE",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "ReservationCreated",
            "reservation.updated": "ReservationModified",
            "reservation.cancelled": "ReservationCancelled",
            "guest.checked_in": "GuestCheckIn",
            "guest.checked_out": "GuestCheckOut",
            "payment.received": "PaymentPosted",
            "folio.updated": "FolioUpdated",
        }
    )

    @property
    def hotel_code(self) -> Optional[str]:
        return self.auth_state.get("hotel_code") or self.property_id

    def _build_auth_strategy(self):
        return BasicAuth(self.auth_state)

    def _default_headers(self) -> Dict[str, str]:
        # read at client build time, so a rotated api key lands on refresh_auth()
        headers = super()._default_headers()
        if self.hotel_code:
            headers["X-Hotel-Code"] = str(self.hotel_code)
        if self.auth_state.get("api_key"):
            headers["X-Api-Key"] = str(self.auth_state.get("api_key"))
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
    def _record_id(result: Any, *keys: str) -> Any:
        return pick(result, *keys, "Id", "id")

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(
            "/api/v1/reservations", params=self._scoped(confirmationNumber=confirmation_number, maxResults=1)
        )
        reservations = self._as_list(result, "Reservations", "reservations", "data")
        return self.normalize_reservation(reservations[0]) if reservations else None

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        params = self._scoped(
            confirmationNumber=criteria.confirmation_number,
            guestName=criteria.guest_name,
            arrivalDate=criteria.check_in_date,
            departureDate=criteria.check_out_date,
            cardLast4=criteria.card_last_four,
            status=self.map_status_to_vendor(criteria.status),
            maxResults=criteria.limit or 50,
            startIndex=criteria.offset or None,
        )
        result = await self._request("GET", "/api/v1/reservations", params=params)
        return [
            r
            for r in map(self.normalize_reservation, self._as_list(result, "Reservations", "reservations", "data"))
            if r
        ]

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", f"/api/v1/reservations/{reservation_id}/folios", params=self._scoped())
        return self.normalize_folio_items(result)

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._get_optional(f"/api/v1/guests/{guest_id}", params=self._scoped())
        return self.normalize_guest_profile(result)

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        query = params or RateQuery()
        result = await self._request(
            "GET",
            "/api/v1/rates",
            params=self._scoped(
                startDate=query.start_date,
                endDate=query.end_date,
                roomType=query.room_type,
                rateCode=query.rate_code,
            ),
        )
        return self.normalize_rates(result)

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v1/guests/{guest_id}/notes",
            json={
                "GuestId": guest_id,
                "HotelCode": self.hotel_code,
                "NoteType": "ALERT" if alert else "GENERAL",
                "Subject": title,
                "Text": text,
                "Priority": "HIGH" if alert else "MEDIUM",
                "IsInternal": True,
            },
        )
        return self._record_id(result, "NoteId", "noteId")

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v1/reservations/{reservation_id}/notes",
            json={
                "ReservationId": reservation_id,
                "HotelCode": self.hotel_code,
                "NoteType": "ALERT" if alert else "INFO",
                "Subject": title,
                "Text": text,
                "Priority": "HIGH" if alert else "MEDIUM",
                "IsInternal": True,
            },
        )
        return self._record_id(result, "NoteId", "noteId")

    async def push_flag(self, guest_id: str, flag: GuestFlag) -> PushAck:
        severity = flag.severity.upper()
        message = f"CHARGEBACK ALERT: {flag.reason}"
        if flag.amount is not None:
            message += f" | Amount: {flag.amount}"
        if flag.chargeback_id:
            message += f" | Case: {flag.chargeback_id}"
        result = await self._request(
            "POST",
            f"/api/v1/guests/{guest_id}/alerts",
            json={
                "GuestId": guest_id,
                "HotelCode": self.hotel_code,
                "AlertType": "CHARGEBACK_RISK",
                "Severity": severity,
                "Subject": f"Chargeback flag: {severity}",
                "Message": message,
                "IsActive": True,
            },
        )
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(self._record_id(result, "AlertId", "alertId"))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/api/v1/webhooks",
            json={
                "CallbackUrl": callback_url,
                "Events": vendor_events,
                "SigningSecret": secret,
                "Active": True,
                "HotelCode": self.hotel_code,
                "Description": "Chargeback defense webhook",
            },
        )
        return self._record_id(result, "WebhookId", "webhookId")

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/api/v1/webhooks/{webhook_id}", params=self._scoped())

    def _parse_event(self, payload):
        event_type = pick(payload, "EventType", "eventType", "event")
        data = dict(pick(payload, "Data", "data", default=payload))
        data["reservation_id"] = pick(data, "ReservationId", "reservationId", "ConfirmationNumber")
        data["guest_id"] = pick(data, "GuestId", "guestId", "ProfileId")
        data["hotel_code"] = pick(payload, "HotelCode", "hotelCode", default=self.hotel_code)
        return event_type, data, pick(payload, "Timestamp", "timestamp")

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None
        guest = pick(data, "Guest", "guest", "PrimaryGuest", default={})
        room = pick(data, "Room", "room", "RoomAssignment", default={})
        rate = pick(data, "RatePlan", "ratePlan", default={})
        payment = pick(data, "Payment", "payment", default={})
        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(pick(data, "ConfirmationNumber", "confirmationNumber", default="")),
            pms_reservation_id=str(pick(data, "ReservationId", "reservationId", "Id", default="")),
            status=normalize_reservation_status(pick(data, "Status", "status", "ReservationStatus")),
            guest_profile_id=str(pick(guest, "GuestId", "guestId", "ProfileId", default="")) or None,
            guest_name=normalize_guest_name(
                {
                    "firstName": pick(guest, "FirstName", "firstName", "Vorname"),
                    "lastName": pick(guest, "LastName", "lastName", "Nachname"),
                }
            ),
            email=pick(guest, "Email", "email", default=""),
            phone=normalize_phone(pick(guest, "Phone", "phone", "Telefon")),
            address=normalize_address(pick(guest, "Address", "address", "Adresse")),
            check_in_date=normalize_stay_date(pick(data, "ArrivalDate", "arrivalDate", "Anreise")),
            check_out_date=normalize_stay_date(pick(data, "DepartureDate", "departureDate", "Abreise")),
            room_number=str(pick(room, "RoomNumber", "roomNumber", "Zimmernummer", default="")),
            room_type=pick(room, "RoomType", "roomType", "Zimmertyp", default=""),
            rate_code=pick(rate, "RateCode", "rateCode", "Ratencode", default=""),
            total_amount=normalize_amount(pick(data, "TotalAmount", "totalAmount", "Gesamtbetrag")),
            currency=normalize_currency(pick(data, "CurrencyCode", "currencyCode", "Waehrung")),
            number_of_guests=normalize_int(pick(data, "NumberOfGuests", "numberOfGuests", "Gaestezahl"), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(pick(payment, "CardType", "cardType", "Kartentyp")),
                card_last_four=last_four(pick(payment, "CardLast4", "cardLast4", "KartenNr4")),
                auth_code=pick(payment, "AuthCode", "authCode", "Autorisierungscode", default=""),
            ),
            booking_source=pick(data, "Source", "source", "Buchungsquelle", default=""),
            created_at=normalize_date(pick(data, "CreatedDate", "createdDate", "Erstellungsdatum")),
            updated_at=normalize_date(pick(data, "ModifiedDate", "modifiedDate", "Aenderungsdatum")),
            special_requests=pick(data, "SpecialRequests", "specialRequests", "Sonderwuensche", default=""),
            loyalty_number=pick(data, "LoyaltyNumber", "loyaltyNumber"),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        items = []
        for folio in self._as_list(data, "Folios", "folios", "data"):
            folio_id = str(pick(folio, "FolioId", "folioId", "Id", default=""))
            window = normalize_int(pick(folio, "WindowNumber", "windowNumber", "FensterNr"), default=1)
            for posting in pick(folio, "Postings", "postings", "Buchungen", default=[]):
                items.append(
                    FolioItem(
                        folio_id=folio_id,
                        window_number=window,
                        transaction_id=str(pick(posting, "TransactionId", "transactionId", "BuchungsId", default="")),
                        transaction_code=pick(posting, "TransactionCode", "transactionCode", "Buchungscode", default=""),
                        category=normalize_folio_category(
                            pick(posting, "Category", "category", "Kategorie", "TransactionCode")
                        ),
                        description=pick(posting, "Description", "description", "Bezeichnung", default=""),
                        amount=normalize_amount(pick(posting, "Amount", "amount", "Betrag")),
                        currency=normalize_currency(pick(posting, "CurrencyCode", "currencyCode", "Waehrung")),
                        post_date=normalize_date(pick(posting, "PostDate", "postDate", "Buchungsdatum")),
                        card_last_four=last_four(pick(posting, "CardLast4", "cardLast4")),
                        auth_code=pick(posting, "AuthCode", "authCode", default=""),
                        reference=pick(posting, "Reference", "reference", "Referenz", default=""),
                        reversal_flag=any(posting.get(k) is True for k in ("IsReversal", "isReversal", "Storno")),
                        quantity=normalize_int(pick(posting, "Quantity", "quantity", "Menge"), default=1),
                    )
                )
        return items

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        profile = pick(data, "Guest", "guest", "Profile", default=data)
        return GuestProfile(
            guest_id=str(pick(profile, "GuestId", "guestId", "Id", default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(
                {
                    "firstName": pick(profile, "FirstName", "firstName", "Vorname"),
                    "lastName": pick(profile, "LastName", "lastName", "Nachname"),
                }
            ),
            email=pick(profile, "Email", "email", default=""),
            phone=normalize_phone(pick(profile, "Phone", "phone", "Telefon")),
            address=normalize_address(pick(profile, "Address", "address", "Adresse")),
            loyalty_number=pick(profile, "LoyaltyNumber", "loyaltyNumber"),
            loyalty_level=pick(profile, "LoyaltyLevel", "loyaltyLevel"),
            vip_status=pick(profile, "VipCode", "vipCode", "VipStatus"),
            total_stays=normalize_int(pick(profile, "TotalStays", "totalStays", "AnzahlAufenthalte"), default=0),
            total_revenue=normalize_amount(pick(profile, "TotalRevenue", "totalRevenue", "Gesamtumsatz")),
            last_stay_date=normalize_stay_date(pick(profile, "LastStayDate", "lastStayDate", "LetzterAufenthalt")),
            raw=sanitize_pii(dict(profile)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        plans = []
        for rate in self._as_list(data, "RatePlans", "ratePlans", "data"):
            if rate.get("Active") is False or rate.get("active") is False:
                continue
            if pick(rate, "Status", "status") == "INACTIVE":
                continue
            plans.append(
                RatePlan(
                    rate_code=pick(rate, "RateCode", "rateCode", "Ratencode", default=""),
                    pms_source=self.pms_type,
                    name=pick(rate, "RatePlanName", "name", "Bezeichnung", default=""),
                    description=pick(rate, "Description", "description", "Beschreibung", default=""),
                    category=pick(rate, "Category", "category", "Kategorie", default=""),
                    base_amount=normalize_amount(pick(rate, "BaseAmount", "baseAmount", "Grundpreis")),
                    currency=normalize_currency(pick(rate, "CurrencyCode", "currencyCode", "Waehrung")),
                    valid_from=normalize_stay_date(pick(rate, "StartDate", "startDate", "GueltigVon")),
                    valid_to=normalize_stay_date(pick(rate, "EndDate", "endDate", "GueltigBis")),
                    room_types=list(pick(rate, "RoomTypes", "roomTypes", "Zimmertypen", default=[])),
                    cancellation_policy=pick(
                        rate, "CancellationPolicy", "cancellationPolicy", "Stornobedingungen", default=""
                    ),
                )
            )
        return plans
