"""
StayNTouch PMS Connector
Mobile-first cloud PMS; OAuth2 client credentials, snake_case payloads
"""

from typing import Any, Dict, List, Mapping, Optional

from ...auth import AuthType, OAuth2ClientCredentialsAuth
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
    ReservationDocument,
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

TOKEN_URL = "https://auth.stayntouch.com/oauth/token"


class StayNTouchConnector(BaseConnector):
    """StayNTouch connector implementation"""

    vendor_name = "stayntouch"
    display_name = "StayNTouch"
    auth_type = AuthType.OAUTH2
    default_base_url = "https://api.stayntouch.com"
    required_credentials = ("client_id", "client_secret")
    requests_per_minute = 60
    probe_path = "/api/v2/hotels/current"
    signature_headers = ("x-stayntouch-signature", "x-webhook-signature")

    capabilities = {
        Capabilities.RESERVATIONS.value: True,
        Capabilities.FOLIOS.value: True,
        Capabilities.PROFILES.value: True,
        Capabilities.RATES.value: True,
        Capabilities.NOTES.value: True,
        Capabilities.FLAGS.value: True,
        Capabilities.WEBHOOKS.value: True,
        Capabilities.DOCUMENTS.value: True,
    }

    # StayNTouch already speaks the canonical vocabulary
    status_map = {
        "confirmed": "confirmed",
        "checked_in": "checked_in",
        "checked_out": "checked_out",
        "cancelled": "cancelled",
        "no_show": "no_show",
        "pending": "pending",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "reservation.created",
            "reservation.updated": "reservation.updated",
            "reservation.cancelled": "reservation.cancelled",
            "guest.checked_in": "guest.checked_in",
            "guest.checked_out": "guest.checked_out",
            "payment.received": "payment.posted",
            "folio.updated": "folio.updated",
        }
    )

    @property
    def hotel_id(self) -> Optional[str]:
        return self.auth_state.get("hotel_id") or self.property_id

    def _build_auth_strategy(self):
        return OAuth2ClientCredentialsAuth(
            self.auth_state,
            self.auth_state.get("token_url") or TOKEN_URL,
            scope=self.auth_state.get("scope"),
            buffer_seconds=self.settings.token_refresh_buffer_seconds,
            timeout=self.settings.auth_timeout,
        )

    async def _probe(self, timeout: Optional[float] = None) -> Any:
        return await self._request("GET", self.probe_path, params=self._scoped(), ensure_auth=False, timeout=timeout)

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "hotel_id": self.hotel_id}

    def _scoped(self, **params: Any) -> Dict[str, Any]:
        return self._clean({**params, "hotel_id": self.hotel_id})

    @staticmethod
    def _record_id(result: Any, key: str) -> Any:
        return pick(result, key, "id")

    # Reservation Operations

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(
            "/api/v2/reservations", params=self._scoped(confirmation_number=confirmation_number, limit=1)
        )
        reservations = self._as_list(result, "reservations", "data", "results")
        return self.normalize_reservation(reservations[0]) if reservations else None

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        params = self._scoped(
            confirmation_number=criteria.confirmation_number,
            guest_name=criteria.guest_name,
            arrival_date=criteria.check_in_date,
            departure_date=criteria.check_out_date,
            card_last_four=criteria.card_last_four,
            status=self.map_status_to_vendor(criteria.status),
            limit=criteria.limit or 50,
            offset=criteria.offset or None,
        )
        result = await self._request("GET", "/api/v2/reservations", params=params)
        return [
            r for r in map(self.normalize_reservation, self._as_list(result, "reservations", "data", "results")) if r
        ]

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", f"/api/v2/reservations/{reservation_id}/folios", params=self._scoped())
        return self.normalize_folio_items(result)

    async def get_reservation_documents(self, reservation_id: str) -> List[ReservationDocument]:
        result = await self._get_optional(
            f"/api/v2/reservations/{reservation_id}/documents", params=self._scoped()
        )
        documents = []
        for doc in self._as_list(result, "documents", "data"):
            doc_id = str(pick(doc, "document_id", "id", default=""))
            documents.append(
                ReservationDocument(
                    document_id=doc_id,
                    document_type=pick(doc, "document_type", "type", default="other"),
                    file_name=pick(doc, "file_name", "name", default=f"document_{doc_id}"),
                    content_type=pick(doc, "content_type", "mime_type", default="application/octet-stream"),
                    url=pick(doc, "url", "download_url"),
                    created_at=normalize_date(pick(doc, "created_at", "uploaded_at")),
                )
            )
        return documents

    # Guest Operations

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
                start_date=query.start_date,
                end_date=query.end_date,
                room_type=query.room_type,
                rate_code=query.rate_code,
            ),
        )
        return self.normalize_rates(result)

    # Write-back

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v2/guests/{guest_id}/notes",
            json={
                "guest_id": guest_id,
                "hotel_id": self.hotel_id,
                "note_type": "alert" if alert else "general",
                "title": title,
                "body": text,
                "priority": "high" if alert else "medium",
                "is_internal": True,
            },
        )
        return self._record_id(result, "note_id")

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST",
            f"/api/v2/reservations/{reservation_id}/notes",
            json={
                "reservation_id": reservation_id,
                "hotel_id": self.hotel_id,
                "note_type": "alert" if alert else "info",
                "title": title,
                "body": text,
                "priority": "high" if alert else "medium",
                "is_internal": True,
            },
        )
        return self._record_id(result, "note_id")

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
                "guest_id": guest_id,
                "hotel_id": self.hotel_id,
                "alert_type": "chargeback_risk",
                "severity": flag.severity.lower(),
                "title": f"Chargeback flag: {flag.severity.upper()}",
                "message": message,
                "is_active": True,
            },
        )
        self.logger.info("Guest flag pushed", guest_id=guest_id, severity=flag.severity)
        return self._ack(self._record_id(result, "alert_id"))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/api/v2/webhooks",
            json={
                "callback_url": callback_url,
                "events": vendor_events,
                "signing_secret": secret,
                "active": True,
                "hotel_id": self.hotel_id,
                "description": "Chargeback defense webhook",
            },
        )
        return self._record_id(result, "webhook_id")

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/api/v2/webhooks/{webhook_id}", params=self._scoped())

    def _parse_event(self, payload):
        event_type = pick(payload, "event_type", "event", "type")
        data = dict(pick(payload, "data", "payload", default=payload))
        data["reservation_id"] = pick(data, "reservation_id", "confirmation_number")
        data["guest_id"] = pick(data, "guest_id", "profile_id")
        data["hotel_id"] = pick(payload, "hotel_id", default=self.hotel_id)
        return event_type, data, pick(payload, "timestamp", "occurred_at")

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None
        guest = pick(data, "guest", "primary_guest", default={})
        room = pick(data, "room", "room_assignment", default={})
        rate = pick(data, "rate_plan", "rate", default={})
        payment = pick(data, "payment", "payment_method", default={})
        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(pick(data, "confirmation_number", "confirm_no", default="")),
            pms_reservation_id=str(pick(data, "reservation_id", "id", default="")),
            status=normalize_reservation_status(pick(data, "status", "reservation_status")),
            guest_profile_id=str(pick(guest, "guest_id", "id", default="")) or None,
            guest_name=normalize_guest_name(guest),
            email=pick(guest, "email", default=""),
            phone=normalize_phone(pick(guest, "phone", "mobile")),
            address=normalize_address(guest.get("address")),
            check_in_date=normalize_stay_date(pick(data, "arrival_date", "check_in_date")),
            check_out_date=normalize_stay_date(pick(data, "departure_date", "check_out_date")),
            room_number=str(pick(room, "room_number", "number", default="")),
            room_type=pick(room, "room_type", "room_type_code", default=""),
            rate_code=pick(rate, "rate_code", "rate_plan_code", default=""),
            total_amount=normalize_amount(pick(data, "total_amount", "total_charges")),
            currency=normalize_currency(pick(data, "currency_code", "currency")),
            number_of_guests=normalize_int(pick(data, "number_of_guests", "guest_count"), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(pick(payment, "card_type", "brand")),
                card_last_four=last_four(pick(payment, "card_last_four", "last_4")),
                auth_code=pick(payment, "auth_code", "authorization_code", default=""),
            ),
            booking_source=pick(data, "source", "booking_source", default=""),
            created_at=normalize_date(pick(data, "created_at", "create_date")),
            updated_at=normalize_date(pick(data, "updated_at", "modify_date")),
            special_requests=pick(data, "special_requests", "guest_comments", default=""),
            loyalty_number=pick(data, "loyalty_number", "membership_id"),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        items = []
        for folio in self._as_list(data, "folios", "folio_list"):
            folio_id = str(pick(folio, "folio_id", "id", default=""))
            window = normalize_int(pick(folio, "window_number"), default=1)
            for charge in pick(folio, "charges", "line_items", "transactions", default=[]):
                items.append(
                    FolioItem(
                        folio_id=folio_id,
                        window_number=window,
                        transaction_id=str(pick(charge, "transaction_id", "id", default="")),
                        transaction_code=pick(charge, "transaction_code", "charge_code", default=""),
                        category=normalize_folio_category(
                            pick(charge, "category", "revenue_group", "transaction_code")
                        ),
                        description=pick(charge, "description", "item_description", default=""),
                        amount=normalize_amount(pick(charge, "amount", "net_amount")),
                        currency=normalize_currency(charge.get("currency_code")),
                        post_date=normalize_date(pick(charge, "post_date", "transaction_date")),
                        card_last_four=last_four(charge.get("card_last_four")),
                        auth_code=charge.get("auth_code") or "",
                        reference=charge.get("reference") or "",
                        reversal_flag=charge.get("is_reversal") is True or charge.get("reversed") is True,
                        quantity=normalize_int(charge.get("quantity"), default=1),
                    )
                )
        return items

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        profile = pick(data, "guest", "profile", default=data)
        return GuestProfile(
            guest_id=str(pick(profile, "guest_id", "id", default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(profile),
            email=profile.get("email") or "",
            phone=normalize_phone(pick(profile, "phone", "mobile")),
            address=normalize_address(profile.get("address")),
            loyalty_number=pick(profile, "loyalty_number", "membership_id"),
            loyalty_level=pick(profile, "loyalty_level", "membership_tier"),
            vip_status=pick(profile, "vip_code", "vip_status"),
            total_stays=normalize_int(pick(profile, "total_stays", "stay_count"), default=0),
            total_revenue=normalize_amount(pick(profile, "total_revenue", "lifetime_value")),
            last_stay_date=normalize_stay_date(pick(profile, "last_stay_date", "last_visit")),
            raw=sanitize_pii(dict(profile)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        return [
            RatePlan(
                rate_code=pick(rate, "rate_code", "rate_plan_code", default=""),
                pms_source=self.pms_type,
                name=pick(rate, "rate_plan_name", "name", default=""),
                description=rate.get("description") or "",
                category=pick(rate, "category", "rate_category", default=""),
                base_amount=normalize_amount(pick(rate, "base_amount", "amount")),
                currency=normalize_currency(rate.get("currency_code")),
                valid_from=normalize_stay_date(pick(rate, "start_date", "valid_from")),
                valid_to=normalize_stay_date(pick(rate, "end_date", "valid_to")),
                room_types=list(rate.get("room_types") or []),
                cancellation_policy=rate.get("cancellation_policy") or "",
            )
            for rate in self._as_list(data, "rate_plans", "rates")
            if rate.get("active") is not False and rate.get("status") != "inactive"
        ]
