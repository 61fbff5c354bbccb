"""
Oracle Opera Cloud PMS Connector
OHIP REST gateway: RSV (reservations), CSH (folios), CRM (profiles),
LOV (rate codes) and INT (webhooks)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ...auth import AuthType, OAuth2ClientCredentialsAuth
from ...contracts import (
    BaseConnector,
    Capabilities,
    FolioItem,
    GuestName,
    GuestProfile,
    PaymentMethod,
    RatePlan,
    RateQuery,
    Reservation,
    ReservationDocument,
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

TOKEN_URL = "https://login.oracle.com/oauth2/token"


def _value(node: Any) -> Any:
    """Opera wraps many scalars as ``{"value": ...}``"""
    if isinstance(node, Mapping):
        return node.get("value")
    return node


def _primary(items: Any) -> Any:
    if isinstance(items, list):
        return next((i for i in items if isinstance(i, Mapping) and i.get("primary")), items[0] if items else None)
    return items


class OperaCloudConnector(BaseConnector):
    """Oracle Opera Cloud connector implementation"""

    vendor_name = "opera_cloud"
    display_name = "Oracle Opera Cloud"
    auth_type = AuthType.OAUTH2
    default_base_url = "https://api.oracle.com/opera/v1"
    required_credentials = ("client_id", "client_secret")
    requests_per_minute = 100
    signature_headers = ("x-opera-signature", "x-webhook-signature")

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

    status_map = {
        "confirmed": "RESERVED",
        "checked_in": "INHOUSE",
        "checked_out": "CHECKEDOUT",
        "cancelled": "CANCELLED",
        "no_show": "NOSHOW",
        "pending": "TENTATIVE",
    }

    event_names = EventNameMap(
        {
            "reservation.created": "RESERVATION_CREATED",
            "reservation.updated": "RESERVATION_UPDATED",
            "reservation.cancelled": "RESERVATION_CANCELLED",
            "guest.checked_in": "CHECKIN",
            "guest.checked_out": "CHECKOUT",
            "payment.received": "PAYMENT_POSTED",
            "folio.updated": "FOLIO_UPDATED",
        }
    )

    def __init__(self, config: Dict[str, Any], **kwargs):
        super().__init__(config, **kwargs)
        self.hotel_id = self.auth_state.get("hotel_id") or self.property_id

    def _build_auth_strategy(self):
        return OAuth2ClientCredentialsAuth(
            self.auth_state,
            self.auth_state.get("token_url") or TOKEN_URL,
            scope=self.auth_state.get("scope"),
            buffer_seconds=self.settings.token_refresh_buffer_seconds,
            timeout=self.settings.auth_timeout,
        )

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        app_key = self.auth_state.get("app_key")
        if app_key:
            headers["x-app-key"] = app_key
        return headers

    @property
    def probe_path(self) -> str:
        return f"/lov/v1/hotels/{self.hotel_id}/ratePlanCodes"

    def _health_details(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "hotel_id": self.hotel_id}

    def _hotel(self, path: str) -> str:
        module, rest = path.split("/", 1)
        return f"/{module}/v1/hotels/{self.hotel_id}/{rest}"

    # Reservation Operations

    @log_performance("get_reservation")
    async def get_reservation(self, confirmation_number: str) -> Optional[Reservation]:
        result = await self._get_optional(
            self._hotel("rsv/reservations"),
            params={"confirmationNumber": confirmation_number, "limit": 1},
        )
        reservations = self._reservation_list(result)
        if not reservations:
            return None
        return self.normalize_reservation(reservations[0])

    @log_performance("search_reservations")
    async def search_reservations(self, criteria: SearchCriteria) -> List[Reservation]:
        params = self._clean(
            {
                "confirmationNumber": criteria.confirmation_number,
                "guestName": criteria.guest_name,
                "arrivalStartDate": criteria.check_in_date,
                "departureEndDate": criteria.check_out_date,
                "reservationStatus": self.map_status_to_vendor(criteria.status),
                "limit": criteria.limit or 50,
                "offset": criteria.offset or None,
            }
        )
        result = await self._request("GET", self._hotel("rsv/reservations"), params=params)
        return [r for r in map(self.normalize_reservation, self._reservation_list(result)) if r]

    @staticmethod
    def _reservation_list(result: Any) -> List[Dict[str, Any]]:
        if not result:
            return []
        info = dig(result, "reservations", "reservationInfo")
        if isinstance(info, list):
            return info
        return BaseConnector._as_list(result, "reservations", "reservationInfo")

    @log_performance("get_guest_folio")
    async def get_guest_folio(self, reservation_id: str) -> List[FolioItem]:
        result = await self._request("GET", self._hotel("csh/folios"), params={"reservationId": reservation_id})
        return self.normalize_folio_items(result)

    async def get_reservation_documents(self, reservation_id: str) -> List[ReservationDocument]:
        result = await self._get_optional(self._hotel(f"rsv/reservations/{reservation_id}/attachments"))
        documents = []
        for att in self._as_list(result, "attachments", "links"):
            doc_id = str(first_present(att.get("attachmentId"), att.get("id"), default=""))
            documents.append(
                ReservationDocument(
                    document_id=doc_id,
                    document_type=first_present(att.get("attachmentType"), att.get("category"), default="other"),
                    file_name=first_present(att.get("fileName"), att.get("name"), default=f"document_{doc_id}"),
                    content_type=first_present(att.get("mimeType"), att.get("contentType"), default="application/octet-stream"),
                    url=first_present(att.get("url"), att.get("downloadUrl")),
                    created_at=normalize_date(att.get("createDateTime")),
                )
            )
        return documents

    # Guest Operations

    @log_performance("get_guest_profile")
    async def get_guest_profile(self, guest_id: str) -> Optional[GuestProfile]:
        result = await self._get_optional(self._hotel(f"crm/profiles/{guest_id}"))
        return self.normalize_guest_profile(result)

    # Rate Operations

    async def get_rates(self, params: Optional[RateQuery] = None) -> List[RatePlan]:
        query = params or RateQuery()
        result = await self._request(
            "GET",
            self._hotel("lov/ratePlanCodes"),
            params=self._clean(
                {
                    "startDate": query.start_date,
                    "endDate": query.end_date,
                    "roomType": query.room_type,
                    "ratePlanCode": query.rate_code,
                }
            ),
        )
        return self.normalize_rates(result)

    # Write-back

    def _comment(self, title: str, text: str, alert: bool) -> Dict[str, Any]:
        return {
            "comment": {
                "text": {"value": text},
                "type": "ALT" if alert else "GEN",
                "title": title,
                "internal": True,
                "guestViewable": False,
                "time": datetime.now(timezone.utc).isoformat(),
            }
        }

    async def _create_guest_note(self, guest_id, title, text, *, alert):
        result = await self._request(
            "POST", self._hotel(f"crm/profiles/{guest_id}/comments"), json=self._comment(title, text, alert)
        )
        return first_present(result.get("commentId"), result.get("id"))

    async def _create_reservation_note(self, reservation_id, title, text, *, alert):
        result = await self._request(
            "POST", self._hotel(f"rsv/reservations/{reservation_id}/comments"), json=self._comment(title, text, alert)
        )
        return first_present(result.get("commentId"), result.get("id"))

    # Webhooks

    async def _register_webhook(self, callback_url, vendor_events, secret):
        result = await self._request(
            "POST",
            "/int/v1/webhooks",
            json={
                "webhook": {
                    "callbackUrl": callback_url,
                    "events": vendor_events,
                    "secret": secret,
                    "hotelId": self.hotel_id,
                    "active": True,
                }
            },
        )
        return first_present(result.get("webhookId"), result.get("id"))

    async def _deregister_webhook(self, webhook_id):
        await self._request("DELETE", f"/int/v1/webhooks/{webhook_id}")

    def _parse_event(self, payload):
        event_type = first_present(payload.get("eventType"), payload.get("event"), payload.get("type"))
        data = first_present(payload.get("data"), payload.get("details"), default=payload)
        data = dict(data) if isinstance(data, Mapping) else {}
        data["reservation_id"] = first_present(data.get("reservationId"), data.get("confirmationNumber"))
        data["guest_id"] = first_present(_value(data.get("profileId")), data.get("guestId"))
        data.setdefault("hotel_id", first_present(payload.get("hotelId"), self.hotel_id))
        return event_type, data, first_present(payload.get("timestamp"), payload.get("createdAt"))

    # Normalization

    def normalize_reservation(self, data: Optional[Mapping[str, Any]]) -> Optional[Reservation]:
        if not data:
            return None

        room_stay = first_present(data.get("roomStay"), dig(data, "roomStays", 0), default={})
        guests = first_present(dig(data, "guestNameList", "guestName"), data.get("guestNames"), default=[])
        guest = guests[0] if guests else {}
        rate_plan = first_present(dig(room_stay, "ratePlans", 0), room_stay.get("ratePlan"), default={})
        room_type = first_present(dig(room_stay, "roomTypes", 0), room_stay.get("roomType"), default={})
        payment = first_present(dig(data, "paymentMethods", 0), dig(data, "cashiering", "payment"), default={})
        card = payment.get("paymentCard") or {}

        confirmation = first_present(
            dig(data, "reservationIdList", "confirmationNumber"),
            data.get("confirmationNumber"),
            _value(data.get("id")),
            data.get("reservationId"),
            default="",
        )
        if guest.get("givenName") or isinstance(guest.get("name"), Mapping):
            name = GuestName(
                first_name=first_present(guest.get("givenName"), dig(guest, "name", "givenName"), default=""),
                last_name=first_present(guest.get("surname"), dig(guest, "name", "surname"), default=""),
            )
        else:
            name = normalize_guest_name(guest)

        arrival = first_present(room_stay.get("arrivalDate"), dig(room_stay, "stayDateRange", "startDate"), data.get("arrivalDate"))
        departure = first_present(room_stay.get("departureDate"), dig(room_stay, "stayDateRange", "endDate"), data.get("departureDate"))
        comments = [dig(c, "text", "value") for c in data.get("comments") or [] if isinstance(c, Mapping)]

        return build_reservation(
            self.pms_type,
            data,
            confirmation_number=str(confirmation),
            pms_reservation_id=str(first_present(data.get("reservationId"), _value(data.get("id")), confirmation)),
            status=normalize_reservation_status(
                first_present(data.get("reservationStatus"), data.get("status"), room_stay.get("status"))
            ),
            guest_profile_id=str(first_present(_value(guest.get("profileId")), data.get("guestProfileId"), default="")) or None,
            guest_name=name,
            email=str(first_present(_value(guest.get("email")), default="")),
            phone=normalize_phone(_value(guest.get("phone"))),
            address=normalize_address(first_present(guest.get("address"), guest.get("addressInfo"))),
            check_in_date=normalize_stay_date(arrival),
            check_out_date=normalize_stay_date(departure),
            room_number=str(first_present(room_stay.get("roomId"), dig(room_stay, "room", "roomNumber"), default="")),
            room_type=first_present(room_type.get("roomTypeCode"), room_type.get("code"), room_type.get("description"), default=""),
            rate_code=first_present(rate_plan.get("ratePlanCode"), rate_plan.get("code"), default=""),
            total_amount=normalize_amount(
                first_present(dig(room_stay, "total", "amount"), room_stay.get("totalAmount"), data.get("totalAmount"))
            ),
            currency=normalize_currency(
                first_present(dig(room_stay, "total", "currencyCode"), room_stay.get("currencyCode"), data.get("currencyCode"))
            ),
            number_of_guests=normalize_int(first_present(data.get("numberOfGuests"), room_stay.get("guestCount"), len(guests) or None), default=1),
            payment_method=PaymentMethod(
                card_brand=normalize_card_brand(first_present(payment.get("cardType"), card.get("cardType"))),
                card_last_four=last_four(first_present(payment.get("cardNumber"), card.get("cardNumberMasked"))),
                auth_code=first_present(payment.get("approvalCode"), card.get("approvalCode"), default=""),
            ),
            booking_source=first_present(data.get("sourceCode"), data.get("origin"), default=""),
            created_at=normalize_date(first_present(data.get("createDateTime"), data.get("createdAt"))),
            updated_at=normalize_date(first_present(data.get("lastModifyDateTime"), data.get("updatedAt"))),
            special_requests=first_present(data.get("specialRequests"), "; ".join(c for c in comments if c), default=""),
            loyalty_number=first_present(data.get("membershipId"), dig(data, "loyalty", "membershipNumber")),
        )

    def normalize_folio_items(self, data: Any) -> List[FolioItem]:
        folios = first_present(dig(data, "folios"), dig(data, "folioWindows"), default=[])
        if isinstance(folios, Mapping):
            folios = [folios]

        items = []
        for folio in folios:
            postings = first_present(folio.get("postings"), folio.get("folioItems"), folio.get("transactions"), default=[])
            for posting in postings:
                items.append(
                    FolioItem(
                        folio_id=str(first_present(folio.get("folioId"), folio.get("id"), default="")),
                        window_number=normalize_int(first_present(folio.get("windowNumber"), folio.get("folioWindowNo")), default=1),
                        transaction_id=str(first_present(posting.get("transactionId"), posting.get("id"), default="")),
                        transaction_code=first_present(posting.get("transactionCode"), posting.get("trxCode"), default=""),
                        category=normalize_folio_category(
                            first_present(posting.get("transactionGroup"), posting.get("category"), posting.get("transactionCode"))
                        ),
                        description=first_present(
                            posting.get("description"), posting.get("transactionDescription"), posting.get("remark"), default=""
                        ),
                        amount=normalize_amount(first_present(posting.get("amount"), posting.get("netAmount"))),
                        currency=normalize_currency(posting.get("currencyCode")),
                        post_date=normalize_date(first_present(posting.get("postingDate"), posting.get("transactionDate"))),
                        card_last_four=last_four(first_present(posting.get("creditCardNumber"), posting.get("cardLastFour"))),
                        auth_code=first_present(posting.get("approvalCode"), posting.get("authorizationCode"), default=""),
                        reference=first_present(posting.get("reference"), posting.get("folioView"), default=""),
                        reversal_flag=posting.get("reversal") is True or posting.get("reversalFlag") == "Y",
                        quantity=normalize_int(posting.get("quantity"), default=1),
                    )
                )
        return items

    def normalize_guest_profile(self, data: Optional[Mapping[str, Any]]) -> Optional[GuestProfile]:
        if not data:
            return None
        profile = first_present(dig(data, "profileDetails", "profile"), data.get("profile"), default=data)
        name = first_present(profile.get("name"), dig(profile, "customer", "name"), default={})
        address = _primary(first_present(dig(profile, "addresses", "address"), profile.get("addresses")))
        email = _primary(first_present(dig(profile, "emails", "email"), profile.get("emails")))
        phone = _primary(first_present(dig(profile, "phones", "phone"), profile.get("phones")))
        if isinstance(email, Mapping):
            email = first_present(email.get("value"), email.get("email"))
        if isinstance(phone, Mapping):
            phone = first_present(phone.get("value"), phone.get("phoneNumber"))

        return GuestProfile(
            guest_id=str(first_present(_value(profile.get("profileId")), profile.get("id"), default="")),
            pms_source=self.pms_type,
            name=normalize_guest_name(
                {"firstName": first_present(name.get("givenName"), name.get("firstName")),
                 "lastName": first_present(name.get("surname"), name.get("lastName"))}
            ),
            email=str(email or ""),
            phone=normalize_phone(phone),
            address=normalize_address(address),
            loyalty_number=first_present(profile.get("membershipId"), dig(profile, "membership", "membershipNumber")),
            loyalty_level=first_present(profile.get("membershipLevel"), dig(profile, "membership", "membershipLevel")),
            vip_status=first_present(profile.get("vipCode"), profile.get("vipStatus")),
            total_stays=normalize_int(first_present(dig(profile, "stayHistory", "totalStays"), profile.get("totalVisits")), default=0),
            total_revenue=normalize_amount(first_present(dig(profile, "stayHistory", "totalRevenue"), profile.get("totalRevenue"))),
            last_stay_date=normalize_stay_date(
                first_present(dig(profile, "stayHistory", "lastStayDate"), profile.get("lastVisitDate"))
            ),
            raw=sanitize_pii(dict(profile)),
        )

    def normalize_rates(self, data: Any) -> List[RatePlan]:
        rates = self._as_list(data, "ratePlanCodes", "ratePlans", "listOfValues")
        return [
            RatePlan(
                rate_code=first_present(rate.get("ratePlanCode"), rate.get("code"), default=""),
                pms_source=self.pms_type,
                name=first_present(rate.get("ratePlanName"), rate.get("shortDescription"), rate.get("description"), default=""),
                description=first_present(rate.get("longDescription"), rate.get("description"), default=""),
                category=first_present(rate.get("ratePlanCategory"), rate.get("category"), default=""),
                base_amount=normalize_amount(first_present(rate.get("baseAmount"), rate.get("amount"))),
                currency=normalize_currency(rate.get("currencyCode")),
                valid_from=normalize_stay_date(first_present(rate.get("startDate"), rate.get("effectiveDate"))),
                valid_to=normalize_stay_date(first_present(rate.get("endDate"), rate.get("expiryDate"))),
                room_types=list(first_present(rate.get("roomTypes"), rate.get("applicableRoomTypes"), default=[])),
                cancellation_policy=first_present(rate.get("cancelPolicy"), rate.get("cancellationPolicy"), default=""),
            )
            for rate in rates
        ]
