"""
Unit tests for the Hotelogix connector
"""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.adapters.hotelogix import HotelogixConnector
from chargeback_connectors.contracts import DisputeOutcome, GuestFlag, RateQuery, SearchCriteria
from chargeback_connectors.errors import AuthenticationError

from .fixtures import route, signed

BASE = "https://api.hotelogix.com"


@pytest.fixture
def config(webhook_secret):
    return {
        "property_id": "HLX-1",
        "credentials": {"apiKey": "hlx-key", "hotelCode": "H042", "webhookSecret": webhook_secret},
    }


@pytest_asyncio.fixture
async def connector(config, settings):
    adapter = HotelogixConnector(config, settings=settings)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def mock_key_check(httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=route(BASE, "/api/v2/hotel/info"), json={"hotelCode": "H042"})


@pytest.fixture
def booking():
    return {
        "bookingId": 301,
        "confirmationNo": "HLX301",
        "bookingStatus": "CHECKEDOUT",
        "guest": {
            "guestId": "G9",
            "firstName": "Ravi",
            "lastName": "Kumar",
            "email": "ravi@example.com",
            "mobile": "98765 43210",
            "address": {"street": "12 MG Road", "city": "Bengaluru", "country": "IN"},
        },
        "checkInDate": "2024-01-05",
        "checkOutDate": "2024-01-07",
        "room": {"roomNo": 204, "roomType": "Deluxe"},
        "ratePlan": {"rateCode": "BB"},
        "totalAmount": "12,500.00",
        "currencyCode": "INR",
        "pax": 2,
        "payment": {"cardType": "AX", "cardLast4": "0005", "authCode": "Z9"},
        "source": "Walk-in",
        "loyaltyNo": "LX-1",
    }


class TestHotelogixConnector:
    @pytest.mark.asyncio
    async def test_get_reservation(self, connector, mock_key_check, httpx_mock: HTTPXMock, booking):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v2/bookings"), json={"bookings": [booking]})

        reservation = await connector.get_reservation("HLX301")

        assert reservation.confirmation_number == "HLX301"
        assert reservation.pms_reservation_id == "301"
        assert reservation.status == "checked_out"
        assert reservation.guest_profile_id == "G9"
        assert reservation.address.line1 == "12 MG Road"
        assert reservation.room_number == "204"
        assert reservation.rate_code == "BB"
        assert reservation.total_amount == Decimal("12500.00")
        assert reservation.currency == "INR"
        assert reservation.payment_method.card_brand == "American Express"
        assert reservation.loyalty_number == "LX-1"

        request = httpx_mock.get_requests()[-1]
        assert request.headers["X-Api-Key"] == "hlx-key"
        assert request.headers["X-Hotel-Code"] == "H042"
        assert "Authorization" not in request.headers
        assert request.url.params["confirmationNo"] == "HLX301"
        assert request.url.params["hotelCode"] == "H042"

    @pytest.mark.asyncio
    async def test_empty_booking_list_is_not_found(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v2/bookings"), json={"bookings": []})

        assert await connector.get_reservation("nope") is None

    @pytest.mark.asyncio
    async def test_invalid_key_fails_check(self, connector, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v2/hotel/info"), status_code=401)

        with pytest.raises(AuthenticationError):
            await connector.get_reservation("HLX301")

    @pytest.mark.asyncio
    async def test_search_maps_status(self, connector, mock_key_check, httpx_mock: HTTPXMock, booking):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v2/bookings"), json={"data": [booking]})

        results = await connector.search_reservations(SearchCriteria(status="no_show", card_last_four="0005"))

        assert len(results) == 1
        params = httpx_mock.get_requests()[-1].url.params
        assert params["bookingStatus"] == "NOSHOW"
        assert params["cardLast4"] == "0005"
        assert "offset" not in params

    @pytest.mark.asyncio
    async def test_folio_windows(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v2/bookings/301/folio"),
            json={
                "folios": [
                    {
                        "folioId": "F1",
                        "windowNo": 1,
                        "charges": [
                            {"transactionId": "T1", "chargeCode": "ROOM", "amount": 6000, "currencyCode": "INR"},
                            {"transactionId": "T2", "category": "GST", "amount": 720, "currencyCode": "INR"},
                        ],
                    },
                    {
                        "folioId": "F2",
                        "windowNo": 2,
                        "charges": [{"transactionId": "T3", "category": "Minibar", "amount": 400, "isReversal": True}],
                    },
                ]
            },
        )

        items = await connector.get_guest_folio("301")

        assert [(i.folio_id, i.window_number, i.category) for i in items] == [
            ("F1", 1, "room"),
            ("F1", 1, "tax"),
            ("F2", 2, "incidental"),
        ]
        assert items[2].reversal_flag is True

    @pytest.mark.asyncio
    async def test_get_guest_profile_unwraps(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v2/guests/G9"),
            json={"guest": {"guestId": "G9", "firstName": "Ravi", "lastName": "Kumar", "vipCode": "V1", "stayCount": 4}},
        )

        profile = await connector.get_guest_profile("G9")

        assert profile.guest_id == "G9"
        assert profile.vip_status == "V1"
        assert profile.total_stays == 4

    @pytest.mark.asyncio
    async def test_inactive_rates_skipped(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v2/rates"),
            json={
                "ratePlans": [
                    {"rateCode": "BB", "ratePlanName": "Bed & Breakfast", "baseRate": "5000", "roomTypes": ["Deluxe"]},
                    {"rateCode": "OLD", "isActive": False},
                ]
            },
        )

        rates = await connector.get_rates(RateQuery(start_date="2024-01-01"))

        assert [r.rate_code for r in rates] == ["BB"]
        assert rates[0].room_types == ["Deluxe"]
        assert httpx_mock.get_requests()[-1].url.params["fromDate"] == "2024-01-01"

    @pytest.mark.asyncio
    async def test_push_flag_creates_alert(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v2/guests/G9/alerts", json={"alertId": "AL-1"})

        ack = await connector.push_flag("G9", GuestFlag(reason="Disputed stay", severity="Medium", chargeback_id="CB-5"))

        assert ack.id == "AL-1"
        sent = json.loads(httpx_mock.get_requests()[-1].content)
        assert sent["severity"] == "medium"
        assert sent["subject"] == "Chargeback flag: MEDIUM"
        assert sent["message"] == "CHARGEBACK ALERT: Disputed stay | Case: CB-5"

    @pytest.mark.asyncio
    async def test_push_dispute_outcome(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v2/bookings/301/notes", json={"noteId": "N-2"})

        ack = await connector.push_dispute_outcome(
            "301", DisputeOutcome(case_number="CB-5", outcome="lost", amount=Decimal("12500"), currency="INR")
        )

        assert ack.id == "N-2"
        sent = json.loads(httpx_mock.get_requests()[-1].content)
        assert sent["noteType"] == "info"
        assert sent["subject"] == "Dispute lost"

    @pytest.mark.asyncio
    async def test_deregister_missing_webhook(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="DELETE", url=route(BASE, "/api/v2/webhooks/gone"), status_code=404)

        assert await connector.deregister_webhook("gone") is False

    @pytest.mark.asyncio
    async def test_parse_webhook_payload(self, connector, webhook_secret):
        headers, raw = signed(
            webhook_secret,
            {"eventType": "guest_checkout", "data": {"bookingId": 301, "guestId": "G9"}},
            header="x-hotelogix-signature",
        )

        event = connector.parse_webhook_payload(headers, raw)

        assert event.event_type == "guest.checked_out"
        assert event.data["reservation_id"] == "301"
        assert event.data["hotel_code"] == "H042"
        assert event.timestamp

    @pytest.mark.asyncio
    async def test_health_check(self, connector, mock_key_check):
        health = await connector.health_check()

        assert health["healthy"] is True
        assert health["details"]["hotel_code"] == "H042"
