"""
Unit tests for the Maestro connector
"""

import base64
import json
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.adapters.maestro import MaestroConnector
from chargeback_connectors.contracts import ChargebackAlert, GuestFlag, SearchCriteria
from chargeback_connectors.errors import ValidationError

from .fixtures import route, signed

BASE = "https://api.maestropms.com"


@pytest.fixture
def config(webhook_secret):
    return {
        "property_id": "MAE-1",
        "credentials": {"username": "svc", "password": "pw", "hotelCode": "TOR01", "webhookSecret": webhook_secret},
    }


@pytest_asyncio.fixture
async def connector(config, settings):
    adapter = MaestroConnector(config, settings=settings)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def mock_key_check(httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=route(BASE, "/api/v1/properties/info"), json={"HotelCode": "TOR01"})


@pytest.fixture
def maestro_reservation():
    return {
        "ReservationId": 8812,
        "ConfirmationNumber": "M-8812",
        "Status": "IN_HOUSE",
        "Guest": {
            "ProfileId": "PF-3",
            "FirstName": "Liam",
            "LastName": "Murphy",
            "Email": "liam@example.com",
            "Address": {"Address1": "100 King St", "City": "Toronto", "State": "ON"},
        },
        "ArrivalDate": "2024-02-10",
        "DepartureDate": "2024-02-12",
        "Room": {"RoomNumber": 1510, "RoomType": "KDLX"},
        "RatePlan": {"RateCode": "CORP"},
        "TotalAmount": 389.1,
        "CurrencyCode": "CAD",
        "NumberOfGuests": 1,
        "Payment": {"CardType": "VI", "CardLast4": "4242", "AuthCode": "778899"},
        "Source": "GDS",
    }


def test_requires_username_and_password(settings):
    with pytest.raises(ValidationError) as exc_info:
        MaestroConnector({"credentials": {"username": "svc"}}, settings=settings)
    assert exc_info.value.details["missing"] == ["password"]


class TestMaestroConnector:
    @pytest.mark.asyncio
    async def test_get_reservation(self, connector, mock_key_check, httpx_mock: HTTPXMock, maestro_reservation):
        httpx_mock.add_response(
            method="GET", url=route(BASE, "/api/v1/reservations"), json={"Reservations": [maestro_reservation]}
        )

        reservation = await connector.get_reservation("M-8812")

        assert reservation.confirmation_number == "M-8812"
        assert reservation.pms_reservation_id == "8812"
        assert reservation.status == "checked_in"
        assert reservation.guest_name.full_name == "Liam Murphy"
        assert reservation.address.line1 == "100 King St"
        assert reservation.address.state == "ON"
        assert reservation.room_number == "1510"
        assert reservation.total_amount == Decimal("389.10")
        assert reservation.currency == "CAD"
        assert reservation.payment_method.auth_code == "778899"

        request = httpx_mock.get_requests()[-1]
        assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"svc:pw").decode()
        assert request.url.params["hotelCode"] == "TOR01"

    @pytest.mark.asyncio
    async def test_search_reservations(self, connector, mock_key_check, httpx_mock: HTTPXMock, maestro_reservation):
        httpx_mock.add_response(
            method="GET", url=route(BASE, "/api/v1/reservations"), json={"data": [maestro_reservation]}
        )

        results = await connector.search_reservations(SearchCriteria(status="checked_out", offset=10))

        assert len(results) == 1
        params = httpx_mock.get_requests()[-1].url.params
        assert params["status"] == "DEPARTED"
        assert params["offset"] == "10"

    @pytest.mark.asyncio
    async def test_folio_postings(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v1/reservations/8812/folio"),
            json={
                "Folios": [
                    {
                        "FolioId": "F-1",
                        "WindowNumber": 1,
                        "Postings": [
                            {"TransactionId": 1, "TransactionCode": "1000", "RevenueGroup": "Room", "Amount": 179},
                            {"TransactionId": 2, "Category": "Restaurant", "Amount": 31.1, "Quantity": 2},
                            {"TransactionId": 3, "Category": "Parking", "Amount": 25, "IsReversal": True},
                        ],
                    }
                ]
            },
        )

        items = await connector.get_guest_folio("8812")

        assert [i.category for i in items] == ["room", "food_beverage", "incidental"]
        assert items[0].transaction_code == "1000"
        assert items[1].quantity == 2
        assert items[2].reversal_flag is True

    @pytest.mark.asyncio
    async def test_guest_profile_not_found(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v1/guest-profiles/nobody"), status_code=404)

        assert await connector.get_guest_profile("nobody") is None

    @pytest.mark.asyncio
    async def test_inactive_rate_plans_skipped(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v1/rate-plans"),
            json={
                "RatePlans": [
                    {"RateCode": "CORP", "RatePlanName": "Corporate", "BaseAmount": 179, "RoomTypes": ["KDLX"]},
                    {"RateCode": "SUMMER", "Status": "INACTIVE"},
                    {"RateCode": "OLD", "Active": False},
                ]
            },
        )

        rates = await connector.get_rates()

        assert [r.rate_code for r in rates] == ["CORP"]
        assert rates[0].name == "Corporate"

    @pytest.mark.asyncio
    async def test_push_flag(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v1/guest-profiles/PF-3/alerts", json={"AlertId": 14})

        ack = await connector.push_flag("PF-3", GuestFlag(reason="Chargeback filed", amount=Decimal("389.10")))

        assert ack.id == "14"
        sent = json.loads(httpx_mock.get_requests()[-1].content)
        assert sent["alertType"] == "CHARGEBACK_RISK"
        assert sent["severity"] == "HIGH"
        assert sent["message"] == "CHARGEBACK ALERT: Chargeback filed | Amount: 389.10"

    @pytest.mark.asyncio
    async def test_push_chargeback_alert(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v1/reservations/8812/notes", json={"NoteId": "N1"})

        ack = await connector.push_chargeback_alert(
            "8812",
            ChargebackAlert(
                case_number="CB-77",
                amount=Decimal("389.10"),
                reason_code="13.1",
                dispute_date="2024-03-01",
                currency="CAD",
                due_date="2024-03-31",
            ),
        )

        assert ack.id == "N1"
        sent = json.loads(httpx_mock.get_requests()[-1].content)
        assert sent["noteCategory"] == "ALERT"
        assert sent["subject"] == "Chargeback alert CB-77"
        assert "Response due: 2024-03-31" in sent["body"]

    @pytest.mark.asyncio
    async def test_parse_webhook_payload(self, connector, webhook_secret):
        headers, raw = signed(
            webhook_secret,
            {
                "EventType": "PAYMENT_POSTED",
                "HotelCode": "TOR01",
                "Timestamp": "2024-02-11T08:00:00-05:00",
                "Data": {"ReservationId": 8812, "ProfileId": "PF-3"},
            },
            header="x-maestro-signature",
        )

        event = connector.parse_webhook_payload(headers, raw)

        assert event.event_type == "payment.received"
        assert event.timestamp == "2024-02-11T13:00:00+00:00"
        assert event.data["reservation_id"] == "8812"
        assert event.data["guest_id"] == "PF-3"
