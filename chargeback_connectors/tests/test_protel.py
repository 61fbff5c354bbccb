"""
Unit tests for the protel connector
"""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.adapters.protel import ProtelConnector
from chargeback_connectors.contracts import GuestNote, SearchCriteria

from .fixtures import route, signed

BASE = "https://api.protel.net"


@pytest.fixture
def config(webhook_secret):
    return {
        "property_id": "BER-1",
        "credentials": {
            "username": "chargeback",
            "password": "geheim",
            "apiKey": "pk-1",
            "hotelCode": "BER",
            "webhookSecret": webhook_secret,
        },
    }


@pytest_asyncio.fixture
async def connector(config, settings):
    adapter = ProtelConnector(config, settings=settings)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def mock_key_check(httpx_mock: HTTPXMock):
    httpx_mock.add_response(method="GET", url=route(BASE, "/api/v1/hotel/info"), json={"HotelCode": "BER"})


@pytest.fixture
def german_reservation():
    return {
        "ReservationId": 5001,
        "ConfirmationNumber": "P5001",
        "Status": "DEFINITE",
        "Guest": {"GuestId": "G-77", "Vorname": "Klaus", "Nachname": "Becker", "Telefon": "+49 30 1234567"},
        "Anreise": "2024-09-20",
        "Abreise": "2024-09-23",
        "Room": {"Zimmernummer": "312", "Zimmertyp": "DZ"},
        "Gesamtbetrag": "1.234,50",
        "Waehrung": "EUR",
        "Payment": {"Kartentyp": "Visa", "KartenNr4": "1881"},
        "Buchungsquelle": "Booking.com",
    }


class TestProtelConnector:
    @pytest.mark.asyncio
    async def test_german_field_names(self, connector, mock_key_check, httpx_mock: HTTPXMock, german_reservation):
        httpx_mock.add_response(
            method="GET", url=route(BASE, "/api/v1/reservations"), json={"Reservations": [german_reservation]}
        )

        reservation = await connector.get_reservation("P5001")

        assert reservation.confirmation_number == "P5001"
        assert reservation.status == "confirmed"
        assert reservation.guest_name.full_name == "Klaus Becker"
        assert reservation.phone == "+49301234567"
        assert reservation.check_in_date == "2024-09-20"
        assert reservation.number_of_nights == 3
        assert reservation.room_number == "312"
        assert reservation.room_type == "DZ"
        assert reservation.total_amount == Decimal("1234.50")
        assert reservation.currency == "EUR"
        assert reservation.payment_method.card_brand == "Visa"
        assert reservation.payment_method.card_last_four == "1881"
        assert reservation.booking_source == "Booking.com"

        request = httpx_mock.get_requests()[-1]
        assert request.headers["X-Api-Key"] == "pk-1"
        assert request.headers["X-Hotel-Code"] == "BER"
        assert request.headers["Authorization"].startswith("Basic ")
        assert request.url.params["maxResults"] == "1"

    @pytest.mark.asyncio
    async def test_search_paging_params(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v1/reservations"), json={"Reservations": []})

        assert await connector.search_reservations(SearchCriteria(status="pending", limit=10, offset=20)) == []

        params = httpx_mock.get_requests()[-1].url.params
        assert params["status"] == "TENTATIVE"
        assert params["maxResults"] == "10"
        assert params["startIndex"] == "20"

    @pytest.mark.asyncio
    async def test_storno_postings_are_reversals(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v1/reservations/5001/folios"),
            json={
                "Folios": [
                    {
                        "FolioId": "R-1",
                        "FensterNr": 2,
                        "Buchungen": [
                            {"BuchungsId": 1, "Kategorie": "Logis", "Betrag": 150, "Buchungscode": "ROOM"},
                            {"BuchungsId": 2, "Kategorie": "Fruehstueck", "Betrag": "18,00", "Storno": True},
                        ],
                    }
                ]
            },
        )

        items = await connector.get_guest_folio("5001")

        assert [i.window_number for i in items] == [2, 2]
        assert items[0].transaction_code == "ROOM"
        assert items[1].amount == Decimal("18.00")
        assert items[1].reversal_flag is True
        assert items[0].reversal_flag is False

    @pytest.mark.asyncio
    async def test_get_guest_profile(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(BASE, "/api/v1/guests/G-77"),
            json={
                "Guest": {
                    "GuestId": "G-77",
                    "Vorname": "Klaus",
                    "Nachname": "Becker",
                    "VipStatus": "GOLD",
                    "AnzahlAufenthalte": 9,
                    "Gesamtumsatz": 4200,
                }
            },
        )

        profile = await connector.get_guest_profile("G-77")

        assert profile.name.full_name == "Klaus Becker"
        assert profile.vip_status == "GOLD"
        assert profile.total_stays == 9
        assert profile.total_revenue == Decimal("4200.00")

    @pytest.mark.asyncio
    async def test_push_note(self, connector, mock_key_check, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/api/v1/guests/G-77/notes", json={"NoteId": "N-5"})

        ack = await connector.push_note("G-77", GuestNote(title="Dispute", content="Evidence requested"))

        assert ack.id == "N-5"
        assert ack.pms_type == "PROTEL"
        sent = json.loads(httpx_mock.get_requests()[-1].content)
        assert sent["NoteType"] == "GENERAL"
        assert sent["HotelCode"] == "BER"

    @pytest.mark.asyncio
    async def test_rotated_api_key_applies_after_refresh(self, connector, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(BASE, "/api/v1/hotel/info"), json={}, is_reusable=True)

        await connector.authenticate()
        connector.update_credentials({"apiKey": "pk-2"})
        await connector.refresh_auth()
        await connector.authenticate()

        keys = [r.headers["X-Api-Key"] for r in httpx_mock.get_requests()]
        assert keys == ["pk-1", "pk-2"]

    @pytest.mark.asyncio
    async def test_parse_webhook_payload(self, connector, webhook_secret):
        headers, raw = signed(
            webhook_secret,
            {"EventType": "ReservationModified", "Data": {"ConfirmationNumber": "P5001", "ProfileId": "G-77"}},
            header="x-protel-signature",
        )

        event = connector.parse_webhook_payload(headers, raw)

        assert event.event_type == "reservation.updated"
        assert event.data["reservation_id"] == "P5001"
        assert event.data["guest_id"] == "G-77"
