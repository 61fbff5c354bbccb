"""
Unit tests for the Opera Cloud connector with HTTPX mocking
"""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from chargeback_connectors.adapters.opera_cloud import OperaCloudConnector
from chargeback_connectors.adapters.opera_cloud.connector import TOKEN_URL
from chargeback_connectors.contracts import ChargebackAlert, GuestNote, SearchCriteria
from chargeback_connectors.errors import WebhookSignatureError

from .fixtures import route, signed

BASE = "https://api.oracle.com/opera/v1"
HOTEL = f"{BASE}/rsv/v1/hotels/HOTEL1"


@pytest.fixture
def config(webhook_secret):
    return {
        "property_id": "HOTEL1",
        "credentials": {
            "clientId": "cid",
            "clientSecret": "secret",
            "hotelId": "HOTEL1",
            "appKey": "app-key",
            "webhookSecret": webhook_secret,
        },
    }


@pytest_asyncio.fixture
async def connector(config, settings):
    adapter = OperaCloudConnector(config, settings=settings)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def mock_token(httpx_mock: HTTPXMock, oauth_token_response):
    httpx_mock.add_response(method="POST", url=TOKEN_URL, json=oauth_token_response)


@pytest.fixture
def reservation_payload():
    return {
        "reservationIdList": {"confirmationNumber": "CONF123"},
        "reservationId": "98765",
        "reservationStatus": "INHOUSE",
        "roomStay": {
            "arrivalDate": "2024-03-01",
            "departureDate": "2024-03-04",
            "roomId": "1204",
            "roomTypes": [{"roomTypeCode": "KING"}],
            "ratePlans": [{"ratePlanCode": "BAR"}],
            "total": {"amount": 450.0, "currencyCode": "USD"},
            "guestCount": 2,
        },
        "guestNameList": {
            "guestName": [
                {
                    "profileId": {"value": "P555"},
                    "givenName": "Jane",
                    "surname": "Doe",
                    "email": {"value": "jane@example.com"},
                    "phone": {"value": "(555) 123-4567"},
                }
            ]
        },
        "paymentMethods": [{"cardType": "VI", "cardNumber": "XXXXXXXXXXXX1111", "approvalCode": "A1B2"}],
        "sourceCode": "WEB",
        "createDateTime": "2024-02-01T10:00:00Z",
    }


class TestOperaCloudConnector:
    @pytest.mark.asyncio
    async def test_get_reservation(self, connector, mock_token, httpx_mock: HTTPXMock, reservation_payload):
        httpx_mock.add_response(
            method="GET",
            url=route(HOTEL, "/reservations"),
            json={"reservations": {"reservationInfo": [reservation_payload]}},
        )

        reservation = await connector.get_reservation("CONF123")

        assert reservation.confirmation_number == "CONF123"
        assert reservation.pms_reservation_id == "98765"
        assert reservation.pms_source == "OPERA_CLOUD"
        assert reservation.status == "checked_in"
        assert reservation.guest_profile_id == "P555"
        assert reservation.guest_name.full_name == "Jane Doe"
        assert reservation.phone == "+15551234567"
        assert reservation.check_in_date == "2024-03-01"
        assert reservation.check_out_date == "2024-03-04"
        assert reservation.number_of_nights == 3
        assert reservation.number_of_guests == 2
        assert reservation.room_number == "1204"
        assert reservation.room_type == "KING"
        assert reservation.rate_code == "BAR"
        assert reservation.total_amount == Decimal("450.00")
        assert reservation.payment_method.card_brand == "Visa"
        assert reservation.payment_method.card_last_four == "1111"
        assert reservation.payment_method.auth_code == "A1B2"
        assert reservation.created_at == "2024-02-01T10:00:00+00:00"

        request = httpx_mock.get_requests()[-1]
        assert request.headers["Authorization"] == "Bearer test-token-123"
        assert request.headers["x-app-key"] == "app-key"
        assert request.url.params["confirmationNumber"] == "CONF123"

    @pytest.mark.asyncio
    async def test_get_reservation_not_found(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=route(HOTEL, "/reservations"), status_code=404)

        assert await connector.get_reservation("MISSING") is None

    @pytest.mark.asyncio
    async def test_search_maps_status_to_vendor(self, connector, mock_token, httpx_mock: HTTPXMock, reservation_payload):
        httpx_mock.add_response(
            method="GET", url=route(HOTEL, "/reservations"), json={"reservations": [reservation_payload]}
        )

        results = await connector.search_reservations(
            SearchCriteria(check_in_date="2024-03-01", status="checked_in", limit=10)
        )

        assert [r.confirmation_number for r in results] == ["CONF123"]
        params = httpx_mock.get_requests()[-1].url.params
        assert params["reservationStatus"] == "INHOUSE"
        assert params["arrivalStartDate"] == "2024-03-01"
        assert params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_get_guest_folio(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(f"{BASE}/csh/v1/hotels/HOTEL1", "/folios"),
            json={
                "folios": [
                    {
                        "folioId": "F1",
                        "windowNumber": 1,
                        "postings": [
                            {
                                "transactionId": "T1",
                                "transactionCode": "1000",
                                "transactionGroup": "ROOM",
                                "description": "Room Charge",
                                "amount": 150,
                                "currencyCode": "USD",
                                "postingDate": "2024-03-01",
                            },
                            {
                                "transactionId": "T2",
                                "transactionCode": "9000",
                                "transactionGroup": "PAYMENT",
                                "amount": -450,
                                "creditCardNumber": "XXXX1111",
                                "approvalCode": "A1B2",
                            },
                        ],
                    }
                ]
            },
        )

        items = await connector.get_guest_folio("98765")

        assert [i.category for i in items] == ["room", "payment"]
        assert items[0].amount == Decimal("150.00")
        assert items[0].folio_id == "F1"
        assert items[1].card_last_four == "1111"
        assert items[1].auth_code == "A1B2"

    @pytest.mark.asyncio
    async def test_malformed_counts_fall_back(self, connector, reservation_payload):
        reservation_payload["numberOfGuests"] = "2 adults"
        assert connector.normalize_reservation(reservation_payload).number_of_guests == 2

        items = connector.normalize_folio_items(
            {"folios": [{"folioId": "F1", "windowNumber": "n/a", "postings": [{"transactionId": "T1", "quantity": "1.0"}]}]}
        )
        assert items[0].quantity == 1
        assert items[0].window_number == 1

        profile = connector.normalize_guest_profile({"profileId": {"value": "P1"}, "totalVisits": "unknown"})
        assert profile.total_stays == 0

    @pytest.mark.asyncio
    async def test_get_guest_profile(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=f"{BASE}/crm/v1/hotels/HOTEL1/profiles/P555",
            json={
                "profileDetails": {
                    "profile": {
                        "profileId": {"value": "P555"},
                        "name": {"givenName": "Jane", "surname": "Doe"},
                        "emails": {"email": [{"value": "jane@example.com", "primary": True}]},
                        "phones": {"phone": [{"value": "5551234567"}]},
                        "addresses": {"address": [{"addressLine1": "1 Main St", "city": "Austin", "primary": True}]},
                        "membershipId": "GLD1",
                        "stayHistory": {"totalStays": 4, "totalRevenue": "1,200.00"},
                    }
                }
            },
        )

        profile = await connector.get_guest_profile("P555")

        assert profile.guest_id == "P555"
        assert profile.email == "jane@example.com"
        assert profile.phone == "+15551234567"
        assert profile.address.city == "Austin"
        assert profile.loyalty_number == "GLD1"
        assert profile.total_stays == 4
        assert profile.total_revenue == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_get_rates(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=route(f"{BASE}/lov/v1/hotels/HOTEL1", "/ratePlanCodes"),
            json={"ratePlanCodes": [{"ratePlanCode": "BAR", "ratePlanName": "Best Available", "baseAmount": "199.00"}]},
        )

        rates = await connector.get_rates()

        assert rates[0].rate_code == "BAR"
        assert rates[0].name == "Best Available"
        assert rates[0].base_amount == Decimal("199.00")

    @pytest.mark.asyncio
    async def test_push_chargeback_alert(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url=f"{HOTEL}/reservations/98765/comments", json={"commentId": "C1"}
        )

        ack = await connector.push_chargeback_alert(
            "98765",
            ChargebackAlert(case_number="CB-1", amount=Decimal("450.00"), reason_code="13.1", dispute_date="2024-04-01"),
        )

        assert ack.success is True
        assert ack.id == "C1"
        assert ack.pms_type == "OPERA_CLOUD"
        comment = json.loads(httpx_mock.get_requests()[-1].content)["comment"]
        assert comment["type"] == "ALT"
        assert "CB-1" in comment["text"]["value"]

    @pytest.mark.asyncio
    async def test_push_low_priority_note(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST", url=f"{BASE}/crm/v1/hotels/HOTEL1/profiles/P555/comments", json={"id": 77}
        )

        ack = await connector.push_note("P555", GuestNote(title="FYI", content="Guest called", priority="low"))

        assert ack.id == "77"
        assert json.loads(httpx_mock.get_requests()[-1].content)["comment"]["type"] == "GEN"

    @pytest.mark.asyncio
    async def test_register_and_deregister_webhook(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/int/v1/webhooks", json={"webhookId": "W1"})
        httpx_mock.add_response(method="DELETE", url=f"{BASE}/int/v1/webhooks/W1", status_code=204)
        httpx_mock.add_response(method="DELETE", url=f"{BASE}/int/v1/webhooks/W1", status_code=404)

        registration = await connector.register_webhook("https://hooks.example.com/opera", ["guest.checked_in"])

        assert registration.webhook_id == "W1"
        assert registration.events == ["guest.checked_in"]
        assert connector.webhook_secret == registration.secret
        assert b"CHECKIN" in httpx_mock.get_requests()[-1].content

        assert await connector.deregister_webhook("W1") is True
        assert await connector.deregister_webhook("W1") is False

    @pytest.mark.asyncio
    async def test_parse_webhook_payload(self, connector, webhook_secret):
        headers, body = signed(
            webhook_secret,
            {
                "eventType": "CHECKIN",
                "hotelId": "HOTEL1",
                "timestamp": "2024-03-01T15:00:00Z",
                "data": {"reservationId": 98765, "profileId": {"value": "P555"}},
            },
            header="x-opera-signature",
        )

        event = connector.parse_webhook_payload(headers, body)

        assert event.event_type == "guest.checked_in"
        assert event.vendor_event_type == "CHECKIN"
        assert event.data["reservation_id"] == "98765"
        assert event.data["guest_id"] == "P555"
        assert event.timestamp == "2024-03-01T15:00:00+00:00"

    @pytest.mark.asyncio
    async def test_parse_webhook_rejects_bad_signature(self, connector):
        headers, body = signed("wrong-secret", {"eventType": "CHECKIN"})
        with pytest.raises(WebhookSignatureError):
            connector.parse_webhook_payload(headers, body)

    @pytest.mark.asyncio
    async def test_revoked_token_renewed_once(self, connector, httpx_mock: HTTPXMock, oauth_token_response):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=oauth_token_response)
        httpx_mock.add_response(method="GET", url=route(f"{BASE}/csh/v1/hotels/HOTEL1", "/folios"), status_code=401)
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={**oauth_token_response, "access_token": "second"})
        httpx_mock.add_response(method="GET", url=route(f"{BASE}/csh/v1/hotels/HOTEL1", "/folios"), json={"folios": []})

        assert await connector.get_guest_folio("98765") == []
        assert connector.auth.grant_count == 2
        assert httpx_mock.get_requests()[-1].headers["Authorization"] == "Bearer second"

    @pytest.mark.asyncio
    async def test_health_check(self, connector, mock_token, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=f"{BASE}/lov/v1/hotels/HOTEL1/ratePlanCodes", json={})

        health = await connector.health_check()

        assert health["healthy"] is True
        assert health["status"] == "healthy"
        assert health["vendor"] == "opera_cloud"
        assert health["details"]["hotel_id"] == "HOTEL1"
        assert health["details"]["token_valid"] is True
        assert health["details"]["circuit_state"] == "closed"

    @pytest.mark.asyncio
    async def test_health_check_reports_auth_failure(self, connector, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=401, json={"error": "invalid_client"})

        health = await connector.health_check()

        assert health["healthy"] is False
        assert health["status"] == "unhealthy"
        assert health["details"]["error_type"] == "AuthenticationError"
