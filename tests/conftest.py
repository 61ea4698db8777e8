"""
Shared test fixtures for pytest.

- app: application built with TestingConfig on in-memory SQLite
- app_ctx: pushed application context for service-level tests
- client: Flask test client
- sms: recording notifier installed in place of the console transport
- login: helper performing the OTP login flow and returning bearer headers
- complaint_payload: cleaned complaint body accepted by the service layer
"""

import pytest

from app import create_app
from extensions import db
from utils.sms_service import SmsDeliveryError


class RecordingSmsNotifier:
    """Captures every code handed to the transport."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, int]] = []

    def send_otp(self, phone: str, code: str, ttl_seconds: int) -> None:
        self.sent.append((phone, code, ttl_seconds))

    def last_code(self, phone: str) -> str:
        for sent_phone, code, _ in reversed(self.sent):
            if sent_phone == phone:
                return code
        raise AssertionError(f"no code sent to {phone}")


class FailingSmsNotifier:
    def send_otp(self, phone: str, code: str, ttl_seconds: int) -> None:
        raise SmsDeliveryError("gateway down")


@pytest.fixture
def app():
    app = create_app("testing")
    app.extensions["sms_notifier"] = RecordingSmsNotifier()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sms(app) -> RecordingSmsNotifier:
    return app.extensions["sms_notifier"]


@pytest.fixture
def login(client, sms):
    def _login(phone: str = "+911234567890", name: str | None = None) -> dict:
        response = client.post("/api/send-otp", json={"phoneNumber": phone})
        assert response.status_code == 200, response.get_json()
        response = client.post("/api/verify-otp", json={"phoneNumber": phone, "otp": sms.last_code(phone)})
        assert response.status_code == 200, response.get_json()
        headers = {"Authorization": f"Bearer {response.get_json()['token']}"}
        if name:
            response = client.put("/api/user/profile", json={"name": name}, headers=headers)
            assert response.status_code == 200, response.get_json()
        return headers

    return _login


@pytest.fixture
def complaint_payload():
    def _payload(**overrides) -> dict:
        payload = {
            "title": "Pothole",
            "category": "Roads & Infrastructure",
            "description": "Large pothole near the bus stop",
            "priority": "medium",
            "reporter_type": "anonymous",
            "contact_method": "email",
            "phone": None,
            "location": {"address": "MG Road", "latitude": 12.9, "longitude": 77.6, "formatted": "MG Road, Bengaluru"},
            "attachments": [],
            "aadhaar": None,
        }
        payload.update(overrides)
        return payload

    return _payload
