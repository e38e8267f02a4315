from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.features.digest_delivery import digest_router
from app.features.digest_delivery.providers import TelephonyProviderError
from tests.fakes import PHONE


def test_send_and_verify_code(client, telephony):
    response = client.post("/phone/send-code", json={"phone_number": PHONE})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["state"] == "code_sent"

    response = client.post(
        "/phone/verify-code", json={"phone_number": PHONE, "code": telephony.last_code()}
    )

    assert response.status_code == 200
    assert response.json()["state"] == "verified"

    status = client.get("/phone/status", params={"phone_number": PHONE})
    assert status.json()["state"] == "verified"
    assert status.json()["success"] is True


def test_malformed_number_is_422(client, telephony):
    response = client.post("/phone/send-code", json={"phone_number": "5551234567"})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "malformed_destination"
    assert telephony.messages == []


def test_wrong_code_then_lockout(client, telephony):
    client.post("/phone/send-code", json={"phone_number": PHONE})
    wrong = "000000" if telephony.last_code() != "000000" else "111111"

    first = client.post("/phone/verify-code", json={"phone_number": PHONE, "code": wrong})
    client.post("/phone/verify-code", json={"phone_number": PHONE, "code": wrong})
    third = client.post("/phone/verify-code", json={"phone_number": PHONE, "code": wrong})

    assert first.status_code == 400
    assert first.json()["detail"]["code"] == "code_mismatch"
    assert "2 attempt(s) remaining" in first.json()["detail"]["reason"]
    assert third.status_code == 429
    assert third.json()["detail"]["code"] == "too_many_attempts"


def test_verify_before_send_is_409(client):
    response = client.post("/phone/verify-code", json={"phone_number": PHONE, "code": "123456"})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "verification_not_started"


def test_expired_code_is_410(client, telephony, clock):
    client.post("/phone/send-code", json={"phone_number": PHONE})
    clock.advance(600)

    response = client.post(
        "/phone/verify-code", json={"phone_number": PHONE, "code": telephony.last_code()}
    )

    assert response.status_code == 410


def test_provider_outage_is_503_with_retry_after(client, telephony):
    telephony.fail_with = TelephonyProviderError("Twilio send_message failed: connection reset")

    response = client.post("/phone/send-code", json={"phone_number": PHONE})

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "60"
    assert "Twilio" not in response.json()["detail"]["reason"]


def test_requires_authentication(services):
    app = FastAPI()
    app.include_router(digest_router)
    app.state.digest_services = services

    response = TestClient(app).post("/phone/send-code", json={"phone_number": PHONE})

    assert response.status_code in (401, 403)
