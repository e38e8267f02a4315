from urllib.parse import parse_qs

import httpx
import pytest

from app.features.digest_delivery.domain import Channel, NotificationStatus
from app.features.digest_delivery.providers import (
    TelephonyProviderError,
    TelephonyTimeoutError,
    TwilioTelephonyClient,
    map_provider_status,
    render_say_markup,
    validate_signature,
)
from app.features.digest_delivery.providers.twilio_client import compute_signature

BASE_URL = "https://api.twilio.test/2010-04-01"


def _client(handler, **overrides) -> TwilioTelephonyClient:
    options = {
        "account_sid": "AC123",
        "auth_token": "secret-token",
        "from_number": "+15550001111",
        "whatsapp_number": "+14155238886",
        "base_url": BASE_URL,
        "http_client": httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    }
    options.update(overrides)
    return TwilioTelephonyClient(**options)


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_create_call_posts_twiml_with_basic_auth():
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(201, json={"sid": "CA42", "status": "queued"})

    client = _client(handler)
    result = await client.create_call(
        "+15551234567", "<Response/>", ring_timeout_s=30, status_callback="https://cb.test/s"
    )

    request = seen["request"]
    form = _form(request)
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/Accounts/AC123/Calls.json"
    assert request.headers["Authorization"].startswith("Basic ")
    assert form["To"] == "+15551234567"
    assert form["From"] == "+15550001111"
    assert form["Twiml"] == "<Response/>"
    assert form["Timeout"] == "30"
    assert form["StatusCallback"] == "https://cb.test/s"
    assert result.reference_id == "CA42"
    assert result.status == NotificationStatus.QUEUED
    await client.close()


@pytest.mark.asyncio
async def test_whatsapp_message_uses_prefixed_addresses():
    seen = {}

    def handler(request):
        seen["form"] = _form(request)
        return httpx.Response(201, json={"sid": "SM1", "status": "accepted"})

    client = _client(handler)
    await client.send_message("+15551234567", "hello", Channel.WHATSAPP)

    assert seen["form"]["To"] == "whatsapp:+15551234567"
    assert seen["form"]["From"] == "whatsapp:+14155238886"
    await client.close()


@pytest.mark.asyncio
async def test_whatsapp_without_sender_number_fails():
    client = _client(
        lambda request: httpx.Response(201, json={"sid": "SM1"}), whatsapp_number=None
    )

    with pytest.raises(TelephonyProviderError):
        await client.send_message("+15551234567", "hello", Channel.WHATSAPP)
    await client.close()


@pytest.mark.asyncio
async def test_api_error_carries_status_and_message():
    def handler(request):
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    client = _client(handler)
    with pytest.raises(TelephonyProviderError) as exc_info:
        await client.send_message("+15551234567", "hello")

    assert exc_info.value.status_code == 400
    assert exc_info.value.response_data["code"] == 21211
    assert "Invalid 'To' Phone Number" in str(exc_info.value)
    assert not isinstance(exc_info.value, TelephonyTimeoutError)
    await client.close()


@pytest.mark.asyncio
async def test_timeout_is_distinguished():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(TelephonyTimeoutError):
        await client.create_call("+15551234567", "<Response/>")
    await client.close()


@pytest.mark.asyncio
async def test_unconfigured_client_never_calls_out():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(201, json={"sid": "SM1"})

    client = _client(handler, account_sid=None)
    assert not client.configured
    with pytest.raises(TelephonyProviderError):
        await client.send_message("+15551234567", "hello")
    assert calls == []
    await client.close()


@pytest.mark.asyncio
async def test_fetch_status_reads_duration():
    def handler(request):
        assert request.url.path.endswith("/Accounts/AC123/Calls/CA42.json")
        return httpx.Response(200, json={"sid": "CA42", "status": "completed", "duration": "57"})

    client = _client(handler)
    result = await client.fetch_status("CA42", Channel.VOICE)

    assert result.status == NotificationStatus.DELIVERED
    assert result.duration_seconds == 57
    await client.close()


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("queued", NotificationStatus.QUEUED),
        ("ringing", NotificationStatus.IN_PROGRESS),
        ("In-Progress", NotificationStatus.IN_PROGRESS),
        ("completed", NotificationStatus.DELIVERED),
        ("read", NotificationStatus.DELIVERED),
        ("busy", NotificationStatus.FAILED),
        ("undelivered", NotificationStatus.FAILED),
        ("teleported", None),
        (None, None),
    ],
)
def test_map_provider_status(raw, expected):
    assert map_provider_status(raw) == expected


def test_say_markup_escapes_script():
    markup = render_say_markup("Tom & Jerry <urgent>", "Polly.Joanna")

    assert "Tom &amp; Jerry &lt;urgent&gt;" in markup
    assert '<prosody rate="90%">' in markup
    assert markup.count('<Say voice="Polly.Joanna">') == 2


def test_signature_validation():
    url = "https://example.test/notifications/provider-status"
    params = {"CallSid": "CA42", "CallStatus": "completed"}
    signature = compute_signature("secret-token", url, params)

    assert validate_signature("secret-token", url, params, signature)
    assert not validate_signature("other-token", url, params, signature)
    assert not validate_signature("secret-token", url, {**params, "CallStatus": "busy"}, signature)
    assert not validate_signature(None, url, params, signature)
    assert not validate_signature("secret-token", url, params, None)
