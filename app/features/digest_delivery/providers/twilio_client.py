"""
Twilio REST adapter for outbound calls, SMS and WhatsApp.

Talks to the 2010-04-01 REST API directly over httpx. Every request is
bounded by an explicit timeout and is never retried here: a retried call
request can ring a real phone twice.
"""

import base64
import hashlib
import hmac
from dataclasses import dataclass
from xml.sax.saxutils import escape, quoteattr

import httpx

from app.config import Settings
from app.features.digest_delivery.domain import Channel, NotificationStatus
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"
MAX_MESSAGE_LENGTH = 1600

# Call and message statuses reported by Twilio, folded onto our closed set
PROVIDER_STATUS_MAP: dict[str, NotificationStatus] = {
    "queued": NotificationStatus.QUEUED,
    "accepted": NotificationStatus.QUEUED,
    "scheduled": NotificationStatus.QUEUED,
    "initiated": NotificationStatus.QUEUED,
    "ringing": NotificationStatus.IN_PROGRESS,
    "in-progress": NotificationStatus.IN_PROGRESS,
    "sending": NotificationStatus.IN_PROGRESS,
    "sent": NotificationStatus.IN_PROGRESS,
    "completed": NotificationStatus.DELIVERED,
    "delivered": NotificationStatus.DELIVERED,
    "read": NotificationStatus.DELIVERED,
    "busy": NotificationStatus.FAILED,
    "no-answer": NotificationStatus.FAILED,
    "failed": NotificationStatus.FAILED,
    "canceled": NotificationStatus.FAILED,
    "undelivered": NotificationStatus.FAILED,
}


def map_provider_status(raw_status: str | None) -> NotificationStatus | None:
    """Map a Twilio status string; None when the status is unknown."""
    if not raw_status:
        return None
    return PROVIDER_STATUS_MAP.get(raw_status.strip().lower())


def render_say_markup(script: str, voice: str) -> str:
    """TwiML that reads the script slightly slower than normal, then hangs up."""
    voice_attr = quoteattr(voice)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        f'<Say voice={voice_attr}><prosody rate="90%">{escape(script)}</prosody></Say>'
        f"<Say voice={voice_attr}>Goodbye!</Say>"
        "</Response>"
    )


def compute_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """Twilio request signature: HMAC-SHA1 over the URL plus sorted form params."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def validate_signature(
    auth_token: str | None, url: str, params: dict[str, str], signature: str | None
) -> bool:
    if not auth_token or not signature:
        return False
    expected = compute_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


class TelephonyProviderError(Exception):
    """Raised when Twilio rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class TelephonyTimeoutError(TelephonyProviderError):
    """The request timed out before Twilio acknowledged it."""


@dataclass(slots=True, frozen=True)
class ProviderResult:
    reference_id: str
    raw_status: str
    status: NotificationStatus
    duration_seconds: int | None = None


class TwilioTelephonyClient:
    """Thin async wrapper around the Calls and Messages resources."""

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        whatsapp_number: str | None = None,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_s: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.whatsapp_number = whatsapp_number
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioTelephonyClient":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
            whatsapp_number=settings.TWILIO_WHATSAPP_NUMBER,
            base_url=settings.TWILIO_API_BASE_URL,
            timeout_s=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def close(self) -> None:
        await self._client.aclose()

    def _account_url(self, resource: str) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/{resource}"

    async def _request(self, method: str, url: str, operation: str, **kwargs) -> dict:
        if not self.configured:
            raise TelephonyProviderError("Twilio credentials are not configured")

        try:
            response = await self._client.request(
                method,
                url,
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout_s,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning("Twilio request timed out", operation=operation, error=str(e))
            raise TelephonyTimeoutError(f"Twilio {operation} timed out") from e
        except httpx.RequestError as e:
            logger.error("Twilio request failed", operation=operation, error=str(e))
            raise TelephonyProviderError(f"Twilio {operation} failed: {e}") from e

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        if not response.is_success:
            message = data.get("message") or response.reason_phrase
            logger.error(
                "Twilio API error",
                operation=operation,
                status_code=response.status_code,
                twilio_code=data.get("code"),
                message=message,
            )
            raise TelephonyProviderError(
                f"Twilio {operation} rejected: {message}",
                status_code=response.status_code,
                response_data=data,
            )

        return data

    @staticmethod
    def _to_result(data: dict, operation: str) -> ProviderResult:
        reference_id = data.get("sid")
        raw_status = data.get("status") or "queued"
        if not reference_id:
            raise TelephonyProviderError(
                f"Twilio {operation} response missing sid", response_data=data
            )
        duration = data.get("duration")
        return ProviderResult(
            reference_id=reference_id,
            raw_status=raw_status,
            status=map_provider_status(raw_status) or NotificationStatus.QUEUED,
            duration_seconds=int(duration) if duration not in (None, "") else None,
        )

    async def create_call(
        self,
        to: str,
        twiml: str,
        ring_timeout_s: int = 30,
        status_callback: str | None = None,
    ) -> ProviderResult:
        form = {
            "To": to,
            "From": self.from_number,
            "Twiml": twiml,
            "Timeout": str(ring_timeout_s),
        }
        if status_callback:
            form["StatusCallback"] = status_callback
            form["StatusCallbackMethod"] = "POST"

        data = await self._request("POST", self._account_url("Calls.json"), "create_call", data=form)
        result = self._to_result(data, "create_call")
        logger.info("Twilio call created", call_sid=result.reference_id, status=result.raw_status)
        return result

    async def send_message(
        self,
        to: str,
        body: str,
        channel: Channel = Channel.SMS,
        status_callback: str | None = None,
    ) -> ProviderResult:
        if channel == Channel.WHATSAPP:
            if not self.whatsapp_number:
                raise TelephonyProviderError("Twilio WhatsApp sender is not configured")
            sender, recipient = f"whatsapp:{self.whatsapp_number}", f"whatsapp:{to}"
        else:
            sender, recipient = self.from_number, to

        form = {"To": recipient, "From": sender, "Body": body[:MAX_MESSAGE_LENGTH]}
        if status_callback:
            form["StatusCallback"] = status_callback

        data = await self._request(
            "POST", self._account_url("Messages.json"), "send_message", data=form
        )
        result = self._to_result(data, "send_message")
        logger.info(
            "Twilio message created",
            message_sid=result.reference_id,
            channel=channel.value,
            status=result.raw_status,
        )
        return result

    async def fetch_status(self, reference_id: str, channel: Channel) -> ProviderResult:
        resource = "Calls" if channel == Channel.VOICE else "Messages"
        data = await self._request(
            "GET", self._account_url(f"{resource}/{reference_id}.json"), "fetch_status"
        )
        return self._to_result(data, "fetch_status")
