"""
ElevenLabs speech adapter.

Only voice discovery is used on the call path: the chosen voice is mapped to
a telephony built-in voice, so a slow or failing speech provider degrades to
the default voice instead of blocking a dispatch.
"""

from dataclasses import dataclass

import httpx

from app.config import Settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Voice ids offered to users -> Twilio (Amazon Polly) built-in voices
TELEPHONY_VOICE_MAP: dict[str, str] = {
    "rachel": "Polly.Joanna",
    "adam": "Polly.Matthew",
    "domi": "Polly.Amy",
    "elli": "Polly.Emma",
    "josh": "Polly.Joey",
    "arnold": "Polly.Brian",
    "bella": "Polly.Kimberly",
    "antoni": "Polly.Russell",
    "sarah": "Polly.Salli",
}
DEFAULT_TELEPHONY_VOICE = "Polly.Joanna"


def telephony_voice_for(voice_id: str | None) -> str:
    return TELEPHONY_VOICE_MAP.get((voice_id or "").lower(), DEFAULT_TELEPHONY_VOICE)


@dataclass(slots=True, frozen=True)
class Voice:
    voice_id: str
    name: str


class ElevenLabsSpeechClient:
    def __init__(
        self,
        api_key: str | None,
        default_voice_id: str = "rachel",
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout_s: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.default_voice_id = default_voice_id
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElevenLabsSpeechClient":
        return cls(
            api_key=settings.ELEVENLABS_API_KEY,
            default_voice_id=settings.DEFAULT_VOICE_ID,
            base_url=settings.ELEVENLABS_API_BASE_URL,
            timeout_s=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        await self._client.aclose()

    async def list_voices(self) -> list[Voice]:
        """Available voices, or an empty list when the provider cannot be used."""
        if not self.configured:
            return []

        try:
            response = await self._client.get(
                f"{self.base_url}/voices",
                headers={"xi-api-key": self.api_key, "Accept": "application/json"},
                timeout=self.timeout_s,
            )
        except httpx.RequestError as e:
            logger.warning("ElevenLabs voice listing failed", error=str(e))
            return []

        if not response.is_success:
            logger.warning("ElevenLabs voice listing rejected", status_code=response.status_code)
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning("ElevenLabs returned a non-JSON voice list")
            return []

        voices = []
        for item in payload.get("voices") or []:
            voice_id = item.get("voice_id")
            if voice_id:
                voices.append(Voice(voice_id=voice_id, name=item.get("name") or voice_id))
        return voices

    async def resolve_voice(self, requested: str | None) -> str:
        """
        Pick the voice for a call. Never raises.

        A requested voice is honoured when the provider lists it (by id or
        by name, case-insensitively); otherwise the default voice is used.
        """
        if not requested:
            return self.default_voice_id

        voices = await self.list_voices()
        wanted = requested.lower()
        for voice in voices:
            if wanted in (voice.voice_id.lower(), voice.name.lower()):
                return requested

        logger.info(
            "Falling back to default voice",
            requested_voice=requested,
            default_voice=self.default_voice_id,
            voices_available=len(voices),
        )
        return self.default_voice_id
