"""
External provider adapters (telephony and speech).
"""

from .elevenlabs_client import ElevenLabsSpeechClient, Voice, telephony_voice_for
from .twilio_client import (
    ProviderResult,
    TelephonyProviderError,
    TelephonyTimeoutError,
    TwilioTelephonyClient,
    map_provider_status,
    render_say_markup,
    validate_signature,
)

__all__ = [
    "ElevenLabsSpeechClient",
    "ProviderResult",
    "TelephonyProviderError",
    "TelephonyTimeoutError",
    "TwilioTelephonyClient",
    "Voice",
    "map_provider_status",
    "render_say_markup",
    "telephony_voice_for",
    "validate_signature",
]
