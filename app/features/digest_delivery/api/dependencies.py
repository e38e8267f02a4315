"""
Wiring for the digest delivery feature.

Provider clients and services are built once from settings during app
startup and handed to the routes through FastAPI dependencies; tests swap
the whole container with `app.dependency_overrides[get_services]`.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from app.config import Settings
from app.features.digest_delivery.providers import ElevenLabsSpeechClient, TwilioTelephonyClient
from app.features.digest_delivery.repository import (
    CategoryRuleRepository,
    NotificationRepository,
    SenderRepository,
)
from app.features.digest_delivery.services import (
    CategoryRuleService,
    ChannelDispatcher,
    DigestScriptGenerator,
    VerificationSessionManager,
)
from app.services.redis_client import FastRedisClient


@dataclass
class DigestDeliveryServices:
    digest_generator: DigestScriptGenerator
    verification: VerificationSessionManager
    dispatcher: ChannelDispatcher
    rules: CategoryRuleService
    telephony: TwilioTelephonyClient
    speech: ElevenLabsSpeechClient

    async def close(self) -> None:
        await self.telephony.close()
        await self.speech.close()


def build_services(settings: Settings, redis: FastRedisClient) -> DigestDeliveryServices:
    telephony = TwilioTelephonyClient.from_settings(settings)
    speech = ElevenLabsSpeechClient.from_settings(settings)
    rule_repository = CategoryRuleRepository()

    verification = VerificationSessionManager.from_settings(settings, redis, telephony)
    dispatcher = ChannelDispatcher.from_settings(
        settings, verification, NotificationRepository(), redis, telephony, speech
    )

    return DigestDeliveryServices(
        digest_generator=DigestScriptGenerator(
            SenderRepository(), rule_repository, settings.ASSISTANT_NAME
        ),
        verification=verification,
        dispatcher=dispatcher,
        rules=CategoryRuleService(rule_repository),
        telephony=telephony,
        speech=speech,
    )


def get_services(request: Request) -> DigestDeliveryServices:
    services = getattr(request.app.state, "digest_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Digest delivery services are not initialized",
        )
    return services
