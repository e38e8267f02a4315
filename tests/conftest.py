from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.auth.verify import auth_dependency
from app.features.digest_delivery import DigestDeliveryServices, digest_router
from app.features.digest_delivery.domain import Channel
from app.features.digest_delivery.providers import Voice
from app.features.digest_delivery.services import (
    CategoryRuleService,
    ChannelDispatcher,
    DigestScriptGenerator,
    SmsChannelHandler,
    VerificationSessionManager,
    VoiceChannelHandler,
    WhatsAppChannelHandler,
)
from tests.fakes import (
    USER_ID,
    FakeClock,
    FakeRedis,
    FakeSpeech,
    FakeTelephony,
    InMemoryNotificationRepository,
    InMemoryRuleRepository,
    InMemorySenderRepository,
)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": USER_ID}

    return _override


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telephony():
    return FakeTelephony()


@pytest.fixture
def speech():
    return FakeSpeech(voices=[Voice(voice_id="rachel", name="Rachel"), Voice("adam", "Adam")])


@pytest.fixture
def sender_repository():
    return InMemorySenderRepository()


@pytest.fixture
def rule_repository(clock):
    return InMemoryRuleRepository(FakeClock(clock.now - timedelta(days=30)))


@pytest.fixture
def notification_repository():
    return InMemoryNotificationRepository()


@pytest.fixture
def verification(fake_redis, telephony, clock):
    return VerificationSessionManager(fake_redis, telephony, clock=clock)


@pytest.fixture
def dispatcher(verification, notification_repository, fake_redis, telephony, speech, clock):
    handlers = {
        Channel.VOICE: VoiceChannelHandler(telephony, speech),
        Channel.SMS: SmsChannelHandler(telephony),
        Channel.WHATSAPP: WhatsAppChannelHandler(telephony, "mailieAI"),
    }
    return ChannelDispatcher(
        verification,
        notification_repository,
        handlers,
        fake_redis,
        telephony=telephony,
        clock=clock,
    )


@pytest.fixture
def services(
    sender_repository, rule_repository, verification, dispatcher, telephony, speech
) -> DigestDeliveryServices:
    return DigestDeliveryServices(
        digest_generator=DigestScriptGenerator(sender_repository, rule_repository, "mailieAI"),
        verification=verification,
        dispatcher=dispatcher,
        rules=CategoryRuleService(rule_repository),
        telephony=telephony,
        speech=speech,
    )


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def client(services, apply_auth_override):
    app = FastAPI()
    app.include_router(digest_router)
    app.state.digest_services = services
    apply_auth_override(app)
    return TestClient(app)
