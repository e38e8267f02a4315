import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from app.features.digest_delivery.domain import (
    CodeAlreadyConsumed,
    CodeExpired,
    CodeMismatch,
    MalformedDestination,
    ProviderUnavailable,
    TooManyAttempts,
    VerificationNotStarted,
    VerificationSession,
    VerificationState,
)
from app.features.digest_delivery.providers import TelephonyProviderError
from app.features.digest_delivery.services import VerificationSessionManager, verification_service
from tests.fakes import PHONE, USER_ID, FakeRedis


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


@pytest.mark.asyncio
async def test_send_code_texts_a_fresh_code(verification, telephony, clock):
    session = await verification.send_code(USER_ID, PHONE)

    assert session.state == VerificationState.CODE_SENT
    assert session.attempts == 0
    assert (session.expires_at - clock.now).total_seconds() == 300
    assert len(session.code) == 6 and session.code.isdigit()
    assert telephony.messages[-1]["to"] == PHONE
    assert telephony.last_code() == session.code
    assert await verification.get_state(USER_ID, PHONE) == VerificationState.CODE_SENT


@pytest.mark.asyncio
async def test_send_code_rejects_malformed_number(verification, telephony):
    with pytest.raises(MalformedDestination):
        await verification.send_code(USER_ID, "5551234567")

    assert telephony.messages == []


@pytest.mark.asyncio
async def test_correct_code_verifies_and_is_single_use(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    code = telephony.last_code()

    session = await verification.verify_code(USER_ID, PHONE, code)

    assert session.state == VerificationState.VERIFIED
    assert session.consumed is True
    assert await verification.is_verified(USER_ID, PHONE)

    with pytest.raises(CodeAlreadyConsumed):
        await verification.verify_code(USER_ID, PHONE, code)


@pytest.mark.asyncio
async def test_verify_without_session(verification):
    with pytest.raises(VerificationNotStarted):
        await verification.verify_code(USER_ID, PHONE, "123456")

    assert await verification.get_state(USER_ID, PHONE) == VerificationState.NONE


@pytest.mark.asyncio
async def test_third_wrong_attempt_locks_session(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    code = telephony.last_code()

    with pytest.raises(CodeMismatch) as first:
        await verification.verify_code(USER_ID, PHONE, _wrong(code))
    with pytest.raises(CodeMismatch) as second:
        await verification.verify_code(USER_ID, PHONE, _wrong(code))
    with pytest.raises(TooManyAttempts):
        await verification.verify_code(USER_ID, PHONE, _wrong(code))

    assert first.value.attempts_remaining == 2
    assert second.value.attempts_remaining == 1
    assert await verification.get_state(USER_ID, PHONE) == VerificationState.LOCKED

    # the correct code no longer helps
    with pytest.raises(TooManyAttempts):
        await verification.verify_code(USER_ID, PHONE, code)
    assert not await verification.is_verified(USER_ID, PHONE)


@pytest.mark.asyncio
async def test_code_expires_after_ttl(verification, telephony, clock):
    await verification.send_code(USER_ID, PHONE)
    code = telephony.last_code()

    clock.advance(301)

    assert await verification.get_state(USER_ID, PHONE) == VerificationState.EXPIRED
    with pytest.raises(CodeExpired):
        await verification.verify_code(USER_ID, PHONE, code)
    with pytest.raises(CodeExpired):
        await verification.verify_code(USER_ID, PHONE, code)


@pytest.mark.asyncio
async def test_resend_after_lock_starts_over(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    for _ in range(3):
        with pytest.raises((CodeMismatch, TooManyAttempts)):
            await verification.verify_code(USER_ID, PHONE, _wrong(telephony.last_code()))

    session = await verification.send_code(USER_ID, PHONE)

    assert session.state == VerificationState.CODE_SENT
    assert session.attempts == 0
    verified = await verification.verify_code(USER_ID, PHONE, telephony.last_code())
    assert verified.state == VerificationState.VERIFIED


@pytest.mark.asyncio
async def test_resend_after_verification_requires_reverifying(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    await verification.verify_code(USER_ID, PHONE, telephony.last_code())

    await verification.send_code(USER_ID, PHONE)

    assert not await verification.is_verified(USER_ID, PHONE)


@pytest.mark.asyncio
async def test_provider_failure_leaves_previous_session(verification, telephony, fake_redis):
    await verification.send_code(USER_ID, PHONE)
    before = dict(fake_redis.store)

    telephony.fail_with = TelephonyProviderError("Twilio send_message rejected: down", 503)
    with pytest.raises(ProviderUnavailable) as exc_info:
        await verification.send_code(USER_ID, PHONE)

    assert exc_info.value.retry_after_seconds == 60
    assert fake_redis.store == before


@pytest.mark.asyncio
async def test_provider_failure_on_first_send_creates_no_session(verification, telephony):
    telephony.fail_with = TelephonyProviderError("down")

    with pytest.raises(ProviderUnavailable):
        await verification.send_code(USER_ID, PHONE)

    assert await verification.get_state(USER_ID, PHONE) == VerificationState.NONE


@pytest.mark.asyncio
async def test_concurrent_correct_codes_verify_exactly_once(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    code = telephony.last_code()

    results = await asyncio.gather(
        verification.verify_code(USER_ID, PHONE, code),
        verification.verify_code(USER_ID, PHONE, code),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, VerificationSession)]
    consumed = [r for r in results if isinstance(r, CodeAlreadyConsumed)]
    assert len(successes) == 1
    assert len(consumed) == 1


@pytest.mark.asyncio
async def test_sessions_are_scoped_per_user_and_phone(verification, telephony):
    await verification.send_code(USER_ID, PHONE)
    await verification.verify_code(USER_ID, PHONE, telephony.last_code())

    assert not await verification.is_verified("user-999", PHONE)
    assert not await verification.is_verified(USER_ID, "+15557654321")


@pytest.mark.asyncio
async def test_session_is_stored_with_grace_ttl(verification, fake_redis):
    await verification.send_code(USER_ID, PHONE)

    key = f"phone_verification:{USER_ID}:{PHONE}"
    assert json.loads(fake_redis.store[key])["state"] == "code_sent"
    assert fake_redis.ttls[key] == 300 + 900


class LockFailingRedis(FakeRedis):
    @asynccontextmanager
    async def lock(self, key, timeout_s=10.0, blocking_timeout_s=5.0):
        raise LockError("Unable to acquire lock within the time specified")
        yield


@pytest.mark.asyncio
async def test_lock_failure_is_reported_as_unavailable(telephony, clock):
    manager = VerificationSessionManager(LockFailingRedis(), telephony, clock=clock)

    with pytest.raises(ProviderUnavailable):
        await manager.send_code(USER_ID, PHONE)

    assert telephony.messages == []


class RecordingLogger:
    def __init__(self):
        self.entries: list[dict] = []

    def error(self, event, **kw):
        self.entries.append({"event": event, **kw})

    warning = info = error


@pytest.mark.asyncio
async def test_lock_failure_log_keeps_phone_in_masked_field(telephony, clock, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(verification_service, "logger", recorder)
    manager = VerificationSessionManager(LockFailingRedis(), telephony, clock=clock)

    with pytest.raises(ProviderUnavailable):
        await manager.send_code(USER_ID, PHONE)

    entry = next(e for e in recorder.entries if e["event"] == "Verification lock unavailable")
    assert entry["phone"] == PHONE
    assert entry["user_id"] == USER_ID
    assert "key" not in entry


class ReadFailingRedis(FakeRedis):
    def __init__(self):
        super().__init__()
        self.fail_reads = False

    async def get_strict(self, key):
        if self.fail_reads:
            raise RedisConnectionError("Connection reset by peer")
        return await super().get_strict(key)


@pytest.mark.asyncio
async def test_store_outage_is_not_mistaken_for_missing_session(telephony, clock):
    redis = ReadFailingRedis()
    manager = VerificationSessionManager(redis, telephony, clock=clock)
    await manager.send_code(USER_ID, PHONE)
    redis.fail_reads = True

    with pytest.raises(ProviderUnavailable) as exc_info:
        await manager.verify_code(USER_ID, PHONE, telephony.last_code())
    assert exc_info.value.retry_after_seconds == 60

    with pytest.raises(ProviderUnavailable):
        await manager.is_verified(USER_ID, PHONE)

    redis.fail_reads = False
    assert await manager.get_state(USER_ID, PHONE) == VerificationState.CODE_SENT


@pytest.mark.asyncio
async def test_expired_session_without_grace_still_expires_in_redis(telephony, clock, fake_redis):
    manager = VerificationSessionManager(fake_redis, telephony, grace_s=0, clock=clock)
    await manager.send_code(USER_ID, PHONE)
    clock.advance(301)

    with pytest.raises(CodeExpired):
        await manager.verify_code(USER_ID, PHONE, telephony.last_code())

    key = f"phone_verification:{USER_ID}:{PHONE}"
    assert json.loads(fake_redis.store[key])["state"] == "expired"
    assert fake_redis.ttls[key] >= 1
