"""
Phone verification sessions.

One session per (user, phone) lives in Redis as JSON:

    NONE -> CODE_SENT -> VERIFIED
                |-> EXPIRED   (absolute expiry passed)
                |-> LOCKED    (attempt cap reached)

Every read-modify-write on a key happens under a Redis lock for that key,
so two concurrent verifications of the right code cannot both succeed.
"""

import hmac
import json
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from redis.exceptions import RedisError

from app.config import Settings
from app.features.digest_delivery.domain import (
    Channel,
    CodeAlreadyConsumed,
    CodeExpired,
    CodeMismatch,
    ProviderUnavailable,
    TooManyAttempts,
    VerificationNotStarted,
    VerificationSession,
    VerificationState,
    validate_destination,
)
from app.features.digest_delivery.providers import TelephonyProviderError, TwilioTelephonyClient
from app.infrastructure.observability.logging import get_logger, log_verification
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

SESSION_KEY_PREFIX = "phone_verification"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VerificationSessionManager:
    def __init__(
        self,
        redis: FastRedisClient,
        telephony: TwilioTelephonyClient,
        *,
        code_length: int = 6,
        code_ttl_s: int = 300,
        max_attempts: int = 3,
        grace_s: int = 900,
        verified_ttl_s: int = 90 * 24 * 3600,
        lock_timeout_s: float = 20.0,
        retry_after_s: int = 60,
        assistant_name: str = "mailieAI",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.redis = redis
        self.telephony = telephony
        self.code_length = code_length
        self.code_ttl_s = code_ttl_s
        self.max_attempts = max_attempts
        self.grace_s = grace_s
        self.verified_ttl_s = verified_ttl_s
        self.lock_timeout_s = lock_timeout_s
        self.retry_after_s = retry_after_s
        self.assistant_name = assistant_name
        self.clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, redis: FastRedisClient, telephony: TwilioTelephonyClient
    ) -> "VerificationSessionManager":
        return cls(
            redis,
            telephony,
            code_length=settings.VERIFICATION_CODE_LENGTH,
            code_ttl_s=settings.VERIFICATION_CODE_TTL_SECONDS,
            max_attempts=settings.VERIFICATION_MAX_ATTEMPTS,
            grace_s=settings.VERIFICATION_GRACE_SECONDS,
            verified_ttl_s=settings.VERIFIED_PHONE_TTL_SECONDS,
            lock_timeout_s=settings.VERIFICATION_LOCK_TIMEOUT_SECONDS,
            retry_after_s=settings.PROVIDER_RETRY_AFTER_SECONDS,
            assistant_name=settings.ASSISTANT_NAME,
        )

    # ------------------------------------------------------------------
    # storage helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(user_id: str, phone: str) -> str:
        return f"{SESSION_KEY_PREFIX}:{user_id}:{phone}"

    @asynccontextmanager
    async def _serialized(self, user_id: str, phone: str) -> AsyncIterator[None]:
        try:
            async with self.redis.lock(self._key(user_id, phone), timeout_s=self.lock_timeout_s):
                yield
        except (RedisError, ConnectionError) as e:
            logger.error(
                "Verification lock unavailable", user_id=user_id, phone=phone, error=str(e)
            )
            raise ProviderUnavailable(
                "Verification store unavailable", retry_after_seconds=self.retry_after_s
            ) from e

    async def _load(self, user_id: str, phone: str) -> VerificationSession | None:
        try:
            raw = await self.redis.get_strict(self._key(user_id, phone))
        except (RedisError, ConnectionError) as e:
            logger.error(
                "Verification session read failed", user_id=user_id, phone=phone, error=str(e)
            )
            raise ProviderUnavailable(
                "Verification store unavailable", retry_after_seconds=self.retry_after_s
            ) from e
        if not raw:
            return None
        try:
            return VerificationSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable verification session", error=str(e))
            return None

    def _ttl_for(self, session: VerificationSession, now: datetime) -> int:
        if session.state == VerificationState.VERIFIED:
            return self.verified_ttl_s
        remaining = int((session.expires_at - now).total_seconds())
        # Redis treats a zero TTL as "no expiry"
        return max(1, max(remaining, 0) + self.grace_s)

    async def _save(self, session: VerificationSession, now: datetime) -> None:
        key = self._key(session.user_id, session.phone)
        stored = await self.redis.set_with_ttl(
            key, json.dumps(session.to_dict()), self._ttl_for(session, now)
        )
        if not stored:
            raise ProviderUnavailable(
                "Verification store unavailable", retry_after_seconds=self.retry_after_s
            )

    def _generate_code(self) -> str:
        return f"{secrets.randbelow(10**self.code_length):0{self.code_length}d}"

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def send_code(self, user_id: str, phone: str) -> VerificationSession:
        """
        Issue a fresh code and text it to the phone.

        Allowed from every state. The new session replaces any previous one
        only after the SMS has been accepted, so a provider failure leaves
        the previous session exactly as it was.
        """
        validate_destination(phone)
        async with self._serialized(user_id, phone):
            code = self._generate_code()
            now = self.clock()
            minutes = max(1, self.code_ttl_s // 60)
            body = (
                f"Your {self.assistant_name} verification code is {code}. "
                f"It expires in {minutes} minutes."
            )

            try:
                await self.telephony.send_message(phone, body, Channel.SMS)
            except TelephonyProviderError as e:
                log_verification(user_id, phone, "provider_unavailable")
                raise ProviderUnavailable(
                    f"Could not send verification code: {e}",
                    retry_after_seconds=self.retry_after_s,
                ) from e

            session = VerificationSession(
                user_id=user_id,
                phone=phone,
                code=code,
                state=VerificationState.CODE_SENT,
                created_at=now,
                expires_at=now + timedelta(seconds=self.code_ttl_s),
            )
            await self._save(session, now)

        log_verification(user_id, phone, "code_sent")
        return session

    async def verify_code(self, user_id: str, phone: str, candidate: str) -> VerificationSession:
        """Check a candidate code. Only a CODE_SENT session can succeed."""
        validate_destination(phone)
        async with self._serialized(user_id, phone):
            session = await self._load(user_id, phone)
            now = self.clock()

            if session is None:
                log_verification(user_id, phone, "not_started")
                raise VerificationNotStarted()
            if session.state == VerificationState.VERIFIED:
                log_verification(user_id, phone, "already_consumed")
                raise CodeAlreadyConsumed()
            if session.state == VerificationState.LOCKED:
                log_verification(user_id, phone, "locked", attempts=session.attempts)
                raise TooManyAttempts()
            if session.state == VerificationState.EXPIRED:
                raise CodeExpired()

            if session.is_expired(now):
                await self._save(replace(session, state=VerificationState.EXPIRED), now)
                log_verification(user_id, phone, "expired")
                raise CodeExpired()

            if not hmac.compare_digest(session.code.encode(), (candidate or "").strip().encode()):
                attempts = session.attempts + 1
                if attempts >= self.max_attempts:
                    await self._save(
                        replace(session, attempts=attempts, state=VerificationState.LOCKED), now
                    )
                    log_verification(user_id, phone, "locked", attempts=attempts)
                    raise TooManyAttempts()

                await self._save(replace(session, attempts=attempts), now)
                log_verification(user_id, phone, "mismatch", attempts=attempts)
                raise CodeMismatch(attempts_remaining=self.max_attempts - attempts)

            verified = replace(
                session,
                state=VerificationState.VERIFIED,
                consumed=True,
                verified_at=now,
            )
            await self._save(verified, now)

        log_verification(user_id, phone, "verified", attempts=verified.attempts)
        return verified

    async def get_state(self, user_id: str, phone: str) -> VerificationState:
        """Read-only view; a pending session past its expiry reads as EXPIRED."""
        session = await self._load(user_id, phone)
        if session is None:
            return VerificationState.NONE
        if session.state == VerificationState.CODE_SENT and session.is_expired(self.clock()):
            return VerificationState.EXPIRED
        return session.state

    async def is_verified(self, user_id: str, phone: str) -> bool:
        return await self.get_state(user_id, phone) == VerificationState.VERIFIED
