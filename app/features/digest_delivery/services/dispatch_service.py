"""
Channel dispatch for generated digests.

Each channel (voice, SMS, WhatsApp) has one handler behind a common
interface; the dispatcher owns the shared rules:

- the destination must be E.164 and verified before any provider is called,
- every attempt that reaches the provider leaves exactly one record,
- nothing is retried automatically (a retry could ring a real phone twice).
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from redis.exceptions import RedisError

from app.config import Settings
from app.features.digest_delivery.domain import (
    AlreadyDeliveredToday,
    Channel,
    DigestScript,
    NotificationRecord,
    NotificationStatus,
    NotVerified,
    ProviderUnavailable,
    validate_destination,
)
from app.features.digest_delivery.providers import (
    ElevenLabsSpeechClient,
    ProviderResult,
    TelephonyProviderError,
    TelephonyTimeoutError,
    TwilioTelephonyClient,
    map_provider_status,
    render_say_markup,
    telephony_voice_for,
)
from app.features.digest_delivery.providers.twilio_client import MAX_MESSAGE_LENGTH
from app.features.digest_delivery.repository import NotificationRepository
from app.features.digest_delivery.services.verification_service import (
    VerificationSessionManager,
)
from app.infrastructure.observability.logging import get_logger, log_dispatch
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def truncate_message(body: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(body) <= limit:
        return body
    return body[: limit - 1].rstrip() + "…"


def format_whatsapp_message(digest: DigestScript, assistant_name: str) -> str:
    lines = [f"🔔 *{assistant_name} Digest*", "", digest.script]

    if digest.entries:
        lines.append("")
        for position, entry in enumerate(digest.entries, start=1):
            marker = "📅" if entry.is_meeting else "📧"
            subject = entry.latest_subject or "(no subject)"
            lines.append(f"{position}. {marker} *{entry.name}*: {subject}")
        lines += [
            "",
            f"📊 {digest.important_found} priority senders, {digest.meetings_found} meeting(s)",
        ]

    lines += ["", "Reply STOP to unsubscribe."]
    return truncate_message("\n".join(lines))


class ChannelHandler(ABC):
    channel: Channel

    async def prepare_voice(self, voice_id: str | None) -> str | None:
        """Voice actually used on this channel, recorded even if delivery fails."""
        return None

    @abstractmethod
    async def deliver(
        self, destination: str, digest: DigestScript, voice_id: str | None
    ) -> ProviderResult:
        """Hand the digest to the provider. Raises TelephonyProviderError."""


class VoiceChannelHandler(ChannelHandler):
    channel = Channel.VOICE

    def __init__(
        self,
        telephony: TwilioTelephonyClient,
        speech: ElevenLabsSpeechClient,
        ring_timeout_s: int = 30,
        status_callback: str | None = None,
    ):
        self.telephony = telephony
        self.speech = speech
        self.ring_timeout_s = ring_timeout_s
        self.status_callback = status_callback

    async def prepare_voice(self, voice_id: str | None) -> str | None:
        return await self.speech.resolve_voice(voice_id)

    async def deliver(
        self, destination: str, digest: DigestScript, voice_id: str | None
    ) -> ProviderResult:
        markup = render_say_markup(digest.script, telephony_voice_for(voice_id))
        return await self.telephony.create_call(
            destination,
            markup,
            ring_timeout_s=self.ring_timeout_s,
            status_callback=self.status_callback,
        )


class SmsChannelHandler(ChannelHandler):
    channel = Channel.SMS

    def __init__(self, telephony: TwilioTelephonyClient, status_callback: str | None = None):
        self.telephony = telephony
        self.status_callback = status_callback

    async def deliver(
        self, destination: str, digest: DigestScript, voice_id: str | None
    ) -> ProviderResult:
        return await self.telephony.send_message(
            destination,
            truncate_message(digest.script),
            Channel.SMS,
            status_callback=self.status_callback,
        )


class WhatsAppChannelHandler(ChannelHandler):
    channel = Channel.WHATSAPP

    def __init__(
        self,
        telephony: TwilioTelephonyClient,
        assistant_name: str,
        status_callback: str | None = None,
    ):
        self.telephony = telephony
        self.assistant_name = assistant_name
        self.status_callback = status_callback

    async def deliver(
        self, destination: str, digest: DigestScript, voice_id: str | None
    ) -> ProviderResult:
        return await self.telephony.send_message(
            destination,
            format_whatsapp_message(digest, self.assistant_name),
            Channel.WHATSAPP,
            status_callback=self.status_callback,
        )


class ChannelDispatcher:
    def __init__(
        self,
        verification: VerificationSessionManager,
        repository: NotificationRepository,
        handlers: dict[Channel, ChannelHandler],
        locks: FastRedisClient,
        telephony: TwilioTelephonyClient | None = None,
        retry_after_s: int = 60,
        lock_timeout_s: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.verification = verification
        self.repository = repository
        self.handlers = handlers
        self.locks = locks
        self.lock_timeout_s = lock_timeout_s
        self.telephony = telephony
        self.retry_after_s = retry_after_s
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        verification: VerificationSessionManager,
        repository: NotificationRepository,
        locks: FastRedisClient,
        telephony: TwilioTelephonyClient,
        speech: ElevenLabsSpeechClient,
    ) -> "ChannelDispatcher":
        callback = settings.TWILIO_STATUS_CALLBACK_URL
        handlers: dict[Channel, ChannelHandler] = {
            Channel.VOICE: VoiceChannelHandler(
                telephony, speech, settings.CALL_RING_TIMEOUT_SECONDS, callback
            ),
            Channel.SMS: SmsChannelHandler(telephony, callback),
            Channel.WHATSAPP: WhatsAppChannelHandler(telephony, settings.ASSISTANT_NAME, callback),
        }
        return cls(
            verification,
            repository,
            handlers,
            locks,
            telephony=telephony,
            retry_after_s=settings.PROVIDER_RETRY_AFTER_SECONDS,
            lock_timeout_s=settings.DISPATCH_LOCK_TIMEOUT_SECONDS,
        )

    def _new_record(
        self,
        user_id: str,
        destination: str,
        channel: Channel,
        digest: DigestScript,
        status: NotificationStatus,
        provider_ref: str | None = None,
        voice_id: str | None = None,
        error_message: str | None = None,
    ) -> NotificationRecord:
        now = self.clock()
        return NotificationRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            destination=destination,
            channel=channel,
            status=status,
            provider_ref=provider_ref,
            email_count=digest.emails_analyzed,
            script=digest.script,
            voice_id=voice_id,
            error_message=error_message,
            created_at=now,
            updated_at=now,
        )

    async def dispatch(
        self,
        user_id: str,
        destination: str,
        channel: Channel | str,
        digest: DigestScript,
        voice_id: str | None = None,
    ) -> NotificationRecord:
        """
        Deliver one digest over one channel.

        Raises:
            MalformedDestination / NotVerified: before any provider call,
                nothing is recorded.
            ProviderUnavailable: the provider rejected the request (a failed
                record is written and attached) or timed out before accepting
                it (nothing is recorded).
        """
        channel = Channel(channel)
        validate_destination(destination)
        handler = self.handlers[channel]

        # WhatsApp rides on the same verified number as voice and SMS
        if not await self.verification.is_verified(user_id, destination):
            logger.warning(
                "Dispatch to unverified destination", user_id=user_id, phone=destination
            )
            raise NotVerified()

        voice_id = await handler.prepare_voice(voice_id)

        try:
            result = await handler.deliver(destination, digest, voice_id)
        except TelephonyTimeoutError as e:
            log_dispatch(user_id, channel.value, "timeout", error=str(e))
            raise ProviderUnavailable(str(e), retry_after_seconds=self.retry_after_s) from e
        except TelephonyProviderError as e:
            failed = await self.repository.create(
                self._new_record(
                    user_id,
                    destination,
                    channel,
                    digest,
                    NotificationStatus.FAILED,
                    voice_id=voice_id,
                    error_message=str(e),
                )
            )
            log_dispatch(user_id, channel.value, NotificationStatus.FAILED.value, error=str(e))
            raise ProviderUnavailable(
                str(e), retry_after_seconds=self.retry_after_s, record=failed
            ) from e

        record = await self.repository.create(
            self._new_record(
                user_id,
                destination,
                channel,
                digest,
                result.status,
                provider_ref=result.reference_id,
                voice_id=voice_id,
            )
        )
        log_dispatch(user_id, channel.value, record.status.value, provider_ref=record.provider_ref)
        return record

    @asynccontextmanager
    async def _daily_slot(self, user_id: str, channel: Channel) -> AsyncIterator[None]:
        try:
            async with self.locks.lock(
                f"digest_dispatch:{user_id}:{channel.value}",
                timeout_s=self.lock_timeout_s,
                blocking_timeout_s=self.lock_timeout_s,
            ):
                yield
        except (RedisError, ConnectionError) as e:
            logger.error(
                "Dispatch lock unavailable", user_id=user_id, channel=channel.value, error=str(e)
            )
            raise ProviderUnavailable(
                "Dispatch lock unavailable", retry_after_seconds=self.retry_after_s
            ) from e

    async def dispatch_once_per_day(
        self,
        user_id: str,
        destination: str,
        channel: Channel | str,
        digest: DigestScript,
        voice_id: str | None = None,
    ) -> NotificationRecord:
        """
        Like `dispatch`, but at most one non-failed delivery per user, channel
        and UTC day. The check and the delivery run under one lock, so two
        concurrent requests cannot both pass the check.

        Raises:
            AlreadyDeliveredToday: a delivery already went out today.
        """
        channel = Channel(channel)
        validate_destination(destination)

        async with self._daily_slot(user_id, channel):
            if await self.has_dispatched_today(user_id, channel):
                log_dispatch(user_id, channel.value, "already_delivered_today")
                raise AlreadyDeliveredToday()
            return await self.dispatch(user_id, destination, channel, digest, voice_id)

    async def apply_provider_status(
        self,
        provider_ref: str,
        raw_status: str,
        duration_seconds: int | None = None,
    ) -> NotificationRecord | None:
        """
        Apply an asynchronous status report. Safe to call repeatedly with the
        same report; terminal records are never changed.
        """
        status = map_provider_status(raw_status)
        if status is None:
            logger.warning(
                "Ignoring unknown provider status", provider_ref=provider_ref, raw=raw_status
            )
            return None

        record = await self.repository.get_by_provider_ref(provider_ref)
        if record is None:
            logger.warning(
                "Status report for unknown provider reference", provider_ref=provider_ref
            )
            return None

        updated = record.with_status(status, duration_seconds)
        if updated == record:
            return record

        saved = await self.repository.save_status(updated)
        logger.info(
            "Notification status updated",
            record_id=record.id,
            previous_status=record.status.value,
            status=saved.status.value if saved else None,
        )
        return saved

    async def refresh_status(self, user_id: str, record_id: str) -> NotificationRecord | None:
        """Poll the provider for a record that has not reached a terminal status."""
        record = await self.repository.get(user_id, record_id)
        if record is None or record.status.is_terminal or not record.provider_ref:
            return record
        if self.telephony is None:
            return record

        try:
            result = await self.telephony.fetch_status(record.provider_ref, record.channel)
        except TelephonyProviderError as e:
            raise ProviderUnavailable(str(e), retry_after_seconds=self.retry_after_s) from e

        return await self.apply_provider_status(
            record.provider_ref, result.raw_status, result.duration_seconds
        )

    async def has_dispatched_today(self, user_id: str, channel: Channel | str) -> bool:
        now = self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.repository.count_since(user_id, Channel(channel), start_of_day) > 0

    async def list_history(self, user_id: str, limit: int = 50) -> list[NotificationRecord]:
        return await self.repository.list_for_user(user_id, limit)
