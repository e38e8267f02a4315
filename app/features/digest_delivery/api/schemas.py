"""
Request and response models for the digest delivery endpoints.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.features.digest_delivery.domain import (
    Category,
    CategoryRule,
    Channel,
    DigestScript,
    NotificationRecord,
    NotificationStatus,
    VerificationState,
)


class PhoneNumberRequest(BaseModel):
    phone_number: str = Field(..., description="E.164 number, e.g. +15551234567")


class VerifyCodeRequest(PhoneNumberRequest):
    code: str = Field(..., min_length=1, max_length=12)


class DeliverDigestRequest(PhoneNumberRequest):
    channel: Channel = Channel.VOICE
    voice_id: str | None = None
    once_per_day: bool = False


class CategoryRuleRequest(BaseModel):
    domain: str = Field(..., min_length=1, max_length=253)
    category: Category
    reason: str | None = Field(None, max_length=500)


class DigestEntryResponse(BaseModel):
    name: str
    email: str
    latest_subject: str | None
    message_count: int
    last_message_at: datetime | None
    is_meeting: bool


class DigestScriptResponse(BaseModel):
    success: bool = True
    script: str
    senders: list[DigestEntryResponse]
    emails_analyzed: int
    important_found: int
    meetings_found: int
    timestamp: datetime

    @classmethod
    def from_domain(cls, digest: DigestScript) -> "DigestScriptResponse":
        return cls(
            script=digest.script,
            senders=[
                DigestEntryResponse(
                    name=entry.name,
                    email=entry.email,
                    latest_subject=entry.latest_subject,
                    message_count=entry.message_count,
                    last_message_at=entry.last_message_at,
                    is_meeting=entry.is_meeting,
                )
                for entry in digest.entries
            ],
            emails_analyzed=digest.emails_analyzed,
            important_found=digest.important_found,
            meetings_found=digest.meetings_found,
            timestamp=digest.generated_at,
        )


class NotificationRecordResponse(BaseModel):
    id: str
    destination: str
    channel: Channel
    status: NotificationStatus
    provider_ref: str | None
    duration_seconds: int | None
    email_count: int
    voice_id: str | None
    error_message: str | None
    created_at: datetime | None

    @classmethod
    def from_domain(cls, record: NotificationRecord) -> "NotificationRecordResponse":
        return cls(
            id=record.id,
            destination=record.destination,
            channel=record.channel,
            status=record.status,
            provider_ref=record.provider_ref,
            duration_seconds=record.duration_seconds,
            email_count=record.email_count,
            voice_id=record.voice_id,
            error_message=record.error_message,
            created_at=record.created_at,
        )


class DeliverDigestResponse(BaseModel):
    success: bool = True
    digest: DigestScriptResponse
    record: NotificationRecordResponse


class VerificationResponse(BaseModel):
    success: bool
    state: VerificationState
    reason: str
    expires_at: datetime | None = None


class CategoryRuleResponse(BaseModel):
    id: str
    domain: str
    category: Category
    reason: str | None
    created_at: datetime | None

    @classmethod
    def from_domain(cls, rule: CategoryRule) -> "CategoryRuleResponse":
        return cls(
            id=rule.id,
            domain=rule.domain,
            category=rule.category,
            reason=rule.reason,
            created_at=rule.created_at,
        )


class VoiceResponse(BaseModel):
    voice_id: str
    name: str


class VoicesResponse(BaseModel):
    voices: list[VoiceResponse]
    default_voice_id: str
    source: Literal["provider", "default"]
