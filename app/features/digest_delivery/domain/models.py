"""
Domain models for the digest delivery feature.

Plain dataclasses shared by repositories, services and the API layer.
Status and state transitions live on the models themselves so they can be
checked without any I/O.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum


class Category(StrEnum):
    CALL_ME = "call-me"
    REMIND_ME = "remind-me"
    KEEP_QUIET = "keep-quiet"
    NEWSLETTER = "newsletter"
    WHY_DID_I_SIGNUP = "why-did-i-signup"
    DONT_TELL_ANYONE = "dont-tell-anyone"
    UNASSIGNED = "unassigned"

    @classmethod
    def parse(cls, value: str | None) -> "Category":
        """Read a stored category; anything unknown is unassigned."""
        try:
            return cls(value) if value else cls.UNASSIGNED
        except ValueError:
            return cls.UNASSIGNED


class Channel(StrEnum):
    VOICE = "voice"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class NotificationStatus(StrEnum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NotificationStatus.DELIVERED, NotificationStatus.FAILED)

    @property
    def rank(self) -> int:
        return {"queued": 0, "in_progress": 1, "delivered": 2, "failed": 2}[self.value]


class VerificationState(StrEnum):
    NONE = "none"
    CODE_SENT = "code_sent"
    VERIFIED = "verified"
    EXPIRED = "expired"
    LOCKED = "locked"


def normalize_domain(domain: str | None) -> str:
    return (domain or "").strip().lower()


@dataclass(slots=True)
class Sender:
    """One email-sending identity observed in a user's inbox."""

    id: str
    user_id: str
    email: str
    domain: str
    name: str | None = None
    category: Category = Category.UNASSIGNED
    last_message_at: datetime | None = None
    message_count: int = 0
    latest_subject: str | None = None
    latest_preview: str | None = None

    @property
    def spoken_name(self) -> str:
        if self.name and self.name.strip():
            return self.name.strip()
        return self.email.split("@")[0]


@dataclass(slots=True)
class CategoryRule:
    """User-authored domain override."""

    id: str
    user_id: str
    domain: str
    category: Category
    reason: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class DigestEntry:
    sender_id: str
    name: str
    email: str
    latest_subject: str | None
    message_count: int
    last_message_at: datetime | None
    is_meeting: bool


@dataclass(slots=True, frozen=True)
class DigestScript:
    """Freshly generated digest for one delivery. Never persisted."""

    user_id: str
    script: str
    entries: tuple[DigestEntry, ...]
    emails_analyzed: int
    important_found: int
    meetings_found: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_empty(self) -> bool:
        return not self.entries


@dataclass(slots=True, frozen=True)
class NotificationRecord:
    """One dispatch attempt over one channel to one destination."""

    id: str
    user_id: str
    destination: str
    channel: Channel
    status: NotificationStatus
    provider_ref: str | None = None
    duration_seconds: int | None = None
    email_count: int = 0
    script: str | None = None
    voice_id: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def with_status(
        self, status: NotificationStatus, duration_seconds: int | None = None
    ) -> "NotificationRecord":
        """
        Apply a provider status report.

        Terminal records are returned unchanged and statuses never move
        backwards, so replaying the same report is a no-op.
        """
        if self.status.is_terminal or status.rank < self.status.rank:
            return self
        if status == self.status and duration_seconds in (None, self.duration_seconds):
            return self
        return replace(
            self,
            status=status,
            duration_seconds=(
                duration_seconds if duration_seconds is not None else self.duration_seconds
            ),
        )


@dataclass(slots=True, frozen=True)
class VerificationSession:
    """One-time-code challenge for a (user, phone) pair."""

    user_id: str
    phone: str
    code: str
    state: VerificationState
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    consumed: bool = False
    verified_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "phone": self.phone,
            "code": self.code,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "attempts": self.attempts,
            "consumed": self.consumed,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationSession":
        verified_at = data.get("verified_at")
        return cls(
            user_id=data["user_id"],
            phone=data["phone"],
            code=data["code"],
            state=VerificationState(data["state"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts=int(data.get("attempts", 0)),
            consumed=bool(data.get("consumed", False)),
            verified_at=datetime.fromisoformat(verified_at) if verified_at else None,
        )
