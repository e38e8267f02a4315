"""
Digest script generation.

Turns the user's current "call-me" bucket into one short script that reads
well both spoken on a call and as a text message. The script is rebuilt on
every request because the sender set changes between deliveries.
"""

from datetime import UTC, datetime

from app.config import settings
from app.features.digest_delivery.domain import (
    Category,
    DigestEntry,
    DigestScript,
    EmptyBucket,
    Sender,
)
from app.features.digest_delivery.repository import CategoryRuleRepository, SenderRepository
from app.features.digest_delivery.services.category_rules import build_rule_index, resolve_category
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_DIGEST_SENDERS = 5
MEETING_KEYWORDS = ("meeting", "call", "zoom", "conference", "appointment")

_OLDEST = datetime.min.replace(tzinfo=UTC)


def is_meeting_subject(subject: str | None) -> bool:
    lowered = (subject or "").lower()
    return any(keyword in lowered for keyword in MEETING_KEYWORDS)


def _recency(sender: Sender) -> datetime:
    if sender.last_message_at is None:
        return _OLDEST
    if sender.last_message_at.tzinfo is None:
        return sender.last_message_at.replace(tzinfo=UTC)
    return sender.last_message_at


def _to_entry(sender: Sender) -> DigestEntry:
    return DigestEntry(
        sender_id=sender.id,
        name=sender.spoken_name,
        email=sender.email,
        latest_subject=sender.latest_subject,
        message_count=sender.message_count,
        last_message_at=sender.last_message_at,
        is_meeting=is_meeting_subject(sender.latest_subject),
    )


def compose_script(entries: list[DigestEntry], assistant_name: str) -> str:
    """Build the spoken text. Length stays roughly constant across tiers."""
    greeting = f"Hey! {assistant_name} here. "

    if not entries:
        return greeting + EmptyBucket.reason

    if len(entries) == 1:
        entry = entries[0]
        subject = entry.latest_subject or "no subject"
        return greeting + f"Latest from {entry.name}: {subject}. That's your priority."

    if len(entries) <= 3:
        names = ", ".join(entry.name for entry in entries)
        return greeting + f"Updates from {names}. Check these {len(entries)} important messages."

    top_two = " and ".join(entry.name for entry in entries[:2])
    others = len(entries) - 2
    return greeting + f"Priority updates from {top_two}, +{others} other important contacts."


def build_digest(
    user_id: str,
    senders: list[Sender],
    rules: list,
    assistant_name: str | None = None,
) -> DigestScript:
    """Pure digest construction over an already-loaded snapshot."""
    index = build_rule_index(rules)
    bucket = [
        sender
        for sender in senders
        if sender.message_count > 0 and resolve_category(sender, index) == Category.CALL_ME
    ]

    selected = sorted(bucket, key=_recency, reverse=True)[:MAX_DIGEST_SENDERS]
    entries = [_to_entry(sender) for sender in selected]

    return DigestScript(
        user_id=user_id,
        script=compose_script(entries, assistant_name or settings.ASSISTANT_NAME),
        entries=tuple(entries),
        emails_analyzed=len(bucket),
        important_found=len(entries),
        meetings_found=sum(1 for entry in entries if entry.is_meeting),
    )


class DigestScriptGenerator:
    """Loads a read-only snapshot of senders and rules, then builds the digest."""

    def __init__(
        self,
        sender_repository: SenderRepository,
        rule_repository: CategoryRuleRepository,
        assistant_name: str | None = None,
    ):
        self.sender_repository = sender_repository
        self.rule_repository = rule_repository
        self.assistant_name = assistant_name or settings.ASSISTANT_NAME

    async def generate_digest(self, user_id: str) -> DigestScript:
        senders = await self.sender_repository.list_senders(user_id)
        rules = await self.rule_repository.list_rules(user_id)

        digest = build_digest(user_id, senders, rules, self.assistant_name)

        logger.info(
            "Digest generated",
            user_id=user_id,
            emails_analyzed=digest.emails_analyzed,
            important_found=digest.important_found,
            meetings_found=digest.meetings_found,
            empty=digest.is_empty,
        )
        return digest
