"""
Error taxonomy for digest generation, phone verification and dispatch.

Every error carries a stable `code` and a user-facing `reason` so the API
layer can surface it verbatim.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.features.digest_delivery.domain.models import NotificationRecord


class DigestDeliveryError(Exception):
    """Base exception for the digest delivery feature."""

    code = "digest_delivery_error"
    reason = "Something went wrong delivering your digest."

    def __init__(self, message: str | None = None, recoverable: bool = True):
        super().__init__(message or self.reason)
        self.recoverable = recoverable


class EmptyBucket(DigestDeliveryError):
    """Never raised: an empty call-me bucket still yields a script built from `reason`."""

    code = "empty_bucket"
    reason = (
        "You haven't marked any email senders as 'call-me' yet. "
        "Go categorize some important senders first."
    )


class MalformedDestination(DigestDeliveryError):
    code = "malformed_destination"
    reason = "Phone numbers must be in international format, for example +15551234567."

    def __init__(self, message: str | None = None):
        super().__init__(message, recoverable=False)


class NotVerified(DigestDeliveryError):
    code = "not_verified"
    reason = "This phone number has not been verified yet. Request a new code to verify it."


class VerificationNotStarted(DigestDeliveryError):
    code = "verification_not_started"
    reason = "No verification code was requested for this number."


class CodeExpired(DigestDeliveryError):
    code = "code_expired"
    reason = "That code has expired. Request a new one."


class CodeMismatch(DigestDeliveryError):
    code = "code_mismatch"
    reason = "That code is incorrect."

    def __init__(self, attempts_remaining: int):
        super().__init__(f"{self.reason} {attempts_remaining} attempt(s) remaining.")
        self.attempts_remaining = attempts_remaining


class TooManyAttempts(DigestDeliveryError):
    code = "too_many_attempts"
    reason = "Too many incorrect attempts. Request a new code."


class CodeAlreadyConsumed(DigestDeliveryError):
    code = "code_already_consumed"
    reason = "This code has already been used."


class AlreadyDeliveredToday(DigestDeliveryError):
    code = "already_delivered_today"
    reason = "Your digest was already delivered today."


class ProviderUnavailable(DigestDeliveryError):
    """Transient provider failure. Safe to retry after `retry_after_seconds`."""

    code = "provider_unavailable"
    reason = "Our messaging provider is unavailable right now. Please try again shortly."

    def __init__(
        self,
        message: str | None = None,
        retry_after_seconds: int = 60,
        record: "NotificationRecord | None" = None,
    ):
        super().__init__(message, recoverable=True)
        self.retry_after_seconds = retry_after_seconds
        self.record = record
