"""
Domain subpackage for the digest delivery feature.
"""

from .errors import (
    AlreadyDeliveredToday,
    CodeAlreadyConsumed,
    CodeExpired,
    CodeMismatch,
    DigestDeliveryError,
    EmptyBucket,
    MalformedDestination,
    NotVerified,
    ProviderUnavailable,
    TooManyAttempts,
    VerificationNotStarted,
)
from .models import (
    Category,
    CategoryRule,
    Channel,
    DigestEntry,
    DigestScript,
    NotificationRecord,
    NotificationStatus,
    Sender,
    VerificationSession,
    VerificationState,
    normalize_domain,
)
from .phone import is_e164, validate_destination

__all__ = [
    "AlreadyDeliveredToday",
    "Category",
    "CategoryRule",
    "Channel",
    "CodeAlreadyConsumed",
    "CodeExpired",
    "CodeMismatch",
    "DigestDeliveryError",
    "DigestEntry",
    "DigestScript",
    "EmptyBucket",
    "MalformedDestination",
    "NotVerified",
    "NotificationRecord",
    "NotificationStatus",
    "ProviderUnavailable",
    "Sender",
    "TooManyAttempts",
    "VerificationNotStarted",
    "VerificationSession",
    "VerificationState",
    "is_e164",
    "normalize_domain",
    "validate_destination",
]
