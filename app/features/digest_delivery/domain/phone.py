"""
Destination validation.

Numbers must already be E.164 when they reach this feature; nothing here
reformats them.
"""

import re

from app.features.digest_delivery.domain.errors import MalformedDestination

E164_PATTERN = re.compile(r"^\+[1-9][0-9]{7,14}$")


def is_e164(value: str | None) -> bool:
    return bool(value) and E164_PATTERN.fullmatch(value) is not None


def validate_destination(value: str | None) -> str:
    """Return the number unchanged, or raise MalformedDestination."""
    if not is_e164(value):
        raise MalformedDestination()
    return value
