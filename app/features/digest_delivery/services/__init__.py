"""
Service layer for the digest delivery feature.
"""

from .category_rules import CategoryRuleService, build_rule_index, resolve_category
from .digest_service import DigestScriptGenerator, build_digest
from .dispatch_service import (
    ChannelDispatcher,
    ChannelHandler,
    SmsChannelHandler,
    VoiceChannelHandler,
    WhatsAppChannelHandler,
)
from .verification_service import VerificationSessionManager

__all__ = [
    "CategoryRuleService",
    "ChannelDispatcher",
    "ChannelHandler",
    "DigestScriptGenerator",
    "SmsChannelHandler",
    "VerificationSessionManager",
    "VoiceChannelHandler",
    "WhatsAppChannelHandler",
    "build_digest",
    "build_rule_index",
    "resolve_category",
]
