"""
Persistence layer for the digest delivery feature.
"""

from .category_rule_repository import CategoryRuleRepository
from .notification_repository import NotificationRepository
from .sender_repository import SenderRepository

__all__ = ["CategoryRuleRepository", "NotificationRepository", "SenderRepository"]
