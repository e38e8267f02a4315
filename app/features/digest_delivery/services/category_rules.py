"""
Category resolution for inbox senders.

User-authored domain rules always win over the category the sender already
carries (usually AI-assigned during inbox scanning).
"""

from collections.abc import Iterable
from datetime import datetime

from app.features.digest_delivery.domain import (
    Category,
    CategoryRule,
    Sender,
    normalize_domain,
)
from app.features.digest_delivery.repository import CategoryRuleRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_EPOCH = datetime.min


def _rule_recency(rule: CategoryRule) -> tuple:
    created_at = rule.created_at.replace(tzinfo=None) if rule.created_at else _EPOCH
    return (created_at, rule.id)


def build_rule_index(rules: Iterable[CategoryRule]) -> dict[str, CategoryRule]:
    """
    Map normalized domain -> winning active rule.

    Duplicate rules for one domain should not exist, but if storage holds
    them the most recently created one wins (ties go to the highest id).
    """
    index: dict[str, CategoryRule] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        domain = normalize_domain(rule.domain)
        if not domain:
            continue
        current = index.get(domain)
        if current is None or _rule_recency(rule) > _rule_recency(current):
            index[domain] = rule
    return index


def resolve_category(
    sender: Sender, rules: Iterable[CategoryRule] | dict[str, CategoryRule]
) -> Category:
    """Resolve the sender's bucket. Total and side-effect free."""
    index = rules if isinstance(rules, dict) else build_rule_index(rules)
    rule = index.get(normalize_domain(sender.domain))
    if rule is not None:
        return rule.category
    return Category.parse(sender.category)


class CategoryRuleService:
    """Rule management on top of the repository."""

    def __init__(self, repository: CategoryRuleRepository):
        self.repository = repository

    async def list_rules(self, user_id: str) -> list[CategoryRule]:
        return list(build_rule_index(await self.repository.list_rules(user_id)).values())

    async def upsert_rule(
        self, user_id: str, domain: str, category: Category, reason: str | None = None
    ) -> CategoryRule:
        normalized = normalize_domain(domain)
        if not normalized:
            raise ValueError("Rule domain must not be empty")

        rule = await self.repository.upsert_rule(user_id, normalized, category, reason)
        logger.info(
            "Category rule saved",
            user_id=user_id,
            domain=normalized,
            category=category.value,
        )
        return rule

    async def delete_rule(self, user_id: str, domain: str) -> bool:
        deleted = await self.repository.delete_rule(user_id, normalize_domain(domain))
        logger.info("Category rule deleted", user_id=user_id, domain=domain, deleted=deleted)
        return deleted
