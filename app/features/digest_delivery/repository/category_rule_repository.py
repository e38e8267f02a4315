"""
Persistence for user-authored category rules.

One active rule per (user, domain): writes go through an upsert on that
pair so the rule engine never sees ambiguity for rules written here.
"""

import uuid

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.features.digest_delivery.domain import Category, CategoryRule


class CategoryRuleRepository:
    SELECT_COLUMNS = "id, user_id, domain, category, reason, is_active, created_at"

    @staticmethod
    def _row_to_rule(row: dict) -> CategoryRule:
        return CategoryRule(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            domain=row["domain"],
            category=Category.parse(row["category"]),
            reason=row.get("reason"),
            is_active=bool(row.get("is_active", True)),
            created_at=row.get("created_at"),
        )

    async def list_rules(self, user_id: str) -> list[CategoryRule]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM category_rules
            WHERE user_id = %s AND is_active = true AND domain IS NOT NULL
            ORDER BY created_at DESC, id DESC
        """
        rows = await fetch_all(query, (user_id,))
        return [self._row_to_rule(row) for row in rows]

    async def upsert_rule(
        self, user_id: str, domain: str, category: Category, reason: str | None
    ) -> CategoryRule:
        # Requires a unique index on (user_id, domain)
        query = f"""
            INSERT INTO category_rules (id, user_id, domain, category, action, reason, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, true)
            ON CONFLICT (user_id, domain) DO UPDATE
            SET category = EXCLUDED.category,
                action = EXCLUDED.action,
                reason = EXCLUDED.reason,
                is_active = true,
                created_at = now()
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (str(uuid.uuid4()), user_id, domain, category.value, category.value, reason),
        )
        return self._row_to_rule(row)

    async def delete_rule(self, user_id: str, domain: str) -> bool:
        query = """
            UPDATE category_rules
            SET is_active = false
            WHERE user_id = %s AND domain = %s AND is_active = true
        """
        return await execute_query(query, (user_id, domain)) > 0
