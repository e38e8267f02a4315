"""
Read access to the senders observed in a user's inbox.

Senders are written by the (external) inbox scanner; this feature only
takes read-only snapshots of them.
"""

from app.db.helpers import fetch_all
from app.features.digest_delivery.domain import Category, Sender


class SenderRepository:
    SELECT_COLUMNS = """
        id, user_id, email, domain, name, category,
        last_email_date, email_count, latest_subject, latest_preview
    """

    @staticmethod
    def _row_to_sender(row: dict) -> Sender:
        return Sender(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            email=row["email"],
            domain=row["domain"],
            name=row.get("name"),
            category=Category.parse(row.get("category")),
            last_message_at=row.get("last_email_date"),
            message_count=row.get("email_count") or 0,
            latest_subject=row.get("latest_subject"),
            latest_preview=row.get("latest_preview"),
        )

    async def list_senders(self, user_id: str) -> list[Sender]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM email_senders
            WHERE user_id = %s
        """
        rows = await fetch_all(query, (user_id,))
        return [self._row_to_sender(row) for row in rows]
