"""
Persistence for dispatch history (call / SMS / WhatsApp logs).

Records are inserted once per dispatch attempt and later moved forward by
provider status reports. The update statement itself refuses to touch a
terminal record, so duplicate provider callbacks are harmless.
"""

from datetime import datetime

from app.db.helpers import fetch_all, fetch_one, fetch_val
from app.features.digest_delivery.domain import (
    Channel,
    NotificationRecord,
    NotificationStatus,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = [s.value for s in NotificationStatus if s.is_terminal]


class NotificationRepository:
    SELECT_COLUMNS = """
        id, user_id, destination, channel, status, provider_ref, duration_seconds,
        email_count, script, voice_id, error_message, created_at, updated_at
    """

    @staticmethod
    def _row_to_record(row: dict | None) -> NotificationRecord | None:
        if not row:
            return None

        return NotificationRecord(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            destination=row["destination"],
            channel=Channel(row["channel"]),
            status=NotificationStatus(row["status"]),
            provider_ref=row.get("provider_ref"),
            duration_seconds=row.get("duration_seconds"),
            email_count=row.get("email_count") or 0,
            script=row.get("script"),
            voice_id=row.get("voice_id"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    async def create(self, record: NotificationRecord) -> NotificationRecord:
        query = f"""
            INSERT INTO notification_records (
                id, user_id, destination, channel, status, provider_ref,
                duration_seconds, email_count, script, voice_id, error_message
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                record.id,
                record.user_id,
                record.destination,
                record.channel.value,
                record.status.value,
                record.provider_ref,
                record.duration_seconds,
                record.email_count,
                record.script,
                record.voice_id,
                record.error_message,
            ),
        )
        return self._row_to_record(row)

    async def get(self, user_id: str, record_id: str) -> NotificationRecord | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM notification_records
            WHERE user_id = %s AND id = %s
        """
        return self._row_to_record(await fetch_one(query, (user_id, record_id)))

    async def get_by_provider_ref(self, provider_ref: str) -> NotificationRecord | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM notification_records
            WHERE provider_ref = %s
        """
        return self._row_to_record(await fetch_one(query, (provider_ref,)))

    async def save_status(self, record: NotificationRecord) -> NotificationRecord:
        """
        Persist a status computed by NotificationRecord.with_status.

        Returns the stored row, which is the unchanged record when another
        report already moved it to a terminal status.
        """
        query = f"""
            UPDATE notification_records
            SET status = %s, duration_seconds = %s, updated_at = now()
            WHERE id = %s AND status <> ALL(%s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (record.status.value, record.duration_seconds, record.id, TERMINAL_STATUSES),
        )
        if row is None:
            logger.info("Status update skipped for terminal record", record_id=record.id)
            return await self.get(record.user_id, record.id)
        return self._row_to_record(row)

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[NotificationRecord]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM notification_records
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, limit))
        return [self._row_to_record(row) for row in rows]

    async def count_since(self, user_id: str, channel: Channel, since: datetime) -> int:
        query = """
            SELECT COUNT(*)
            FROM notification_records
            WHERE user_id = %s AND channel = %s AND created_at >= %s AND status <> 'failed'
        """
        return int(await fetch_val(query, (user_id, channel.value, since)) or 0)
