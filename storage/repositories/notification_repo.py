"""Delivered proactive notifications, readable in-app."""

import asyncpg
from datetime import date
from notifications.types import NotificationCandidate


class NotificationRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def save_delivered(
        self,
        user_id: str,
        local_date: str,
        candidates: list[NotificationCandidate],
        channel: str = "push",
    ) -> None:
        """Store delivered notifications. Re-saving the same (user, id, date) is a no-op."""
        if not candidates:
            return
        day = date.fromisoformat(local_date)
        async with self._pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO proactive_notifications
                    (user_id, notification_ref_id, local_date, type, priority,
                     title, message, action_type, action_payload, channel)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10)
                ON CONFLICT (user_id, notification_ref_id, local_date) DO NOTHING
                """,
                [
                    (
                        user_id,
                        c.id,
                        day,
                        c.type.value,
                        c.priority.value,
                        c.title,
                        c.message,
                        c.action_type,
                        c.action_payload,
                        channel,
                    )
                    for c in candidates
                ],
            )
