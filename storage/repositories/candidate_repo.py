"""Notification candidates queued by the upstream generators."""

import asyncpg
import structlog
from notifications.types import NotificationCandidate, UserContext

log = structlog.get_logger(__name__)


class CandidateRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def generate_candidates(self, context: UserContext) -> list[NotificationCandidate]:
        """Open candidates for the user in generation order. Malformed rows are skipped."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, type, priority, title, message, action_type,
                       action_payload, expires_at
                FROM notification_candidates
                WHERE user_id = $1 AND resolved_at IS NULL
                ORDER BY created_at, id
                """,
                context.user_id,
            )

        candidates: list[NotificationCandidate] = []
        for row in rows:
            try:
                candidates.append(NotificationCandidate.from_dict(dict(row)))
            except (KeyError, ValueError) as e:
                log.warning(
                    "malformed_candidate",
                    user_id=context.user_id,
                    candidate_id=row.get("id"),
                    error=str(e),
                )
        return candidates
