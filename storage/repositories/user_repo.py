"""User enumeration and per-user notification context."""

import asyncpg
import structlog
from typing import Any
from config.constants import PlanType
from notifications.types import UserContext

log = structlog.get_logger(__name__)


class UserRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_all_user_ids(self) -> list[str]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT user_id FROM user_profiles ORDER BY user_id")
        return [r["user_id"] for r in rows]

    async def get_user_context(self, user_id: str) -> UserContext | None:
        """Context for candidate generation. None if the user is unknown or opted out."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT plan, timezone, proactive_enabled, completion_rate,
                       schedule_density, context
                FROM user_profiles WHERE user_id = $1
                """,
                user_id,
            )
        if row is None or not row["proactive_enabled"]:
            return None

        try:
            plan = PlanType(row["plan"])
        except ValueError:
            log.warning("unknown_user_plan", user_id=user_id, plan=row["plan"])
            plan = PlanType.FREE

        extra: Any = row["context"]
        return UserContext(
            user_id=user_id,
            plan=plan,
            timezone=row["timezone"],
            completion_rate=row["completion_rate"],
            schedule_density=row["schedule_density"],
            extra=extra if isinstance(extra, dict) else {},
        )
