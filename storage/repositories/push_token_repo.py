"""Device push token repository."""

import asyncpg
from notifications.types import PushToken


class PushTokenRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_active(self, user_id: str) -> list[PushToken]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT token FROM push_tokens WHERE user_id = $1 AND active ORDER BY id",
                user_id,
            )
        return [PushToken(user_id=user_id, token=r["token"]) for r in rows]

    async def deactivate(self, tokens: list[str]) -> int:
        """Mark tokens inactive. Already-inactive tokens are left untouched."""
        if not tokens:
            return 0
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE push_tokens SET active = FALSE, updated_at = NOW()
                WHERE token = ANY($1::text[]) AND active
                """,
                tokens,
            )
        return int(result.split()[-1])
