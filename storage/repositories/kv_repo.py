"""Per-user key/value store (user_kv_store table)."""

import asyncpg
from collections.abc import Callable, Iterable
from typing import Any

_UPSERT = """
    INSERT INTO user_kv_store (user_id, key, value, updated_at)
    VALUES ($1, $2, $3::jsonb, NOW())
    ON CONFLICT (user_id, key) DO UPDATE SET value = $3::jsonb, updated_at = NOW()
"""


class KVRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, user_id: str, key: str) -> Any | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT value FROM user_kv_store WHERE user_id = $1 AND key = $2",
                user_id,
                key,
            )

    async def get_many(self, user_id: str, keys: Iterable[str]) -> dict[str, Any]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT key, value FROM user_kv_store WHERE user_id = $1 AND key = ANY($2::text[])",
                user_id,
                list(keys),
            )
        return {r["key"]: r["value"] for r in rows}

    async def set(self, user_id: str, key: str, value: Any) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(_UPSERT, user_id, key, value)

    async def update(
        self,
        user_id: str,
        keys: Iterable[str],
        mutate: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> dict[str, Any]:
        """Atomic read-modify-write of several keys for one user.

        `mutate` receives the current values (missing keys absent) and returns
        the values to upsert. A per-user advisory lock serializes overlapping runs.
        """
        keys = list(keys)
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", user_id)
                rows = await conn.fetch(
                    """
                    SELECT key, value FROM user_kv_store
                    WHERE user_id = $1 AND key = ANY($2::text[])
                    FOR UPDATE
                    """,
                    user_id,
                    keys,
                )
                updates = mutate({r["key"]: r["value"] for r in rows})
                for key, value in updates.items():
                    await conn.execute(_UPSERT, user_id, key, value)
        return updates
