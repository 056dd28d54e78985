"""Dismissal & history store: dismissed ids, daily dedup state, dismiss streaks."""

from collections.abc import Iterable
from typing import Any
import structlog
from config.constants import (
    KV_DISMISSED,
    KV_DISMISS_STREAK,
    KV_SENT_COUNT,
    KV_SHOWN_IDS,
    KV_SHOWN_TYPES,
)
from notifications.types import (
    DismissStreak,
    NotificationCandidate,
    UserDailyState,
    parse_count,
    parse_id_set,
)
from storage.repositories.kv_repo import KVRepository

log = structlog.get_logger(__name__)


def daily_keys(date: str) -> tuple[str, str, str]:
    return (
        KV_SHOWN_TYPES.format(date=date),
        KV_SHOWN_IDS.format(date=date),
        KV_SENT_COUNT.format(date=date),
    )


def state_from_values(date: str, values: dict[str, Any]) -> UserDailyState:
    """Validate raw KV values into a UserDailyState; malformed entries read as empty."""
    types_key, ids_key, count_key = daily_keys(date)
    return UserDailyState(
        date=date,
        shown_singleton_types=parse_id_set(values.get(types_key), key=types_key),
        shown_candidate_ids=parse_id_set(values.get(ids_key), key=ids_key),
        sent_count=parse_count(values.get(count_key), key=count_key),
    )


def merge_delivered(
    date: str,
    values: dict[str, Any],
    delivered: Iterable[NotificationCandidate],
    consume_quota: bool = True,
) -> dict[str, Any]:
    """Union delivered candidates into the stored day state.

    The count only grows by ids not recorded before, so replaying the same
    delivery is a no-op. In-app deliveries pass consume_quota=False: they
    are deduped like pushes but leave the count alone.
    """
    state = state_from_values(date, values)
    new_ids: set[str] = set()
    for candidate in delivered:
        if candidate.is_singleton:
            state.shown_singleton_types.add(candidate.type.value)
        if candidate.id not in state.shown_candidate_ids:
            new_ids.add(candidate.id)
    state.shown_candidate_ids |= new_ids

    types_key, ids_key, count_key = daily_keys(date)
    return {
        types_key: sorted(state.shown_singleton_types),
        ids_key: sorted(state.shown_candidate_ids),
        count_key: state.sent_count + (len(new_ids) if consume_quota else 0),
    }


class NotificationHistoryRepository:
    def __init__(self, kv: KVRepository) -> None:
        self._kv = kv

    async def get_dismissed(self, user_id: str) -> set[str]:
        value = await self._kv.get(user_id, KV_DISMISSED)
        return parse_id_set(value, key=KV_DISMISSED)

    async def get_daily_state(self, user_id: str, date: str) -> UserDailyState:
        values = await self._kv.get_many(user_id, daily_keys(date))
        return state_from_values(date, values)

    async def record_delivered(
        self,
        user_id: str,
        date: str,
        delivered: list[NotificationCandidate],
        consume_quota: bool = True,
    ) -> UserDailyState:
        """Persist shown types/ids and the sent count for (user, date) in one transaction."""
        if not delivered:
            return await self.get_daily_state(user_id, date)
        updated = await self._kv.update(
            user_id,
            daily_keys(date),
            lambda current: merge_delivered(date, current, delivered, consume_quota),
        )
        state = state_from_values(date, updated)
        log.debug(
            "daily_state_recorded",
            user_id=user_id,
            date=date,
            sent_count=state.sent_count,
            shown_ids=len(state.shown_candidate_ids),
        )
        return state

    async def get_dismiss_streak(self, user_id: str, notification_type: str) -> DismissStreak:
        value = await self._kv.get(user_id, KV_DISMISS_STREAK.format(type=notification_type))
        return DismissStreak.from_value(value)

    async def save_dismiss_streak(
        self, user_id: str, notification_type: str, streak: DismissStreak
    ) -> None:
        await self._kv.set(
            user_id, KV_DISMISS_STREAK.format(type=notification_type), streak.to_value()
        )
