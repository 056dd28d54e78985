"""Plan-tier daily quota and per-run batch cap."""

from config.constants import PlanType, PRIORITY_ORDER, PROACTIVE_DAILY_LIMITS
from notifications.types import NotificationCandidate, UserDailyState


def daily_limit(plan: PlanType | str | None) -> int:
    """Daily proactive push limit for a plan. Unknown plans get the free limit."""
    try:
        return PROACTIVE_DAILY_LIMITS[PlanType(plan)]
    except ValueError:
        return PROACTIVE_DAILY_LIMITS[PlanType.FREE]


def remaining_quota(plan: PlanType | str | None, daily_state: UserDailyState) -> int:
    return max(0, daily_limit(plan) - daily_state.sent_count)


def sort_by_priority(candidates: list[NotificationCandidate]) -> list[NotificationCandidate]:
    """High first. sorted() is stable so ties keep generation order."""
    return sorted(candidates, key=lambda c: PRIORITY_ORDER[c.priority])


def select_for_quota(
    candidates: list[NotificationCandidate],
    plan: PlanType | str | None,
    daily_state: UserDailyState,
    batch_cap: int,
) -> list[NotificationCandidate]:
    """Pick at most min(remaining quota, batch cap) candidates, highest priority first."""
    allowed = min(remaining_quota(plan, daily_state), batch_cap)
    if allowed <= 0:
        return []
    return sort_by_priority(candidates)[:allowed]
