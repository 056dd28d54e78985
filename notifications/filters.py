"""Dismissal, expiry and same-day dedup filtering for notification candidates."""

from collections.abc import Iterable
from datetime import datetime
from notifications.types import NotificationCandidate, UserDailyState


def rejection_reason(
    candidate: NotificationCandidate,
    dismissed: set[str],
    daily_state: UserDailyState,
    now: datetime,
) -> str | None:
    """Return why a candidate is ineligible, or None if it may go on to escalation."""
    if candidate.id in dismissed:
        return "dismissed"
    if candidate.is_expired(now):
        return "expired"
    if candidate.is_singleton:
        if candidate.type.value in daily_state.shown_singleton_types:
            return "singleton_shown_today"
    elif candidate.id in daily_state.shown_candidate_ids:
        return "id_shown_today"
    return None


def filter_candidates(
    candidates: Iterable[NotificationCandidate],
    dismissed: set[str],
    daily_state: UserDailyState,
    now: datetime,
) -> list[NotificationCandidate]:
    """Keep candidates that are not dismissed, expired, or already shown today.

    Pure: generation order is preserved and nothing is written.
    """
    return [
        c for c in candidates
        if rejection_reason(c, dismissed, daily_state, now) is None
    ]
