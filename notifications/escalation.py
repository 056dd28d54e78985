"""Adaptive escalation: decide whether a candidate reaches the push channel.

The default policy backs off per notification type as the user keeps
dismissing it:

    0 dismissals  deliver as is
    1             deliver, shortened
    2             deliver every other run, shortened
    3             in-app only
    4             pause for PAUSE_DAYS, then ask once whether to keep them
    5+            suppress for SUPPRESS_DAYS, then reset the streak

High-priority candidates close to a deadline or an important schedule
always go through.
"""

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
import structlog
from config.constants import (
    CHECKIN_MESSAGE,
    CHECKIN_TITLE,
    CRITICAL_DEADLINE_HOURS,
    PAUSE_DAYS,
    SHORT_MESSAGE_LENGTH,
    SUPPRESS_DAYS,
    EscalationStrategy,
    Priority,
    is_important_schedule,
)
from notifications.types import (
    Decision,
    DismissStreak,
    EscalationPolicy,
    NotificationCandidate,
)
from storage.repositories.history_repo import NotificationHistoryRepository
from utils.formatting import truncate

log = structlog.get_logger(__name__)

# Decision reasons the policy acts on again once delivery is known
ALTERNATE_DELIVER = "dismiss_2"
ALTERNATE_SKIP = "dismiss_2_skip"
SUPPRESS_EXPIRED = "suppress_expired"

_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F9FF\u2600-\u26FF\u2700-\u27BF"
    "\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]"
)


def shorten(candidate: NotificationCandidate) -> NotificationCandidate:
    """Strip emoji from the title and cut the message down."""
    title = _EMOJI_RE.sub("", candidate.title).strip() or candidate.title
    message = truncate(candidate.message, SHORT_MESSAGE_LENGTH)
    return dataclasses.replace(candidate, title=title, message=message)


def is_critical_override(candidate: NotificationCandidate) -> bool:
    """High priority and either due within a day or tied to an important schedule."""
    if candidate.priority != Priority.HIGH:
        return False
    payload = candidate.action_payload
    deadline_hours = payload.get("deadline_hours")
    if isinstance(deadline_hours, (int, float)) and not isinstance(deadline_hours, bool):
        if deadline_hours <= CRITICAL_DEADLINE_HOURS:
            return True
    schedule_text = payload.get("schedule_text")
    return isinstance(schedule_text, str) and is_important_schedule(schedule_text)


def _days_since(then: datetime, now: datetime) -> int:
    if then.tzinfo is None:
        then = then.replace(tzinfo=UTC)
    return (now - then).days


class DismissStreakPolicy:
    """Escalation policy keyed on the user's dismiss streak for the candidate's type."""

    def __init__(self, history: NotificationHistoryRepository) -> None:
        self._history = history

    async def decide(
        self, user_id: str, candidate: NotificationCandidate, now: datetime
    ) -> Decision:
        if is_critical_override(candidate):
            return Decision(True, True, candidate, EscalationStrategy.DELIVER, "critical_override")

        notif_type = candidate.type.value
        streak = await self._history.get_dismiss_streak(user_id, notif_type)

        if streak.count <= 0:
            return Decision(True, True, candidate, EscalationStrategy.DELIVER, "no_dismissals")

        if streak.count == 1:
            return Decision(
                True, True, shorten(candidate), EscalationStrategy.ADAPT_FORMAT, "dismiss_1"
            )

        if streak.count == 2:
            # The flag flips in commit(), after delivery is known
            if streak.last_delivered:
                return Decision.suppressed(ALTERNATE_SKIP, EscalationStrategy.REDUCE_FREQUENCY)
            return Decision(
                True, True, shorten(candidate), EscalationStrategy.REDUCE_FREQUENCY, ALTERNATE_DELIVER
            )

        if streak.count == 3:
            return Decision(
                True, False, shorten(candidate), EscalationStrategy.CHANGE_CHANNEL, "dismiss_3"
            )

        if streak.count == 4:
            if streak.last_date is None or _days_since(streak.last_date, now) < PAUSE_DAYS:
                return Decision.suppressed("dismiss_4_paused", EscalationStrategy.PAUSE_WITH_CHECKIN)
            checkin = dataclasses.replace(candidate, title=CHECKIN_TITLE, message=CHECKIN_MESSAGE)
            return Decision(
                True, False, checkin, EscalationStrategy.PAUSE_WITH_CHECKIN, "dismiss_4_checkin"
            )

        if streak.last_date is not None and _days_since(streak.last_date, now) >= SUPPRESS_DAYS:
            return Decision(True, True, candidate, EscalationStrategy.DELIVER, SUPPRESS_EXPIRED)
        return Decision.suppressed("dismiss_5_plus")

    async def commit(
        self,
        user_id: str,
        decisions: list[tuple[NotificationCandidate, Decision]],
        delivered: list[NotificationCandidate],
    ) -> None:
        """Persist streak changes that depend on what the run actually delivered.

        A streak-2 type is marked delivered only when one of its offered
        candidates was sent, and marked skipped when this run skipped it.
        Expired suppressions are reset.
        """
        delivered_ids = {c.id for c in delivered}
        resets: set[str] = set()
        alternations: dict[str, bool] = {}
        for candidate, decision in decisions:
            notif_type = candidate.type.value
            if decision.reason == SUPPRESS_EXPIRED:
                resets.add(notif_type)
            elif decision.reason == ALTERNATE_SKIP:
                alternations[notif_type] = False
            elif decision.reason == ALTERNATE_DELIVER and candidate.id in delivered_ids:
                alternations[notif_type] = True

        for notif_type in sorted(resets):
            await self._history.save_dismiss_streak(user_id, notif_type, DismissStreak())
        for notif_type, was_delivered in alternations.items():
            # Re-read so a dismissal recorded mid-run is not overwritten
            streak = await self._history.get_dismiss_streak(user_id, notif_type)
            await self._history.save_dismiss_streak(
                user_id, notif_type, dataclasses.replace(streak, last_delivered=was_delivered)
            )


@dataclass
class EscalationOutcome:
    pushable: list[NotificationCandidate] = field(default_factory=list)
    in_app_only: list[NotificationCandidate] = field(default_factory=list)
    suppressed: int = 0
    decisions: list[tuple[NotificationCandidate, Decision]] = field(default_factory=list)


async def decide_safely(
    policy: EscalationPolicy,
    user_id: str,
    candidate: NotificationCandidate,
    now: datetime,
) -> Decision:
    """Ask the policy; any failure suppresses this candidate only."""
    try:
        return await policy.decide(user_id, candidate, now)
    except Exception as e:
        log.warning(
            "escalation_failed_closed",
            user_id=user_id,
            candidate_id=candidate.id,
            error=str(e),
        )
        return Decision.suppressed("escalation_error")


async def commit_safely(
    policy: EscalationPolicy,
    user_id: str,
    outcome: EscalationOutcome,
    delivered: list[NotificationCandidate],
) -> None:
    """Let the policy persist post-delivery state. Failures are logged, not raised."""
    try:
        await policy.commit(user_id, outcome.decisions, delivered)
    except Exception as e:
        log.warning(
            "escalation_commit_failed",
            user_id=user_id,
            delivered=len(delivered),
            error=str(e),
        )


async def escalate(
    policy: EscalationPolicy,
    user_id: str,
    candidates: list[NotificationCandidate],
    now: datetime,
) -> EscalationOutcome:
    """Run every filtered candidate through the policy, keeping the adjusted versions."""
    outcome = EscalationOutcome()
    for candidate in candidates:
        decision = await decide_safely(policy, user_id, candidate, now)
        outcome.decisions.append((candidate, decision))
        if decision.proceeds_to_push:
            outcome.pushable.append(decision.adjusted_candidate)
        elif decision.should_deliver and decision.adjusted_candidate is not None:
            outcome.in_app_only.append(decision.adjusted_candidate)
        else:
            outcome.suppressed += 1
        log.debug(
            "escalation_decision",
            user_id=user_id,
            candidate_id=candidate.id,
            strategy=decision.strategy.value,
            reason=decision.reason,
            push=decision.proceeds_to_push,
        )
    return outcome
