"""Tests for notifications/filters.py — dismissal, expiry and same-day dedup."""

import pytest
from datetime import UTC, datetime, timedelta
from config.constants import SINGLETON_TYPES, NotificationType
from notifications.filters import filter_candidates, rejection_reason
from notifications.types import NotificationCandidate, UserDailyState
from storage.repositories.history_repo import merge_delivered, state_from_values
from conftest import make_candidate

NON_SINGLETON_TYPES = [t for t in NotificationType if t not in SINGLETON_TYPES]


@pytest.fixture
def empty_state():
    return UserDailyState(date="2026-03-10")


class TestRejectionReason:
    def test_fresh_candidate_passes(self, empty_state, now):
        assert rejection_reason(make_candidate(), set(), empty_state, now) is None

    def test_dismissed(self, empty_state, now):
        assert rejection_reason(make_candidate(id="x"), {"x"}, empty_state, now) == "dismissed"

    def test_expired(self, empty_state, now, past):
        c = make_candidate(expires_at=past)
        assert rejection_reason(c, set(), empty_state, now) == "expired"

    def test_future_expiry_passes(self, empty_state, now, future):
        c = make_candidate(expires_at=future)
        assert rejection_reason(c, set(), empty_state, now) is None

    def test_expiry_equal_to_now_passes(self, empty_state, now):
        c = make_candidate(expires_at=now)
        assert rejection_reason(c, set(), empty_state, now) is None

    def test_naive_past_expiry_treated_as_utc(self, empty_state, now):
        c = make_candidate(expires_at=datetime(2026, 3, 10, 2, 0))
        assert c.expires_at.tzinfo is UTC
        assert rejection_reason(c, set(), empty_state, now) == "expired"

    def test_naive_future_expiry_passes(self, empty_state, now):
        c = make_candidate(expires_at=datetime(2026, 3, 10, 4, 0))
        assert rejection_reason(c, set(), empty_state, now) is None

    def test_offsetless_iso_expiry_from_row(self, empty_state, now):
        c = NotificationCandidate.from_dict({
            "id": "row", "type": "schedule_reminder", "priority": "medium",
            "title": "t", "message": "m", "expires_at": "2026-03-10T02:00:00",
        })
        assert rejection_reason(c, set(), empty_state, now) == "expired"

    def test_dismissal_checked_before_expiry(self, empty_state, now, past):
        c = make_candidate(id="x", expires_at=past)
        assert rejection_reason(c, {"x"}, empty_state, now) == "dismissed"

    def test_singleton_type_shown(self, now):
        state = UserDailyState(date="2026-03-10", shown_singleton_types={"morning_briefing"})
        c = make_candidate(id="new", type=NotificationType.MORNING_BRIEFING)
        assert rejection_reason(c, set(), state, now) == "singleton_shown_today"

    def test_singleton_ignores_shown_ids(self, now):
        # Singletons are deduped by type only
        state = UserDailyState(date="2026-03-10", shown_candidate_ids={"brief"})
        c = make_candidate(id="brief", type=NotificationType.MORNING_BRIEFING)
        assert rejection_reason(c, set(), state, now) is None

    def test_non_singleton_id_shown(self, now):
        state = UserDailyState(date="2026-03-10", shown_candidate_ids={"r1"})
        c = make_candidate(id="r1", type=NotificationType.SCHEDULE_REMINDER)
        assert rejection_reason(c, set(), state, now) == "id_shown_today"

    def test_non_singleton_ignores_shown_types(self, now):
        state = UserDailyState(date="2026-03-10", shown_singleton_types={"schedule_reminder"})
        c = make_candidate(id="r2", type=NotificationType.SCHEDULE_REMINDER)
        assert rejection_reason(c, set(), state, now) is None


class TestFilterCandidates:
    def test_preserves_generation_order(self, empty_state, now):
        candidates = [make_candidate(id=f"c{i}") for i in range(5)]
        assert filter_candidates(candidates, set(), empty_state, now) == candidates

    def test_mixed_batch(self, now, past):
        state = UserDailyState(
            date="2026-03-10",
            shown_singleton_types={"goal_nudge"},
            shown_candidate_ids={"seen"},
        )
        candidates = [
            make_candidate(id="ok"),
            make_candidate(id="gone"),
            make_candidate(id="old", expires_at=past),
            make_candidate(id="nudge", type=NotificationType.GOAL_NUDGE),
            make_candidate(id="seen"),
            make_candidate(id="ok2", type=NotificationType.URGENT_ALERT),
        ]
        result = filter_candidates(candidates, {"gone"}, state, now)
        assert [c.id for c in result] == ["ok", "ok2"]

    def test_does_not_mutate_inputs(self, now):
        state = UserDailyState(date="2026-03-10", shown_candidate_ids={"a"})
        dismissed = {"b"}
        filter_candidates([make_candidate(id="a"), make_candidate(id="c")], dismissed, state, now)
        assert state.shown_candidate_ids == {"a"}
        assert state.shown_singleton_types == set()
        assert dismissed == {"b"}

    def test_empty_input(self, empty_state, now):
        assert filter_candidates([], set(), empty_state, now) == []

    def test_accepts_generator(self, empty_state, now):
        gen = (make_candidate(id=str(i)) for i in range(3))
        assert len(filter_candidates(gen, set(), empty_state, now)) == 3


class TestDedupIdempotence:
    @pytest.mark.parametrize("notif_type", sorted(SINGLETON_TYPES, key=lambda t: t.value))
    def test_singleton_never_readmitted_same_day(self, notif_type, now):
        date = "2026-03-10"
        first = make_candidate(id="first", type=notif_type)
        state = UserDailyState(date=date)
        assert filter_candidates([first], set(), state, now) == [first]

        after = state_from_values(date, merge_delivered(date, {}, [first]))
        later = make_candidate(id="later", type=notif_type)
        assert filter_candidates([first, later], set(), after, now) == []
        # Running the filter again changes nothing
        assert filter_candidates([first, later], set(), after, now) == []

    @pytest.mark.parametrize("notif_type", NON_SINGLETON_TYPES)
    def test_non_singleton_same_id_blocked_other_ids_pass(self, notif_type, now):
        date = "2026-03-10"
        sent = make_candidate(id="sent", type=notif_type)
        after = state_from_values(date, merge_delivered(date, {}, [sent]))
        other = make_candidate(id="other", type=notif_type)
        assert filter_candidates([sent, other], set(), after, now) == [other]

    def test_other_singleton_types_unaffected(self, now):
        date = "2026-03-10"
        brief = make_candidate(id="b", type=NotificationType.MORNING_BRIEFING)
        after = state_from_values(date, merge_delivered(date, {}, [brief]))
        nudge = make_candidate(id="n", type=NotificationType.GOAL_NUDGE)
        assert filter_candidates([nudge], set(), after, now) == [nudge]

    def test_scenario_morning_briefing_second_id_rejected(self, now):
        state = UserDailyState(date="2026-03-10", shown_singleton_types={"morning_briefing"})
        y = make_candidate(id="y", type=NotificationType.MORNING_BRIEFING)
        assert filter_candidates([y], set(), state, now) == []


class TestDismissalPermanence:
    @pytest.mark.parametrize("notif_type", list(NotificationType))
    def test_dismissed_id_rejected_regardless_of_state(self, notif_type, now):
        c = make_candidate(id="d", type=notif_type)
        for state in (
            UserDailyState(date="2026-03-10"),
            UserDailyState(date="2026-03-11", shown_candidate_ids={"x"}),
            UserDailyState(date="2099-01-01", sent_count=0),
        ):
            assert filter_candidates([c], {"d"}, state, now) == []

    def test_dismissed_rejected_on_later_days(self, now):
        c = make_candidate(id="d")
        assert filter_candidates([c], {"d"}, UserDailyState(date="x"), now + timedelta(days=30)) == []


class TestExpiry:
    @pytest.mark.parametrize("notif_type", list(NotificationType))
    def test_expired_never_shown_is_rejected(self, notif_type, now):
        c = make_candidate(id="e", type=notif_type, expires_at=now - timedelta(seconds=1))
        assert filter_candidates([c], set(), UserDailyState(date="2026-03-10"), now) == []
