"""Constants used across the application."""

import re
from enum import Enum


# Notification types produced by the candidate generators
class NotificationType(str, Enum):
    SCHEDULE_REMINDER = "schedule_reminder"
    MORNING_BRIEFING = "morning_briefing"
    URGENT_ALERT = "urgent_alert"
    CONTEXT_SUGGESTION = "context_suggestion"
    GOAL_NUDGE = "goal_nudge"
    MEMORY_SUGGESTION = "memory_suggestion"
    PATTERN_REMINDER = "pattern_reminder"
    LIFESTYLE_RECOMMEND = "lifestyle_recommend"
    SCHEDULE_PREP = "schedule_prep"


# At most one of each of these per user per local day, regardless of id
SINGLETON_TYPES = frozenset({
    NotificationType.MORNING_BRIEFING,
    NotificationType.GOAL_NUDGE,
    NotificationType.URGENT_ALERT,
    NotificationType.LIFESTYLE_RECOMMEND,
})


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_ORDER = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}


class PlanType(str, Enum):
    FREE = "free"
    PRO = "pro"
    MAX = "max"


# Proactive pushes per user per local day
PROACTIVE_DAILY_LIMITS = {
    PlanType.FREE: 3,
    PlanType.PRO: 5,
    PlanType.MAX: 8,
}


# Escalation strategies, ordered by dismiss streak
class EscalationStrategy(str, Enum):
    DELIVER = "deliver"
    ADAPT_FORMAT = "adapt_format"
    REDUCE_FREQUENCY = "reduce_frequency"
    CHANGE_CHANNEL = "change_channel"
    PAUSE_WITH_CHECKIN = "pause_with_checkin"
    FULL_SUPPRESS = "full_suppress"


CRITICAL_DEADLINE_HOURS = 24
PAUSE_DAYS = 5
SUPPRESS_DAYS = 14
SHORT_MESSAGE_LENGTH = 50
CHECKIN_TITLE = "💬 Notification settings"
CHECKIN_MESSAGE = "Do you still want this kind of notification? You can change it in settings."

# Push payload limits
MAX_PUSH_BODY = 100
PUSH_DEEP_LINK = "fieri://dashboard"

# Expo push ticket error meaning the token will never work again
PERMANENT_TOKEN_ERRORS = frozenset({"DeviceNotRegistered"})

# Dismissal & history store keys
KV_DISMISSED = "dismissed"
KV_SHOWN_TYPES = "shown:{date}"
KV_SHOWN_IDS = "shown_ids:{date}"
KV_SENT_COUNT = "count:{date}"
KV_DISMISS_STREAK = "dismiss_streak:{type}"

# Schedule keywords that make a high-priority notification critical
IMPORTANT_SCHEDULE_KEYWORDS = [
    "회의", "미팅", "meeting", "면접", "interview", "발표", "프레젠테이션", "presentation",
    "마감", "데드라인", "deadline", "시험", "테스트", "exam",
    "약속", "상담", "진료", "예약", "appointment",
]
_IMPORTANT_SCHEDULE_RE = re.compile(
    "|".join(re.escape(kw) for kw in IMPORTANT_SCHEDULE_KEYWORDS),
    re.IGNORECASE,
)


def is_important_schedule(text: str) -> bool:
    """Check if schedule text mentions a meeting, deadline, exam or appointment."""
    return bool(_IMPORTANT_SCHEDULE_RE.search(text))
