"""Notification data classes and the collaborator interfaces the engine consumes."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
import structlog
from config.constants import (
    EscalationStrategy,
    NotificationType,
    PlanType,
    Priority,
    SINGLETON_TYPES,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NotificationCandidate:
    """A notification a generator proposes for one user."""
    id: str  # stable per logical event, e.g. content + date
    type: NotificationType
    priority: Priority
    title: str
    message: str
    action_type: str | None = None
    action_payload: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        # Naive expiries are taken as UTC so they compare with the aware run clock
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            object.__setattr__(self, "expires_at", self.expires_at.replace(tzinfo=UTC))

    @property
    def is_singleton(self) -> bool:
        return self.type in SINGLETON_TYPES

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "NotificationCandidate":
        """Build a candidate from a stored row. Raises ValueError on unknown type/priority."""
        payload = raw.get("action_payload") or {}
        if not isinstance(payload, dict):
            payload = {}
        expires_at = raw.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        return cls(
            id=str(raw["id"]),
            type=NotificationType(raw["type"]),
            priority=Priority(raw.get("priority", Priority.MEDIUM)),
            title=raw.get("title") or "",
            message=raw.get("message") or "",
            action_type=raw.get("action_type"),
            action_payload=payload,
            expires_at=expires_at,
        )


@dataclass
class UserContext:
    """Per-user behavioral snapshot supplied by the context provider."""
    user_id: str
    plan: PlanType = PlanType.FREE
    timezone: str | None = None  # None = engine default
    completion_rate: float | None = None
    schedule_density: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class UserDailyState:
    """Dedup and quota state for one (user, local date)."""
    date: str
    shown_singleton_types: set[str] = field(default_factory=set)
    shown_candidate_ids: set[str] = field(default_factory=set)
    sent_count: int = 0


@dataclass(frozen=True)
class Decision:
    """Escalation outcome for one candidate."""
    should_deliver: bool
    push_allowed: bool
    adjusted_candidate: NotificationCandidate | None = None
    strategy: EscalationStrategy = EscalationStrategy.DELIVER
    reason: str = ""

    @property
    def proceeds_to_push(self) -> bool:
        return self.should_deliver and self.push_allowed and self.adjusted_candidate is not None

    @classmethod
    def suppressed(
        cls,
        reason: str,
        strategy: EscalationStrategy = EscalationStrategy.FULL_SUPPRESS,
    ) -> "Decision":
        return cls(should_deliver=False, push_allowed=False, strategy=strategy, reason=reason)


@dataclass
class DismissStreak:
    """How many times in a row a user dismissed a notification type."""
    count: int = 0
    last_date: datetime | None = None
    last_delivered: bool = False

    @classmethod
    def from_value(cls, value: Any) -> "DismissStreak":
        if not isinstance(value, dict):
            if value is not None:
                log.warning("malformed_dismiss_streak", value_type=type(value).__name__)
            return cls()
        count = parse_count(value.get("count"), key="dismiss_streak.count")
        last_date = None
        raw_date = value.get("last_date")
        if isinstance(raw_date, str):
            try:
                last_date = datetime.fromisoformat(raw_date)
            except ValueError:
                log.warning("malformed_dismiss_streak_date", value=raw_date)
        return cls(count=count, last_date=last_date, last_delivered=bool(value.get("last_delivered")))

    def to_value(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "last_date": self.last_date.isoformat() if self.last_date else None,
            "last_delivered": self.last_delivered,
        }


@dataclass(frozen=True)
class PushToken:
    user_id: str
    token: str
    active: bool = True


@dataclass
class PushMessage:
    """A single provider message: one candidate to one device token."""
    to: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: str | None = "default"
    channel_id: str = "default"
    priority: str = "high"

    def to_payload(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": self.sound,
            "channelId": self.channel_id,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class PushTicket:
    """Provider verdict for one message."""
    accepted: bool
    permanent_failure: bool = False
    error: str | None = None
    ticket_id: str | None = None


@dataclass
class DeliveryReport:
    """What the delivery stage actually managed to deliver for a user."""
    sent: list[NotificationCandidate] = field(default_factory=list)
    in_app_only: bool = False
    token_results: dict[str, bool] = field(default_factory=dict)
    deactivated_tokens: list[str] = field(default_factory=list)


# ── Store boundary validation ──


def parse_id_set(value: Any, key: str = "") -> set[str]:
    """Coerce a persisted JSON value into a set of strings; malformed -> empty."""
    if value is None:
        return set()
    if not isinstance(value, list):
        log.warning("malformed_kv_value", key=key, expected="list", got=type(value).__name__)
        return set()
    return {str(v) for v in value if isinstance(v, (str, int))}


def parse_count(value: Any, key: str = "") -> int:
    """Coerce a persisted JSON value into a non-negative int; malformed -> 0."""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        log.warning("malformed_kv_value", key=key, expected="int", got=type(value).__name__)
        return 0
    return max(0, int(value))


# ── Collaborator interfaces ──


class ContextProvider(Protocol):
    async def get_user_context(self, user_id: str) -> UserContext | None:
        """None means skip this user."""
        ...


class CandidateGenerator(Protocol):
    async def generate_candidates(self, context: UserContext) -> list[NotificationCandidate]:
        """Must return the same id for an unresolved condition within a day."""
        ...


class EscalationPolicy(Protocol):
    async def decide(
        self, user_id: str, candidate: NotificationCandidate, now: datetime
    ) -> Decision:
        """Must not write state; anything that depends on delivery goes in commit()."""
        ...

    async def commit(
        self,
        user_id: str,
        decisions: list[tuple[NotificationCandidate, Decision]],
        delivered: list[NotificationCandidate],
    ) -> None:
        ...


class PushProvider(Protocol):
    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> PushTicket:
        ...

    async def send_batch(self, messages: list[PushMessage]) -> list[PushTicket]:
        """Tickets are returned in message order."""
        ...
