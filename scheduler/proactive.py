"""Proactive push run: decide, for every user, what to push this cycle.

Per user the pipeline is filter -> escalation -> quota -> delivery ->
bookkeeping. Users run concurrently in a bounded pool, each under its own
timeout, and one user's failure never affects another's outcome.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
import asyncpg
import orjson
import structlog
from config.settings import settings
from notifications.dispatcher import PushDispatcher
from notifications.errors import UserEnumerationError
from notifications.escalation import DismissStreakPolicy, commit_safely, escalate
from notifications.filters import filter_candidates
from notifications.push import ExpoPushProvider
from notifications.quota import remaining_quota, select_for_quota
from notifications.types import (
    CandidateGenerator,
    ContextProvider,
    DeliveryReport,
    EscalationPolicy,
)
from storage.repositories.candidate_repo import CandidateRepository
from storage.repositories.history_repo import NotificationHistoryRepository
from storage.repositories.kv_repo import KVRepository
from storage.repositories.notification_repo import NotificationRepository
from storage.repositories.push_token_repo import PushTokenRepository
from storage.repositories.user_repo import UserRepository
from utils.retry import sanitize_error
from utils.time_utils import get_zone, is_active_hour, local_date_str, utc_now

log = structlog.get_logger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    GATED = "gated"
    ITERATING = "iterating"
    COMPLETED = "completed"
    FAILED = "failed"


class UserStatus(str, Enum):
    PUSHED = "pushed"
    IN_APP = "in_app"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class UserOutcome:
    user_id: str
    status: UserStatus
    pushed: int = 0
    in_app: int = 0
    reason: str = ""


@dataclass
class RunSummary:
    date: str
    hour: int
    pushed: int = 0
    in_app: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    outside_active_hours: bool = False
    timed_out: bool = False
    state: RunState = RunState.IDLE
    outcomes: list[UserOutcome] = field(default_factory=list, repr=False)

    def add(self, outcome: UserOutcome) -> None:
        self.outcomes.append(outcome)
        self.pushed += outcome.pushed
        self.in_app += outcome.in_app
        if outcome.status == UserStatus.SKIPPED:
            self.skipped += 1
        elif outcome.status == UserStatus.ERROR:
            self.errors += 1

    def to_dict(self) -> dict[str, Any]:
        if self.outside_active_hours:
            return {
                "message": "Outside active hours",
                "skipped": True,
                "date": self.date,
                "hour": self.hour,
            }
        return {
            "success": True,
            "date": self.date,
            "hour": self.hour,
            "pushed": self.pushed,
            "in_app": self.in_app,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": self.total,
            "timed_out": self.timed_out,
        }


class UserSource(Protocol):
    async def get_all_user_ids(self) -> list[str]:
        ...


class ProactivePushRunner:
    """Runs one proactive push cycle over all users."""

    def __init__(
        self,
        users: UserSource,
        context_provider: ContextProvider,
        candidate_generator: CandidateGenerator,
        history: NotificationHistoryRepository,
        escalation_policy: EscalationPolicy,
        dispatcher: PushDispatcher,
        notification_repo: NotificationRepository,
        *,
        timezone: str | None = None,
        active_hours: tuple[int, int] | None = None,
        batch_cap: int | None = None,
        worker_pool_size: int | None = None,
        user_timeout: float | None = None,
        run_timeout: float | None = None,
    ) -> None:
        self.users = users
        self.context_provider = context_provider
        self.candidate_generator = candidate_generator
        self.history = history
        self.escalation_policy = escalation_policy
        self.dispatcher = dispatcher
        self.notification_repo = notification_repo
        self.timezone = timezone or settings.timezone
        self.active_hours = active_hours or (settings.active_hours_start, settings.active_hours_end)
        if self.active_hours[0] >= self.active_hours[1]:
            raise ValueError(f"empty active hours window: {self.active_hours}")
        self.batch_cap = batch_cap or settings.batch_cap
        self.worker_pool_size = worker_pool_size or settings.worker_pool_size
        self.user_timeout = user_timeout or settings.user_timeout_seconds
        self.run_timeout = run_timeout or settings.run_timeout_seconds

    async def run(self, now: datetime | None = None) -> RunSummary:
        """Run a full cycle. Raises UserEnumerationError if users cannot be listed.

        Run state lives on the returned summary, so overlapping runs on one
        runner do not see each other's state.
        """
        now = now or utc_now()
        zone = get_zone(self.timezone, settings.timezone)
        local_now = now.astimezone(zone)
        summary = RunSummary(date=local_now.date().isoformat(), hour=local_now.hour)

        summary.state = RunState.GATED
        start_hour, end_hour = self.active_hours
        if not is_active_hour(now, zone, start_hour, end_hour):
            log.info("proactive_run_outside_active_hours", hour=local_now.hour)
            summary.outside_active_hours = True
            summary.state = RunState.COMPLETED
            return summary

        try:
            user_ids = await self.users.get_all_user_ids()
        except Exception as e:
            summary.state = RunState.FAILED
            log.error("proactive_user_enumeration_failed", error=str(e))
            raise UserEnumerationError("could not list users", summary=summary) from e

        summary.total = len(user_ids)
        summary.state = RunState.ITERATING
        log.info("proactive_run_started", users=len(user_ids), date=summary.date, hour=summary.hour)

        semaphore = asyncio.Semaphore(self.worker_pool_size)

        async def _worker(user_id: str) -> UserOutcome:
            async with semaphore:
                return await self._run_user_isolated(user_id, now)

        tasks = [
            asyncio.create_task(_worker(uid), name=f"proactive-push:{uid}")
            for uid in user_ids
        ]
        pending: set[asyncio.Task[UserOutcome]] = set()
        if tasks:
            try:
                _, pending = await asyncio.wait(tasks, timeout=self.run_timeout)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                raise
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                summary.timed_out = True
                log.warning("proactive_run_budget_exceeded", unfinished=len(pending))

        for uid, task in zip(user_ids, tasks):
            if task in pending:
                summary.add(UserOutcome(uid, UserStatus.ERROR, reason="run_timeout"))
            else:
                summary.add(task.result())

        summary.state = RunState.COMPLETED
        log.info(
            "proactive_run_completed",
            pushed=summary.pushed,
            in_app=summary.in_app,
            skipped=summary.skipped,
            errors=summary.errors,
            total=summary.total,
        )
        return summary

    async def _run_user_isolated(self, user_id: str, now: datetime) -> UserOutcome:
        """Never raises: failures and timeouts become an error outcome."""
        try:
            async with asyncio.timeout(self.user_timeout):
                return await self.process_user(user_id, now)
        except TimeoutError:
            log.warning("proactive_user_timeout", user_id=user_id, timeout=self.user_timeout)
            return UserOutcome(user_id, UserStatus.ERROR, reason="timeout")
        except Exception as e:
            log.error("proactive_user_error", user_id=user_id, error=sanitize_error(str(e)))
            return UserOutcome(user_id, UserStatus.ERROR, reason=type(e).__name__)

    async def process_user(self, user_id: str, now: datetime) -> UserOutcome:
        """Full pipeline for one user."""
        context = await self.context_provider.get_user_context(user_id)
        if context is None:
            return UserOutcome(user_id, UserStatus.SKIPPED, reason="no_context")

        candidates = await self.candidate_generator.generate_candidates(context)
        if not candidates:
            return UserOutcome(user_id, UserStatus.SKIPPED, reason="no_candidates")

        date = local_date_str(now, get_zone(context.timezone, self.timezone))
        dismissed, daily_state = await asyncio.gather(
            self.history.get_dismissed(user_id),
            self.history.get_daily_state(user_id, date),
        )

        filtered = filter_candidates(candidates, dismissed, daily_state, now)
        if not filtered:
            return UserOutcome(user_id, UserStatus.SKIPPED, reason="all_filtered")

        # No quota left: skip before escalation touches any policy state
        if remaining_quota(context.plan, daily_state) == 0:
            return UserOutcome(user_id, UserStatus.SKIPPED, reason="quota_exhausted")

        escalation = await escalate(self.escalation_policy, user_id, filtered, now)
        report = DeliveryReport()
        try:
            if escalation.pushable:
                selected = select_for_quota(
                    escalation.pushable, context.plan, daily_state, self.batch_cap
                )
                report = await self.dispatcher.deliver(user_id, selected)
        finally:
            await commit_safely(self.escalation_policy, user_id, escalation, report.sent)

        # Demoted to in-app by escalation: shown in the app, no quota used
        if escalation.in_app_only:
            await self.notification_repo.save_delivered(
                user_id, date, escalation.in_app_only, channel="in_app"
            )
            await self.history.record_delivered(
                user_id, date, escalation.in_app_only, consume_quota=False
            )

        if report.sent:
            channel = "in_app" if report.in_app_only else "push"
            await self.notification_repo.save_delivered(user_id, date, report.sent, channel=channel)
            await self.history.record_delivered(user_id, date, report.sent)

        pushed = 0 if report.in_app_only else len(report.sent)
        in_app = len(escalation.in_app_only) + (len(report.sent) if report.in_app_only else 0)
        if pushed:
            return UserOutcome(user_id, UserStatus.PUSHED, pushed=pushed, in_app=in_app)
        if in_app:
            return UserOutcome(user_id, UserStatus.IN_APP, in_app=in_app)
        reason = "not_delivered" if escalation.pushable else "nothing_pushable"
        return UserOutcome(user_id, UserStatus.SKIPPED, reason=reason)


def build_runner(pool: asyncpg.Pool, provider: ExpoPushProvider) -> ProactivePushRunner:
    """Wire the runner to PostgreSQL-backed repositories and a push provider."""
    user_repo = UserRepository(pool)
    history = NotificationHistoryRepository(KVRepository(pool))
    return ProactivePushRunner(
        users=user_repo,
        context_provider=user_repo,
        candidate_generator=CandidateRepository(pool),
        history=history,
        escalation_policy=DismissStreakPolicy(history),
        dispatcher=PushDispatcher(provider, PushTokenRepository(pool)),
        notification_repo=NotificationRepository(pool),
    )


async def run_once() -> dict[str, Any]:
    """Run a single cycle against the configured database (for external schedulers)."""
    from config.logging_config import setup_logging
    from storage.database import close_pool, get_pool, run_migrations

    setup_logging()
    pool = await get_pool()
    provider = ExpoPushProvider()
    try:
        await run_migrations(pool)
        summary = await build_runner(pool, provider).run()
        return summary.to_dict()
    finally:
        await provider.close()
        await close_pool()


def main() -> None:
    result = asyncio.run(run_once())
    print(orjson.dumps(result).decode())


if __name__ == "__main__":
    main()
