"""Deliver selected notifications to every active device of a user."""

import asyncio
import structlog
from config.settings import settings
from notifications.errors import PushDeliveryError
from notifications.formatter import format_push_message
from notifications.types import (
    DeliveryReport,
    NotificationCandidate,
    PushProvider,
    PushTicket,
    PushToken,
)
from storage.repositories.push_token_repo import PushTokenRepository
from utils.retry import sanitize_error

log = structlog.get_logger(__name__)


class PushDispatcher:
    """Fan candidates out to a user's push tokens and prune dead tokens."""

    def __init__(
        self,
        provider: PushProvider,
        token_repo: PushTokenRepository,
        batch_size: int | None = None,
        fanout: int | None = None,
    ) -> None:
        self._provider = provider
        self._token_repo = token_repo
        self._batch_size = batch_size or settings.push_batch_size
        self._fanout = fanout or settings.token_fanout

    async def deliver(
        self, user_id: str, candidates: list[NotificationCandidate]
    ) -> DeliveryReport:
        """Send one message per (candidate, active token).

        A candidate counts as sent when at least one device accepted it. A
        user with no active tokens gets everything in-app only.
        """
        if not candidates:
            return DeliveryReport()

        tokens = await self._token_repo.get_active(user_id)
        if not tokens:
            log.info("push_no_active_tokens", user_id=user_id, candidates=len(candidates))
            return DeliveryReport(sent=list(candidates), in_app_only=True)

        # Candidate-major order keeps priority order on the wire
        pairs = [(c, t) for c in candidates for t in tokens]
        chunks = [
            pairs[i : i + self._batch_size]
            for i in range(0, len(pairs), self._batch_size)
        ]
        semaphore = asyncio.Semaphore(self._fanout)

        async def _send_chunk(
            chunk: list[tuple[NotificationCandidate, PushToken]],
        ) -> list[PushTicket]:
            async with semaphore:
                return await self._provider.send_batch(
                    [format_push_message(c, t) for c, t in chunk]
                )

        results = await asyncio.gather(
            *(_send_chunk(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        accepted_ids: set[str] = set()
        token_results = {t.token: False for t in tokens}
        dead_tokens: set[str] = set()
        failed_chunks = 0
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed_chunks += 1
                log.warning(
                    "push_batch_failed",
                    user_id=user_id,
                    messages=len(chunk),
                    error=sanitize_error(str(result)),
                )
                continue
            for (candidate, token), ticket in zip(chunk, result):
                if ticket.accepted:
                    accepted_ids.add(candidate.id)
                    token_results[token.token] = True
                elif ticket.permanent_failure:
                    dead_tokens.add(token.token)

        if failed_chunks == len(chunks):
            raise PushDeliveryError(f"all {failed_chunks} push batches failed for user {user_id}")

        deactivated: list[str] = []
        if dead_tokens:
            deactivated = sorted(dead_tokens)
            count = await self._token_repo.deactivate(deactivated)
            log.info("push_tokens_deactivated", user_id=user_id, tokens=count)

        sent = [c for c in candidates if c.id in accepted_ids]
        log.info(
            "push_delivered",
            user_id=user_id,
            sent=len(sent),
            candidates=len(candidates),
            devices=len(tokens),
        )
        return DeliveryReport(
            sent=sent,
            token_results=token_results,
            deactivated_tokens=deactivated,
        )
