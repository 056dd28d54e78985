"""Expo push API client.

https://docs.expo.dev/push-notifications/sending-notifications/
"""

from typing import Any
import aiohttp
import orjson
import structlog
from config.constants import PERMANENT_TOKEN_ERRORS
from config.settings import settings
from notifications.types import PushMessage, PushTicket
from utils.retry import async_retry

log = structlog.get_logger(__name__)

EXPO_MAX_BATCH = 100


def parse_tickets(body: Any, expected: int) -> list[PushTicket]:
    """Map an Expo response onto one ticket per submitted message, in order."""
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list):
        log.warning("expo_malformed_response", errors=body.get("errors") if isinstance(body, dict) else None)
        return [PushTicket(accepted=False, error="malformed_response")] * expected

    tickets: list[PushTicket] = []
    for i in range(expected):
        raw = data[i] if i < len(data) else None
        if not isinstance(raw, dict):
            tickets.append(PushTicket(accepted=False, error="missing_ticket"))
            continue
        if raw.get("status") == "ok":
            tickets.append(PushTicket(accepted=True, ticket_id=raw.get("id")))
            continue
        details = raw.get("details") or {}
        error = details.get("error") if isinstance(details, dict) else None
        tickets.append(PushTicket(
            accepted=False,
            permanent_failure=error in PERMANENT_TOKEN_ERRORS,
            error=error or raw.get("message"),
        ))
    return tickets


class ExpoPushProvider:
    """Sends push messages through Expo in batches of at most 100."""

    def __init__(
        self,
        push_url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = push_url or settings.expo_push_url
        self._access_token = access_token if access_token is not None else settings.expo_access_token
        self._timeout = timeout or settings.push_request_timeout
        self._session = session

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> PushTicket:
        tickets = await self.send_batch([PushMessage(to=token, title=title, body=body, data=data)])
        return tickets[0]

    async def send_batch(self, messages: list[PushMessage]) -> list[PushTicket]:
        if not messages:
            return []
        if len(messages) > EXPO_MAX_BATCH:
            raise ValueError(f"Expo accepts at most {EXPO_MAX_BATCH} messages per request")
        body = await self._post([m.to_payload() for m in messages])
        tickets = parse_tickets(body, len(messages))
        log.debug(
            "expo_batch_sent",
            messages=len(messages),
            accepted=sum(1 for t in tickets if t.accepted),
        )
        return tickets

    @async_retry(max_retries=2, base_delay=0.5, exceptions=(aiohttp.ClientConnectorError,))
    async def _post(self, payload: list[dict[str, Any]]) -> Any:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        session = await self.get_session()
        async with session.post(self._url, data=orjson.dumps(payload), headers=headers) as resp:
            if resp.status == 429:
                log.warning("expo_rate_limited")
            resp.raise_for_status()
            return await resp.json()
