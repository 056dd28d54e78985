"""Push message builders for notification candidates."""

from typing import Any
from config.constants import MAX_PUSH_BODY, PUSH_DEEP_LINK
from notifications.types import NotificationCandidate, PushMessage, PushToken
from utils.formatting import truncate


def push_data(candidate: NotificationCandidate) -> dict[str, Any]:
    """Client-visible payload; notification_id is what the app dedups on."""
    return {
        "type": candidate.type.value,
        "deep_link": PUSH_DEEP_LINK,
        "notification_id": candidate.id,
        "action_type": candidate.action_type,
        "action_payload": candidate.action_payload,
    }


def format_push_message(candidate: NotificationCandidate, token: PushToken) -> PushMessage:
    """Build the provider message for one candidate and one device."""
    return PushMessage(
        to=token.token,
        title=candidate.title,
        body=truncate(candidate.message, MAX_PUSH_BODY),
        data=push_data(candidate),
    )
