"""Slack side effects of the workflow, with uniform failure logging."""

from __future__ import annotations

from typing import Any, Mapping

import structlog
from slack_sdk.errors import SlackApiError

from annulment_bot.slack_client import SlackClient


def _log_failure(operation: str, exc: SlackApiError, **context: Any) -> None:
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None) if response is not None else None
    error_code = response.get("error") if response is not None else str(exc)
    structlog.get_logger().bind(**context).error(
        "webhook_failed",
        operation=operation,
        error=error_code,
        status_code=status_code,
    )


def post_card(client, *, conversation: str, payload: Mapping[str, Any]) -> str | None:
    """Post an approval card; returns its handle or None when Slack refused it."""

    try:
        handle = SlackClient(client=client).post_card(
            channel=conversation,
            text=payload["text"],
            blocks=payload["blocks"],
        )
    except SlackApiError as exc:
        _log_failure("post_card", exc, channel=conversation)
        return None

    if not handle:
        structlog.get_logger().warning("card_handle_missing", channel=conversation)
        return None
    return handle


def edit_card(client, *, conversation: str, handle: str, payload: Mapping[str, Any]) -> bool:
    try:
        SlackClient(client=client).edit_card(
            channel=conversation,
            ts=handle,
            text=payload["text"],
            blocks=payload["blocks"],
        )
    except SlackApiError as exc:
        _log_failure("edit_card", exc, channel=conversation, handle=handle)
        return False
    return True


def post_notice(client, *, conversation: str, text: str, thread_ts: str | None = None) -> str | None:
    try:
        return SlackClient(client=client).post_message(channel=conversation, text=text, thread_ts=thread_ts)
    except SlackApiError as exc:
        _log_failure("post_message", exc, channel=conversation)
        return None


def prompt_reply(client, *, conversation: str, text: str) -> str | None:
    try:
        return SlackClient(client=client).prompt_reply(channel=conversation, text=text)
    except SlackApiError as exc:
        _log_failure("prompt_reply", exc, channel=conversation)
        return None


def post_ephemeral(client, *, conversation: str, user: str, text: str) -> bool:
    try:
        SlackClient(client=client).post_ephemeral(channel=conversation, user=user, text=text)
    except SlackApiError as exc:
        _log_failure("post_ephemeral", exc, channel=conversation, user_id=user)
        return False
    return True


def delete_quietly(client, *, conversation: str, handle: str) -> bool:
    """Best-effort delete; a refusal is logged at debug level and otherwise ignored."""

    try:
        SlackClient(client=client).delete_message(channel=conversation, ts=handle)
    except SlackApiError as exc:
        response = getattr(exc, "response", None)
        structlog.get_logger().debug(
            "message_delete_skipped",
            channel=conversation,
            handle=handle,
            error=response.get("error") if response is not None else str(exc),
        )
        return False
    return True
