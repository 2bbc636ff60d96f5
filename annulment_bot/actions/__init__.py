"""Parsing of Slack interaction and message payloads into workflow events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from annulment_bot.identity import VoterProfile
from annulment_bot.workflows.state import VoteKind

# Message subtypes that still carry a human-authored message.
_USER_MESSAGE_SUBTYPES = {None, "thread_broadcast", "file_share"}


@dataclass(frozen=True)
class VoteEvent:
    """A click on the Approve or Reject button of an approval card."""

    conversation: str
    handle: str
    voter: VoterProfile
    kind: VoteKind


@dataclass(frozen=True)
class MessageEvent:
    """A human-authored channel message, possibly a threaded reply."""

    conversation: str
    sender: str
    text: str
    ts: str
    thread_ts: str | None = None

    @property
    def is_reply(self) -> bool:
        return bool(self.thread_ts) and self.thread_ts != self.ts


def parse_vote_action(body: Mapping[str, Any], kind: VoteKind) -> VoteEvent:
    """Build a VoteEvent from a ``block_actions`` payload.

    The card handle is the ts of the message the buttons belong to.
    """

    container = body.get("container") or {}
    message = body.get("message") or {}
    channel = body.get("channel") or {}

    handle = container.get("message_ts") or message.get("ts")
    conversation = channel.get("id") or container.get("channel_id")
    if not isinstance(handle, str) or not handle:
        raise ValueError("Invalid action payload.")
    if not isinstance(conversation, str) or not conversation:
        raise ValueError("Invalid action payload.")

    voter = VoterProfile.from_slack_user(body.get("user") or {})
    return VoteEvent(conversation=conversation, handle=handle, voter=voter, kind=kind)


def parse_message_event(event: Mapping[str, Any]) -> MessageEvent | None:
    """Return a MessageEvent, or None for bot, edited, deleted or incomplete messages."""

    if event.get("bot_id") or event.get("subtype") not in _USER_MESSAGE_SUBTYPES:
        return None

    conversation = event.get("channel")
    sender = event.get("user")
    ts = event.get("ts")
    if not conversation or not sender or not ts:
        return None

    return MessageEvent(
        conversation=conversation,
        sender=sender,
        text=event.get("text") or "",
        ts=ts,
        thread_ts=event.get("thread_ts"),
    )
