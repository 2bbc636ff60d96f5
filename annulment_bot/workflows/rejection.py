"""Two-step rejection: prompt the rejecting voter, then capture their threaded reply."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Tuple

import structlog

from annulment_bot.identity import VoterProfile

from . import notifications
from .messages import (
    build_reject_prompt,
    build_reject_prompt_failed,
    build_rejection_final,
    build_rejection_pending,
)
from .requests import decode_slack_text
from .state import RequestRegistry, RequestSnapshot


@dataclass(frozen=True)
class PendingReply:
    prompt_handle: str
    request_handle: str
    created_at: float = field(default_factory=time.time)


class PendingReplies:
    """Correlation table keyed by (conversation, voter id).

    A second rejection by the same voter in the same conversation replaces
    the earlier entry. Each key also has its own lock, held while its prompt
    is being posted, so a reply cannot be matched before its entry exists.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], PendingReply] = {}
        self._key_locks: Dict[Tuple[str, str], threading.Lock] = {}

    def _key_lock(self, key: Tuple[str, str]) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    @contextmanager
    def reserving(self, conversation: str, voter_id: str) -> Iterator[None]:
        """Hold back replies from *voter_id* in *conversation* until the block exits."""

        with self._key_lock((conversation, voter_id)):
            yield

    def register(self, conversation: str, voter_id: str, *, prompt_handle: str, request_handle: str) -> PendingReply:
        entry = PendingReply(prompt_handle=prompt_handle, request_handle=request_handle)
        with self._lock:
            self._entries[(conversation, voter_id)] = entry
        return entry

    def peek(self, conversation: str, voter_id: str) -> PendingReply | None:
        with self._lock:
            return self._entries.get((conversation, voter_id))

    def consume(self, conversation: str, sender_id: str, replied_to: str | None) -> PendingReply | None:
        """Remove and return the entry if *sender_id* is replying to its prompt."""

        key = (conversation, sender_id)
        with self._key_lock(key), self._lock:
            entry = self._entries.get(key)
            if entry is None or not replied_to or replied_to != entry.prompt_handle:
                return None
            del self._entries[key]
            return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RejectionHandshake:
    def __init__(self, registry: RequestRegistry, replies: PendingReplies) -> None:
        self.registry = registry
        self.replies = replies

    def begin(self, client, snapshot: RequestSnapshot, voter: VoterProfile) -> str | None:
        """Ask *voter* for a reason and mark the card as awaiting it.

        When the prompt cannot be posted the rejection is closed without a
        comment and the channel is told so.
        """

        log = structlog.get_logger().bind(handle=snapshot.handle, voter=voter.user_id)
        with self.replies.reserving(snapshot.conversation, voter.user_id):
            prompt_handle = notifications.prompt_reply(
                client,
                conversation=snapshot.conversation,
                text=build_reject_prompt(fields=snapshot.fields, voter=voter),
            )
            if prompt_handle:
                self.replies.register(
                    snapshot.conversation,
                    voter.user_id,
                    prompt_handle=prompt_handle,
                    request_handle=snapshot.handle,
                )

        if not prompt_handle:
            log.warning("rejection_prompt_failed")
            self._close_without_reason(client, snapshot, voter)
            return None

        log.info("rejection_reason_requested", prompt_handle=prompt_handle)
        payload = build_rejection_pending(fields=snapshot.fields, voter=voter)
        self._render(client, snapshot.conversation, snapshot.handle, snapshot.revision, payload)
        return prompt_handle

    def complete(
        self,
        client,
        *,
        conversation: str,
        sender: str,
        replied_to: str | None,
        text: str,
        reply_handle: str | None = None,
    ) -> bool:
        """Finalize a rejection from a correlated reply; unrelated replies return False."""

        entry = self.replies.consume(conversation, sender, replied_to)
        if entry is None:
            return False

        log = structlog.get_logger().bind(handle=entry.request_handle, voter=sender)
        reason = decode_slack_text(text).strip()
        snapshot = self._record_reason(entry.request_handle, reason, log)
        if snapshot is None:
            return False

        voter = snapshot.rejected_by or VoterProfile(user_id=sender)
        payload = build_rejection_final(fields=snapshot.fields, voter=voter, reason=reason)
        self._render(client, conversation, snapshot.handle, snapshot.revision, payload)
        log.info("rejection_finalized", reason=reason or None)

        notifications.delete_quietly(client, conversation=conversation, handle=entry.prompt_handle)
        if reply_handle:
            notifications.delete_quietly(client, conversation=conversation, handle=reply_handle)
        return True

    def _record_reason(self, handle: str, reason: str, log) -> RequestSnapshot | None:
        with self.registry.locked(handle) as state:
            if state is None:
                log.warning("rejection_request_missing")
                return None
            if state.rejection_reason is not None:
                log.info("rejection_reason_already_recorded")
                return None
            state.rejection_reason = reason
            state.revision += 1
            return state.snapshot()

    def _close_without_reason(self, client, snapshot: RequestSnapshot, voter: VoterProfile) -> None:
        closed = self._record_reason(snapshot.handle, "", structlog.get_logger().bind(handle=snapshot.handle))
        if closed is not None:
            payload = build_rejection_final(fields=closed.fields, voter=voter, reason=None)
            self._render(client, closed.conversation, closed.handle, closed.revision, payload)
        notifications.post_notice(
            client,
            conversation=snapshot.conversation,
            text=build_reject_prompt_failed(fields=snapshot.fields, voter=voter),
        )

    def _render(self, client, conversation: str, handle: str, revision: int, payload) -> bool:
        return self.registry.render_card(
            handle,
            revision,
            lambda: notifications.edit_card(client, conversation=conversation, handle=handle, payload=payload),
        )
