"""The annulment approval workflow: submissions, votes, replies and reminders."""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy.exc import SQLAlchemyError

from annulment_bot.identity import ApprovalPolicy, VoterProfile
from annulment_bot.ledger import Ledger, validate_partition_key

from . import notifications
from .finalization import FinalizationPipeline, partition_key_for
from .messages import (
    build_approved_summary,
    build_card_failed,
    build_ledger_error,
    build_reminder,
    build_request_card,
)
from .rejection import PendingReplies, RejectionHandshake
from .reminders import ReminderScheduler
from .requests import (
    MalformedSubmissionError,
    build_format_hint,
    extract_submission_body,
    parse_submission,
)
from .state import (
    DuplicateRequestError,
    RequestRegistry,
    RequestSnapshot,
    VoteKind,
    VoteOutcome,
    VoteResult,
    VotingEngine,
)
from .stats import build_monthly_report

_VOTE_FEEDBACK = {
    VoteOutcome.UNAUTHORIZED: "You are not allowed to vote on annulment requests.",
    VoteOutcome.ALREADY_VOTED: "You have already voted on this request.",
    VoteOutcome.QUORUM_REACHED: "Approval recorded. The request is approved.",
}
_REJECT_FEEDBACK = {
    True: "Rejection recorded. Please reply in the thread with the reason.",
    False: "Rejection recorded. The comment prompt could not be posted, so no reason will be collected.",
}


class AnnulmentWorkflow:
    """Owns every piece of in-memory workflow state for the process.

    Entry points never raise on malformed, duplicate or stale input; those
    are answered in Slack or dropped.
    """

    def __init__(
        self,
        *,
        policy: ApprovalPolicy,
        ledger: Ledger,
        timezone: tzinfo,
        reminder_delay: timedelta = timedelta(hours=2),
        scheduler: ReminderScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.policy = policy
        self.ledger = ledger
        self.registry = RequestRegistry()
        self.replies = PendingReplies()
        self.voting = VotingEngine(self.registry, policy)
        self.finalizer = FinalizationPipeline(ledger, timezone=timezone, clock=clock)
        self.handshake = RejectionHandshake(self.registry, self.replies)
        self.reminders = scheduler or ReminderScheduler(delay=reminder_delay)
        self._clock = clock or (lambda: datetime.now(timezone))

    @classmethod
    def from_settings(cls, settings, *, ledger: Ledger, **kwargs: Any) -> "AnnulmentWorkflow":
        return cls(
            policy=ApprovalPolicy.from_settings(settings),
            ledger=ledger,
            timezone=settings.timezone,
            reminder_delay=timedelta(seconds=settings.reminder_delay_seconds),
            **kwargs,
        )

    def handle_submission(self, client, *, conversation: str, sender: str, text: str) -> RequestSnapshot | None:
        """Post an approval card for a tagged message; returns None if nothing was created."""

        body = extract_submission_body(text)
        if body is None:
            return None

        log = structlog.get_logger().bind(channel=conversation, requested_by=sender)
        try:
            fields = parse_submission(body)
        except MalformedSubmissionError as exc:
            log.info("submission_malformed", missing=exc.missing, too_long=exc.too_long)
            notifications.post_notice(client, conversation=conversation, text=build_format_hint(exc))
            return None

        handle = notifications.post_card(
            client,
            conversation=conversation,
            payload=build_request_card(fields=fields, policy=self.policy),
        )
        if handle is None:
            log.warning("request_card_not_posted", ticket=fields.ticket)
            notifications.post_notice(client, conversation=conversation, text=build_card_failed(fields=fields))
            return None

        try:
            state = self.registry.create(handle, conversation=conversation, fields=fields, requested_by=sender)
        except DuplicateRequestError:
            log.warning("request_handle_reused", handle=handle)
            return None

        self.reminders.schedule(handle, self.send_reminder, client, handle)
        log.info("request_created", handle=handle, ticket=fields.ticket)
        with state.lock:
            return state.snapshot()

    def handle_vote(
        self,
        client,
        *,
        conversation: str,
        handle: str,
        voter: VoterProfile,
        kind: VoteKind,
    ) -> VoteResult:
        result = self.voting.cast_vote(handle, voter, kind, conversation=conversation)
        log = structlog.get_logger().bind(handle=handle, voter=voter.user_id, kind=VoteKind(kind).value)
        log.info("vote_processed", outcome=result.outcome.value, progress=result.progress)

        if result.outcome is VoteOutcome.IGNORED:
            return result

        snapshot = result.snapshot
        if result.outcome is VoteOutcome.REJECT_RECORDED:
            self.reminders.cancel(handle)
            prompted = self.handshake.begin(client, snapshot, voter) is not None
            feedback = _REJECT_FEEDBACK[prompted]
        elif result.outcome is VoteOutcome.APPROVAL_RECORDED:
            feedback = f"Approval recorded ({result.progress})."
        else:
            feedback = _VOTE_FEEDBACK.get(result.outcome)
        if feedback:
            notifications.post_ephemeral(client, conversation=conversation, user=voter.user_id, text=feedback)

        if result.outcome is VoteOutcome.APPROVAL_RECORDED:
            self._render(
                client,
                snapshot,
                build_request_card(
                    fields=snapshot.fields,
                    policy=self.policy,
                    approvals=snapshot.approvals,
                    progress=result.progress,
                ),
            )
        elif result.outcome is VoteOutcome.QUORUM_REACHED:
            self.reminders.cancel(handle)
            self._finalize(client, snapshot)
        return result

    def handle_reply(
        self,
        client,
        *,
        conversation: str,
        sender: str,
        replied_to: str | None,
        text: str,
        reply_handle: str | None = None,
    ) -> bool:
        return self.handshake.complete(
            client,
            conversation=conversation,
            sender=sender,
            replied_to=replied_to,
            text=text,
            reply_handle=reply_handle,
        )

    def send_reminder(self, client, handle: str) -> bool:
        """Nudge outstanding approvers unless the request is resolved at this moment."""

        snapshot = self.registry.snapshot(handle)
        if snapshot is None or snapshot.resolved:
            return False

        pending = self.policy.pending_approvers(snapshot.approved_ids)
        if not pending:
            return False

        posted = notifications.post_notice(
            client,
            conversation=snapshot.conversation,
            text=build_reminder(fields=snapshot.fields, pending=pending),
        )
        structlog.get_logger().info("reminder_sent", handle=handle, pending=pending, posted=bool(posted))
        return bool(posted)

    def monthly_summary(self, partition_key: str | None = None) -> str:
        key = partition_key or partition_key_for(self._clock(), self.finalizer.timezone)
        try:
            validate_partition_key(key)
        except ValueError as exc:
            return f":warning: {exc}"

        try:
            return build_monthly_report(self.ledger, key)
        except SQLAlchemyError:
            structlog.get_logger().exception("monthly_summary_failed", partition=key)
            return ":warning: Failed to read the summary from the ledger."

    def _render(self, client, snapshot: RequestSnapshot, payload: Mapping[str, Any]) -> bool:
        return self.registry.render_card(
            snapshot.handle,
            snapshot.revision,
            lambda: notifications.edit_card(
                client, conversation=snapshot.conversation, handle=snapshot.handle, payload=payload
            ),
        )

    def _finalize(self, client, snapshot: RequestSnapshot) -> None:
        result = self.finalizer.finalize(snapshot)
        self._render(
            client,
            snapshot,
            build_approved_summary(
                fields=snapshot.fields,
                approvals=snapshot.approvals,
                partition_key=result.partition_key,
                others=self.policy.pending_approvers(snapshot.approved_ids),
                recorded=result.ok,
            ),
        )
        if not result.ok:
            notifications.post_notice(
                client,
                conversation=snapshot.conversation,
                text=build_ledger_error(fields=snapshot.fields, error=result.error or "unknown error"),
            )
