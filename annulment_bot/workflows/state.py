"""Per-request lifecycle state, the request registry and the voting engine."""

from __future__ import annotations

import enum
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Dict, Iterator, Set, Tuple

from annulment_bot.identity import ApprovalPolicy, VoterProfile

from .requests import AnnulmentFields


class DuplicateRequestError(Exception):
    """Raised when a request is registered twice under the same handle."""


class VoteKind(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class VoteOutcome(str, enum.Enum):
    IGNORED = "ignored"
    UNAUTHORIZED = "unauthorized"
    ALREADY_VOTED = "already_voted"
    APPROVAL_RECORDED = "approval_recorded"
    QUORUM_REACHED = "quorum_reached"
    REJECT_RECORDED = "reject_recorded"


@dataclass(frozen=True)
class RequestSnapshot:
    """Consistent read-only copy of a request taken under its lock."""

    handle: str
    conversation: str
    fields: AnnulmentFields
    requested_by: str
    approvals: Tuple[VoterProfile, ...]
    voters: frozenset[str]
    resolved: bool
    rejected: bool
    rejected_by: VoterProfile | None
    rejection_reason: str | None
    revision: int
    created_at: datetime

    @property
    def approved_ids(self) -> list[str]:
        return [profile.user_id for profile in self.approvals]

    @property
    def awaiting_reason(self) -> bool:
        return self.rejected and self.rejection_reason is None


@dataclass
class RequestState:
    """Mutable lifecycle state of one approval card.

    ``resolved`` only ever moves from False to True. Mutations happen under
    ``lock``; ``card_lock`` orders edits of the Slack card.
    """

    handle: str
    conversation: str
    fields: AnnulmentFields
    requested_by: str
    approvals: Dict[str, VoterProfile] = field(default_factory=dict)
    voters: Set[str] = field(default_factory=set)
    resolved: bool = False
    rejected: bool = False
    rejected_by: VoterProfile | None = None
    rejection_reason: str | None = None
    revision: int = 0
    rendered_revision: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    card_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def snapshot(self) -> RequestSnapshot:
        return RequestSnapshot(
            handle=self.handle,
            conversation=self.conversation,
            fields=self.fields,
            requested_by=self.requested_by,
            approvals=tuple(self.approvals.values()),
            voters=frozenset(self.voters),
            resolved=self.resolved,
            rejected=self.rejected,
            rejected_by=self.rejected_by,
            rejection_reason=self.rejection_reason,
            revision=self.revision,
            created_at=self.created_at,
        )


class RequestRegistry:
    """Process-wide map from card handle to request state.

    The registry lock only guards the map itself; each request carries its
    own lock so unrelated requests never contend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: Dict[str, RequestState] = {}

    def create(
        self,
        handle: str,
        *,
        conversation: str,
        fields: AnnulmentFields,
        requested_by: str,
    ) -> RequestState:
        state = RequestState(
            handle=handle,
            conversation=conversation,
            fields=fields,
            requested_by=requested_by,
        )
        with self._lock:
            if handle in self._requests:
                raise DuplicateRequestError(f"Request {handle} is already registered.")
            self._requests[handle] = state
        return state

    def get(self, handle: str) -> RequestState | None:
        with self._lock:
            return self._requests.get(handle)

    def snapshot(self, handle: str) -> RequestSnapshot | None:
        state = self.get(handle)
        if state is None:
            return None
        with state.lock:
            return state.snapshot()

    @contextmanager
    def locked(self, handle: str) -> Iterator[RequestState | None]:
        """Hold the request's lock for a read-modify-write; yields None if unknown."""

        state = self.get(handle)
        if state is None:
            yield None
            return
        with state.lock:
            yield state

    def render_card(self, handle: str, revision: int, publish: Callable[[], bool]) -> bool:
        """Run *publish* unless a newer revision of the card was already rendered."""

        state = self.get(handle)
        if state is None:
            return False
        with state.card_lock:
            if revision < state.rendered_revision:
                return False
            if not publish():
                return False
            state.rendered_revision = revision
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._requests


@dataclass(frozen=True)
class VoteResult:
    outcome: VoteOutcome
    snapshot: RequestSnapshot | None = None
    progress: str | None = None


class VotingEngine:
    """Apply votes to requests: one vote per voter, nothing after resolution."""

    def __init__(self, registry: RequestRegistry, policy: ApprovalPolicy) -> None:
        self.registry = registry
        self.policy = policy

    def cast_vote(
        self,
        handle: str,
        voter: VoterProfile,
        kind: VoteKind,
        *,
        conversation: str | None = None,
    ) -> VoteResult:
        """Apply one vote; a vote from another conversation than the card's is ignored.

        Slack message ts values are only unique within a channel, so the
        conversation guards against a colliding handle.
        """

        kind = VoteKind(kind)
        with self.registry.locked(handle) as state:
            if state is None or state.resolved:
                return VoteResult(VoteOutcome.IGNORED)
            if conversation is not None and conversation != state.conversation:
                return VoteResult(VoteOutcome.IGNORED)

            if not self.policy.is_authorized(voter.user_id):
                return VoteResult(VoteOutcome.UNAUTHORIZED, state.snapshot())

            if voter.user_id in state.voters:
                return VoteResult(VoteOutcome.ALREADY_VOTED, state.snapshot())

            state.voters.add(voter.user_id)
            state.revision += 1

            if kind is VoteKind.REJECT:
                state.resolved = True
                state.rejected = True
                state.rejected_by = voter
                return VoteResult(VoteOutcome.REJECT_RECORDED, state.snapshot())

            state.approvals[voter.user_id] = voter
            progress = self.policy.progress(len(state.approvals))
            if len(state.approvals) >= self.policy.required_approvals:
                state.resolved = True
                return VoteResult(VoteOutcome.QUORUM_REACHED, state.snapshot(), progress)
            return VoteResult(VoteOutcome.APPROVAL_RECORDED, state.snapshot(), progress)
