"""Annulment request lifecycle: parsing, voting, finalization, rejection and reminders."""

from .messages import APPROVE_ACTION_ID, REJECT_ACTION_ID
from .requests import AnnulmentFields, MalformedSubmissionError, parse_submission
from .service import AnnulmentWorkflow
from .state import (
    DuplicateRequestError,
    RequestRegistry,
    RequestState,
    VoteKind,
    VoteOutcome,
    VoteResult,
    VotingEngine,
)

__all__ = [
    "APPROVE_ACTION_ID",
    "REJECT_ACTION_ID",
    "AnnulmentFields",
    "AnnulmentWorkflow",
    "DuplicateRequestError",
    "MalformedSubmissionError",
    "RequestRegistry",
    "RequestState",
    "VoteKind",
    "VoteOutcome",
    "VoteResult",
    "VotingEngine",
    "parse_submission",
]
