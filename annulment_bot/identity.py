"""Voter identity and the approval policy (allow-list and quorum)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Tuple

FALLBACK_DISPLAY_NAME = "colleague"


@dataclass(frozen=True)
class VoterProfile:
    """Snapshot of a voter's Slack profile taken when the vote is cast."""

    user_id: str
    username: str = ""
    name: str = ""

    @classmethod
    def from_slack_user(cls, user: Mapping[str, Any]) -> "VoterProfile":
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("Slack user payload has no id.")
        return cls(
            user_id=user_id,
            username=str(user.get("username") or "").strip(),
            name=str(user.get("name") or user.get("real_name") or "").strip(),
        )

    @property
    def mention(self) -> str:
        return f"<@{self.user_id}>"

    @property
    def display_name(self) -> str:
        return self.username or self.name or FALLBACK_DISPLAY_NAME


def mention(user_id: str) -> str:
    return f"<@{user_id}>"


class ApprovalPolicy:
    """Decide who may vote and how many distinct approvals settle a request.

    An empty allow-list means anyone in the channel may vote.
    """

    def __init__(self, *, approver_ids: Iterable[str] = (), required_approvals: int = 1) -> None:
        if not isinstance(required_approvals, int) or required_approvals < 1:
            raise ValueError("required_approvals must be an integer >= 1")

        ordered: List[str] = []
        for approver in approver_ids:
            member = (approver or "").strip()
            if member and member not in ordered:
                ordered.append(member)

        self._approver_ids: Tuple[str, ...] = tuple(ordered)
        self._allowed = frozenset(ordered)
        self.required_approvals = required_approvals

    @classmethod
    def from_settings(cls, settings) -> "ApprovalPolicy":
        return cls(
            approver_ids=settings.approver_user_ids,
            required_approvals=settings.required_approvals,
        )

    @property
    def approver_ids(self) -> Tuple[str, ...]:
        return self._approver_ids

    def is_authorized(self, user_id: str) -> bool:
        if not self._allowed:
            return True
        return user_id in self._allowed

    def pending_approvers(self, approved_ids: Iterable[str]) -> List[str]:
        """Allow-listed approvers who have not approved yet, in configured order."""

        approved = set(approved_ids)
        return [user_id for user_id in self._approver_ids if user_id not in approved]

    def progress(self, approvals: int) -> str:
        return f"{approvals}/{self.required_approvals}"

    def approvers_line(self) -> str:
        if not self._approver_ids:
            return ""
        return "Approvers: " + ", ".join(mention(user_id) for user_id in self._approver_ids)

    def quorum_label(self) -> str:
        if self.required_approvals == 1:
            return "Approval needed: 1"
        return f"Approvals needed: {self.required_approvals}"
