"""Block Kit builders for annulment cards and follow-up notices."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence

from annulment_bot.identity import ApprovalPolicy, VoterProfile, mention

from .requests import AnnulmentFields

APPROVE_ACTION_ID = "annul_approve"
REJECT_ACTION_ID = "annul_reject"
DECISION_BLOCK_ID = "annul_decision_buttons"

CARD_TITLE = "Fine annulment"
_EMPTY = "-"


def _field_lines(fields: AnnulmentFields) -> List[str]:
    lines = [
        f"*Ticket:* {fields.ticket}",
        f"*Violation:* {fields.violation_type}",
        f"*Reason:* {fields.reason}",
    ]
    if fields.amount:
        lines.append(f"*Amount:* {fields.amount}")
    if fields.operator:
        lines.append(f"*Operator:* {fields.operator}")
    return lines


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(lines: Iterable[str]) -> Dict[str, Any] | None:
    text = "\n".join(line for line in lines if line)
    if not text:
        return None
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def _decision_buttons(ticket: str) -> Dict[str, Any]:
    return {
        "type": "actions",
        "block_id": DECISION_BLOCK_ID,
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Approve", "emoji": True},
                "style": "primary",
                "action_id": APPROVE_ACTION_ID,
                "value": ticket,
            },
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "Reject", "emoji": True},
                "style": "danger",
                "action_id": REJECT_ACTION_ID,
                "value": ticket,
                "confirm": {
                    "title": {"type": "plain_text", "text": "Reject annulment"},
                    "text": {
                        "type": "mrkdwn",
                        "text": "You will be asked for a comment explaining the rejection.",
                    },
                    "confirm": {"type": "plain_text", "text": "Reject"},
                    "deny": {"type": "plain_text", "text": "Cancel"},
                },
            },
        ],
    }


def _names(profiles: Sequence[VoterProfile]) -> str:
    return ", ".join(profile.mention for profile in profiles) or _EMPTY


def build_request_card(
    *,
    fields: AnnulmentFields,
    policy: ApprovalPolicy,
    approvals: Sequence[VoterProfile] = (),
    progress: str | None = None,
    include_actions: bool = True,
) -> Dict[str, Any]:
    """Build the interactive approval card, optionally showing vote progress."""

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f":receipt: {CARD_TITLE}", "emoji": True}},
        _section("\n".join(_field_lines(fields))),
    ]

    footer = [policy.approvers_line()]
    if progress is None:
        footer.append(policy.quorum_label())
    else:
        footer.insert(0, f"*Status:* {progress}")
        footer.append(f"*Approved by:* {_names(approvals)}")
    context = _context(footer)
    if context:
        blocks.append(context)

    if include_actions:
        blocks.append(_decision_buttons(fields.ticket))

    status = f" ({progress})" if progress else ""
    return {"text": f"{CARD_TITLE}: ticket {fields.ticket}{status}", "blocks": blocks}


def build_approved_summary(
    *,
    fields: AnnulmentFields,
    approvals: Sequence[VoterProfile],
    partition_key: str,
    others: Sequence[str] = (),
    recorded: bool = True,
) -> Dict[str, Any]:
    """Final card content once quorum is reached."""

    headline = f":white_check_mark: Ticket {fields.ticket} approved ({_names(approvals)})."
    if recorded:
        headline += f" Recorded in ledger partition «{partition_key}»."
    else:
        headline += " :warning: Not recorded in the ledger, see the error below."

    lines = [headline]
    if others:
        lines.append(":information_source: For information: " + ", ".join(mention(user_id) for user_id in others))

    blocks = [_section("\n".join(_field_lines(fields))), _section("\n".join(lines))]
    return {"text": headline, "blocks": blocks}


def build_rejection_pending(*, fields: AnnulmentFields, voter: VoterProfile) -> Dict[str, Any]:
    text = f":x: Ticket {fields.ticket} rejected. Waiting for a comment from {voter.mention}."
    return {"text": text, "blocks": [_section("\n".join(_field_lines(fields))), _section(text)]}


def build_rejection_final(*, fields: AnnulmentFields, voter: VoterProfile, reason: str | None) -> Dict[str, Any]:
    text = "\n".join(
        [
            f":x: Ticket {fields.ticket} rejected.",
            f"*Comment:* {reason or _EMPTY}",
            f"*By:* {voter.mention}",
        ]
    )
    return {"text": f"Ticket {fields.ticket} rejected.", "blocks": [_section("\n".join(_field_lines(fields))), _section(text)]}


def build_reject_prompt(*, fields: AnnulmentFields, voter: VoterProfile) -> str:
    return (
        f":x: {voter.mention}, reply in the thread of this message with a comment "
        f"explaining why ticket {fields.ticket} was rejected."
    )


def build_reminder(*, fields: AnnulmentFields, pending: Sequence[str]) -> str:
    people = ", ".join(mention(user_id) for user_id in pending)
    lines = _field_lines(fields)
    lines.append("")
    lines.append(f":alarm_clock: _Reminder:_ approval is still missing. {people}, please take a look.")
    return "\n".join(lines)


def build_ledger_error(*, fields: AnnulmentFields, error: str) -> str:
    return (
        f":warning: Ticket {fields.ticket} is approved but writing it to the ledger failed: {error}\n"
        "The request stays approved and will not be retried automatically; "
        "please append the record manually."
    )


def build_card_failed(*, fields: AnnulmentFields) -> str:
    return (
        f":warning: Could not post the approval card for ticket {fields.ticket}. "
        "Please shorten the fields and submit the request again."
    )


def build_reject_prompt_failed(*, fields: AnnulmentFields, voter: VoterProfile) -> str:
    return (
        f":warning: Ticket {fields.ticket} was rejected by {voter.mention}, but the request "
        "for a comment could not be posted. The rejection stands without a comment."
    )
