"""Parsing of free-text annulment submissions into structured fields."""

from __future__ import annotations

import re
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

SUBMISSION_TAG = "#annul"

# (field name, template label); the first three are mandatory.
TEMPLATE_FIELDS = (
    ("ticket", "Ticket"),
    ("violation_type", "Violation"),
    ("reason", "Reason"),
    ("amount", "Amount"),
    ("operator", "Operator"),
)
REQUIRED_FIELDS = ("ticket", "violation_type", "reason")
# Character limits per field; together they keep the card's field section
# under Slack's 3000 character limit for a section block.
FIELD_LIMITS = {
    "ticket": 200,
    "violation_type": 200,
    "reason": 2000,
    "amount": 100,
    "operator": 200,
}

_TAG_RE = re.compile(re.escape(SUBMISSION_TAG) + r"\b(?P<body>.*)", re.IGNORECASE | re.DOTALL)
_MARKUP_RE = re.compile(r"<(?P<target>[^<>|\s]+)(?:\|(?P<label>[^<>]*))?>")
# Slack escapes only these three; "&amp;" must be undone last.
_ENTITIES = (("&lt;", "<"), ("&gt;", ">"), ("&amp;", "&"))


class MalformedSubmissionError(ValueError):
    """Raised when a submission lacks a mandatory field or a field is too long."""

    def __init__(self, missing: list[str], too_long: list[str] | None = None) -> None:
        self.missing = missing
        self.too_long = too_long or []
        problems = []
        if self.missing:
            problems.append("Missing fields: " + ", ".join(self.missing))
        if self.too_long:
            problems.append("Fields too long: " + ", ".join(self.too_long))
        super().__init__("; ".join(problems))


class AnnulmentFields(BaseModel):
    """Immutable structured content of one annulment request."""

    model_config = ConfigDict(frozen=True)

    ticket: str
    violation_type: str
    reason: str
    amount: Optional[str] = None
    operator: Optional[str] = None

    @field_validator("ticket", "violation_type", "reason")
    @classmethod
    def _require_text(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("amount", "operator")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


def _render_markup(match: re.Match) -> str:
    target, label = match.group("target"), match.group("label")
    if target.startswith("@"):
        return "@" + (label or target[1:])
    if target.startswith("#"):
        return "#" + (label or target[1:])
    if target.startswith("!"):
        return label or "@" + target[1:].split("^", 1)[0]
    return label or target


def decode_slack_text(text: str | None) -> str:
    """Turn Slack message markup back into the plain text the user typed.

    ``<url|label>`` becomes ``label`` and ``<url>`` the bare url. User and
    channel references become ``@label``/``#label`` when Slack sent a label,
    otherwise ``@U…``/``#C…``, since resolving ids needs an API call. The
    ``&lt;``, ``&gt;`` and ``&amp;`` escapes are undone last.
    """

    decoded = _MARKUP_RE.sub(_render_markup, text or "")
    for entity, char in _ENTITIES:
        decoded = decoded.replace(entity, char)
    return decoded


def extract_submission_body(text: str | None) -> str | None:
    """Return the decoded text following the submission tag, or None if the tag is absent."""

    match = _TAG_RE.search(text or "")
    if match is None:
        return None
    return decode_slack_text(match.group("body")).strip()


def _grab(label: str, body: str) -> str:
    match = re.search(rf"{label}:[ \t]*([^\n]*)", body, re.IGNORECASE)
    return match.group(1).strip() if match else ""


def parse_submission(text: str) -> AnnulmentFields:
    """Parse the template body of a submission into AnnulmentFields."""

    raw: Dict[str, str] = {name: _grab(label, text or "") for name, label in TEMPLATE_FIELDS}
    labels = dict(TEMPLATE_FIELDS)
    missing = [labels[name] for name in REQUIRED_FIELDS if not raw[name]]
    too_long = [labels[name] for name, limit in FIELD_LIMITS.items() if len(raw[name]) > limit]
    if missing or too_long:
        raise MalformedSubmissionError(missing, too_long)

    try:
        return AnnulmentFields.model_validate(raw)
    except ValidationError as exc:
        fields = [labels.get(str(error["loc"][0]), str(error["loc"][0])) for error in exc.errors()]
        raise MalformedSubmissionError(fields) from exc


def template_lines() -> list[str]:
    return [SUBMISSION_TAG] + [f"{label}:" for _, label in TEMPLATE_FIELDS]


def build_template_text(user_name: str | None = None) -> str:
    greeting = f"Hi, {user_name or 'colleague'}! :wave:"
    return "\n".join(
        [
            greeting,
            "Here is the annulment template: fill in the fields and post it in this channel.",
            "",
            "```",
            *template_lines(),
            "```",
        ]
    )


def build_format_hint(error: MalformedSubmissionError | None = None) -> str:
    lines = [
        ":warning: Could not recognise the submission. Use this format:",
        "```",
        *template_lines(),
        "```",
        "Ticket, Violation and Reason are required.",
    ]
    if error is not None and error.too_long:
        labels = dict(TEMPLATE_FIELDS)
        limits = ", ".join(f"{labels[name]} {limit}" for name, limit in FIELD_LIMITS.items())
        lines.append(f"Too long: {', '.join(error.too_long)}. Character limits: {limits}.")
    return "\n".join(lines)
