"""Pydantic-based configuration helpers for the annulment bot."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_REMINDER_DELAY = 2 * 60 * 60  # two hours


class AppSettings(BaseModel):
    """Settings required to connect the bot to Slack and to the ledger."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    database_url: str = Field(..., alias="DATABASE_URL")
    approver_user_ids: List[str] = Field(default_factory=list, alias="APPROVER_USER_IDS")
    required_approvals: int = Field(1, alias="REQUIRED_APPROVALS")
    reminder_delay_seconds: int = Field(DEFAULT_REMINDER_DELAY, alias="REMINDER_DELAY_SECONDS")
    ledger_timezone: str = Field("Europe/Helsinki", alias="LEDGER_TIMEZONE")
    handler_workers: int = Field(4, alias="HANDLER_WORKERS")

    @field_validator("approver_user_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: str | list[str] | None) -> list[str]:
        if value is None:
            return []
        if isinstance(value, list):
            items = value
        else:
            items = value.split(",")

        cleaned: list[str] = []
        for item in items:
            member = item.strip()
            if member and member not in cleaned:
                cleaned.append(member)
        return cleaned

    @field_validator("required_approvals", "reminder_delay_seconds", "handler_workers")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("ledger_timezone")
    @classmethod
    def _ensure_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone '{value}'") from exc
        return value

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.ledger_timezone)


def _format_fields(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        invalid = [str(error["loc"][0]) for error in exc.errors() if error["type"] != "missing"]
        problems = []
        if missing:
            problems.append(f"Missing required environment variables: {_format_fields(missing)}")
        if invalid:
            problems.append(f"Invalid environment variables: {_format_fields(invalid)}")
        raise RuntimeError("; ".join(problems)) from exc
