"""Persistence of approved requests to the monthly ledger partition."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict

import structlog

from annulment_bot.ledger import Ledger, PersistenceError

from .state import RequestSnapshot

STATUS_APPROVED = "approved"
RECORDED_AT_FORMAT = "%d.%m.%Y, %H:%M:%S"


def partition_key_for(moment: datetime, tz: tzinfo) -> str:
    """Year-month bucket of *moment* as seen in the ledger timezone."""

    return moment.astimezone(tz).strftime("%Y-%m")


def build_ledger_record(snapshot: RequestSnapshot, resolved_at: datetime, tz: tzinfo) -> Dict[str, str]:
    fields = snapshot.fields
    return {
        "ticket": fields.ticket,
        "violation_type": fields.violation_type,
        "reason": fields.reason,
        "amount": fields.amount or "",
        "operator": fields.operator or "",
        "status": STATUS_APPROVED,
        "approved_by": ", ".join(profile.display_name for profile in snapshot.approvals),
        "recorded_at": resolved_at.astimezone(tz).strftime(RECORDED_AT_FORMAT),
    }


@dataclass(frozen=True)
class FinalizationResult:
    partition_key: str
    record: Dict[str, str]
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FinalizationPipeline:
    """Append a resolved request to the ledger exactly once; never retries."""

    def __init__(self, ledger: Ledger, *, timezone: tzinfo, clock: Callable[[], datetime] | None = None) -> None:
        self._ledger = ledger
        self._tz = timezone
        self._clock = clock or (lambda: datetime.now(timezone))

    @property
    def timezone(self) -> tzinfo:
        return self._tz

    def finalize(self, snapshot: RequestSnapshot) -> FinalizationResult:
        resolved_at = self._clock()
        partition_key = partition_key_for(resolved_at, self._tz)
        record = build_ledger_record(snapshot, resolved_at, self._tz)
        log = structlog.get_logger().bind(handle=snapshot.handle, ticket=snapshot.fields.ticket, partition=partition_key)

        try:
            self._ledger.append_record(partition_key, record)
        except PersistenceError as exc:
            log.error("ledger_append_failed", error=str(exc))
            return FinalizationResult(partition_key=partition_key, record=record, error=str(exc))

        log.info("ledger_append_succeeded", approved_by=record["approved_by"])
        return FinalizationResult(partition_key=partition_key, record=record)
