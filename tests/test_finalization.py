"""Tests for ledger finalization of approved requests."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import structlog
from structlog.testing import capture_logs

from annulment_bot.identity import VoterProfile
from annulment_bot.ledger import PersistenceError
from annulment_bot.workflows.finalization import (
    FinalizationPipeline,
    build_ledger_record,
    partition_key_for,
)
from annulment_bot.workflows.requests import AnnulmentFields
from annulment_bot.workflows.state import RequestState

HELSINKI = ZoneInfo("Europe/Helsinki")


class RecordingLedger:
    def __init__(self, error=None):
        self.appended = []
        self.error = error

    def append_record(self, partition_key, fields):
        if self.error:
            raise PersistenceError(self.error)
        self.appended.append((partition_key, dict(fields)))


def _snapshot():
    state = RequestState(
        handle="100.1",
        conversation="C1",
        fields=AnnulmentFields(ticket="T-1", violation_type="Speeding", reason="Camera", amount="50"),
        requested_by="U9",
    )
    state.approvals["U1"] = VoterProfile(user_id="U1", username="alice")
    state.approvals["U2"] = VoterProfile(user_id="U2", name="Bob")
    state.resolved = True
    return state.snapshot()


def test_partition_key_uses_ledger_timezone():
    # 22:30 UTC on 31 October is already November in Helsinki.
    moment = datetime(2025, 10, 31, 22, 30, tzinfo=timezone.utc)

    assert partition_key_for(moment, HELSINKI) == "2025-11"
    assert partition_key_for(moment, timezone.utc) == "2025-10"


def test_build_ledger_record():
    resolved_at = datetime(2025, 11, 3, 8, 5, 9, tzinfo=timezone.utc)

    record = build_ledger_record(_snapshot(), resolved_at, HELSINKI)

    assert record == {
        "ticket": "T-1",
        "violation_type": "Speeding",
        "reason": "Camera",
        "amount": "50",
        "operator": "",
        "status": "approved",
        "approved_by": "alice, Bob",
        "recorded_at": "03.11.2025, 10:05:09",
    }


def test_finalize_appends_once_to_current_partition():
    ledger = RecordingLedger()
    clock = lambda: datetime(2025, 11, 3, 8, 0, tzinfo=timezone.utc)  # noqa: E731
    pipeline = FinalizationPipeline(ledger, timezone=HELSINKI, clock=clock)

    with capture_logs() as logs:
        result = pipeline.finalize(_snapshot())

    assert result.ok is True
    assert result.partition_key == "2025-11"
    assert ledger.appended == [("2025-11", result.record)]
    assert any(entry["event"] == "ledger_append_succeeded" for entry in logs)


def test_finalize_reports_failure_without_raising():
    ledger = RecordingLedger(error="disk full")
    pipeline = FinalizationPipeline(ledger, timezone=HELSINKI)

    with capture_logs(processors=[structlog.contextvars.merge_contextvars]) as logs:
        result = pipeline.finalize(_snapshot())

    assert result.ok is False
    assert result.error == "disk full"
    failures = [entry for entry in logs if entry["event"] == "ledger_append_failed"]
    assert failures and failures[0]["ticket"] == "T-1"
