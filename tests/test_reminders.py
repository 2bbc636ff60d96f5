"""Tests for the reminder scheduler."""

from datetime import timedelta

import pytest
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars
from structlog.testing import capture_logs

from annulment_bot.workflows.reminders import ReminderScheduler


class FakeTimer:
    created = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


@pytest.fixture(autouse=True)
def reset_timers():
    FakeTimer.created = []
    yield
    FakeTimer.created = []


def test_delay_must_be_positive():
    with pytest.raises(ValueError):
        ReminderScheduler(delay=timedelta(0))


def test_schedule_starts_daemon_timer_with_delay():
    scheduler = ReminderScheduler(delay=timedelta(minutes=5), timer_factory=FakeTimer)

    scheduler.schedule("1.1", lambda: None)

    timer = FakeTimer.created[0]
    assert timer.interval == 300
    assert timer.daemon is True
    assert timer.started is True
    assert scheduler.pending() == ["1.1"]


def test_rescheduling_replaces_previous_timer():
    scheduler = ReminderScheduler(timer_factory=FakeTimer)

    scheduler.schedule("1.1", lambda: None)
    scheduler.schedule("1.1", lambda: None)

    first, second = FakeTimer.created
    assert first.cancelled is True
    assert second.cancelled is False
    assert scheduler.pending() == ["1.1"]


def test_cancel_and_shutdown():
    scheduler = ReminderScheduler(timer_factory=FakeTimer)
    scheduler.schedule("1.1", lambda: None)
    scheduler.schedule("2.2", lambda: None)

    assert scheduler.cancel("1.1") is True
    assert scheduler.cancel("1.1") is False
    scheduler.shutdown()

    assert all(timer.cancelled for timer in FakeTimer.created)
    assert scheduler.pending() == []


def test_fire_runs_callback_in_scheduling_context():
    scheduler = ReminderScheduler(timer_factory=FakeTimer)
    seen = {}

    clear_contextvars()
    bind_contextvars(trace_id="trace-rem")
    scheduler.schedule("1.1", lambda value: seen.update(value=value, **get_contextvars()), 42)
    clear_contextvars()

    FakeTimer.created[0].fire()

    assert seen == {"value": 42, "trace_id": "trace-rem"}
    assert "trace_id" not in get_contextvars()


def test_callback_failure_is_logged():
    scheduler = ReminderScheduler(timer_factory=FakeTimer)

    def boom():
        raise RuntimeError("no slack")

    scheduler.schedule("1.1", boom)
    with capture_logs(processors=[structlog.contextvars.merge_contextvars]) as logs:
        FakeTimer.created[0].fire()

    events = [entry for entry in logs if entry.get("event") == "reminder_failed"]
    assert events and events[0]["handle"] == "1.1"


def test_real_timer_removes_itself_after_firing():
    import threading

    fired = threading.Event()
    scheduler = ReminderScheduler(delay=timedelta(milliseconds=10))

    scheduler.schedule("1.1", fired.set)

    assert fired.wait(timeout=2)
    for _ in range(100):
        if not scheduler.pending():
            break
        threading.Event().wait(0.01)
    assert scheduler.pending() == []
