"""Tests for the Flask application factory."""

from pathlib import Path
import sys

from flask import Response
from slack_sdk.signature import Clock

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

import app as app_module  # noqa: E402
from annulment_bot import config, security  # noqa: E402
from annulment_bot.db import get_engine  # noqa: E402

TIMESTAMP = "1700000000"


class DummyHandler:
    called = False

    def __init__(self, bolt_app):
        self.bolt_app = bolt_app

    def handle(self, _request):
        DummyHandler.called = True
        return Response("ok", status=200)


class FixedClock(Clock):
    def __init__(self, now: float):
        self._now = now

    def now(self) -> float:
        return self._now


def _seed_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("APPROVER_USER_IDS", "U1,U2")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'app.db'}")
    config.get_settings.cache_clear()
    get_engine.cache_clear()


def _signed_headers(secret: str, body: str, timestamp: str) -> dict[str, str]:
    signature = security.compute_signature(secret, timestamp, body)
    return {
        security.SLACK_SIGNATURE_HEADER: signature,
        security.SLACK_TIMESTAMP_HEADER: timestamp,
    }


def _create_app(monkeypatch, tmp_path, now=int(TIMESTAMP)):
    _seed_env(monkeypatch, tmp_path)
    DummyHandler.called = False
    monkeypatch.setattr(app_module, "SlackRequestHandler", DummyHandler)
    monkeypatch.setattr(security, "Clock", lambda: FixedClock(now))
    monkeypatch.setattr(app_module, "run_async", lambda func, /, *args, **kwargs: func(*args))
    return app_module.create_app()


def test_slack_events_route_uses_handler(monkeypatch, tmp_path):
    flask_app = _create_app(monkeypatch, tmp_path)

    body = "{}"
    client = flask_app.test_client()
    response = client.post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body, TIMESTAMP),
    )

    assert response.status_code == 200
    assert response.data == b""
    assert DummyHandler.called is True


def test_invalid_signature_returns_unauthorised(monkeypatch, tmp_path):
    flask_app = _create_app(monkeypatch, tmp_path)

    client = flask_app.test_client()
    response = client.post(
        "/slack/events",
        data="{}",
        content_type="application/json",
        headers={
            security.SLACK_SIGNATURE_HEADER: "v0=invalid",
            security.SLACK_TIMESTAMP_HEADER: TIMESTAMP,
        },
    )

    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_signature"
    assert DummyHandler.called is False


def test_missing_headers_return_unauthorised(monkeypatch, tmp_path):
    flask_app = _create_app(monkeypatch, tmp_path)

    response = flask_app.test_client().post("/slack/events", data="{}", content_type="application/json")

    assert response.status_code == 401
    assert DummyHandler.called is False


def test_stale_timestamp_rejected(monkeypatch, tmp_path):
    flask_app = _create_app(monkeypatch, tmp_path, now=2000)

    body = "{}"
    response = flask_app.test_client().post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body, "100"),
    )

    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_signature"
    assert DummyHandler.called is False


def test_url_verification_returns_challenge(monkeypatch, tmp_path):
    flask_app = _create_app(monkeypatch, tmp_path)

    body = '{"type": "url_verification", "challenge": "abc123"}'
    response = flask_app.test_client().post(
        "/slack/events",
        data=body,
        content_type="application/json",
        headers=_signed_headers("secret", body, TIMESTAMP),
    )

    assert response.status_code == 200
    assert response.get_json() == {"challenge": "abc123"}
    assert DummyHandler.called is False


def test_unconfigured_app_still_answers(monkeypatch):
    for var in ("SLACK_BOT_TOKEN", "SLACK_SIGNING_SECRET", "DATABASE_URL"):
        monkeypatch.delenv(var, raising=False)
    config.get_settings.cache_clear()
    get_engine.cache_clear()

    flask_app = app_module.create_app()
    client = flask_app.test_client()

    health = client.get("/healthz")
    assert health.status_code == 503
    data = health.get_json()
    assert data["config"] == "invalid"
    assert "SLACK_BOT_TOKEN" in data["config_error"]

    events = client.post("/slack/events", data="{}", content_type="application/json")
    assert events.status_code == 503
    assert events.get_json() == {"error": "not_configured"}


def test_template_command_acks_with_template():
    acks = []

    app_module._handle_template_command(
        ack=lambda payload=None: acks.append(payload),
        command={"user_id": "U1", "user_name": "alice"},
        logger=None,
    )

    assert acks[0]["response_type"] == "ephemeral"
    assert acks[0]["text"].startswith("Hi, alice!")
    assert "Ticket:" in acks[0]["text"]


class StubWorkflow:
    def __init__(self):
        self.requested = []

    def monthly_summary(self, partition_key=None):
        self.requested.append(partition_key)
        return f"summary {partition_key}"


def test_stats_command_reports_requested_month():
    acks, responses = [], []
    workflow = StubWorkflow()

    app_module._handle_stats_command(
        ack=lambda payload=None: acks.append(payload),
        command={"user_id": "U1", "text": " 2025-11 "},
        respond=lambda **kwargs: responses.append(kwargs),
        logger=None,
        workflow=workflow,
    )

    assert acks == [None]
    assert workflow.requested == ["2025-11"]
    assert responses == [{"text": "summary 2025-11", "response_type": "ephemeral"}]


def test_stats_command_defaults_to_current_month():
    workflow = StubWorkflow()

    app_module._handle_stats_command(
        ack=lambda payload=None: None,
        command={"text": ""},
        respond=lambda **kwargs: None,
        logger=None,
        workflow=workflow,
    )

    assert workflow.requested == [None]


def test_stats_command_rejects_bad_argument():
    acks = []
    workflow = StubWorkflow()

    app_module._handle_stats_command(
        ack=lambda payload=None: acks.append(payload),
        command={"text": "last month"},
        respond=lambda **kwargs: None,
        logger=None,
        workflow=workflow,
    )

    assert "Usage" in acks[0]["text"]
    assert workflow.requested == []


def test_invalid_vote_payload_gets_ephemeral_notice():
    class EphemeralClient:
        def __init__(self):
            self.calls = []

        def chat_postEphemeral(self, **kwargs):
            self.calls.append(kwargs)
            return {"ok": True}

    client = EphemeralClient()
    acks = []

    app_module._handle_vote_action(
        app_module.VoteKind.APPROVE,
        ack=lambda payload=None: acks.append(payload),
        body={"user": {"id": "U1"}, "channel": {"id": "C1"}},
        client=client,
        logger=None,
        workflow=None,
    )

    assert acks == [None]
    assert client.calls[0]["user"] == "U1"
    assert "invalid" in client.calls[0]["text"]
