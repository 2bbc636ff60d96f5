"""Application entry point for the annulment approval bot."""

from __future__ import annotations

import re
from importlib.metadata import PackageNotFoundError, version
from uuid import uuid4

from flask import Flask, jsonify, request, copy_current_request_context
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from annulment_bot.actions import parse_message_event, parse_vote_action
from annulment_bot.background import configure_executor, run_async
from annulment_bot.config import AppSettings, get_settings
from annulment_bot.db import connection_scope, get_engine
from annulment_bot.ledger import Ledger
from annulment_bot.logging_config import configure_logging
from annulment_bot.security import (
    SLACK_SIGNATURE_HEADER,
    SLACK_TIMESTAMP_HEADER,
    build_verifier,
    is_valid_slack_request,
)
from annulment_bot.workflows import (
    APPROVE_ACTION_ID,
    REJECT_ACTION_ID,
    AnnulmentWorkflow,
    VoteKind,
)
from annulment_bot.workflows.notifications import post_ephemeral
from annulment_bot.workflows.requests import build_template_text

TEMPLATE_COMMAND = "/annul"
STATS_COMMAND = "/annul-stats"
WORKFLOW_EXTENSION = "annulment_workflow"

_STATS_ARGUMENT_RE = re.compile(r"^(\d{4}-\d{2})?$")


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application using validated settings."""

    return SlackApp(
        token=settings.bot_token,
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _handle_template_command(ack, command, logger):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    try:
        structlog.get_logger().info("template_requested", user_id=command.get("user_id"))
        ack({"response_type": "ephemeral", "text": build_template_text(command.get("user_name"))})
    finally:
        unbind_contextvars("trace_id")


def _handle_stats_command(ack, command, respond, logger, *, workflow: AnnulmentWorkflow):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)

    try:
        argument = (command.get("text") or "").strip()
        match = _STATS_ARGUMENT_RE.match(argument)
        if match is None:
            ack({"response_type": "ephemeral", "text": f"Usage: `{STATS_COMMAND} [YYYY-MM]`"})
            log.info("stats_invalid_argument", argument=argument)
            return

        ack()
        partition_key = match.group(1)
        report = workflow.monthly_summary(partition_key)
        log.info("stats_requested", partition=partition_key, user_id=command.get("user_id"))
        respond(text=report, response_type="ephemeral")
    finally:
        unbind_contextvars("trace_id")


def _handle_message_event(event, client, logger, *, workflow: AnnulmentWorkflow):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)

    try:
        message = parse_message_event(event or {})
        if message is None:
            return

        if message.is_reply and workflow.handle_reply(
            client,
            conversation=message.conversation,
            sender=message.sender,
            replied_to=message.thread_ts,
            text=message.text,
            reply_handle=message.ts,
        ):
            return

        workflow.handle_submission(
            client,
            conversation=message.conversation,
            sender=message.sender,
            text=message.text,
        )
    finally:
        unbind_contextvars("trace_id")


def _handle_vote_action(kind: VoteKind, ack, body, client, logger, *, workflow: AnnulmentWorkflow):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id, kind=kind.value)

    try:
        ack()
        try:
            vote = parse_vote_action(body, kind)
        except ValueError:
            log.warning("invalid_action_payload")
            channel_id = (body.get("channel") or {}).get("id")
            user_id = (body.get("user") or {}).get("id")
            if channel_id and user_id:
                post_ephemeral(
                    client,
                    conversation=channel_id,
                    user=user_id,
                    text="This action payload is invalid. Please retry from the approval card.",
                )
            return

        workflow.handle_vote(
            client,
            conversation=vote.conversation,
            handle=vote.handle,
            voter=vote.voter,
            kind=vote.kind,
        )
    finally:
        unbind_contextvars("trace_id")


def _register_command_handlers(bolt_app: SlackApp, workflow: AnnulmentWorkflow) -> None:
    @bolt_app.command(TEMPLATE_COMMAND)
    def handle_template(ack, command, logger):
        _handle_template_command(ack=ack, command=command, logger=logger)

    @bolt_app.command(STATS_COMMAND)
    def handle_stats(ack, command, respond, logger):
        _handle_stats_command(ack=ack, command=command, respond=respond, logger=logger, workflow=workflow)


def _register_message_handlers(bolt_app: SlackApp, workflow: AnnulmentWorkflow) -> None:
    @bolt_app.event("message")
    def handle_message(event, client, logger):
        _handle_message_event(event=event, client=client, logger=logger, workflow=workflow)


def _register_action_handlers(bolt_app: SlackApp, workflow: AnnulmentWorkflow) -> None:
    @bolt_app.action(APPROVE_ACTION_ID)
    def handle_approve(ack, body, client, logger):
        _handle_vote_action(VoteKind.APPROVE, ack=ack, body=body, client=client, logger=logger, workflow=workflow)

    @bolt_app.action(REJECT_ACTION_ID)
    def handle_reject(ack, body, client, logger):
        _handle_vote_action(VoteKind.REJECT, ack=ack, body=body, client=client, logger=logger, workflow=workflow)


def _register_health_route(flask_app: Flask) -> None:
    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        config_error = flask_app.config.get("CONFIG_ERROR")
        if config_error:
            health["config"] = "invalid"
            health["config_error"] = config_error
            health["ok"] = False
            return jsonify(health), 503
        health["config"] = "valid"

        try:
            with connection_scope() as connection:
                connection.execute(text("SELECT 1"))
            health["ledger"] = "up"
        except Exception as exc:
            health["ledger"] = "down"
            health["ledger_error"] = str(exc)
            health["ok"] = False

        workflow = flask_app.extensions.get(WORKFLOW_EXTENSION)
        if workflow is not None:
            health["requests"] = len(workflow.registry)
            health["awaiting_reasons"] = len(workflow.replies)

        status = 200 if health["ok"] else 503
        return jsonify(health), status


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    try:
        return version("annulment-bot")
    except PackageNotFoundError:
        return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application.

    Missing or invalid configuration does not stop the process: the app still
    answers health checks (reporting the problem) while Slack events get 503.
    """

    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel("INFO")
    _register_error_handlers(flask_app)
    _register_health_route(flask_app)

    try:
        settings = get_settings()
        ledger = Ledger(get_engine())
    except (RuntimeError, SQLAlchemyError, ImportError) as exc:
        structlog.get_logger().error("configuration_missing", error=str(exc))
        flask_app.config["CONFIG_ERROR"] = str(exc)

        @flask_app.route("/slack/events", methods=["POST"])
        def slack_events_unconfigured():
            response = jsonify({"error": "not_configured"})
            response.status_code = 503
            return response

        return flask_app

    configure_executor(settings.handler_workers)
    bolt_app = _create_bolt_app(settings)
    workflow = AnnulmentWorkflow.from_settings(settings, ledger=ledger)
    flask_app.extensions[WORKFLOW_EXTENSION] = workflow

    _register_command_handlers(bolt_app, workflow)
    _register_message_handlers(bolt_app, workflow)
    _register_action_handlers(bolt_app, workflow)

    handler = SlackRequestHandler(bolt_app)
    verifier = build_verifier(settings.signing_secret)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        raw_body = request.get_data(as_text=True)
        timestamp = request.headers.get(SLACK_TIMESTAMP_HEADER, "")
        signature = request.headers.get(SLACK_SIGNATURE_HEADER, "")

        if not is_valid_slack_request(
            verifier,
            timestamp=timestamp,
            body=raw_body,
            signature=signature,
        ):
            response = jsonify({"error": "invalid_signature"})
            response.status_code = 401
            return response

        if request.is_json:
            payload = request.get_json(silent=True)
            if isinstance(payload, dict) and payload.get("type") == "url_verification":
                return jsonify({"challenge": payload.get("challenge", "")})

        trace_id = str(uuid4())

        @copy_current_request_context
        def process_request():
            handler.handle(request)

        run_async(process_request, trace_id=trace_id)
        return "", 200

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=False)
