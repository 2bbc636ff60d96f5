"""Verification of inbound Slack request signatures."""

from __future__ import annotations

from slack_sdk.signature import Clock, SignatureVerifier

SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"


def build_verifier(signing_secret: str, *, clock: Clock | None = None) -> SignatureVerifier:
    """Return a verifier that also rejects requests older than five minutes."""

    return SignatureVerifier(signing_secret=signing_secret, clock=clock or Clock())


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    """Return the Slack-compatible signature for the provided payload."""

    signature = SignatureVerifier(signing_secret=signing_secret).generate_signature(timestamp=timestamp, body=body)
    return signature or ""


def is_valid_slack_request(
    verifier: SignatureVerifier,
    *,
    timestamp: str,
    body: str,
    signature: str,
) -> bool:
    """Validate signature and timestamp to guard against forged or replayed events."""

    if not timestamp or not signature:
        return False

    try:
        int(timestamp)
    except (TypeError, ValueError):
        return False

    return verifier.is_valid(body=body, timestamp=timestamp, signature=signature)
