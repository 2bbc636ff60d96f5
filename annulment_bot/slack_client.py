"""Thin wrapper utilities around the Slack WebClient."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from slack_sdk import WebClient


class SlackClient:
    """The handful of Slack calls the approval workflow needs."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        """Expose the underlying WebClient for advanced use cases."""

        return self._client

    def post_card(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> str | None:
        """Post an interactive card and return its message ts (the card handle)."""

        response = self._client.chat_postMessage(channel=channel, text=text, blocks=list(blocks))
        return response.get("ts")

    def edit_card(
        self,
        *,
        channel: str,
        ts: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> Mapping[str, Any]:
        """Replace the content of an existing card."""

        return self._client.chat_update(channel=channel, ts=ts, text=text, blocks=list(blocks))

    def post_message(self, *, channel: str, text: str, thread_ts: str | None = None) -> str | None:
        """Post a plain mrkdwn notice and return its ts."""

        kwargs: dict[str, Any] = {"channel": channel, "text": text, "mrkdwn": True}
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        response = self._client.chat_postMessage(**kwargs)
        return response.get("ts")

    def prompt_reply(self, *, channel: str, text: str) -> str | None:
        """Post a prompt that expects a threaded reply; the returned ts is the prompt handle."""

        return self.post_message(channel=channel, text=text)

    def post_ephemeral(self, *, channel: str, user: str, text: str) -> Mapping[str, Any]:
        """Show *text* to a single user only."""

        return self._client.chat_postEphemeral(channel=channel, user=user, text=text)

    def delete_message(self, *, channel: str, ts: str) -> Mapping[str, Any]:
        """Delete a message; callers treat failures as non-fatal."""

        return self._client.chat_delete(channel=channel, ts=ts)
