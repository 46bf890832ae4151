"""Slack notification client for escalation and error messages.

Wraps slack_sdk.WebClient to post Block Kit messages to designated channels.
"""

from __future__ import annotations

from typing import Any

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from dealflow.domain.models import Deal, EscalationRequest
from dealflow.slack.blocks import build_error_blocks, build_escalation_blocks


class SlackNotifier:
    """Posts structured notifications to Slack channels."""

    def __init__(
        self,
        escalation_channel: str,
        errors_channel: str,
        bot_token: str,
        client: WebClient | None = None,
    ) -> None:
        """Initialize the SlackNotifier.

        Args:
            escalation_channel: Channel ID for human-review requests.
            errors_channel: Channel ID for failure alerts.  Empty disables them.
            bot_token: Slack bot token.
            client: Pre-built WebClient, mainly for tests.
        """
        self._client = client or WebClient(token=bot_token)
        self._escalation_channel = escalation_channel
        self._errors_channel = errors_channel

    def _post(self, channel: str, blocks: list[dict[str, Any]], fallback_text: str) -> str:
        response = self._client.chat_postMessage(
            channel=channel,
            blocks=blocks,
            text=fallback_text,
        )
        return str(response["ts"])

    def post_escalation(self, request: EscalationRequest, deal: Deal) -> str:
        """Post a human-review request to the escalation channel.

        Returns:
            The Slack message timestamp (ts) for reference.

        Raises:
            SlackApiError: If the Slack API call fails.
        """
        return self._post(
            self._escalation_channel,
            build_escalation_blocks(request, deal),
            f"Review needed for deal {deal.id}: {request.reason}",
        )

    def post_error(self, api_name: str, attempts: int, error: str) -> None:
        """Alert the errors channel that an external call kept failing."""
        if not self._errors_channel:
            return
        self._post(
            self._errors_channel,
            build_error_blocks(api_name, attempts, error),
            f"{api_name} failed after {attempts} attempts: {error}",
        )


__all__ = ["SlackApiError", "SlackNotifier"]
