"""Slack integration: notification client and Block Kit message builders."""

from dealflow.slack.blocks import build_error_blocks, build_escalation_blocks
from dealflow.slack.client import SlackNotifier

__all__ = [
    "SlackNotifier",
    "build_error_blocks",
    "build_escalation_blocks",
]
