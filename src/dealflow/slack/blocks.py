"""Block Kit message builders for Slack notifications.

Pure functions that return Block Kit block dicts for escalation and error
messages.  They have no side effects.
"""

from typing import Any

from dealflow.domain.models import Deal, EscalationRequest

_MAX_QUOTE_CHARS = 1500


def build_escalation_blocks(request: EscalationRequest, deal: Deal) -> list[dict[str, Any]]:
    """Build Block Kit blocks for a human-review request.

    The message carries the full classification and computed strategy so the
    reviewer can decide without opening the conversation.

    Args:
        request: The pending escalation.
        deal: The deal under review.

    Returns:
        List of Block Kit block dicts.
    """
    payload = request.payload
    classification = payload.classification
    strategy = payload.strategy
    proposed = (
        f"{classification.proposed_amount} {payload.budget.currency}"
        if classification.proposed_amount is not None
        else "N/A"
    )

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Review needed: {deal.creator_id}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Deal:*\n{deal.id}"},
                {"type": "mrkdwn", "text": f"*Campaign:*\n{deal.campaign_id}"},
                {"type": "mrkdwn", "text": f"*Reason:*\n{request.reason}"},
                {"type": "mrkdwn", "text": f"*Request:*\n{request.id}"},
            ],
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Proposed:*\n{proposed}"},
                {
                    "type": "mrkdwn",
                    "text": f"*Max Budget:*\n{payload.budget.max_budget} {payload.budget.currency}",
                },
                {"type": "mrkdwn", "text": f"*Sentiment:*\n{classification.sentiment}"},
                {"type": "mrkdwn", "text": f"*Risk:*\n{classification.risk_level}"},
                {
                    "type": "mrkdwn",
                    "text": f"*Potential:*\n{classification.negotiation_potential}",
                },
                {"type": "mrkdwn", "text": f"*Timeline:*\n{classification.timeline or 'N/A'}"},
            ],
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Strategy:* `{strategy.action}` (priority {strategy.priority})"
                    + ("\n_High-value override applied_" if strategy.override_applied else "")
                ),
            },
        },
    ]

    if payload.reply_text:
        quote = payload.reply_text[:_MAX_QUOTE_CHARS].replace("\n", "\n>")
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Latest reply:*\n>{quote}"},
            }
        )

    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"Classified by `{classification.source}`",
                },
            ],
        }
    )
    return blocks


def build_error_blocks(api_name: str, attempts: int, error: str) -> list[dict[str, Any]]:
    """Build Block Kit blocks for an external call that kept failing."""
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"API failure: {api_name}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Attempts:*\n{attempts}"},
                {"type": "mrkdwn", "text": f"*Error:*\n{error[:500]}"},
            ],
        },
    ]
