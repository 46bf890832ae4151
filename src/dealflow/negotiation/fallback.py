"""Deterministic rule-based classification used when the classifier is unavailable.

The fallback never reads tone: sentiment is always ``neutral`` so a
fallback reading can never be auto-accepted.  Risk is ``high`` whenever the
proposed amount cannot be determined.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from dealflow.domain.models import BudgetConstraints, Classification
from dealflow.domain.types import Level, Sentiment

FALLBACK_SOURCE = "fallback"

# "$1,500", "$1,500,000.00", "₹25000"
_AMOUNT_RE = re.compile(r"[₹$]\s?(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)")
_TIMELINE_RE = re.compile(r"(?:within|in|about|around)\s+(\d+)\s+(days?|weeks?|months?)", re.I)

OPENNESS_KEYWORDS: tuple[str, ...] = (
    "open to negotiation",
    "flexible",
    "discuss",
    "negotiate",
    "willing to work with",
    "can adjust",
    "room for discussion",
)


@dataclass(frozen=True)
class ReplySignals:
    """Surface features pulled out of a reply with regular expressions."""

    amounts: list[Decimal] = field(default_factory=list)
    timeline: str | None = None
    open_to_negotiation: bool = False

    @property
    def highest_amount(self) -> Decimal | None:
        """Largest amount quoted in the reply, if any."""
        return max(self.amounts) if self.amounts else None


def extract_reply_signals(text: str) -> ReplySignals:
    """Extract quoted amounts, a timeline, and openness keywords from *text*."""
    amounts: list[Decimal] = []
    for match in _AMOUNT_RE.finditer(text):
        try:
            amounts.append(Decimal(match.group(1).replace(",", "")))
        except InvalidOperation:
            continue

    timeline_match = _TIMELINE_RE.search(text)
    timeline = f"{timeline_match.group(1)} {timeline_match.group(2)}" if timeline_match else None

    lowered = text.lower()
    open_to_negotiation = any(keyword in lowered for keyword in OPENNESS_KEYWORDS)

    return ReplySignals(
        amounts=amounts,
        timeline=timeline,
        open_to_negotiation=open_to_negotiation,
    )


def fallback_classification(
    text: str,
    budget: BudgetConstraints,
    high_risk_multiplier: Decimal = Decimal("1.5"),
) -> Classification:
    """Classify a reply without any external service.

    Args:
        text: The raw reply text.
        budget: The deal's budget envelope.
        high_risk_multiplier: Proposals above ``max_budget`` times this
            factor are marked high risk.

    Returns:
        A conservative ``Classification`` with ``source="fallback"``.
    """
    signals = extract_reply_signals(text)
    amount = signals.highest_amount

    if amount is None:
        within_budget = False
        risk = Level.HIGH
    else:
        within_budget = amount <= budget.max_budget
        risk = Level.HIGH if amount > budget.max_budget * high_risk_multiplier else Level.MEDIUM

    return Classification(
        sentiment=Sentiment.NEUTRAL,
        proposed_amount=amount,
        timeline=signals.timeline,
        open_to_negotiation=signals.open_to_negotiation,
        risk_level=risk,
        negotiation_potential=Level.HIGH if signals.open_to_negotiation else Level.MEDIUM,
        is_within_budget=within_budget,
        source=FALLBACK_SOURCE,
    )
