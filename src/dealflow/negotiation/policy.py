"""Strategy policy: a pure decision table over a classified reply.

Rules are evaluated in order and the first match wins.  The high-value
override is applied afterwards and always takes precedence over the
automation flags of the selected rule.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from dealflow.domain.models import BudgetConstraints, Classification, Strategy
from dealflow.domain.types import DealStage, Level, Sentiment, StrategyAction


@dataclass(frozen=True)
class PolicySettings:
    """Tunable thresholds of the negotiation policy.

    Attributes:
        human_approval_multiplier: Proposals above ``max_budget`` times this
            factor always require human approval.
        fallback_high_risk_multiplier: Used by the rule-based classifier to
            mark a proposal as high risk.
        counter_offer_floor_ratio: Lower end of the counter-offer band,
            as a fraction of ``max_budget``.
    """

    human_approval_multiplier: Decimal = Decimal("1.2")
    fallback_high_risk_multiplier: Decimal = Decimal("1.5")
    counter_offer_floor_ratio: Decimal = Decimal("0.8")


_PRIORITY: dict[StrategyAction, Level] = {
    StrategyAction.ACCEPT: Level.HIGH,
    StrategyAction.FLAG_FOR_REVIEW: Level.HIGH,
    StrategyAction.DECLINE_POLITELY: Level.LOW,
    StrategyAction.NEGOTIATE: Level.MEDIUM,
}


def is_within_budget(classification: Classification, budget: BudgetConstraints) -> bool:
    """Return the classifier's budget verdict, deriving it when absent.

    A reply without a proposed amount is never considered within budget.
    """
    if classification.is_within_budget is not None:
        return classification.is_within_budget
    amount = classification.proposed_amount
    return amount is not None and amount <= budget.max_budget


def exceeds_approval_threshold(
    amount: Decimal | None,
    budget: BudgetConstraints,
    settings: PolicySettings,
) -> bool:
    """Return True if *amount* is strictly above the human-approval threshold."""
    if amount is None:
        return False
    return amount > budget.max_budget * settings.human_approval_multiplier


def _strategy_for(action: StrategyAction) -> Strategy:
    if action is StrategyAction.ACCEPT:
        return Strategy(
            action=action,
            status=DealStage.READY_FOR_CONTRACT,
            priority=_PRIORITY[action],
            auto_respond=True,
            requires_human_approval=False,
        )
    if action is StrategyAction.FLAG_FOR_REVIEW:
        return Strategy(
            action=action,
            status=DealStage.PENDING_HUMAN_REVIEW,
            priority=_PRIORITY[action],
            auto_respond=False,
            requires_human_approval=True,
        )
    if action is StrategyAction.DECLINE_POLITELY:
        return Strategy(
            action=action,
            status=DealStage.DECLINED,
            priority=_PRIORITY[action],
            auto_respond=True,
            requires_human_approval=False,
        )
    return Strategy(
        action=StrategyAction.NEGOTIATE,
        status=DealStage.IN_NEGOTIATION,
        priority=_PRIORITY[StrategyAction.NEGOTIATE],
        auto_respond=False,
        requires_human_approval=False,
    )


def strategy_for_action(action: StrategyAction) -> Strategy:
    """Return the canonical strategy for *action*, without any override.

    Used when a human decision replaces the computed strategy.
    """
    return _strategy_for(action)


def select_action(classification: Classification, budget: BudgetConstraints) -> StrategyAction:
    """Pick the first matching rule of the decision table."""
    within_budget = is_within_budget(classification, budget)

    if within_budget and classification.sentiment is Sentiment.POSITIVE:
        return StrategyAction.ACCEPT
    if not within_budget and classification.risk_level is Level.HIGH:
        return StrategyAction.FLAG_FOR_REVIEW
    if (
        classification.negotiation_potential is Level.LOW
        or classification.sentiment is Sentiment.NEGATIVE
    ):
        return StrategyAction.DECLINE_POLITELY
    return StrategyAction.NEGOTIATE


def decide_strategy(
    classification: Classification,
    budget: BudgetConstraints,
    settings: PolicySettings | None = None,
) -> Strategy:
    """Map a classification and budget to a negotiation strategy.

    Args:
        classification: Validated reading of the creator's reply.
        budget: The deal's budget envelope.
        settings: Policy thresholds; defaults apply when omitted.

    Returns:
        The strategy to apply.  When the proposed amount exceeds the
        approval threshold, ``requires_human_approval`` is forced on and
        ``auto_respond`` off, whatever rule matched.
    """
    settings = settings or PolicySettings()
    strategy = _strategy_for(select_action(classification, budget))

    if exceeds_approval_threshold(classification.proposed_amount, budget, settings):
        strategy = strategy.model_copy(
            update={
                "requires_human_approval": True,
                "auto_respond": False,
                "override_applied": True,
            }
        )
    return strategy
