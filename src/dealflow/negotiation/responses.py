"""Templated outbound messages for each strategy action."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from dealflow.domain.models import BudgetConstraints
from dealflow.domain.types import StrategyAction

_ACCEPT = (
    "Thank you for your response! Your proposed rate and timeline work for our campaign.\n\n"
    "We're excited to move forward with this collaboration. Our team will prepare the "
    "contract with the terms we discussed and send it over for your review.\n\n"
    "Looking forward to working together!"
)

_NEGOTIATE = (
    "Thank you for your interest in collaborating with us!\n\n"
    "We appreciate your proposed rate. Our budget for this campaign is a bit more "
    "constrained, and we were hoping to work within a range of {budget_range}. Would you "
    "be open to discussing a package that works for both of us?\n\n"
    "We're very interested in working with you and believe this could be a great partnership."
)

_DECLINE = (
    "Thank you for taking the time to respond to our collaboration inquiry.\n\n"
    "While we appreciate your interest, we don't think this particular campaign is the "
    "right fit at this time. We'd love to keep you in mind for future opportunities.\n\n"
    "Thank you again for your consideration!"
)


def counter_offer_band(
    budget: BudgetConstraints, floor_ratio: Decimal = Decimal("0.8")
) -> tuple[Decimal, Decimal]:
    """Return the (low, high) counter-offer range for *budget*.

    The low end is rounded to whole currency units.
    """
    low = (budget.max_budget * floor_ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return low, budget.max_budget


def format_money(amount: Decimal, currency: str = "USD") -> str:
    """Render *amount* with thousands separators, e.g. ``$1,600``."""
    text = f"{amount:,.2f}".removesuffix(".00")
    return f"${text}" if currency == "USD" else f"{text} {currency}"


def render_response(
    action: StrategyAction,
    budget: BudgetConstraints,
    floor_ratio: Decimal = Decimal("0.8"),
) -> str | None:
    """Return the outbound message for *action*, or None when nothing is sent.

    ``flag_for_review`` never produces an automatic message.
    """
    if action is StrategyAction.ACCEPT:
        return _ACCEPT
    if action is StrategyAction.DECLINE_POLITELY:
        return _DECLINE
    if action is StrategyAction.NEGOTIATE:
        low, high = counter_offer_band(budget, floor_ratio)
        budget_range = (
            f"{format_money(low, budget.currency)} - {format_money(high, budget.currency)}"
        )
        return _NEGOTIATE.format(budget_range=budget_range)
    return None
