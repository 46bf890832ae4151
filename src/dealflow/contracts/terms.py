"""Default contract terms and the milestone schedule split.

All monetary calculations use Decimal arithmetic.  Milestone shares are
rounded down to cents and the last milestone absorbs the remainder, so the
schedule always adds up to the payment amount exactly.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_DOWN, Decimal

from dealflow.domain.models import (
    ContractDeadlines,
    ContractTerms,
    Deal,
    Deliverable,
    MilestoneTerm,
    PaymentMilestone,
)

TWO_PLACES = Decimal("0.01")

DEFAULT_DELIVERABLES: tuple[Deliverable, ...] = (
    Deliverable(description="Social media posts", quantity=3),
    Deliverable(description="Video content", quantity=1),
)

# Offsets in days from contract creation
CONTENT_CREATION_DAYS = 14
CAMPAIGN_LAUNCH_DAYS = 21
FINAL_REPORTING_DAYS = 35


@dataclass(frozen=True)
class ScheduleSettings:
    """Default payment schedule.

    Attributes:
        split: Percentage of the payment per milestone; must sum to 100.
        due_days: Days after signature the last milestone falls due.
    """

    split: tuple[Decimal, ...] = field(default=(Decimal("50"), Decimal("50")))
    due_days: int = 30

    def __post_init__(self) -> None:
        if not self.split or any(part <= 0 for part in self.split):
            raise ValueError("split entries must be positive")
        if sum(self.split) != Decimal("100"):
            raise ValueError("split must sum to 100")


def split_amount(total: Decimal, split: Sequence[Decimal]) -> list[Decimal]:
    """Split *total* by percentage, giving the rounding remainder to the last share.

    Example::

        >>> split_amount(Decimal("1000.01"), [Decimal("50"), Decimal("50")])
        [Decimal('500.00'), Decimal('500.01')]
    """
    shares = [
        (total * part / Decimal("100")).quantize(TWO_PLACES, rounding=ROUND_DOWN)
        for part in split[:-1]
    ]
    shares.append(total - sum(shares, Decimal("0")))
    return shares


def _milestone_label(index: int, count: int, due_days: int) -> tuple[str, str]:
    if index == 0:
        return "Contract signing", "Upon signature"
    days = due_days * index // (count - 1)
    description = "Content delivery" if index == count - 1 else f"Milestone {index + 1}"
    return description, f"{days} days after signature"


def default_schedule(total: Decimal, settings: ScheduleSettings) -> list[MilestoneTerm]:
    """Build the default milestone schedule for *total*.

    Shares that round down to nothing are left out; their remainder is
    already part of the last milestone.
    """
    shares = split_amount(total, settings.split)
    shares = [share for share in shares[:-1] if share > 0] + shares[-1:]
    schedule = []
    for index, amount in enumerate(shares):
        description, due = _milestone_label(index, len(shares), settings.due_days)
        schedule.append(MilestoneTerm(description=description, amount=amount, due_date=due))
    return schedule


def agreed_amount(deal: Deal) -> Decimal:
    """Amount the deal was agreed at, in cents.

    The last proposal wins, else the maximum budget.  A positive proposal
    below one cent is billed as one cent.
    """
    classification = deal.latest_classification
    if classification is not None and classification.proposed_amount:
        amount = classification.proposed_amount
    else:
        amount = deal.budget.max_budget
    return max(amount.quantize(TWO_PLACES), TWO_PLACES)


def default_terms(
    deal: Deal,
    settings: ScheduleSettings | None = None,
    today: date | None = None,
) -> ContractTerms:
    """Deterministic terms used when structured extraction is unavailable."""
    settings = settings or ScheduleSettings()
    today = today or date.today()
    amount = agreed_amount(deal)
    return ContractTerms(
        deliverables=list(DEFAULT_DELIVERABLES),
        payment_amount=amount,
        currency=deal.budget.currency,
        milestones=default_schedule(amount, settings),
        deadlines=ContractDeadlines(
            content_creation=today + timedelta(days=CONTENT_CREATION_DAYS),
            campaign_launch=today + timedelta(days=CAMPAIGN_LAUNCH_DAYS),
            final_reporting=today + timedelta(days=FINAL_REPORTING_DAYS),
        ),
    )


def milestones_for(contract_id: str, terms: ContractTerms) -> list[PaymentMilestone]:
    """Create one ``created`` milestone per scheduled payment."""
    return [
        PaymentMilestone(
            contract_id=contract_id,
            sequence=index,
            description=term.description,
            amount=term.amount,
            due_date=term.due_date,
        )
        for index, term in enumerate(terms.milestones, start=1)
    ]
