"""Read-time payment aggregation.

Ledger figures are always derived from the milestones themselves and never
stored, so they cannot drift from the underlying payment state.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from dealflow.domain.models import LedgerSummary, PaymentMilestone, PaymentRecord
from dealflow.domain.types import (
    PAYABLE_MILESTONE_STATUSES,
    LedgerStatus,
    MilestoneStatus,
    PaymentStatus,
)

REPORT_LIST_LIMIT = 10

_AWAITING_PAYMENT = (MilestoneStatus.CREATED, MilestoneStatus.INVOICED)

_DUE_OFFSET = re.compile(r"(\d+)\s*(days?|weeks?)")


def ledger_status(total_amount: Decimal, total_paid: Decimal) -> LedgerStatus:
    """Derive the contract-level status from the totals.

    A contract with no billable amount is ``pending``.
    """
    if total_amount > 0 and total_paid >= total_amount:
        return LedgerStatus.COMPLETED
    if total_paid > 0:
        return LedgerStatus.PARTIALLY_PAID
    return LedgerStatus.PENDING


def summarize_ledger(contract_id: str, milestones: Iterable[PaymentMilestone]) -> LedgerSummary:
    """Compute the payment summary of one contract from its milestones."""
    ordered = sorted(milestones, key=lambda m: m.sequence)
    total_amount = sum((m.amount for m in ordered), Decimal("0"))
    total_paid = sum(
        (m.amount for m in ordered if m.status is MilestoneStatus.PAID), Decimal("0")
    )
    counts = Counter(m.status.value for m in ordered)
    next_payable = next((m.id for m in ordered if m.status in PAYABLE_MILESTONE_STATUSES), None)

    return LedgerSummary(
        contract_id=contract_id,
        total_amount=total_amount,
        total_paid=total_paid,
        remaining=total_amount - total_paid,
        status=ledger_status(total_amount, total_paid),
        milestone_counts={status.value: counts.get(status.value, 0) for status in MilestoneStatus},
        next_payable_milestone_id=next_payable,
    )


class MilestoneAnalytics(BaseModel):
    """Milestone counts across every contract in a report."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    paid: int = 0
    pending: int = 0
    failed: int = 0


class PaymentReport(BaseModel):
    """Payment totals across contracts."""

    model_config = ConfigDict(frozen=True)

    contracts: int
    total_amount: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    by_status: dict[str, int]
    milestones: MilestoneAnalytics = Field(default_factory=MilestoneAnalytics)
    recent_payments: list[PaymentRecord] = Field(default_factory=list)
    upcoming_milestones: list[PaymentMilestone] = Field(default_factory=list)


def due_in_days(due_date: str, today: date | None = None) -> int | None:
    """Days until a milestone falls due, or ``None`` if the label is not understood.

    Signature-relative labels ("Upon signature", "30 days after signature")
    count from *today*; ISO dates count calendar days.
    """
    label = due_date.strip().lower()
    match = _DUE_OFFSET.search(label)
    if match:
        count = int(match.group(1))
        return count * 7 if match.group(2).startswith("week") else count
    if "signature" in label:
        return 0
    try:
        due = date.fromisoformat(label)
    except ValueError:
        return None
    return (due - (today or date.today())).days


def _upcoming(
    milestones: Iterable[PaymentMilestone], today: date | None, limit: int
) -> list[PaymentMilestone]:
    unpaid = [m for m in milestones if m.status in _AWAITING_PAYMENT]

    def key(milestone: PaymentMilestone) -> tuple[bool, int, int, str]:
        days = due_in_days(milestone.due_date, today)
        return (days is None, days or 0, milestone.sequence, milestone.contract_id)

    return sorted(unpaid, key=key)[:limit]


def build_payment_report(
    ledgers: Iterable[LedgerSummary],
    milestones: Iterable[PaymentMilestone] = (),
    payments: Iterable[PaymentRecord] = (),
    *,
    limit: int = REPORT_LIST_LIMIT,
    today: date | None = None,
) -> PaymentReport:
    """Aggregate per-contract ledgers into one report.

    Args:
        ledgers: One summary per contract.
        milestones: Every milestone of those contracts.
        payments: Every charge attempt of those contracts.
        limit: Length of the recent-payment and upcoming-milestone lists.
        today: Reference date for due dates; defaults to today.
    """
    ledgers = list(ledgers)
    total_amount = sum((ledger.total_amount for ledger in ledgers), Decimal("0"))
    total_paid = sum((ledger.total_paid for ledger in ledgers), Decimal("0"))
    counts = Counter(ledger.status.value for ledger in ledgers)

    milestone_counts: Counter[str] = Counter()
    for ledger in ledgers:
        milestone_counts.update(ledger.milestone_counts)
    analytics = MilestoneAnalytics(
        total=sum(milestone_counts.values()),
        paid=milestone_counts[MilestoneStatus.PAID.value],
        pending=sum(milestone_counts[status.value] for status in _AWAITING_PAYMENT),
        failed=milestone_counts[MilestoneStatus.FAILED.value],
    )

    succeeded = [p for p in payments if p.status is PaymentStatus.SUCCEEDED]
    recent = sorted(succeeded, key=lambda p: p.created_at, reverse=True)[:limit]

    return PaymentReport(
        contracts=len(ledgers),
        total_amount=total_amount,
        total_paid=total_paid,
        total_outstanding=total_amount - total_paid,
        by_status={status.value: counts.get(status.value, 0) for status in LedgerStatus},
        milestones=analytics,
        recent_payments=recent,
        upcoming_milestones=_upcoming(milestones, today, limit),
    )
