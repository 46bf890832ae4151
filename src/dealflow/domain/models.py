"""Pydantic v2 models for the deal lifecycle domain.

Monetary values use ``Decimal`` throughout.  Inputs from our own code reject
floats; inputs that originate from external JSON (classification payloads)
are coerced through ``str`` so no binary rounding leaks in.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dealflow.domain.types import (
    ContractStatus,
    DealStage,
    DeliveryStatus,
    Direction,
    EscalationStatus,
    LedgerStatus,
    Level,
    MilestoneStatus,
    PaymentStatus,
    Sentiment,
    StrategyAction,
)


def new_id(prefix: str) -> str:
    """Return a new opaque identifier such as ``deal_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def _reject_float(v: object) -> object:
    if isinstance(v, float):
        raise ValueError("Use Decimal or string, not float, for monetary values")
    return v


class BudgetConstraints(BaseModel):
    """Budget envelope a campaign brings into a negotiation."""

    model_config = ConfigDict(frozen=True)

    max_budget: Decimal
    currency: str = "USD"

    @field_validator("max_budget", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)

    @field_validator("max_budget")
    @classmethod
    def budget_must_be_positive(cls, v: Decimal) -> Decimal:
        """Ensure max_budget is positive."""
        if v <= 0:
            raise ValueError("max_budget must be positive")
        return v


class Classification(BaseModel):
    """Structured reading of a free-text creator reply.

    ``sentiment`` is the only required field; every other field has a
    conservative default so a partial payload never causes undefined reads.
    ``is_within_budget`` is optional because most classifiers do not know the
    budget; the strategy policy derives it from ``proposed_amount`` when absent.
    """

    model_config = ConfigDict(frozen=True)

    sentiment: Sentiment
    proposed_amount: Decimal | None = None
    timeline: str | None = None
    open_to_negotiation: bool = False
    risk_level: Level = Level.MEDIUM
    negotiation_potential: Level = Level.MEDIUM
    is_within_budget: bool | None = None
    source: str = "service"

    @field_validator("proposed_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: object) -> object:
        """Route floats from JSON payloads through ``str`` before Decimal conversion."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("proposed_amount")
    @classmethod
    def amount_must_not_be_negative(cls, v: Decimal | None) -> Decimal | None:
        """Reject negative proposed amounts."""
        if v is not None and v < 0:
            raise ValueError("proposed_amount must not be negative")
        return v


class Strategy(BaseModel):
    """Decision computed by the strategy policy for one classification."""

    model_config = ConfigDict(frozen=True)

    action: StrategyAction
    status: DealStage
    priority: Level = Level.MEDIUM
    auto_respond: bool
    requires_human_approval: bool
    override_applied: bool = False


class Deal(BaseModel):
    """One negotiation thread between a campaign and a creator."""

    id: str = Field(default_factory=lambda: new_id("deal"))
    campaign_id: str
    creator_id: str
    stage: DealStage = DealStage.INITIATED
    budget: BudgetConstraints
    latest_classification: Classification | None = None
    strategy: Strategy | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CommunicationRecord(BaseModel):
    """Append-only log entry for one inbound or outbound message."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("comm"))
    deal_id: str
    direction: Direction
    raw_content: str
    classification: Classification | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    delivery_status: DeliveryStatus | None = None
    delivery_id: str | None = None
    failure_reason: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class EscalationPayload(BaseModel):
    """Everything a reviewer needs to decide without re-deriving context."""

    model_config = ConfigDict(frozen=True)

    classification: Classification
    strategy: Strategy
    budget: BudgetConstraints
    reply_text: str = ""
    stage_before: DealStage | None = None


class EscalationRequest(BaseModel):
    """A pending or resolved request for human judgment on a Deal."""

    id: str = Field(default_factory=lambda: new_id("esc"))
    deal_id: str
    reason: str
    payload: EscalationPayload
    status: EscalationStatus = EscalationStatus.PENDING
    note: str | None = None
    resolved_action: StrategyAction | None = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None


class Deliverable(BaseModel):
    """A content deliverable promised under a contract."""

    model_config = ConfigDict(frozen=True)

    description: str
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        """Ensure quantity is at least 1."""
        if v < 1:
            raise ValueError("quantity must be at least 1")
        return v


class MilestoneTerm(BaseModel):
    """One scheduled payment in a contract's terms."""

    model_config = ConfigDict(frozen=True)

    description: str
    amount: Decimal
    due_date: str

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: object) -> object:
        """Route floats from JSON payloads through ``str`` before Decimal conversion."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("amount")
    @classmethod
    def amount_must_be_positive(cls, v: Decimal) -> Decimal:
        """Ensure milestone amounts are positive."""
        if v <= 0:
            raise ValueError("milestone amount must be positive")
        return v


class ContractDeadlines(BaseModel):
    """Key delivery dates for a contract."""

    model_config = ConfigDict(frozen=True)

    content_creation: date
    campaign_launch: date
    final_reporting: date


class ContractTerms(BaseModel):
    """Immutable snapshot of the commercial terms of a contract.

    The milestone amounts must add up to ``payment_amount`` exactly.
    """

    model_config = ConfigDict(frozen=True)

    deliverables: list[Deliverable]
    payment_amount: Decimal
    currency: str = "USD"
    milestones: list[MilestoneTerm]
    deadlines: ContractDeadlines
    usage_rights: str = "Perpetual license for marketing purposes"
    revision_rights: int = 2
    exclusivity_period: str = "30 days"
    special_terms: list[str] = Field(default_factory=list)

    @field_validator("payment_amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: object) -> object:
        """Route floats from JSON payloads through ``str`` before Decimal conversion."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("deliverables", "milestones")
    @classmethod
    def must_not_be_empty(cls, v: list[Any]) -> list[Any]:
        """Ensure deliverables and milestones are present."""
        if len(v) == 0:
            raise ValueError("must not be empty")
        return v

    @model_validator(mode="after")
    def milestones_must_sum_to_payment(self) -> ContractTerms:
        """Ensure the milestone schedule adds up to the payment amount."""
        total = sum((m.amount for m in self.milestones), Decimal("0"))
        if total != self.payment_amount:
            raise ValueError(
                f"milestone amounts ({total}) must equal payment_amount ({self.payment_amount})"
            )
        return self


class Contract(BaseModel):
    """The commercial agreement derived from an agreed Deal."""

    id: str = Field(default_factory=lambda: new_id("ctr"))
    deal_id: str
    terms: ContractTerms
    status: ContractStatus = ContractStatus.DRAFTING
    document_url: str | None = None
    terms_source: str = "extracted"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PaymentMilestone(BaseModel):
    """One billable unit of a Contract."""

    id: str = Field(default_factory=lambda: new_id("ms"))
    contract_id: str
    sequence: int
    description: str
    amount: Decimal
    due_date: str
    status: MilestoneStatus = MilestoneStatus.CREATED
    invoice_id: str | None = None
    paid_at: datetime | None = None
    last_failure_reason: str | None = None


class PaymentRecord(BaseModel):
    """A single charge attempt against a milestone's invoice."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("pay"))
    contract_id: str
    milestone_id: str
    invoice_id: str
    amount: Decimal
    status: PaymentStatus
    transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ChargeResult(BaseModel):
    """Normalized response of a payment gateway charge call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    transaction_id: str | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def success_requires_transaction(self) -> ChargeResult:
        """A successful charge must carry a transaction id."""
        if self.success and not self.transaction_id:
            raise ValueError("successful charge must include transaction_id")
        return self


class MilestoneInitResult(BaseModel):
    """Per-milestone outcome of invoice initialization."""

    model_config = ConfigDict(frozen=True)

    milestone_id: str
    success: bool
    status: MilestoneStatus
    invoice_id: str | None = None
    error: str | None = None


class LedgerSummary(BaseModel):
    """Read-time payment summary for a contract.  Never persisted."""

    model_config = ConfigDict(frozen=True)

    contract_id: str
    total_amount: Decimal
    total_paid: Decimal
    remaining: Decimal
    status: LedgerStatus
    milestone_counts: dict[str, int]
    next_payable_milestone_id: str | None = None
