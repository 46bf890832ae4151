"""Domain enumerations for the deal lifecycle."""

from enum import StrEnum


class DealStage(StrEnum):
    """Stages in the negotiation lifecycle of a Deal."""

    INITIATED = "initiated"
    IN_NEGOTIATION = "in_negotiation"
    READY_FOR_CONTRACT = "ready_for_contract"
    PENDING_HUMAN_REVIEW = "pending_human_review"
    DECLINED = "declined"
    CONTRACT_CREATED = "contract_created"
    ERROR = "error"


class Sentiment(StrEnum):
    """Overall tone of a creator reply."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Level(StrEnum):
    """Three-step scale used for risk level and negotiation potential."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StrategyAction(StrEnum):
    """Action chosen by the strategy policy for a reply."""

    ACCEPT = "accept"
    NEGOTIATE = "negotiate"
    DECLINE_POLITELY = "decline_politely"
    FLAG_FOR_REVIEW = "flag_for_review"


class Direction(StrEnum):
    """Direction of a communication relative to the brand."""

    IN = "in"
    OUT = "out"


class DeliveryStatus(StrEnum):
    """Delivery outcome of an outbound message."""

    SENT = "sent"
    FAILED = "failed"


class EscalationStatus(StrEnum):
    """Lifecycle of a human escalation request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContractStatus(StrEnum):
    """Lifecycle of a Contract."""

    DRAFTING = "drafting"
    AWAITING_SIGNATURES = "awaiting_signatures"
    SIGNED = "signed"
    ACTIVE = "active"
    COMPLETED = "completed"


class MilestoneStatus(StrEnum):
    """Lifecycle of a single payment milestone."""

    CREATED = "created"
    INVOICED = "invoiced"
    PAID = "paid"
    FAILED = "failed"


class PaymentStatus(StrEnum):
    """Outcome of a single charge attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LedgerStatus(StrEnum):
    """Contract-level payment status derived from milestones."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    COMPLETED = "completed"


# Stages that reject every further mutation of a Deal.
TERMINAL_DEAL_STAGES: frozenset[DealStage] = frozenset(
    {DealStage.CONTRACT_CREATED, DealStage.DECLINED, DealStage.ERROR}
)

# Contract statuses in which the terms snapshot can no longer change.
FROZEN_TERMS_STATUSES: frozenset[ContractStatus] = frozenset(
    {
        ContractStatus.AWAITING_SIGNATURES,
        ContractStatus.SIGNED,
        ContractStatus.ACTIVE,
        ContractStatus.COMPLETED,
    }
)

# Milestone statuses that can be charged: invoiced, or declined and awaiting a retry.
PAYABLE_MILESTONE_STATUSES: frozenset[MilestoneStatus] = frozenset(
    {MilestoneStatus.INVOICED, MilestoneStatus.FAILED}
)
