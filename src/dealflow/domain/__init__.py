"""Domain types, models, and errors for the deal lifecycle engine."""

from dealflow.domain.errors import (
    ClassificationUnavailable,
    ConcurrentModification,
    DealflowError,
    ExtractionUnavailable,
    GatewayAmbiguous,
    InvalidTransitionError,
    InvariantViolation,
    NotFound,
    PersistenceError,
    PreconditionFailed,
    RenderingFailed,
    TransportFailure,
)
from dealflow.domain.models import (
    BudgetConstraints,
    ChargeResult,
    Classification,
    CommunicationRecord,
    Contract,
    ContractDeadlines,
    ContractTerms,
    Deal,
    Deliverable,
    EscalationPayload,
    EscalationRequest,
    LedgerSummary,
    MilestoneInitResult,
    MilestoneTerm,
    PaymentMilestone,
    PaymentRecord,
    Strategy,
)
from dealflow.domain.types import (
    FROZEN_TERMS_STATUSES,
    PAYABLE_MILESTONE_STATUSES,
    TERMINAL_DEAL_STAGES,
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

__all__ = [
    "FROZEN_TERMS_STATUSES",
    "PAYABLE_MILESTONE_STATUSES",
    "TERMINAL_DEAL_STAGES",
    "BudgetConstraints",
    "ChargeResult",
    "Classification",
    "ClassificationUnavailable",
    "CommunicationRecord",
    "ConcurrentModification",
    "Contract",
    "ContractDeadlines",
    "ContractStatus",
    "ContractTerms",
    "Deal",
    "DealStage",
    "DealflowError",
    "Deliverable",
    "DeliveryStatus",
    "Direction",
    "EscalationPayload",
    "EscalationRequest",
    "EscalationStatus",
    "ExtractionUnavailable",
    "GatewayAmbiguous",
    "InvalidTransitionError",
    "InvariantViolation",
    "LedgerStatus",
    "LedgerSummary",
    "Level",
    "MilestoneInitResult",
    "MilestoneStatus",
    "MilestoneTerm",
    "NotFound",
    "PaymentMilestone",
    "PaymentRecord",
    "PaymentStatus",
    "PersistenceError",
    "PreconditionFailed",
    "RenderingFailed",
    "Sentiment",
    "Strategy",
    "StrategyAction",
    "TransportFailure",
]
