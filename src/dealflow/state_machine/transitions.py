"""Transition maps defining all valid (state, event) -> state mappings.

Any pair missing from a map is an invalid transition.
"""

from enum import StrEnum

from dealflow.domain.types import (
    TERMINAL_DEAL_STAGES,
    ContractStatus,
    DealStage,
    MilestoneStatus,
    StrategyAction,
)


class DealEvent(StrEnum):
    """Events that move a Deal between negotiation stages."""

    NEGOTIATE = "negotiate"
    ACCEPT = "accept"
    ESCALATE = "escalate"
    DECLINE = "decline"
    CREATE_CONTRACT = "create_contract"
    FAIL = "fail"


class ContractEvent(StrEnum):
    """Events that move a Contract through signature and activation."""

    SEND_FOR_SIGNATURE = "send_for_signature"
    SIGN = "sign"
    ACTIVATE = "activate"
    COMPLETE = "complete"


class MilestoneEvent(StrEnum):
    """Events that move a payment milestone toward payment."""

    INVOICE = "invoice"
    PAY = "pay"
    FAIL = "fail"


_OPEN_STAGE_EVENTS: dict[DealEvent, DealStage] = {
    DealEvent.NEGOTIATE: DealStage.IN_NEGOTIATION,
    DealEvent.ACCEPT: DealStage.READY_FOR_CONTRACT,
    DealEvent.ESCALATE: DealStage.PENDING_HUMAN_REVIEW,
    DealEvent.DECLINE: DealStage.DECLINED,
    DealEvent.FAIL: DealStage.ERROR,
}

DEAL_TRANSITIONS: dict[tuple[DealStage, str], DealStage] = {
    **{(DealStage.INITIATED, e): s for e, s in _OPEN_STAGE_EVENTS.items()},
    **{(DealStage.IN_NEGOTIATION, e): s for e, s in _OPEN_STAGE_EVENTS.items()},
    # A human decision can send a reviewed deal back into negotiation.
    **{(DealStage.PENDING_HUMAN_REVIEW, e): s for e, s in _OPEN_STAGE_EVENTS.items()},
    # Once terms are agreed the deal never falls back to open negotiation.
    (DealStage.READY_FOR_CONTRACT, DealEvent.ACCEPT): DealStage.READY_FOR_CONTRACT,
    (DealStage.READY_FOR_CONTRACT, DealEvent.ESCALATE): DealStage.PENDING_HUMAN_REVIEW,
    (DealStage.READY_FOR_CONTRACT, DealEvent.DECLINE): DealStage.DECLINED,
    (DealStage.READY_FOR_CONTRACT, DealEvent.CREATE_CONTRACT): DealStage.CONTRACT_CREATED,
    (DealStage.READY_FOR_CONTRACT, DealEvent.FAIL): DealStage.ERROR,
}

CONTRACT_TRANSITIONS: dict[tuple[ContractStatus, str], ContractStatus] = {
    (ContractStatus.DRAFTING, ContractEvent.SEND_FOR_SIGNATURE): (
        ContractStatus.AWAITING_SIGNATURES
    ),
    (ContractStatus.AWAITING_SIGNATURES, ContractEvent.SIGN): ContractStatus.SIGNED,
    (ContractStatus.SIGNED, ContractEvent.ACTIVATE): ContractStatus.ACTIVE,
    (ContractStatus.ACTIVE, ContractEvent.COMPLETE): ContractStatus.COMPLETED,
}

MILESTONE_TRANSITIONS: dict[tuple[MilestoneStatus, str], MilestoneStatus] = {
    (MilestoneStatus.CREATED, MilestoneEvent.INVOICE): MilestoneStatus.INVOICED,
    (MilestoneStatus.INVOICED, MilestoneEvent.PAY): MilestoneStatus.PAID,
    (MilestoneStatus.INVOICED, MilestoneEvent.FAIL): MilestoneStatus.FAILED,
    # Failed charges are retryable against the same invoice.
    (MilestoneStatus.FAILED, MilestoneEvent.PAY): MilestoneStatus.PAID,
    (MilestoneStatus.FAILED, MilestoneEvent.FAIL): MilestoneStatus.FAILED,
}

TERMINAL_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({ContractStatus.COMPLETED})

TERMINAL_MILESTONE_STATUSES: frozenset[MilestoneStatus] = frozenset({MilestoneStatus.PAID})

# Deal event implied by each strategy action when no human approval is needed.
ACTION_EVENTS: dict[StrategyAction, DealEvent] = {
    StrategyAction.ACCEPT: DealEvent.ACCEPT,
    StrategyAction.NEGOTIATE: DealEvent.NEGOTIATE,
    StrategyAction.DECLINE_POLITELY: DealEvent.DECLINE,
    StrategyAction.FLAG_FOR_REVIEW: DealEvent.ESCALATE,
}

__all__ = [
    "ACTION_EVENTS",
    "CONTRACT_TRANSITIONS",
    "DEAL_TRANSITIONS",
    "MILESTONE_TRANSITIONS",
    "TERMINAL_CONTRACT_STATUSES",
    "TERMINAL_DEAL_STAGES",
    "TERMINAL_MILESTONE_STATUSES",
    "ContractEvent",
    "DealEvent",
    "MilestoneEvent",
]
