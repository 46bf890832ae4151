"""State machines with transition validation."""

from dealflow.state_machine.machine import (
    ContractStateMachine,
    DealStateMachine,
    MilestoneStateMachine,
    StateMachine,
)
from dealflow.state_machine.transitions import (
    ACTION_EVENTS,
    CONTRACT_TRANSITIONS,
    DEAL_TRANSITIONS,
    MILESTONE_TRANSITIONS,
    ContractEvent,
    DealEvent,
    MilestoneEvent,
)

__all__ = [
    "ACTION_EVENTS",
    "CONTRACT_TRANSITIONS",
    "DEAL_TRANSITIONS",
    "MILESTONE_TRANSITIONS",
    "ContractEvent",
    "ContractStateMachine",
    "DealEvent",
    "DealStateMachine",
    "MilestoneEvent",
    "MilestoneStateMachine",
    "StateMachine",
]
