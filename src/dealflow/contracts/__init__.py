"""Contracts: default terms, milestone schedule, and the signature lifecycle."""

from dealflow.contracts.service import ActivationResult, ContractConfig, ContractService
from dealflow.contracts.terms import (
    ScheduleSettings,
    agreed_amount,
    default_schedule,
    default_terms,
    milestones_for,
    split_amount,
)

__all__ = [
    "ActivationResult",
    "ContractConfig",
    "ContractService",
    "ScheduleSettings",
    "agreed_amount",
    "default_schedule",
    "default_terms",
    "milestones_for",
    "split_amount",
]
