"""Table-driven state machines for deals, contracts, and payment milestones."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar, Generic, TypeVar

from dealflow.domain.errors import InvalidTransitionError
from dealflow.domain.types import (
    TERMINAL_DEAL_STAGES,
    ContractStatus,
    DealStage,
    MilestoneStatus,
)
from dealflow.state_machine.transitions import (
    CONTRACT_TRANSITIONS,
    DEAL_TRANSITIONS,
    MILESTONE_TRANSITIONS,
    TERMINAL_CONTRACT_STATUSES,
    TERMINAL_MILESTONE_STATUSES,
)

S = TypeVar("S", bound=StrEnum)


class StateMachine(Generic[S]):
    """Finite state machine over a transition map.

    Tracks the current state, validates transitions against the map, and
    records a history of every state change.  Subclasses bind the map, the
    terminal set, and the entity name used in error messages.

    Usage::

        sm = DealStateMachine(DealStage.INITIATED)
        sm.trigger("negotiate")   # -> IN_NEGOTIATION
        sm.trigger("accept")      # -> READY_FOR_CONTRACT
    """

    entity: ClassVar[str] = "entity"
    transitions: ClassVar[dict[tuple[StrEnum, str], StrEnum]] = {}
    terminal_states: ClassVar[frozenset[StrEnum]] = frozenset()

    def __init__(self, initial_state: S) -> None:
        self._state: S = initial_state
        self._history: list[tuple[S, str, S]] = []

    @property
    def state(self) -> S:
        """Return the current state."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Return True if the machine is in a terminal state."""
        return self._state in self.terminal_states

    @property
    def history(self) -> list[tuple[S, str, S]]:
        """Return a copy of the ``(from_state, event, to_state)`` history."""
        return list(self._history)

    def can_trigger(self, event: str) -> bool:
        """Return True if *event* is valid from the current state."""
        return not self.is_terminal and (self._state, event) in self.transitions

    def trigger(self, event: str) -> S:
        """Apply an event to the current state and transition.

        Args:
            event: The event string (e.g. ``"accept"``).

        Returns:
            The new state after the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed from
                the current state, or if the machine is in a terminal state.
        """
        if not self.can_trigger(event):
            raise InvalidTransitionError(self.entity, self._state.value, event)

        old_state = self._state
        new_state: S = self.transitions[(self._state, event)]  # type: ignore[assignment]
        self._history.append((old_state, event, new_state))
        self._state = new_state
        return new_state

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current state."""
        if self.is_terminal:
            return []
        return sorted(event for state, event in self.transitions if state == self._state)


class DealStateMachine(StateMachine[DealStage]):
    """Negotiation stages of a Deal."""

    entity = "deal"
    transitions = DEAL_TRANSITIONS  # type: ignore[assignment]
    terminal_states = TERMINAL_DEAL_STAGES  # type: ignore[assignment]


class ContractStateMachine(StateMachine[ContractStatus]):
    """Signature and activation lifecycle of a Contract."""

    entity = "contract"
    transitions = CONTRACT_TRANSITIONS  # type: ignore[assignment]
    terminal_states = TERMINAL_CONTRACT_STATUSES  # type: ignore[assignment]


class MilestoneStateMachine(StateMachine[MilestoneStatus]):
    """Payment lifecycle of a single milestone.  ``paid`` is irreversible."""

    entity = "milestone"
    transitions = MILESTONE_TRANSITIONS  # type: ignore[assignment]
    terminal_states = TERMINAL_MILESTONE_STATUSES  # type: ignore[assignment]
