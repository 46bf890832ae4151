"""Domain-specific exception classes for the deal lifecycle engine."""


class DealflowError(Exception):
    """Base class for all domain errors in the deal lifecycle engine."""


class ClassificationUnavailable(DealflowError):
    """Raised by a classifier that timed out, failed, or returned a malformed payload.

    The negotiation engine recovers from this with the rule-based fallback;
    it never reaches callers.
    """


class ExtractionUnavailable(DealflowError):
    """Raised when structured contract-term extraction fails or returns invalid terms."""


class TransportFailure(DealflowError):
    """Raised when an outbound message could not be delivered."""


class RenderingFailed(DealflowError):
    """Raised when the contract document could not be rendered."""


class GatewayAmbiguous(DealflowError):
    """Raised when the payment gateway response cannot be interpreted.

    The milestone is left untouched and must be reconciled manually.

    Attributes:
        milestone_id: The milestone whose charge outcome is unknown.
    """

    def __init__(self, message: str, milestone_id: str | None = None) -> None:
        self.milestone_id = milestone_id
        super().__init__(message)


class InvariantViolation(DealflowError):
    """Raised when an operation would break a storage or lifecycle invariant."""


class ConcurrentModification(InvariantViolation):
    """Raised when an optimistic version check fails on commit."""


class InvalidTransitionError(DealflowError):
    """Raised when an invalid state transition is attempted.

    Attributes:
        entity: Name of the state machine (``deal``, ``contract``, ``milestone``).
        current_state: The state the machine was in when the transition was attempted.
        event: The event that was rejected.
    """

    def __init__(self, entity: str, current_state: str, event: str) -> None:
        self.entity = entity
        self.current_state = current_state
        self.event = event
        super().__init__(
            f"Cannot apply event '{event}' to {entity} in state '{current_state}'"
        )


class PreconditionFailed(DealflowError):
    """Raised when an operation's preconditions do not hold."""


class NotFound(DealflowError):
    """Raised when an operation references a nonexistent entity.

    Attributes:
        entity: The entity type that was looked up.
        entity_id: The identifier that did not resolve.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class PersistenceError(DealflowError):
    """Raised when the store fails to commit a transaction."""
