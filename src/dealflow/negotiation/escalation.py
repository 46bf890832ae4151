"""Human-review queue with at most one pending request per deal.

The check-then-write runs under the deal's lock and inside a store
transaction; the partial unique index on ``escalation(deal_id)`` rejects a
second pending row even if a caller bypasses the queue.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from dealflow.domain.errors import NotFound, PreconditionFailed
from dealflow.domain.models import Deal, EscalationPayload, EscalationRequest, utcnow
from dealflow.domain.types import EscalationStatus, StrategyAction
from dealflow.resilience.locks import KeyedLocks
from dealflow.state.store import DealStore

logger = structlog.get_logger()


class EscalationNotifier(Protocol):
    """Anything that can show a pending review request to a human."""

    def post_escalation(self, request: EscalationRequest, deal: Deal) -> str: ...


def deal_lock_key(deal_id: str) -> str:
    """Lock key shared by every component that mutates a deal."""
    return f"deal:{deal_id}"


def parse_decision(decision: str | EscalationStatus) -> EscalationStatus:
    """Validate a reviewer decision.

    Raises:
        PreconditionFailed: Unless the decision is ``approved`` or ``rejected``.
    """
    try:
        status = EscalationStatus(decision)
    except ValueError as exc:
        raise PreconditionFailed(f"unknown decision '{decision}'") from exc
    if status is EscalationStatus.PENDING:
        raise PreconditionFailed("decision must be 'approved' or 'rejected'")
    return status


def resolution_action(
    request: EscalationRequest,
    decision: EscalationStatus,
    action: StrategyAction | str | None = None,
) -> StrategyAction:
    """Return the action a human decision stands for.

    An explicit *action* wins.  Otherwise approval applies the escalated
    action (a bare ``flag_for_review`` becomes ``accept``) and rejection
    declines.

    Raises:
        PreconditionFailed: If *action* is unknown or ``flag_for_review``.
    """
    if action is not None:
        try:
            action = StrategyAction(action)
        except ValueError as exc:
            raise PreconditionFailed(f"unknown action '{action}'") from exc
        if action is StrategyAction.FLAG_FOR_REVIEW:
            raise PreconditionFailed("a resolution cannot flag the deal for review again")
        return action
    if decision is EscalationStatus.REJECTED:
        return StrategyAction.DECLINE_POLITELY
    escalated = request.payload.strategy.action
    if escalated is StrategyAction.FLAG_FOR_REVIEW:
        return StrategyAction.ACCEPT
    return escalated


class EscalationQueue:
    """Create, update, and resolve human-review requests."""

    def __init__(self, store: DealStore, locks: KeyedLocks) -> None:
        self._store = store
        self._locks = locks

    def raise_request(
        self, deal_id: str, reason: str, payload: EscalationPayload
    ) -> tuple[EscalationRequest, bool]:
        """Create the deal's pending request, or refresh the existing one.

        Returns:
            The pending request and whether it was newly created.
        """
        with self._locks.hold(deal_lock_key(deal_id)), self._store.transaction():
            existing = self._store.get_pending_escalation(deal_id)
            if existing is not None:
                updated = existing.model_copy(update={"reason": reason, "payload": payload})
                self._store.update_escalation(updated)
                logger.info("escalation_updated", deal_id=deal_id, escalation_id=existing.id)
                return updated, False

            request = EscalationRequest(deal_id=deal_id, reason=reason, payload=payload)
            self._store.insert_escalation(request)
            logger.info("escalation_raised", deal_id=deal_id, escalation_id=request.id)
            return request, True

    def resolve(
        self,
        request_id: str,
        decision: str | EscalationStatus,
        note: str | None = None,
        action: StrategyAction | None = None,
    ) -> EscalationRequest:
        """Close a pending request with a reviewer decision.

        Raises:
            NotFound: If there is no pending request with this id.
            PreconditionFailed: If the decision or action is not allowed.
        """
        status = parse_decision(decision)
        request = self._store.get_escalation(request_id)
        with self._locks.hold(deal_lock_key(request.deal_id)), self._store.transaction():
            request = self._store.get_escalation(request_id)
            if request.status is not EscalationStatus.PENDING:
                raise NotFound("pending escalation", request_id)
            resolved = request.model_copy(
                update={
                    "status": status,
                    "note": note,
                    "resolved_action": resolution_action(request, status, action),
                    "resolved_at": utcnow(),
                }
            )
            self._store.update_escalation(resolved)
        logger.info(
            "escalation_resolved",
            deal_id=resolved.deal_id,
            escalation_id=request_id,
            decision=status.value,
            action=resolved.resolved_action,
        )
        return resolved

    def get(self, request_id: str) -> EscalationRequest:
        """Load a request by id."""
        return self._store.get_escalation(request_id)

    def list_pending(self, deal_id: str | None = None) -> list[EscalationRequest]:
        """Return pending requests, oldest first."""
        return self._store.list_escalations(
            status=EscalationStatus.PENDING.value, deal_id=deal_id
        )
