"""Cross-service flows triggered by transport callbacks and human decisions.

A negotiation that reaches ``ready_for_contract`` immediately produces its
contract; these functions chain the engine and the contract service so the
HTTP layer stays thin.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from dealflow.domain.errors import DealflowError
from dealflow.domain.models import Contract, Deal, EscalationRequest, Strategy
from dealflow.domain.types import DealStage, StrategyAction
from dealflow.state_machine.machine import DealStateMachine
from dealflow.state_machine.transitions import DealEvent

logger = structlog.get_logger()


class FlowResult(BaseModel):
    """State of a deal after an inbound reply or a human decision."""

    model_config = ConfigDict(frozen=True)

    deal: Deal
    strategy: Strategy | None = None
    escalation: EscalationRequest | None = None
    contract: Contract | None = None
    outbound_delivered: bool | None = None


def _contract_if_agreed(services: Mapping[str, Any], deal: Deal) -> tuple[Deal, Contract | None]:
    if deal.stage is not DealStage.READY_FOR_CONTRACT:
        return deal, None
    contract = services["contracts"].create_contract_from_deal(deal.id)
    return services["engine"].get_deal(deal.id), contract


def _mark_failed(engine: Any, deal_id: str, exc: Exception) -> None:
    """Move the deal to ``error`` if it can still fail, without masking *exc*."""
    try:
        deal = engine.get_deal(deal_id)
        if not DealStateMachine(deal.stage).can_trigger(DealEvent.FAIL):
            logger.warning("deal_not_failed", deal_id=deal_id, stage=deal.stage)
            return
        engine.fail_deal(deal_id, reason=repr(exc))
    except DealflowError:
        logger.exception("deal_failure_not_recorded", deal_id=deal_id)


def handle_inbound_message(
    services: Mapping[str, Any],
    deal_id: str,
    content: str,
    metadata: Mapping[str, str] | None = None,
) -> FlowResult:
    """Process a creator reply and create the contract once terms are agreed.

    Domain errors propagate unchanged.  Any other failure is unrecoverable
    for the deal, which is moved to ``error`` before the exception is
    re-raised.
    """
    engine = services["engine"]
    try:
        outcome = engine.process_reply(deal_id, content, metadata)
        deal, contract = _contract_if_agreed(services, outcome.deal)
    except DealflowError:
        raise
    except Exception as exc:
        logger.exception("inbound_processing_failed", deal_id=deal_id)
        _mark_failed(engine, deal_id, exc)
        raise

    return FlowResult(
        deal=deal,
        strategy=outcome.strategy,
        escalation=outcome.escalation,
        contract=contract,
        outbound_delivered=(
            None if outcome.outbound is None else outcome.outbound.delivery_status == "sent"
        ),
    )


def apply_escalation_decision(
    services: Mapping[str, Any],
    request_id: str,
    decision: str,
    note: str | None = None,
    action: StrategyAction | None = None,
) -> FlowResult:
    """Apply a reviewer decision and create the contract if it agreed the deal."""
    resolution = services["engine"].resolve_escalation(request_id, decision, note, action)
    deal, contract = _contract_if_agreed(services, resolution.deal)
    return FlowResult(
        deal=deal,
        strategy=deal.strategy,
        escalation=resolution.escalation,
        contract=contract,
        outbound_delivered=(
            None
            if resolution.outbound is None
            else resolution.outbound.delivery_status == "sent"
        ),
    )
