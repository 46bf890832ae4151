"""HTTP API for operators: deals, escalations, contracts, and payments.

Every handler delegates to the services wired at startup and runs them in a
worker thread, since they block on SQLite and external calls.  Domain errors
are translated to HTTP status codes by ``register_error_handlers``.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dealflow.contracts.service import ActivationResult
from dealflow.domain.errors import (
    ClassificationUnavailable,
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
    CommunicationRecord,
    Contract,
    Deal,
    EscalationRequest,
    LedgerSummary,
    PaymentMilestone,
    PaymentRecord,
)
from dealflow.domain.types import StrategyAction
from dealflow.negotiation.models import NegotiationSummary
from dealflow.payments.ledger import PaymentReport
from dealflow.workflows import FlowResult, apply_escalation_decision

logger = structlog.get_logger()

router = APIRouter()


class CreateDealRequest(BaseModel):
    """Body of ``POST /deals``."""

    campaign_id: str = Field(min_length=1)
    creator_id: str = Field(min_length=1)
    max_budget: Decimal = Field(gt=0)
    currency: str = "USD"
    outreach_text: str | None = None


class ResolveEscalationRequest(BaseModel):
    """Body of ``POST /escalations/{id}/resolve``."""

    decision: str
    note: str | None = None
    action: StrategyAction | None = None


def _services(request: Request) -> dict[str, Any]:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


@router.post("/deals", status_code=201)
async def create_deal(body: CreateDealRequest, request: Request) -> Deal:
    """Open a deal and send the outreach message if one is given."""
    engine = _services(request)["engine"]
    budget = BudgetConstraints(max_budget=body.max_budget, currency=body.currency)
    return await asyncio.to_thread(
        engine.open_deal, body.campaign_id, body.creator_id, budget, body.outreach_text
    )


@router.get("/deals")
async def list_deals(
    request: Request, campaign_id: str | None = None, stage: str | None = None
) -> list[Deal]:
    engine = _services(request)["engine"]
    return await asyncio.to_thread(
        lambda: engine.list_deals(campaign_id=campaign_id, stage=stage)
    )


@router.get("/deals/summary")
async def deals_summary(request: Request, campaign_id: str | None = None) -> NegotiationSummary:
    """Aggregate negotiation outcomes, optionally for one campaign."""
    engine = _services(request)["engine"]
    return await asyncio.to_thread(engine.negotiation_summary, campaign_id)


@router.get("/deals/{deal_id}")
async def get_deal(deal_id: str, request: Request) -> Deal:
    engine = _services(request)["engine"]
    return await asyncio.to_thread(engine.get_deal, deal_id)


@router.get("/deals/{deal_id}/communications")
async def list_communications(deal_id: str, request: Request) -> list[CommunicationRecord]:
    engine = _services(request)["engine"]
    return await asyncio.to_thread(engine.list_communications, deal_id)


@router.post("/deals/{deal_id}/retry-message")
async def retry_message(deal_id: str, request: Request) -> CommunicationRecord:
    """Resend the deal's last outbound message after a delivery failure."""
    engine = _services(request)["engine"]
    return await asyncio.to_thread(engine.retry_failed_message, deal_id)


@router.post("/deals/{deal_id}/contract", status_code=201)
async def create_contract(deal_id: str, request: Request) -> Contract:
    """Create the contract for an agreed deal.  Repeated calls return the same contract."""
    contracts = _services(request)["contracts"]
    return await asyncio.to_thread(contracts.create_contract_from_deal, deal_id)


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


@router.get("/escalations")
async def list_escalations(
    request: Request, deal_id: str | None = None
) -> list[EscalationRequest]:
    """List pending review requests, oldest first."""
    engine = _services(request)["engine"]
    return await asyncio.to_thread(engine.list_pending_escalations, deal_id)


@router.post("/escalations/{request_id}/resolve")
async def resolve_escalation(
    request_id: str, body: ResolveEscalationRequest, request: Request
) -> FlowResult:
    """Apply a reviewer decision to a pending escalation."""
    logger.info("escalation_decision_received", escalation_id=request_id, decision=body.decision)
    return await asyncio.to_thread(
        apply_escalation_decision,
        _services(request),
        request_id,
        body.decision,
        body.note,
        body.action,
    )


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


@router.get("/contracts")
async def list_contracts(request: Request, deal_id: str | None = None) -> list[Contract]:
    contracts = _services(request)["contracts"]
    return await asyncio.to_thread(contracts.list_contracts, deal_id)


@router.get("/contracts/{contract_id}")
async def get_contract(contract_id: str, request: Request) -> Contract:
    contracts = _services(request)["contracts"]
    return await asyncio.to_thread(contracts.get_contract, contract_id)


@router.post("/contracts/{contract_id}/send-for-signature")
async def send_for_signature(contract_id: str, request: Request) -> Contract:
    contracts = _services(request)["contracts"]
    return await asyncio.to_thread(contracts.send_for_signature, contract_id)


@router.post("/contracts/{contract_id}/sign")
async def sign_contract(contract_id: str, request: Request) -> Contract:
    contracts = _services(request)["contracts"]
    return await asyncio.to_thread(contracts.mark_signed, contract_id)


@router.post("/contracts/{contract_id}/activate")
async def activate_contract(contract_id: str, request: Request) -> dict[str, Any]:
    """Activate a signed contract and invoice its milestones."""
    contracts = _services(request)["contracts"]
    result: ActivationResult = await asyncio.to_thread(contracts.activate, contract_id)
    return {
        "contract": result.contract.model_dump(mode="json"),
        "milestones": [item.model_dump(mode="json") for item in result.milestones],
        "fully_invoiced": result.fully_invoiced,
    }


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@router.get("/contracts/{contract_id}/ledger")
async def get_ledger(contract_id: str, request: Request) -> LedgerSummary:
    payments = _services(request)["payments"]
    return await asyncio.to_thread(payments.get_ledger, contract_id)


@router.get("/contracts/{contract_id}/milestones")
async def list_milestones(contract_id: str, request: Request) -> list[PaymentMilestone]:
    payments = _services(request)["payments"]
    return await asyncio.to_thread(payments.list_milestones, contract_id)


@router.get("/contracts/{contract_id}/payments")
async def list_payments(contract_id: str, request: Request) -> list[PaymentRecord]:
    payments = _services(request)["payments"]
    return await asyncio.to_thread(payments.list_payments, contract_id)


@router.post("/contracts/{contract_id}/milestones/{milestone_id}/pay")
async def pay_milestone(contract_id: str, milestone_id: str, request: Request) -> PaymentRecord:
    """Charge a milestone.  A paid milestone returns its existing payment."""
    payments = _services(request)["payments"]
    return await asyncio.to_thread(
        payments.process_milestone_payment, contract_id, milestone_id
    )


@router.get("/payments/report")
async def payments_report(request: Request) -> PaymentReport:
    payments = _services(request)["payments"]
    return await asyncio.to_thread(payments.payment_report)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

# Most specific classes first; the first isinstance match wins.
ERROR_STATUS: tuple[tuple[type[DealflowError], int], ...] = (
    (NotFound, 404),
    (InvalidTransitionError, 409),
    (PreconditionFailed, 409),
    (InvariantViolation, 409),
    (GatewayAmbiguous, 502),
    (TransportFailure, 502),
    (RenderingFailed, 502),
    (ExtractionUnavailable, 502),
    (ClassificationUnavailable, 502),
    (PersistenceError, 503),
)


def status_for(exc: DealflowError) -> int:
    """Return the HTTP status code for a domain error."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def register_error_handlers(app: FastAPI) -> None:
    """Translate domain errors raised by handlers into JSON error responses.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(DealflowError)
    async def handle_domain_error(request: Request, exc: DealflowError) -> JSONResponse:
        status_code = status_for(exc)
        content: dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, GatewayAmbiguous) and exc.milestone_id:
            content["milestone_id"] = exc.milestone_id
        if status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error=content["error"],
                detail=content["detail"],
            )
        else:
            logger.info(
                "request_rejected",
                path=request.url.path,
                error=content["error"],
                status_code=status_code,
            )
        return JSONResponse(status_code=status_code, content=content)
