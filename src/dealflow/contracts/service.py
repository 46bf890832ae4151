"""Contract creation from agreed deals and the signature lifecycle."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from dealflow.adapters.protocols import DocumentRenderer, TermsExtractor
from dealflow.contracts.terms import ScheduleSettings, default_terms, milestones_for
from dealflow.domain.errors import ExtractionUnavailable, PreconditionFailed, RenderingFailed
from dealflow.domain.models import (
    CommunicationRecord,
    Contract,
    ContractTerms,
    Deal,
    MilestoneInitResult,
)
from dealflow.domain.types import DealStage
from dealflow.negotiation.escalation import deal_lock_key
from dealflow.observability import metrics
from dealflow.payments.coordinator import PaymentCoordinator, contract_lock_key
from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.timeouts import BoundedCaller
from dealflow.state.store import DealStore
from dealflow.state_machine.machine import ContractStateMachine, DealStateMachine
from dealflow.state_machine.transitions import ContractEvent, DealEvent

logger = structlog.get_logger()

TERMS_EXTRACTED = "extracted"
TERMS_DEFAULT = "default"


@dataclass(frozen=True)
class ContractConfig:
    """Default schedule and timeouts for contract operations."""

    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    extraction_timeout: float = 30.0
    render_timeout: float = 30.0


class ActivationResult(BaseModel):
    """An activated contract with the per-milestone invoicing outcome."""

    model_config = ConfigDict(frozen=True)

    contract: Contract
    milestones: list[MilestoneInitResult]

    @property
    def fully_invoiced(self) -> bool:
        """True if every milestone has an invoice."""
        return all(result.success for result in self.milestones)


class ContractService:
    """Turns agreed deals into contracts and walks them to activation.

    Args:
        store: Persistence for deals and contracts.
        payments: Coordinator that invoices milestones on activation.
        caller: Shared worker pool for bounded external calls.
        extractor: Structured term extraction.  ``None`` always uses the
            default terms.
        renderer: Contract document rendering.
        locks: Entity locks shared with the negotiation engine.
        config: Default schedule and timeouts.
    """

    def __init__(
        self,
        store: DealStore,
        payments: PaymentCoordinator,
        caller: BoundedCaller,
        extractor: TermsExtractor | None = None,
        renderer: DocumentRenderer | None = None,
        locks: KeyedLocks | None = None,
        config: ContractConfig | None = None,
    ) -> None:
        self._store = store
        self._payments = payments
        self._caller = caller
        self._extractor = extractor
        self._renderer = renderer
        self._locks = locks or KeyedLocks()
        self._config = config or ContractConfig()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_contract_from_deal(self, deal_id: str) -> Contract:
        """Create the deal's contract in ``drafting`` with ``created`` milestones.

        Idempotent: if the deal already has a contract, that contract is
        returned unchanged.

        Raises:
            NotFound: If the deal does not exist.
            PreconditionFailed: If the deal is not ``ready_for_contract``.
        """
        with self._locks.hold(deal_lock_key(deal_id)):
            existing = self._store.get_contract_for_deal(deal_id)
            if existing is not None:
                return existing
            deal = self._require_ready(deal_id)
            history = self._store.list_communications(deal_id)

        terms, source = self._resolve_terms(deal, history)

        with self._locks.hold(deal_lock_key(deal_id)):
            existing = self._store.get_contract_for_deal(deal_id)
            if existing is not None:
                return existing
            current = self._require_ready(deal_id)
            machine = DealStateMachine(current.stage)
            machine.trigger(DealEvent.CREATE_CONTRACT)

            contract = Contract(deal_id=deal_id, terms=terms, terms_source=source)
            with self._store.transaction():
                self._store.insert_contract(contract, milestones_for(contract.id, terms))
                self._store.update_deal(current.model_copy(update={"stage": machine.state}))

        metrics.CONTRACTS_CREATED.labels(terms_source=source).inc()
        logger.info(
            "contract_created",
            deal_id=deal_id,
            contract_id=contract.id,
            payment_amount=str(terms.payment_amount),
            milestones=len(terms.milestones),
            terms_source=source,
        )
        return contract

    def _require_ready(self, deal_id: str) -> Deal:
        deal = self._store.get_deal(deal_id)
        if deal.stage is not DealStage.READY_FOR_CONTRACT:
            raise PreconditionFailed(
                f"deal '{deal_id}' is {deal.stage}; a contract needs ready_for_contract"
            )
        return deal

    def _resolve_terms(
        self, deal: Deal, history: list[CommunicationRecord]
    ) -> tuple[ContractTerms, str]:
        """Extract terms, falling back to the default schedule on any failure."""
        if self._extractor is not None:
            try:
                raw = self._caller.call(
                    self._extractor.extract_terms,
                    deal,
                    history,
                    timeout=self._config.extraction_timeout,
                    name="extract_terms",
                )
                return self._validate_terms(raw, deal), TERMS_EXTRACTED
            except TimeoutError:
                logger.warning("terms_extraction_timed_out", deal_id=deal.id)
            except Exception as exc:
                logger.warning("terms_extraction_failed", deal_id=deal.id, error=str(exc))
        logger.info("default_terms_used", deal_id=deal.id)
        try:
            return default_terms(deal, self._config.schedule), TERMS_DEFAULT
        except ValidationError as exc:
            raise PreconditionFailed(
                f"deal '{deal.id}' has no valid default terms: {exc.error_count()} errors"
            ) from exc

    @staticmethod
    def _validate_terms(raw: ContractTerms | Mapping[str, object], deal: Deal) -> ContractTerms:
        if isinstance(raw, ContractTerms):
            terms = raw
        else:
            try:
                terms = ContractTerms.model_validate(
                    {"currency": deal.budget.currency, **dict(raw)}
                )
            except ValidationError as exc:
                raise ExtractionUnavailable(
                    f"invalid extracted terms: {exc.error_count()} errors"
                ) from exc
        if terms.payment_amount <= 0:
            raise ExtractionUnavailable("extracted payment_amount must be positive")
        return terms

    # ------------------------------------------------------------------
    # Signature lifecycle
    # ------------------------------------------------------------------

    def send_for_signature(self, contract_id: str) -> Contract:
        """Render the contract document and freeze its terms.

        Raises:
            NotFound: If the contract does not exist.
            InvalidTransitionError: If the contract is not ``drafting``.
            RenderingFailed: If the document could not be rendered.
        """
        with self._locks.hold(contract_lock_key(contract_id)):
            contract = self._store.get_contract(contract_id)
            ContractStateMachine(contract.status).trigger(ContractEvent.SEND_FOR_SIGNATURE)

        document_url = self._render(contract)

        with self._locks.hold(contract_lock_key(contract_id)):
            current = self._store.get_contract(contract_id)
            machine = ContractStateMachine(current.status)
            machine.trigger(ContractEvent.SEND_FOR_SIGNATURE)
            updated = self._store.update_contract(
                current.model_copy(update={"status": machine.state, "document_url": document_url})
            )
        logger.info(
            "contract_sent_for_signature", contract_id=contract_id, document_url=document_url
        )
        return updated

    def _render(self, contract: Contract) -> str | None:
        if self._renderer is None:
            return None
        try:
            return self._caller.call(
                self._renderer.render_contract,
                contract.id,
                contract.terms,
                timeout=self._config.render_timeout,
                name="render_contract",
            )
        except TimeoutError as exc:
            raise RenderingFailed(
                f"rendering timed out after {self._config.render_timeout}s"
            ) from exc
        except RenderingFailed:
            raise
        except Exception as exc:
            raise RenderingFailed(str(exc)) from exc

    def mark_signed(self, contract_id: str) -> Contract:
        """Record that all parties signed."""
        return self._advance(contract_id, ContractEvent.SIGN)

    def activate(self, contract_id: str) -> ActivationResult:
        """Activate a signed contract and invoice its milestones.

        Invoicing failures do not undo activation; they are reported per
        milestone in the result.
        """
        contract = self._advance(contract_id, ContractEvent.ACTIVATE)
        results = self._payments.initialize_milestones(contract_id)
        return ActivationResult(contract=contract, milestones=results)

    def _advance(self, contract_id: str, event: ContractEvent) -> Contract:
        with self._locks.hold(contract_lock_key(contract_id)):
            contract = self._store.get_contract(contract_id)
            machine = ContractStateMachine(contract.status)
            machine.trigger(event)
            updated = self._store.update_contract(
                contract.model_copy(update={"status": machine.state})
            )
        logger.info(
            "contract_status_changed", contract_id=contract_id, event=event, status=updated.status
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: str) -> Contract:
        """Load a contract by id."""
        return self._store.get_contract(contract_id)

    def get_contract_for_deal(self, deal_id: str) -> Contract | None:
        """Return the deal's contract, if one was created."""
        return self._store.get_contract_for_deal(deal_id)

    def list_contracts(self, deal_id: str | None = None) -> list[Contract]:
        """List contracts, optionally for a single deal."""
        return self._store.list_contracts(deal_id=deal_id)

