"""Milestone invoicing and at-most-once payment.

A charge for a milestone runs under that milestone's charge lock, which is
held across the gateway call, so concurrent requests for the same milestone
(retries, duplicate webhooks) never reach the gateway twice.  Commits run
under the contract lock and re-read the milestone first.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from pydantic import BaseModel, ConfigDict, model_validator

from dealflow.adapters.protocols import PaymentGateway
from dealflow.domain.errors import (
    GatewayAmbiguous,
    InvariantViolation,
    NotFound,
    PreconditionFailed,
    TransportFailure,
)
from dealflow.domain.models import (
    ChargeResult,
    LedgerSummary,
    MilestoneInitResult,
    PaymentMilestone,
    PaymentRecord,
)
from dealflow.domain.types import (
    PAYABLE_MILESTONE_STATUSES,
    ContractStatus,
    LedgerStatus,
    MilestoneStatus,
    PaymentStatus,
)
from dealflow.observability import metrics
from dealflow.payments.ledger import PaymentReport, build_payment_report, summarize_ledger
from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.retry import ErrorNotifier, resilient_api_call
from dealflow.resilience.timeouts import BoundedCaller
from dealflow.state.store import DealStore
from dealflow.state_machine.machine import ContractStateMachine, MilestoneStateMachine
from dealflow.state_machine.transitions import ContractEvent, MilestoneEvent

logger = structlog.get_logger()


def contract_lock_key(contract_id: str) -> str:
    """Lock key shared by every component that mutates a contract or its milestones."""
    return f"contract:{contract_id}"


def _payable_invoice(milestone: PaymentMilestone) -> str:
    """Return the invoice to charge for *milestone*.

    Raises:
        PreconditionFailed: If the milestone is not invoiced or awaiting a retry.
    """
    if milestone.status not in PAYABLE_MILESTONE_STATUSES or milestone.invoice_id is None:
        raise PreconditionFailed(
            f"milestone '{milestone.id}' is {milestone.status}; it must be invoiced"
        )
    return milestone.invoice_id


@dataclass(frozen=True)
class PaymentConfig:
    """Timeouts and retry bounds for gateway calls."""

    gateway_timeout: float = 15.0
    invoice_max_attempts: int = 3
    retry_initial_wait: float = 1.0


class GatewayEvent(BaseModel):
    """Asynchronous confirmation delivered by the payment gateway.

    Without ``status`` the event only asks for the milestone to be settled,
    which triggers a regular (idempotent) charge.
    """

    model_config = ConfigDict(frozen=True)

    invoice_id: str | None = None
    milestone_id: str | None = None
    status: PaymentStatus | None = None
    transaction_id: str | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def must_reference_milestone(self) -> GatewayEvent:
        """An event must name either the invoice or the milestone."""
        if not self.invoice_id and not self.milestone_id:
            raise ValueError("event must include invoice_id or milestone_id")
        if self.status is PaymentStatus.SUCCEEDED and not self.transaction_id:
            raise ValueError("succeeded event must include transaction_id")
        return self


class PaymentCoordinator:
    """Drives milestones through invoicing and payment.

    Args:
        store: Persistence for contracts, milestones, and payment records.
        gateway: External invoicing and charging.
        caller: Shared worker pool for bounded external calls.
        locks: Entity locks shared with the contract service.
        config: Gateway timeout and retry bounds.
        error_notifier: Optional sink for exhausted-retry alerts.
    """

    def __init__(
        self,
        store: DealStore,
        gateway: PaymentGateway,
        caller: BoundedCaller,
        locks: KeyedLocks | None = None,
        config: PaymentConfig | None = None,
        error_notifier: ErrorNotifier | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._caller = caller
        self._locks = locks or KeyedLocks()
        self._charges = KeyedLocks()
        self._config = config or PaymentConfig()

        def create_invoice(milestone: PaymentMilestone) -> str:
            return self._create_invoice_once(milestone)

        self._create_invoice = resilient_api_call(
            "payment_gateway_invoice",
            attempts=self._config.invoice_max_attempts,
            initial_wait=self._config.retry_initial_wait,
            jitter=self._config.retry_initial_wait,
            retry_on=(TransportFailure, GatewayAmbiguous),
            notifier=error_notifier,
        )(create_invoice)

    # ------------------------------------------------------------------
    # Invoicing
    # ------------------------------------------------------------------

    def _create_invoice_once(self, milestone: PaymentMilestone) -> str:
        try:
            return self._caller.call(
                self._gateway.create_invoice,
                milestone,
                timeout=self._config.gateway_timeout,
                name="create_invoice",
            )
        except TimeoutError as exc:
            raise TransportFailure(
                f"invoice creation timed out after {self._config.gateway_timeout}s"
            ) from exc

    def initialize_milestones(self, contract_id: str) -> list[MilestoneInitResult]:
        """Create an invoice for every ``created`` milestone of a contract.

        Each milestone succeeds or fails on its own; callers must inspect the
        per-milestone results.  Milestones already invoiced are reported as
        successful without another gateway call.

        Raises:
            NotFound: If the contract does not exist.
            PreconditionFailed: If the contract is not signed or active.
        """
        contract = self._store.get_contract(contract_id)
        if contract.status not in (ContractStatus.SIGNED, ContractStatus.ACTIVE):
            raise PreconditionFailed(
                f"contract '{contract_id}' is {contract.status}; milestones are invoiced "
                "after signature"
            )

        results: list[MilestoneInitResult] = []
        for milestone in self._store.list_milestones(contract_id):
            if milestone.status is not MilestoneStatus.CREATED:
                results.append(
                    MilestoneInitResult(
                        milestone_id=milestone.id,
                        success=True,
                        status=milestone.status,
                        invoice_id=milestone.invoice_id,
                    )
                )
                continue
            results.append(self._invoice_milestone(contract_id, milestone))

        failed = sum(1 for result in results if not result.success)
        log = logger.bind(contract_id=contract_id, milestones=len(results), failed=failed)
        if failed:
            log.warning("milestones_partially_initialized")
        else:
            log.info("milestones_initialized")
        return results

    def _invoice_milestone(
        self, contract_id: str, milestone: PaymentMilestone
    ) -> MilestoneInitResult:
        try:
            invoice_id = self._create_invoice(milestone)
        except Exception as exc:
            logger.error(
                "invoice_creation_failed",
                contract_id=contract_id,
                milestone_id=milestone.id,
                error=str(exc),
            )
            return MilestoneInitResult(
                milestone_id=milestone.id,
                success=False,
                status=milestone.status,
                error=str(exc),
            )

        with self._locks.hold(contract_lock_key(contract_id)):
            current = self._store.get_milestone(milestone.id)
            if current.status is not MilestoneStatus.CREATED:
                return MilestoneInitResult(
                    milestone_id=current.id,
                    success=True,
                    status=current.status,
                    invoice_id=current.invoice_id,
                )
            machine = MilestoneStateMachine(current.status)
            machine.trigger(MilestoneEvent.INVOICE)
            updated = self._store.update_milestone(
                current.model_copy(update={"status": machine.state, "invoice_id": invoice_id})
            )
        logger.info(
            "milestone_invoiced",
            contract_id=contract_id,
            milestone_id=updated.id,
            invoice_id=invoice_id,
        )
        return MilestoneInitResult(
            milestone_id=updated.id,
            success=True,
            status=updated.status,
            invoice_id=invoice_id,
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def process_milestone_payment(self, contract_id: str, milestone_id: str) -> PaymentRecord:
        """Charge a milestone's invoice at most once.

        A paid milestone returns its recorded payment without contacting the
        gateway.  A declined charge moves the milestone to ``failed`` and
        returns the failed record, carrying the gateway's reason verbatim; the
        milestone can be charged again later.

        Args:
            contract_id: The contract the milestone belongs to.
            milestone_id: The milestone to pay.

        Returns:
            The payment record of this attempt, or the existing success.

        Raises:
            NotFound: If the contract or milestone does not exist.
            PreconditionFailed: If the contract is not active or the milestone
                was never invoiced.
            GatewayAmbiguous: If the charge outcome is unknown.  Nothing is
                recorded and the milestone keeps its status.
        """
        with self._charges.hold(milestone_id):
            with self._locks.hold(contract_lock_key(contract_id)):
                milestone = self._load_milestone(contract_id, milestone_id)
                if milestone.status is MilestoneStatus.PAID:
                    return self._existing_payment(milestone)
                contract = self._store.get_contract(contract_id)
                if contract.status is not ContractStatus.ACTIVE:
                    raise PreconditionFailed(
                        f"contract '{contract_id}' is {contract.status}, not active"
                    )
                invoice_id = _payable_invoice(milestone)
                attempt = self._next_attempt(milestone_id)

            result = self._charge(milestone_id, invoice_id, attempt)
            return self._commit_charge(contract_id, milestone_id, invoice_id, result)

    def _load_milestone(self, contract_id: str, milestone_id: str) -> PaymentMilestone:
        self._store.get_contract(contract_id)
        milestone = self._store.get_milestone(milestone_id)
        if milestone.contract_id != contract_id:
            raise NotFound("milestone", milestone_id)
        return milestone

    def _existing_payment(self, milestone: PaymentMilestone) -> PaymentRecord:
        record = self._store.get_successful_payment(milestone.id)
        if record is None:
            raise InvariantViolation(f"milestone '{milestone.id}' is paid without a payment record")
        logger.info("milestone_already_paid", milestone_id=milestone.id, payment_id=record.id)
        metrics.MILESTONE_PAYMENTS.labels(outcome="duplicate").inc()
        return record

    def _next_attempt(self, milestone_id: str) -> int:
        """Number the next charge of a milestone; declined charges each used one."""
        failed = [
            record
            for record in self._store.list_payments(milestone_id=milestone_id)
            if record.status is PaymentStatus.FAILED
        ]
        return len(failed) + 1

    def _charge(self, milestone_id: str, invoice_id: str, attempt: int) -> ChargeResult:
        try:
            return self._caller.call(
                self._gateway.charge,
                invoice_id,
                attempt,
                timeout=self._config.gateway_timeout,
                name="charge_invoice",
            )
        except GatewayAmbiguous as exc:
            error = GatewayAmbiguous(str(exc), milestone_id=milestone_id)
            cause: BaseException = exc
        except TimeoutError as exc:
            error = GatewayAmbiguous(
                f"charge timed out after {self._config.gateway_timeout}s",
                milestone_id=milestone_id,
            )
            cause = exc
        except Exception as exc:
            error = GatewayAmbiguous(f"charge raised {exc!r}", milestone_id=milestone_id)
            cause = exc

        metrics.MILESTONE_PAYMENTS.labels(outcome="ambiguous").inc()
        logger.error(
            "charge_outcome_unknown",
            milestone_id=milestone_id,
            invoice_id=invoice_id,
            error=str(error),
        )
        raise error from cause

    def _commit_charge(
        self,
        contract_id: str,
        milestone_id: str,
        invoice_id: str,
        result: ChargeResult,
    ) -> PaymentRecord:
        """Record a charge outcome and move the milestone and, if settled, the contract."""
        with self._locks.hold(contract_lock_key(contract_id)):
            milestone = self._load_milestone(contract_id, milestone_id)
            if milestone.status is MilestoneStatus.PAID:
                return self._existing_payment(milestone)

            machine = MilestoneStateMachine(milestone.status)
            if result.success:
                machine.trigger(MilestoneEvent.PAY)
                record = PaymentRecord(
                    contract_id=contract_id,
                    milestone_id=milestone_id,
                    invoice_id=invoice_id,
                    amount=milestone.amount,
                    status=PaymentStatus.SUCCEEDED,
                    transaction_id=result.transaction_id,
                )
                changes = {"status": machine.state, "paid_at": record.created_at}
            else:
                machine.trigger(MilestoneEvent.FAIL)
                record = PaymentRecord(
                    contract_id=contract_id,
                    milestone_id=milestone_id,
                    invoice_id=invoice_id,
                    amount=milestone.amount,
                    status=PaymentStatus.FAILED,
                    failure_reason=result.reason,
                )
                changes = {"status": machine.state, "last_failure_reason": result.reason}

            with self._store.transaction():
                self._store.insert_payment(record)
                self._store.update_milestone(milestone.model_copy(update=changes))
                ledger = summarize_ledger(contract_id, self._store.list_milestones(contract_id))
                if ledger.status is LedgerStatus.COMPLETED:
                    self._complete_contract(contract_id)

        outcome = "succeeded" if result.success else "failed"
        metrics.MILESTONE_PAYMENTS.labels(outcome=outcome).inc()
        logger.info(
            "milestone_payment_recorded",
            contract_id=contract_id,
            milestone_id=milestone_id,
            outcome=outcome,
            transaction_id=record.transaction_id,
            failure_reason=record.failure_reason,
            ledger_status=ledger.status,
            remaining=str(ledger.remaining),
        )
        return record

    def _complete_contract(self, contract_id: str) -> None:
        contract = self._store.get_contract(contract_id)
        machine = ContractStateMachine(contract.status)
        if not machine.can_trigger(ContractEvent.COMPLETE):
            return
        machine.trigger(ContractEvent.COMPLETE)
        self._store.update_contract(contract.model_copy(update={"status": machine.state}))
        logger.info("contract_completed", contract_id=contract_id)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_gateway_webhook(self, event: GatewayEvent) -> PaymentRecord:
        """Apply an asynchronous gateway confirmation.

        Events for a paid milestone return the recorded payment.  Events
        carrying an outcome are recorded without charging again; events
        without one trigger a regular charge.

        Raises:
            NotFound: If no milestone matches the event.
        """
        milestone = self._resolve_event_milestone(event)
        contract_id = milestone.contract_id
        log = logger.bind(contract_id=contract_id, milestone_id=milestone.id)

        if event.status is None:
            log.info("gateway_webhook_settle_requested")
            return self.process_milestone_payment(contract_id, milestone.id)

        with self._charges.hold(milestone.id):
            with self._locks.hold(contract_lock_key(contract_id)):
                current = self._load_milestone(contract_id, milestone.id)
                if current.status is MilestoneStatus.PAID:
                    return self._existing_payment(current)
                invoice_id = _payable_invoice(current)
            log.info("gateway_webhook_outcome", status=event.status)
            result = ChargeResult(
                success=event.status is PaymentStatus.SUCCEEDED,
                transaction_id=event.transaction_id,
                reason=event.reason,
            )
            return self._commit_charge(contract_id, current.id, invoice_id, result)

    def _resolve_event_milestone(self, event: GatewayEvent) -> PaymentMilestone:
        if event.milestone_id:
            return self._store.get_milestone(event.milestone_id)
        invoice_id = event.invoice_id or ""
        milestone = self._store.find_milestone_by_invoice(invoice_id)
        if milestone is None:
            raise NotFound("invoice", invoice_id)
        return milestone

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_ledger(self, contract_id: str) -> LedgerSummary:
        """Return the payment summary of a contract."""
        self._store.get_contract(contract_id)
        return summarize_ledger(contract_id, self._store.list_milestones(contract_id))

    def list_milestones(self, contract_id: str) -> list[PaymentMilestone]:
        """Return a contract's milestones in schedule order."""
        self._store.get_contract(contract_id)
        return self._store.list_milestones(contract_id)

    def list_payments(self, contract_id: str) -> list[PaymentRecord]:
        """Return every charge attempt of a contract, oldest first."""
        self._store.get_contract(contract_id)
        return self._store.list_payments(contract_id=contract_id)

    def payment_report(self) -> PaymentReport:
        """Aggregate payment totals across all contracts."""
        ledgers = []
        milestones: list[PaymentMilestone] = []
        for contract in self._store.list_contracts():
            contract_milestones = self._store.list_milestones(contract.id)
            milestones.extend(contract_milestones)
            ledgers.append(summarize_ledger(contract.id, contract_milestones))
        return build_payment_report(ledgers, milestones, self._store.list_payments())
