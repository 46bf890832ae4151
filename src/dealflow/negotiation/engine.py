"""Negotiation engine: drives a Deal from outreach to an agreed stage.

Each inbound reply is processed as one evaluation per deal at a time:

1. Read the deal and its conversation history under the deal lock.
2. Classify the reply outside the lock, with a bounded timeout.  Any
   failure routes to the rule-based fallback.
3. Decide the strategy (pure), then re-acquire the lock, re-read the deal,
   and commit the inbound record, the new stage and strategy, and any
   escalation in a single transaction.
4. Send the auto-response, if any, outside the lock with bounded retries.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from dealflow.adapters.protocols import Classifier, MessageTransport
from dealflow.domain.errors import (
    ClassificationUnavailable,
    InvalidTransitionError,
    NotFound,
    PreconditionFailed,
    TransportFailure,
)
from dealflow.domain.models import (
    BudgetConstraints,
    Classification,
    CommunicationRecord,
    Deal,
    EscalationPayload,
    EscalationRequest,
    Strategy,
)
from dealflow.domain.types import (
    DealStage,
    DeliveryStatus,
    Direction,
    EscalationStatus,
    StrategyAction,
)
from dealflow.negotiation.classification import parse_classification
from dealflow.negotiation.escalation import (
    EscalationNotifier,
    EscalationQueue,
    deal_lock_key,
    parse_decision,
    resolution_action,
)
from dealflow.negotiation.fallback import fallback_classification
from dealflow.negotiation.models import NegotiationSummary, ReplyOutcome, ResolutionOutcome
from dealflow.negotiation.policy import PolicySettings, decide_strategy, strategy_for_action
from dealflow.negotiation.responses import render_response
from dealflow.observability import metrics
from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.retry import ErrorNotifier, resilient_api_call
from dealflow.resilience.timeouts import BoundedCaller
from dealflow.state.store import DealStore
from dealflow.state_machine.machine import DealStateMachine
from dealflow.state_machine.transitions import ACTION_EVENTS, DealEvent

logger = structlog.get_logger()

REPLY_EVENT = "process_reply"


@dataclass(frozen=True)
class EngineConfig:
    """Timeouts and retry bounds for the engine's external calls."""

    policy: PolicySettings = field(default_factory=PolicySettings)
    classification_timeout: float = 20.0
    transport_timeout: float = 15.0
    transport_max_attempts: int = 3
    retry_initial_wait: float = 1.0


class NegotiationEngine:
    """Processes replies, applies strategies, and hands off to humans.

    Args:
        store: Persistence for deals, communications, and escalations.
        classifier: External reply classifier.  ``None`` always uses the
            rule-based fallback.
        transport: Outbound message delivery.
        caller: Shared worker pool for bounded external calls.
        locks: Entity locks shared with the contract and payment services.
        config: Timeouts, retries, and policy thresholds.
        escalation_notifier: Optional sink that shows new escalations to humans.
        error_notifier: Optional sink for exhausted-retry alerts.
    """

    def __init__(
        self,
        store: DealStore,
        classifier: Classifier | None,
        transport: MessageTransport,
        caller: BoundedCaller,
        locks: KeyedLocks | None = None,
        config: EngineConfig | None = None,
        escalation_notifier: EscalationNotifier | None = None,
        error_notifier: ErrorNotifier | None = None,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._transport = transport
        self._caller = caller
        self._locks = locks or KeyedLocks()
        self._evaluations = KeyedLocks()
        self._config = config or EngineConfig()
        self._escalation_notifier = escalation_notifier
        self.escalations = EscalationQueue(store, self._locks)

        def send(deal_id: str, content: str) -> str:
            return self._send_once(deal_id, content)

        self._send_with_retry = resilient_api_call(
            "messaging_transport",
            attempts=self._config.transport_max_attempts,
            initial_wait=self._config.retry_initial_wait,
            jitter=self._config.retry_initial_wait,
            retry_on=(TransportFailure,),
            notifier=error_notifier,
        )(send)

    # ------------------------------------------------------------------
    # Deal lifecycle
    # ------------------------------------------------------------------

    def open_deal(
        self,
        campaign_id: str,
        creator_id: str,
        budget: BudgetConstraints,
        outreach_text: str | None = None,
    ) -> Deal:
        """Create a deal in ``initiated`` and optionally send the outreach message."""
        deal = self._store.insert_deal(
            Deal(campaign_id=campaign_id, creator_id=creator_id, budget=budget)
        )
        logger.info(
            "deal_opened",
            deal_id=deal.id,
            campaign_id=campaign_id,
            creator_id=creator_id,
            max_budget=str(budget.max_budget),
        )
        if outreach_text:
            self._deliver(deal.id, outreach_text, {"kind": "outreach"})
        return deal

    def get_deal(self, deal_id: str) -> Deal:
        """Load a deal by id."""
        return self._store.get_deal(deal_id)

    def list_deals(
        self, *, campaign_id: str | None = None, stage: str | None = None
    ) -> list[Deal]:
        """List deals, optionally filtered by campaign and stage."""
        return self._store.list_deals(campaign_id=campaign_id, stage=stage)

    def list_communications(self, deal_id: str) -> list[CommunicationRecord]:
        """Return the deal's conversation history in receipt order."""
        self._store.get_deal(deal_id)
        return self._store.list_communications(deal_id)

    def fail_deal(self, deal_id: str, reason: str) -> Deal:
        """Move a deal to ``error`` after an unrecoverable processing failure."""
        with self._locks.hold(deal_lock_key(deal_id)):
            deal = self._store.get_deal(deal_id)
            machine = DealStateMachine(deal.stage)
            machine.trigger(DealEvent.FAIL)
            deal = self._store.update_deal(deal.model_copy(update={"stage": machine.state}))
        logger.error("deal_failed", deal_id=deal_id, reason=reason)
        return deal

    # ------------------------------------------------------------------
    # Reply processing
    # ------------------------------------------------------------------

    def process_reply(
        self,
        deal_id: str,
        raw_text: str,
        metadata: Mapping[str, str] | None = None,
    ) -> ReplyOutcome:
        """Classify an inbound reply and apply the resulting strategy.

        Exactly one inbound ``CommunicationRecord`` is written, in the same
        transaction as the stage change and any escalation.  A failing
        commit leaves no trace.

        Args:
            deal_id: The deal the reply belongs to.
            raw_text: The creator's reply, verbatim.
            metadata: Transport metadata stored with the record.

        Returns:
            The updated deal, classification, strategy, and written records.

        Raises:
            NotFound: If the deal does not exist.
            InvalidTransitionError: If the deal is in a terminal stage.
            InvariantViolation: If a storage invariant rejected the commit.
        """
        log = logger.bind(deal_id=deal_id)
        with self._evaluations.hold(deal_id):
            with self._locks.hold(deal_lock_key(deal_id)):
                deal = self._store.get_deal(deal_id)
                self._ensure_open(deal)
                history = self._store.list_communications(deal_id)

            classification = self._classify(deal, history, raw_text)
            strategy = decide_strategy(classification, deal.budget, self._config.policy)

            with self._locks.hold(deal_lock_key(deal_id)):
                current = self._store.get_deal(deal_id)
                if current.version != deal.version:
                    log.info("deal_changed_during_classification", stage=current.stage)
                    self._ensure_open(current)

                pending = self._store.get_pending_escalation(deal_id)
                event, reason = self._select_event(current, strategy, pending)
                machine = DealStateMachine(current.stage)
                machine.trigger(event)

                inbound = CommunicationRecord(
                    deal_id=deal_id,
                    direction=Direction.IN,
                    raw_content=raw_text,
                    classification=classification,
                    metadata=dict(metadata or {}),
                )
                escalation: EscalationRequest | None = None
                created = False
                with self._store.transaction():
                    self._store.append_communication(inbound)
                    updated = self._store.update_deal(
                        current.model_copy(
                            update={
                                "stage": machine.state,
                                "latest_classification": classification,
                                "strategy": strategy,
                            }
                        )
                    )
                    if event is DealEvent.ESCALATE:
                        escalation, created = self.escalations.raise_request(
                            deal_id,
                            reason,
                            EscalationPayload(
                                classification=classification,
                                strategy=strategy,
                                budget=current.budget,
                                reply_text=raw_text,
                                stage_before=current.stage,
                            ),
                        )

            metrics.REPLIES_PROCESSED.labels(action=strategy.action.value).inc()
            log.info(
                "reply_processed",
                action=strategy.action,
                stage_before=current.stage,
                stage=updated.stage,
                override_applied=strategy.override_applied,
                classification_source=classification.source,
            )

            if created and escalation is not None:
                metrics.ESCALATIONS_RAISED.inc()
                self._notify_escalation(escalation, updated)

            outbound = None
            if event is not DealEvent.ESCALATE and strategy.auto_respond:
                content = render_response(
                    strategy.action,
                    updated.budget,
                    self._config.policy.counter_offer_floor_ratio,
                )
                if content is not None:
                    outbound = self._deliver(
                        deal_id, content, {"kind": "auto_response", "action": strategy.action}
                    )

        return ReplyOutcome(
            deal=updated,
            classification=classification,
            strategy=strategy,
            inbound=inbound,
            escalation=escalation,
            outbound=outbound,
        )

    def _ensure_open(self, deal: Deal) -> None:
        if deal.stage in DealStateMachine.terminal_states:
            raise InvalidTransitionError("deal", deal.stage.value, REPLY_EVENT)

    def _select_event(
        self,
        deal: Deal,
        strategy: Strategy,
        pending: EscalationRequest | None,
    ) -> tuple[DealEvent, str]:
        """Pick the stage event for *strategy* and the escalation reason, if any."""
        if pending is not None:
            return DealEvent.ESCALATE, pending.reason
        if strategy.requires_human_approval:
            if strategy.override_applied:
                return DealEvent.ESCALATE, (
                    f"Proposed amount exceeds {self._config.policy.human_approval_multiplier}x "
                    f"the maximum budget ({strategy.action})"
                )
            return DealEvent.ESCALATE, f"Strategy requires human approval: {strategy.action}"
        event = ACTION_EVENTS[strategy.action]
        if deal.stage is DealStage.READY_FOR_CONTRACT and event is DealEvent.NEGOTIATE:
            return DealEvent.ESCALATE, "Reply reopens negotiation on an agreed deal"
        return event, ""

    def _classify(
        self, deal: Deal, history: list[CommunicationRecord], raw_text: str
    ) -> Classification:
        """Classify with the external service, falling back to rules on any failure."""
        reason = None
        if self._classifier is None:
            reason = "no_classifier"
        else:
            try:
                raw = self._caller.call(
                    self._classifier.classify,
                    history,
                    raw_text,
                    timeout=self._config.classification_timeout,
                    name="classify_reply",
                )
                return parse_classification(raw)
            except TimeoutError:
                reason = "timeout"
            except ClassificationUnavailable as exc:
                reason = "unavailable"
                logger.warning("classification_unavailable", deal_id=deal.id, error=str(exc))
            except Exception as exc:
                reason = "error"
                logger.warning("classification_failed", deal_id=deal.id, error=str(exc))

        metrics.CLASSIFICATION_FALLBACKS.labels(reason=reason).inc()
        logger.info("classification_fallback_used", deal_id=deal.id, reason=reason)
        return fallback_classification(
            raw_text, deal.budget, self._config.policy.fallback_high_risk_multiplier
        )

    # ------------------------------------------------------------------
    # Human decisions
    # ------------------------------------------------------------------

    def resolve_escalation(
        self,
        request_id: str,
        decision: str | EscalationStatus,
        note: str | None = None,
        action: StrategyAction | None = None,
    ) -> ResolutionOutcome:
        """Apply a reviewer decision as an override of the computed strategy.

        The resulting action moves the deal and drives the next outbound
        message, exactly as if the classifier had produced it.

        Raises:
            NotFound: If there is no pending request with this id.
            PreconditionFailed: If the decision or action is not allowed.
            InvalidTransitionError: If the deal can no longer take the action.
        """
        status = parse_decision(decision)
        deal_id = self.escalations.get(request_id).deal_id

        with self._evaluations.hold(deal_id):
            with self._locks.hold(deal_lock_key(deal_id)):
                request = self.escalations.get(request_id)
                if request.status is not EscalationStatus.PENDING:
                    raise NotFound("pending escalation", request_id)
                final_action = resolution_action(request, status, action)
                strategy = strategy_for_action(final_action)

                deal = self._store.get_deal(deal_id)
                machine = DealStateMachine(deal.stage)
                machine.trigger(ACTION_EVENTS[final_action])

                with self._store.transaction():
                    resolved = self.escalations.resolve(request_id, status, note, final_action)
                    updated = self._store.update_deal(
                        deal.model_copy(update={"stage": machine.state, "strategy": strategy})
                    )

            logger.info(
                "escalation_decision_applied",
                deal_id=deal_id,
                escalation_id=request_id,
                action=final_action,
                stage=updated.stage,
            )

            outbound = None
            content = render_response(
                final_action, updated.budget, self._config.policy.counter_offer_floor_ratio
            )
            if content is not None:
                outbound = self._deliver(
                    deal_id,
                    content,
                    {"kind": "human_decision", "action": final_action, "escalation_id": request_id},
                )

        return ResolutionOutcome(escalation=resolved, deal=updated, outbound=outbound)

    def list_pending_escalations(self, deal_id: str | None = None) -> list[EscalationRequest]:
        """Return pending review requests, oldest first."""
        return self.escalations.list_pending(deal_id)

    def _notify_escalation(self, request: EscalationRequest, deal: Deal) -> None:
        if self._escalation_notifier is None:
            return
        try:
            self._escalation_notifier.post_escalation(request, deal)
        except Exception:
            logger.exception("escalation_notification_failed", escalation_id=request.id)

    # ------------------------------------------------------------------
    # Outbound delivery
    # ------------------------------------------------------------------

    def _send_once(self, deal_id: str, content: str) -> str:
        try:
            return self._caller.call(
                self._transport.send_message,
                deal_id,
                content,
                timeout=self._config.transport_timeout,
                name="send_message",
            )
        except TransportFailure:
            raise
        except TimeoutError as exc:
            raise TransportFailure(
                f"send timed out after {self._config.transport_timeout}s"
            ) from exc
        except Exception as exc:
            raise TransportFailure(str(exc)) from exc

    def _deliver(
        self, deal_id: str, content: str, metadata: Mapping[str, Any]
    ) -> CommunicationRecord:
        """Send *content* and record the outbound attempt, delivered or not."""
        meta = {key: str(value) for key, value in metadata.items()}
        try:
            delivery_id = self._send_with_retry(deal_id, content)
        except TransportFailure as exc:
            record = CommunicationRecord(
                deal_id=deal_id,
                direction=Direction.OUT,
                raw_content=content,
                metadata=meta,
                delivery_status=DeliveryStatus.FAILED,
                failure_reason=str(exc),
            )
            metrics.OUTBOUND_MESSAGES.labels(status=DeliveryStatus.FAILED.value).inc()
            logger.error("outbound_delivery_failed", deal_id=deal_id, error=str(exc))
        else:
            record = CommunicationRecord(
                deal_id=deal_id,
                direction=Direction.OUT,
                raw_content=content,
                metadata=meta,
                delivery_status=DeliveryStatus.SENT,
                delivery_id=delivery_id,
            )
            metrics.OUTBOUND_MESSAGES.labels(status=DeliveryStatus.SENT.value).inc()
            logger.info("outbound_delivered", deal_id=deal_id, delivery_id=delivery_id)
        return self._store.append_communication(record)

    def retry_failed_message(self, deal_id: str) -> CommunicationRecord:
        """Resend the deal's most recent outbound message if its delivery failed.

        Returns:
            The new outbound record.

        Raises:
            NotFound: If the deal does not exist.
            PreconditionFailed: If the latest outbound message was delivered.
        """
        with self._evaluations.hold(deal_id):
            self._store.get_deal(deal_id)
            outbound = [
                record
                for record in self._store.list_communications(deal_id)
                if record.direction is Direction.OUT
            ]
            if not outbound or outbound[-1].delivery_status is not DeliveryStatus.FAILED:
                raise PreconditionFailed(f"deal '{deal_id}' has no failed outbound message")
            failed = outbound[-1]
            metadata = {**failed.metadata, "retry_of": failed.id}
            return self._deliver(deal_id, failed.raw_content, metadata)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def negotiation_summary(self, campaign_id: str | None = None) -> NegotiationSummary:
        """Aggregate stages, sentiment, and proposed amounts across deals."""
        deals = self._store.list_deals(campaign_id=campaign_id)
        by_stage = Counter(deal.stage.value for deal in deals)
        sentiments: Counter[str] = Counter({"positive": 0, "neutral": 0, "negative": 0})
        amounts: list[Decimal] = []
        for deal in deals:
            classification = deal.latest_classification
            if classification is None:
                continue
            sentiments[classification.sentiment.value] += 1
            if classification.proposed_amount is not None:
                amounts.append(classification.proposed_amount)

        deal_ids = {deal.id for deal in deals}
        pending = [
            request
            for request in self.escalations.list_pending()
            if request.deal_id in deal_ids
        ]
        average = (
            (sum(amounts, Decimal("0")) / len(amounts)).quantize(Decimal("0.01"))
            if amounts
            else None
        )
        return NegotiationSummary(
            total=len(deals),
            by_stage={stage.value: by_stage.get(stage.value, 0) for stage in DealStage},
            sentiment_breakdown=dict(sentiments),
            pending_escalations=len(pending),
            average_proposed_amount=average,
        )
