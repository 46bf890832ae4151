"""Result models returned by the negotiation engine."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from dealflow.domain.models import (
    Classification,
    CommunicationRecord,
    Deal,
    EscalationRequest,
    Strategy,
)


class ReplyOutcome(BaseModel):
    """Everything one processed reply produced."""

    model_config = ConfigDict(frozen=True)

    deal: Deal
    classification: Classification
    strategy: Strategy
    inbound: CommunicationRecord
    escalation: EscalationRequest | None = None
    outbound: CommunicationRecord | None = None

    @property
    def used_fallback(self) -> bool:
        """True if the rule-based classifier produced the classification."""
        return self.classification.source == "fallback"


class ResolutionOutcome(BaseModel):
    """Result of applying a reviewer decision to a deal."""

    model_config = ConfigDict(frozen=True)

    escalation: EscalationRequest
    deal: Deal
    outbound: CommunicationRecord | None = None


class NegotiationSummary(BaseModel):
    """Aggregate view over the deals of one campaign, or of all campaigns."""

    model_config = ConfigDict(frozen=True)

    total: int
    by_stage: dict[str, int]
    sentiment_breakdown: dict[str, int]
    pending_escalations: int
    average_proposed_amount: Decimal | None = None
