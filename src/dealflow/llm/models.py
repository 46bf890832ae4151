"""Pydantic models defining structured output contracts for LLM calls.

Amounts are strings so the JSON schema stays simple and no float rounding
happens on the model side; the engine converts them to ``Decimal`` when it
validates the result.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ReplyAnalysis(BaseModel):
    """Structured reading of a creator reply."""

    sentiment: str = Field(description="One of: positive, neutral, negative")
    proposed_amount: str | None = Field(
        default=None,
        description="Fee proposed by the creator as a numeric string, or null",
    )
    timeline: str | None = Field(default=None, description="Delivery timeline mentioned, if any")
    open_to_negotiation: bool = Field(description="Whether the creator signals flexibility")
    negotiation_potential: str = Field(description="One of: low, medium, high")
    risk_level: str = Field(description="One of: low, medium, high")


class ExtractedDeliverable(BaseModel):
    """A deliverable named in the negotiation."""

    description: str
    quantity: int = 1


class ExtractedMilestone(BaseModel):
    """One payment step of the schedule."""

    description: str
    amount: str = Field(description="Numeric string, e.g. '750.00'")
    due_date: str = Field(description="ISO date or a short trigger such as 'Upon signature'")


class ExtractedDeadlines(BaseModel):
    """Key dates of the collaboration."""

    content_creation: str
    campaign_launch: str
    final_reporting: str


class ExtractedTerms(BaseModel):
    """Contract terms as extracted from the conversation."""

    deliverables: list[ExtractedDeliverable]
    payment_amount: str
    milestones: list[ExtractedMilestone]
    deadlines: ExtractedDeadlines
    usage_rights: str = "Perpetual license for marketing purposes"
    revision_rights: int = 2
    exclusivity_period: str = "30 days"
    special_terms: list[str] = Field(default_factory=list)
