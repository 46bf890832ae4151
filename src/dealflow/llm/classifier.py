"""Reply classification and term extraction using Claude structured outputs."""

from __future__ import annotations

from datetime import date
from typing import Any

from anthropic import Anthropic

from dealflow.contracts.terms import agreed_amount
from dealflow.domain.errors import ClassificationUnavailable, ExtractionUnavailable
from dealflow.domain.models import CommunicationRecord, Deal
from dealflow.llm.client import CLASSIFICATION_MODEL, EXTRACTION_MODEL, HISTORY_WINDOW
from dealflow.llm.models import ExtractedTerms, ReplyAnalysis
from dealflow.llm.prompts import (
    REPLY_CLASSIFICATION_SYSTEM_PROMPT,
    TERMS_EXTRACTION_SYSTEM_PROMPT,
)


def format_history(history: list[CommunicationRecord], window: int = HISTORY_WINDOW) -> str:
    """Render the most recent *window* messages as ``[in]``/``[out]`` lines."""
    recent = history[-window:] if window > 0 else history
    if not recent:
        return "(no previous messages)"
    return "\n\n".join(f"[{record.direction.value}] {record.raw_content}" for record in recent)


class AnthropicClassifier:
    """``Classifier`` backed by Claude.

    Returns a plain mapping; validation into ``Classification`` happens in the
    engine so every classifier goes through the same checks.
    """

    def __init__(self, client: Anthropic, *, model: str = CLASSIFICATION_MODEL) -> None:
        self._client = client
        self._model = model

    def classify(self, history: list[CommunicationRecord], latest_reply: str) -> dict[str, Any]:
        """Classify *latest_reply* with the conversation as context.

        Raises:
            ClassificationUnavailable: If the API returned no parsed output.
        """
        response = self._client.messages.parse(
            model=self._model,
            max_tokens=1024,
            system=REPLY_CLASSIFICATION_SYSTEM_PROMPT.format(
                conversation_history=format_history(history),
            ),
            messages=[
                {
                    "role": "user",
                    "content": f"Classify this creator reply:\n\n{latest_reply}",
                },
            ],
            output_format=ReplyAnalysis,
        )
        parsed = response.parsed_output
        if parsed is None:
            raise ClassificationUnavailable("Anthropic structured output returned None")
        return parsed.model_dump()


class AnthropicTermsExtractor:
    """``TermsExtractor`` backed by Claude."""

    def __init__(self, client: Anthropic, *, model: str = EXTRACTION_MODEL) -> None:
        self._client = client
        self._model = model

    def extract_terms(self, deal: Deal, history: list[CommunicationRecord]) -> dict[str, Any]:
        """Extract contract terms for an agreed deal.

        Raises:
            ExtractionUnavailable: If the API returned no parsed output.
        """
        response = self._client.messages.parse(
            model=self._model,
            max_tokens=2048,
            system=TERMS_EXTRACTION_SYSTEM_PROMPT.format(
                max_budget=deal.budget.max_budget,
                currency=deal.budget.currency,
                agreed_amount=agreed_amount(deal),
                today=date.today().isoformat(),
                conversation_history=format_history(history, window=0),
            ),
            messages=[
                {"role": "user", "content": "Extract the contract terms for this agreement."},
            ],
            output_format=ExtractedTerms,
        )
        parsed = response.parsed_output
        if parsed is None:
            raise ExtractionUnavailable("Anthropic structured output returned None")
        return parsed.model_dump()
