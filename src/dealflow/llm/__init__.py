"""LLM integration package.

Provides the Anthropic client factory, structured output models, prompt
templates, and the Claude-backed classifier and term extractor.
"""

from dealflow.llm.classifier import AnthropicClassifier, AnthropicTermsExtractor, format_history
from dealflow.llm.client import (
    CLASSIFICATION_MODEL,
    EXTRACTION_MODEL,
    HISTORY_WINDOW,
    get_anthropic_client,
)
from dealflow.llm.models import ExtractedTerms, ReplyAnalysis

__all__ = [
    "CLASSIFICATION_MODEL",
    "EXTRACTION_MODEL",
    "HISTORY_WINDOW",
    "AnthropicClassifier",
    "AnthropicTermsExtractor",
    "ExtractedTerms",
    "ReplyAnalysis",
    "format_history",
    "get_anthropic_client",
]
