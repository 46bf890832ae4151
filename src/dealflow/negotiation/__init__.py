"""Negotiation: strategy policy, rule-based fallback, escalation queue, and engine."""

from dealflow.negotiation.classification import parse_classification
from dealflow.negotiation.engine import EngineConfig, NegotiationEngine
from dealflow.negotiation.escalation import EscalationNotifier, EscalationQueue, deal_lock_key
from dealflow.negotiation.fallback import (
    ReplySignals,
    extract_reply_signals,
    fallback_classification,
)
from dealflow.negotiation.models import NegotiationSummary, ReplyOutcome, ResolutionOutcome
from dealflow.negotiation.policy import PolicySettings, decide_strategy, strategy_for_action
from dealflow.negotiation.responses import counter_offer_band, render_response

__all__ = [
    "EngineConfig",
    "EscalationNotifier",
    "EscalationQueue",
    "NegotiationEngine",
    "NegotiationSummary",
    "PolicySettings",
    "ReplyOutcome",
    "ReplySignals",
    "ResolutionOutcome",
    "counter_offer_band",
    "deal_lock_key",
    "decide_strategy",
    "extract_reply_signals",
    "fallback_classification",
    "parse_classification",
    "render_response",
    "strategy_for_action",
]
