"""Resilience infrastructure: retries, bounded timeouts, and per-entity locks."""

from dealflow.resilience.locks import KeyedLocks
from dealflow.resilience.retry import ErrorNotifier, resilient_api_call
from dealflow.resilience.timeouts import BoundedCaller

__all__ = [
    "BoundedCaller",
    "ErrorNotifier",
    "KeyedLocks",
    "resilient_api_call",
]
