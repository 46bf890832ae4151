"""Payments: milestone invoicing, at-most-once charging, and ledger aggregation."""

from dealflow.payments.coordinator import (
    GatewayEvent,
    PaymentConfig,
    PaymentCoordinator,
    contract_lock_key,
)
from dealflow.payments.ledger import (
    MilestoneAnalytics,
    PaymentReport,
    build_payment_report,
    ledger_status,
    summarize_ledger,
)

__all__ = [
    "GatewayEvent",
    "MilestoneAnalytics",
    "PaymentConfig",
    "PaymentCoordinator",
    "PaymentReport",
    "build_payment_report",
    "contract_lock_key",
    "ledger_status",
    "summarize_ledger",
]
