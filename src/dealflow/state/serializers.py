"""Conversion helpers between domain models and SQLite rows.

Decimal values are stored as strings so no precision is lost; timestamps are
stored as ISO 8601 strings with microseconds so lexical order matches
chronological order.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from dealflow.domain.models import (
    BudgetConstraints,
    Classification,
    CommunicationRecord,
    Contract,
    ContractTerms,
    Deal,
    EscalationPayload,
    EscalationRequest,
    PaymentMilestone,
    PaymentRecord,
    Strategy,
)


def dump_time(value: datetime | None) -> str | None:
    """Serialize an aware datetime to ISO 8601 with microseconds."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def load_time(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string produced by :func:`dump_time`."""
    if value is None:
        return None
    return datetime.fromisoformat(value)


def dump_model(model: BaseModel | None) -> str | None:
    """JSON-encode an optional pydantic model (Decimals become strings)."""
    if model is None:
        return None
    return model.model_dump_json()


def _load(model_cls: type[Any], raw: str | None) -> Any:
    if raw is None:
        return None
    return model_cls.model_validate_json(raw)


def deal_from_row(row: sqlite3.Row) -> Deal:
    """Rebuild a Deal from a ``deal`` row."""
    return Deal(
        id=row["id"],
        campaign_id=row["campaign_id"],
        creator_id=row["creator_id"],
        stage=row["stage"],
        budget=BudgetConstraints.model_validate_json(row["budget_json"]),
        latest_classification=_load(Classification, row["classification_json"]),
        strategy=_load(Strategy, row["strategy_json"]),
        version=row["version"],
        created_at=load_time(row["created_at"]),
        updated_at=load_time(row["updated_at"]),
    )


def communication_from_row(row: sqlite3.Row) -> CommunicationRecord:
    """Rebuild a CommunicationRecord from a ``communication`` row."""
    return CommunicationRecord(
        id=row["id"],
        deal_id=row["deal_id"],
        direction=row["direction"],
        raw_content=row["raw_content"],
        classification=_load(Classification, row["classification_json"]),
        metadata=json.loads(row["metadata_json"]),
        delivery_status=row["delivery_status"],
        delivery_id=row["delivery_id"],
        failure_reason=row["failure_reason"],
        timestamp=load_time(row["timestamp"]),
    )


def escalation_from_row(row: sqlite3.Row) -> EscalationRequest:
    """Rebuild an EscalationRequest from an ``escalation`` row."""
    return EscalationRequest(
        id=row["id"],
        deal_id=row["deal_id"],
        reason=row["reason"],
        payload=EscalationPayload.model_validate_json(row["payload_json"]),
        status=row["status"],
        note=row["note"],
        resolved_action=row["resolved_action"],
        created_at=load_time(row["created_at"]),
        resolved_at=load_time(row["resolved_at"]),
    )


def contract_from_row(row: sqlite3.Row) -> Contract:
    """Rebuild a Contract from a ``contract`` row."""
    return Contract(
        id=row["id"],
        deal_id=row["deal_id"],
        terms=ContractTerms.model_validate_json(row["terms_json"]),
        status=row["status"],
        document_url=row["document_url"],
        terms_source=row["terms_source"],
        created_at=load_time(row["created_at"]),
        updated_at=load_time(row["updated_at"]),
    )


def milestone_from_row(row: sqlite3.Row) -> PaymentMilestone:
    """Rebuild a PaymentMilestone from a ``milestone`` row."""
    return PaymentMilestone(
        id=row["id"],
        contract_id=row["contract_id"],
        sequence=row["sequence"],
        description=row["description"],
        amount=Decimal(row["amount"]),
        due_date=row["due_date"],
        status=row["status"],
        invoice_id=row["invoice_id"],
        paid_at=load_time(row["paid_at"]),
        last_failure_reason=row["last_failure_reason"],
    )


def payment_from_row(row: sqlite3.Row) -> PaymentRecord:
    """Rebuild a PaymentRecord from a ``payment`` row."""
    return PaymentRecord(
        id=row["id"],
        contract_id=row["contract_id"],
        milestone_id=row["milestone_id"],
        invoice_id=row["invoice_id"],
        amount=Decimal(row["amount"]),
        status=row["status"],
        transaction_id=row["transaction_id"],
        failure_reason=row["failure_reason"],
        created_at=load_time(row["created_at"]),
    )
