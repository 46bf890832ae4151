"""Webhook endpoints for the messaging transport and the payment gateway.

Both endpoints verify an HMAC-SHA256 signature against the raw request body
bytes BEFORE JSON parsing, then hand the payload to the services wired at
startup.  Processing runs in a worker thread because the engine blocks on
external calls.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from dealflow.payments.coordinator import GatewayEvent
from dealflow.workflows import FlowResult, handle_inbound_message

logger = structlog.get_logger()

router = APIRouter()

SIGNATURE_HEADER = "X-Signature"


class InboundMessage(BaseModel):
    """A creator reply delivered by the messaging transport."""

    deal_id: str
    content: str = Field(min_length=1)
    metadata: dict[str, str] = Field(default_factory=dict)


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Verify HMAC-SHA256 signature of a webhook payload.

    Must be called with the raw body bytes, before any JSON parsing, so the
    digest covers exactly what the sender signed.

    Args:
        body: The raw request body bytes.
        signature: The HMAC-SHA256 hex digest from the X-Signature header.
        secret: The shared signing secret.

    Returns:
        True if the computed signature matches the provided one.
    """
    computed = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature)


async def _verified_payload(request: Request, secret: str, source: str) -> Any:
    """Return the parsed JSON body after checking its signature.

    Raises:
        HTTPException: 500 if no secret is configured, 401 if the signature
            is missing or invalid, 400 if the body is not JSON.
    """
    if not secret:
        logger.error("webhook_secret_not_configured", source=source)
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    raw_body = await request.body()

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("webhook_signature_missing", source=source)
        raise HTTPException(status_code=401, detail="Missing signature")

    if not verify_signature(raw_body, signature, secret):
        logger.warning("webhook_signature_invalid", source=source)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        return json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Body is not valid JSON") from exc


@router.post("/webhooks/inbound")
async def inbound_webhook(request: Request) -> FlowResult:
    """Receive a creator reply from the messaging transport.

    Returns:
        The deal after processing, the applied strategy, and the contract
        when the reply closed the negotiation.
    """
    settings = request.app.state.settings
    payload = await _verified_payload(
        request, settings.inbound_webhook_secret.get_secret_value(), "inbound"
    )
    try:
        message = InboundMessage.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc

    structlog.contextvars.bind_contextvars(deal_id=message.deal_id)
    logger.info("inbound_message_received", chars=len(message.content))

    return await asyncio.to_thread(
        handle_inbound_message,
        request.app.state.services,
        message.deal_id,
        message.content,
        message.metadata,
    )


@router.post("/webhooks/payments")
async def payments_webhook(request: Request) -> dict[str, Any]:
    """Receive an asynchronous confirmation from the payment gateway.

    Duplicate deliveries are harmless: a paid milestone returns its
    recorded payment.
    """
    settings = request.app.state.settings
    payload = await _verified_payload(
        request, settings.payment_webhook_secret.get_secret_value(), "payments"
    )
    try:
        event = GatewayEvent.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc

    payments = request.app.state.services["payments"]
    record = await asyncio.to_thread(payments.handle_gateway_webhook, event)
    logger.info(
        "payment_webhook_processed",
        milestone_id=record.milestone_id,
        payment_id=record.id,
        status=record.status,
    )
    return {
        "status": "ok",
        "payment_id": record.id,
        "milestone_id": record.milestone_id,
        "payment_status": record.status.value,
    }
