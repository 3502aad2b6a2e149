import json
import logging
from typing import Optional, Union

from reconciliation.errors import ErrorKind, Result
from reconciliation.service import ReconciliationService

from .models import WebhookOutcome
from .razorpay_gateway import verify_webhook_signature

logger = logging.getLogger(__name__)

CAPTURE_EVENT = "payment.captured"
CORRELATION_NOTES = ("eventId", "studentId")


def handle_webhook(
    service: ReconciliationService,
    raw_body: Union[bytes, str],
    signature: Optional[str],
    secret: Optional[str],
) -> Result[WebhookOutcome]:
    """
    Apply a gateway webhook delivery to the ledger.

    The signature is checked against the raw body before anything is parsed.
    Deliveries that are not captures, or that lack the correlation notes set
    at order creation, are acknowledged as ignored so the gateway stops
    retrying them.
    """
    if not secret:
        logger.error("Razorpay webhook secret not configured (RAZORPAY_WEBHOOK_SECRET is missing)")
        return Result.failure(ErrorKind.GATEWAY_FAILURE, "Webhook secret not configured")

    if not signature:
        logger.warning("Webhook rejected: signature missing")
        return Result.failure(ErrorKind.SIGNATURE_MISMATCH, "Signature missing")

    if not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("Webhook rejected: invalid signature")
        return Result.failure(ErrorKind.SIGNATURE_MISMATCH, "Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook rejected: body is not valid JSON")
        return Result.failure(ErrorKind.VALIDATION_ERROR, "Malformed webhook payload")

    event_name = payload.get("event") if isinstance(payload, dict) else None
    if event_name != CAPTURE_EVENT:
        return Result.success(WebhookOutcome(status="ignored", reason=f"Unhandled event {event_name}"))

    try:
        entity = payload["payload"]["payment"]["entity"]
        order_id = entity.get("order_id")
        transaction_id = entity["id"]
    except (KeyError, TypeError, AttributeError):
        logger.warning("Webhook rejected: capture payload without payment entity")
        return Result.failure(ErrorKind.VALIDATION_ERROR, "Malformed webhook payload")

    if not isinstance(transaction_id, str) or not (order_id is None or isinstance(order_id, str)):
        logger.warning("Webhook rejected: payment id or order id is not a string")
        return Result.failure(ErrorKind.VALIDATION_ERROR, "Malformed webhook payload")

    notes = entity.get("notes")
    if not isinstance(notes, dict):
        notes = {}
    if not order_id or any(not notes.get(key) for key in CORRELATION_NOTES):
        logger.warning("Webhook received for order without required notes: %s", order_id)
        return Result.success(WebhookOutcome(
            status="ignored", reason="Missing required notes", order_id=order_id,
        ))

    result = service.apply_gateway_capture(order_id, transaction_id)
    if not result.ok:
        return Result(error=result.error)

    outcome = result.value
    payment = outcome.payment
    if str(payment.event_id) != notes["eventId"] or str(payment.student_id) != notes["studentId"]:
        logger.warning(
            "Order %s notes (%s/%s) do not match payment %s",
            order_id, notes["eventId"], notes["studentId"], payment.id,
        )

    return Result.success(WebhookOutcome(
        status="ok",
        reason=outcome.message,
        order_id=order_id,
        payment_id=payment.id,
        applied=outcome.applied,
    ))
