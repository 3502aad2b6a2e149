import hashlib
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union
from uuid import UUID

import razorpay
from razorpay.errors import SignatureVerificationError

from reconciliation.config import Settings
from reconciliation.errors import GatewayError, PaymentValidationError

from .models import GatewayOrder

logger = logging.getLogger(__name__)

MAX_RECEIPT_LENGTH = 40
HASHED_RECEIPT_PREFIX = "rcpt_"

_utility = razorpay.Utility()


def make_receipt(event_id: Union[UUID, str], student_id: Union[UUID, str]) -> str:
    """
    Build a receipt string the gateway accepts (at most 40 characters).

    Long ids fall back to a hash of the (event, student) pair, so a retried
    order for the same pair carries the same receipt.
    """
    readable = f"receipt_event_{event_id}_student_{student_id}"
    if len(readable) <= MAX_RECEIPT_LENGTH:
        return readable
    digest = hashlib.sha256(f"{event_id}:{student_id}".encode("utf-8")).hexdigest()
    return f"{HASHED_RECEIPT_PREFIX}{digest[:32]}"


def to_minor_units(amount: Any) -> int:
    value = Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def verify_webhook_signature(raw_body: Union[bytes, str], signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a webhook's ``X-Razorpay-Signature`` against the raw request body.

    Any failure to verify, including a body that is not UTF-8 or a signature
    header that is not a hex digest, counts as a mismatch.
    """
    if not signature or not secret:
        return False
    try:
        if isinstance(raw_body, bytes):
            raw_body = raw_body.decode("utf-8")
        return bool(_utility.verify_webhook_signature(raw_body, signature, secret))
    except SignatureVerificationError:
        return False
    except (TypeError, ValueError):
        logger.warning("Webhook signature could not be compared; treating it as invalid")
        return False


class RazorpayGateway:
    def __init__(self, client: Any, currency: str = "INR", key_id: Optional[str] = None):
        self.client = client
        self.currency = currency
        self.key_id = key_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayGateway":
        if not settings.gateway_configured:
            logger.error("Razorpay keys missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
            raise GatewayError("Razorpay not configured on server")
        client = razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))
        return cls(client, currency=settings.currency, key_id=settings.razorpay_key_id)

    def create_order(self, amount: Any, event_id: UUID, student_id: UUID) -> GatewayOrder:
        minor = to_minor_units(amount)
        if minor <= 0:
            raise PaymentValidationError("Amount must be greater than zero")

        options = {
            "amount": minor,
            "currency": self.currency,
            "receipt": make_receipt(event_id, student_id),
            "notes": {
                "eventId": str(event_id),
                "studentId": str(student_id),
            },
        }
        try:
            order = self.client.order.create(data=options)
        except Exception:
            logger.exception("Razorpay order creation failed for event %s student %s", event_id, student_id)
            raise GatewayError("Failed to create Razorpay order")

        logger.info("Created Razorpay order %s for %s %s", order["id"], minor, self.currency)
        return GatewayOrder(
            order_id=order["id"],
            amount=order.get("amount", minor),
            currency=order.get("currency", self.currency),
            receipt=order.get("receipt", options["receipt"]),
            status=order.get("status"),
        )
