"""
Payment Gateway Package

Provides Razorpay order creation, webhook signature verification and the
mapping of gateway webhook events onto reconciliation actions.
"""

from .checkout import start_checkout
from .models import CheckoutSession, GatewayOrder, WebhookOutcome
from .razorpay_gateway import (
    RazorpayGateway,
    make_receipt,
    verify_webhook_signature,
)
from .webhooks import handle_webhook

__all__ = [
    "RazorpayGateway",
    "GatewayOrder",
    "CheckoutSession",
    "WebhookOutcome",
    "make_receipt",
    "verify_webhook_signature",
    "handle_webhook",
    "start_checkout",
]
