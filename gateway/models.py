from typing import Literal, Optional
from uuid import UUID
from pydantic import BaseModel

from reconciliation.models import Payment


class GatewayOrder(BaseModel):
    order_id: str
    amount: int
    currency: str
    receipt: str
    status: Optional[str] = None


class CheckoutSession(BaseModel):
    order: GatewayOrder
    payment: Payment
    key_id: Optional[str] = None


class WebhookOutcome(BaseModel):
    status: Literal["ok", "ignored"]
    reason: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: Optional[UUID] = None
    applied: bool = False
