"""
Balance calculation for a single (student, event) pair.

Only payments in ``Paid`` status reduce what a student owes. Pending and
Verification Pending amounts are claims, not money received, so they never
count towards the balance.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .models import BalanceStatus, PaymentStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class BalanceResult:
    cost: Decimal
    total_paid: Decimal
    pending_amount: Decimal
    status: BalanceStatus


def _field(payment: Any, name: str) -> Any:
    if isinstance(payment, Mapping):
        return payment[name]
    return getattr(payment, name)


def paid_total(payments: Iterable[Any]) -> Decimal:
    total = ZERO
    for payment in payments:
        if PaymentStatus(_field(payment, "status")) == PaymentStatus.PAID:
            total += Decimal(str(_field(payment, "amount")))
    return total


def classify(cost: Decimal, total_paid: Decimal) -> BalanceStatus:
    # A zero-cost event is never reported as settled.
    if cost > 0 and total_paid >= cost:
        return BalanceStatus.FULLY_PAID
    if ZERO < total_paid < cost:
        return BalanceStatus.PARTIALLY_PAID
    return BalanceStatus.UNPAID


def calculate_balance(cost: Any, payments: Iterable[Any]) -> BalanceResult:
    """
    Derive paid/pending state from an event cost and the payments made
    towards it.

    ``payments`` may hold Payment models or plain mappings, as long as each
    item exposes ``amount`` and ``status``.
    """
    cost = Decimal(str(cost))
    if cost < 0:
        raise ValueError("Event cost cannot be negative")

    total_paid = paid_total(payments)
    pending = max(ZERO, cost - total_paid)

    return BalanceResult(
        cost=cost,
        total_paid=total_paid,
        pending_amount=pending,
        status=classify(cost, total_paid),
    )


def remaining_balance(cost: Any, payments: Iterable[Any]) -> Decimal:
    return calculate_balance(cost, payments).pending_amount
