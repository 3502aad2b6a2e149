"""
Payment Reconciliation Engine for Class Fund Collections

This module provides:
- Per-student, per-event balance calculation
- Payment lifecycle management: pending / verification pending → paid / failed
- Idempotent application of gateway captures
- Synthetic pending rows for outstanding balances in listings
- Report aggregation and CSV export
- Payment emails through an injected notifier
"""

from .balance import BalanceResult, calculate_balance
from .errors import ErrorKind, Result, ServiceError
from .models import (
    BalanceStatus,
    Event,
    EventBalance,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PrintDistribution,
    Student,
)
from .notifications import LoggingNotifier, Notifier, PaymentEmail
from .reports import ReportAggregator, export_to_csv
from .service import ReconciliationService
from .store import InMemoryStorage, LedgerStore

__all__ = [
    "BalanceResult",
    "calculate_balance",
    "ErrorKind",
    "Result",
    "ServiceError",
    "BalanceStatus",
    "Event",
    "EventBalance",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PrintDistribution",
    "Student",
    "LoggingNotifier",
    "Notifier",
    "PaymentEmail",
    "ReportAggregator",
    "export_to_csv",
    "ReconciliationService",
    "InMemoryStorage",
    "LedgerStore",
]
