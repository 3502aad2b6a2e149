"""
Report aggregation over payment records.

The reductions here are plain sums and counts, so they do not depend on the
order of the input and a date range can be split into pieces whose totals add
up to the total of the whole range.
"""

import csv
import io
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from .errors import NotFoundError, Result, run_operation
from .models import (
    CsvExport,
    Payment,
    PaymentStatus,
    Report,
    ReportFilters,
    ReportSummary,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)

SUMMARY_MARKER = "=== SUMMARY ==="
DATA_MARKER = "=== REPORT DATA ==="
EMPTY_REPORT_LINE = "No data available for the selected range."
NOT_AVAILABLE = "N/A"


def matches(payment: Payment, filters: ReportFilters) -> bool:
    paid_on = payment.payment_date.date()
    if filters.date_from and paid_on < filters.date_from:
        return False
    if filters.date_to and paid_on > filters.date_to:
        return False
    if filters.event_id and payment.event_id != filters.event_id:
        return False
    if filters.student_id and payment.student_id != filters.student_id:
        return False
    if filters.statuses and payment.status not in filters.statuses:
        return False
    if filters.payment_methods and payment.payment_method not in filters.payment_methods:
        return False
    return True


def filter_payments(payments: Iterable[Payment], filters: Optional[ReportFilters] = None) -> list[Payment]:
    if filters is None:
        return list(payments)
    return [p for p in payments if matches(p, filters)]


def summarize(payments: Iterable[Payment]) -> ReportSummary:
    total = paid = Decimal("0")
    count = paid_count = 0
    for payment in payments:
        count += 1
        total += payment.amount
        if payment.status == PaymentStatus.PAID:
            paid += payment.amount
            paid_count += 1
    return ReportSummary(
        total_transactions=count,
        total_amount=total,
        paid_amount=paid,
        pending_amount=total - paid,
        paid_count=paid_count,
        pending_count=count - paid_count,
    )


def _group(payments: Iterable[Payment], key) -> dict[UUID, ReportSummary]:
    buckets: dict[UUID, list[Payment]] = {}
    for payment in payments:
        buckets.setdefault(key(payment), []).append(payment)
    return {group: summarize(items) for group, items in buckets.items()}


def group_by_event(payments: Iterable[Payment]) -> dict[UUID, ReportSummary]:
    return _group(payments, lambda p: p.event_id)


def group_by_student(payments: Iterable[Payment]) -> dict[UUID, ReportSummary]:
    return _group(payments, lambda p: p.student_id)


def _label(key: str) -> str:
    return key.replace("_", " ").title()


def export_to_csv(
    rows: list[dict],
    filename: str,
    summary: Optional[dict] = None,
    export_date: Optional[date] = None,
) -> CsvExport:
    """
    Render report rows as CSV.

    When ``summary`` is given it is written first as ``Label,Value`` pairs
    between the summary and report-data markers. The output is UTF-8 with a
    BOM so spreadsheet tools pick up the encoding.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    if summary:
        writer.writerow([SUMMARY_MARKER, ""])
        for key, value in summary.items():
            writer.writerow([_label(key), value])
        writer.writerow(["", ""])
        writer.writerow([DATA_MARKER, ""])
        buffer.write("\n")

    if rows:
        table = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()), lineterminator="\n")
        table.writeheader()
        table.writerows(rows)
    else:
        buffer.write(EMPTY_REPORT_LINE)

    stamp = (export_date or date.today()).isoformat()
    return CsvExport(
        filename=f"{filename}_{stamp}.csv",
        content=buffer.getvalue().encode("utf-8-sig"),
    )


class ReportAggregator:
    """Builds dashboard and export reports from the ledger store."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def _student_columns(self, student_id: UUID) -> dict:
        student = self.store.get_student(student_id)
        if not student:
            return {"Student Name": "Unknown", "Roll Number": "", "Email": ""}
        return {"Student Name": student.name, "Roll Number": student.roll_no, "Email": student.email}

    def _event_name(self, event_id: UUID) -> str:
        event = self.store.get_event(event_id)
        return event.name if event else "Unknown"

    def transaction_report(self, filters: ReportFilters) -> Result[Report]:
        return run_operation(logger, "generate report", self._transaction_report, filters)

    def _transaction_report(self, filters: ReportFilters) -> Report:
        payments = sorted(
            filter_payments(self.store.list_payments(), filters),
            key=lambda p: p.payment_date,
            reverse=True,
        )
        rows = [
            {
                "Transaction ID": str(p.id),
                **self._student_columns(p.student_id),
                "Event Name": self._event_name(p.event_id),
                "Amount": p.amount,
                "Payment Date": p.payment_date.date().isoformat(),
                "Payment Method": p.payment_method.value,
                "Status": p.status.value,
                "Transaction Reference": p.transaction_id or NOT_AVAILABLE,
                "Manual Entry": "Yes" if p.is_manual_entry else "No",
                "Recorded By": p.recorded_by or NOT_AVAILABLE,
                "Receipt Number": p.receipt_number or NOT_AVAILABLE,
                "Notes": p.manual_entry_notes or NOT_AVAILABLE,
            }
            for p in payments
        ]
        summary = summarize(payments)
        return Report(
            title="transactions",
            summary=summary.model_dump(include={"total_transactions", "total_amount", "paid_amount", "pending_amount"}),
            rows=rows,
        )

    def event_report(self, event_id: UUID, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Result[Report]:
        return run_operation(logger, "generate report", self._event_report, event_id, date_from, date_to)

    def _event_report(self, event_id: UUID, date_from: Optional[date], date_to: Optional[date]) -> Report:
        event = self.store.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")

        filters = ReportFilters(date_from=date_from, date_to=date_to, event_id=event_id)
        payments = sorted(
            filter_payments(self.store.list_payments(event_id=event_id), filters),
            key=lambda p: p.payment_date,
            reverse=True,
        )
        rows = [
            {
                "Payment ID": str(p.id),
                **self._student_columns(p.student_id),
                "Amount": p.amount,
                "Payment Date": p.payment_date.date().isoformat(),
                "Payment Method": p.payment_method.value,
                "Status": p.status.value,
                "Transaction ID": p.transaction_id or NOT_AVAILABLE,
                "Manual Entry": "Yes" if p.is_manual_entry else "No",
                "Receipt Number": p.receipt_number or NOT_AVAILABLE,
            }
            for p in payments
        ]
        summary = summarize(payments)
        awaiting = sum(
            (p.amount for p in payments
             if p.status in (PaymentStatus.PENDING, PaymentStatus.VERIFICATION_PENDING)),
            Decimal("0"),
        )
        return Report(
            title=event.name,
            summary={
                "event_name": event.name,
                "event_cost": event.cost,
                "total_collected": summary.paid_amount,
                "total_pending": awaiting,
                "total_transactions": summary.total_transactions,
                "paid_count": summary.paid_count,
                "pending_count": summary.pending_count,
            },
            rows=rows,
        )

    def student_report(self, student_id: UUID) -> Result[Report]:
        return run_operation(logger, "generate report", self._student_report, student_id)

    def _student_report(self, student_id: UUID) -> Report:
        student = self.store.get_student(student_id)
        if not student:
            raise NotFoundError("Student not found")

        payments = sorted(
            self.store.list_payments(student_id=student_id),
            key=lambda p: p.payment_date,
            reverse=True,
        )
        rows = [
            {
                "Event Name": self._event_name(p.event_id),
                "Amount": p.amount,
                "Payment Date": p.payment_date.date().isoformat(),
                "Payment Method": p.payment_method.value,
                "Status": p.status.value,
                "Transaction ID": p.transaction_id or NOT_AVAILABLE,
                "Receipt Number": p.receipt_number or NOT_AVAILABLE,
            }
            for p in payments
        ]
        summary = summarize(payments)
        return Report(
            title=student.name,
            summary={
                "student_name": student.name,
                "roll_number": student.roll_no,
                "total_paid": summary.paid_amount,
                "total_pending": summary.pending_amount,
                "total_transactions": summary.total_transactions,
            },
            rows=rows,
        )

    def transaction_summary(self, filters: Optional[ReportFilters] = None) -> Result[Report]:
        return run_operation(logger, "generate summary", self._transaction_summary, filters)

    def _transaction_summary(self, filters: Optional[ReportFilters]) -> Report:
        payments = filter_payments(self.store.list_payments(), filters)
        groups = group_by_event(payments)
        rows = [
            {
                "Event Name": self._event_name(event_id),
                "Total Transactions": s.total_transactions,
                "Total Amount": s.total_amount,
                "Collected Amount": s.paid_amount,
                "Pending Amount": s.pending_amount,
                "Paid Count": s.paid_count,
                "Pending Count": s.pending_count,
            }
            for event_id, s in groups.items()
        ]
        rows.sort(key=lambda r: r["Event Name"])
        overall = summarize(payments)
        return Report(
            title="transaction_summary",
            summary=overall.model_dump(include={"total_transactions", "total_amount", "paid_amount", "pending_amount"}),
            rows=rows,
        )

    def student_wise_report(self, filters: Optional[ReportFilters] = None) -> Result[Report]:
        return run_operation(logger, "generate report", self._student_wise_report, filters)

    def _student_wise_report(self, filters: Optional[ReportFilters]) -> Report:
        payments = filter_payments(self.store.list_payments(), filters)
        groups = group_by_student(payments)
        rows = []
        for student_id, s in groups.items():
            student = self.store.get_student(student_id)
            rows.append({
                **self._student_columns(student_id),
                "Class": student.class_name if student else "",
                "Total Transactions": s.total_transactions,
                "Total Amount": s.total_amount,
                "Paid Amount": s.paid_amount,
                "Pending Amount": s.pending_amount,
                "Paid Count": s.paid_count,
                "Pending Count": s.pending_count,
            })
        rows.sort(key=lambda r: r["Roll Number"])
        overall = summarize(payments)
        return Report(
            title="student_wise",
            summary={
                "total_students": len(groups),
                "total_transactions": overall.total_transactions,
                "total_amount": overall.total_amount,
                "paid_amount": overall.paid_amount,
                "pending_amount": overall.pending_amount,
            },
            rows=rows,
        )
