import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID, uuid4

from .balance import calculate_balance, paid_total, remaining_balance
from .errors import (
    AlreadyDistributedError,
    AlreadyExistsError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentValidationError,
    Result,
    run_operation,
)
from .models import (
    TERMINAL_STATUSES,
    AvailableStudent,
    BalanceStatus,
    CaptureOutcome,
    CreateEventRequest,
    CreatePaymentRequest,
    CreateStudentRequest,
    Event,
    EventBalance,
    EventCategory,
    EventPaymentsView,
    EventStats,
    EventStatus,
    ImportSummary,
    Payment,
    PaymentMethod,
    PaymentPageData,
    PaymentStatus,
    PrintDistribution,
    PrintOverview,
    PrintRecipient,
    PublicStudentStatus,
    RealPaymentRow,
    RecordCashPaymentRequest,
    SaveDraftRequest,
    Student,
    StudentPaymentsView,
    SyntheticPendingRow,
)
from .notifications import LoggingNotifier, Notifier, Template, build_payment_email
from .store import InMemoryStorage, LedgerStore

logger = logging.getLogger(__name__)

SYNTHETIC_ID_PREFIX = "pending_"
DEFAULT_SEARCH_LIMIT = 20

INITIAL_STATUS_BY_METHOD = {
    PaymentMethod.RAZORPAY: PaymentStatus.PENDING,
    PaymentMethod.QR: PaymentStatus.VERIFICATION_PENDING,
    PaymentMethod.CASH: PaymentStatus.VERIFICATION_PENDING,
}


def synthetic_row_id(student_id: UUID, event_id: UUID) -> str:
    return f"{SYNTHETIC_ID_PREFIX}{student_id}_{event_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _positive_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise PaymentValidationError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise PaymentValidationError("Amount must be greater than zero")
    return value


class ReconciliationService:
    """
    Payment reconciliation engine.

    Every public operation returns a ``Result``; domain failures are never
    raised to the caller. Writes run inside a single store transaction.
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store or InMemoryStorage()
        self.search_limit = search_limit
        self.notifier = notifier or LoggingNotifier()

    def _run(self, action: str, func: Callable, *args, **kwargs) -> Result:
        return run_operation(logger, action, func, *args, **kwargs)

    def _notify(self, template: Template, payment: Payment) -> None:
        # Mail is fire-and-forget: a delivery failure never undoes a committed payment.
        try:
            student = self.store.get_student(payment.student_id)
            event = self.store.get_event(payment.event_id)
            if not student or not event:
                return
            if not student.email:
                logger.info("Student %s has no email, skipping %s email", student.id, template)
                return
            self.notifier.send(build_payment_email(template, student, event, payment))
        except Exception:
            logger.exception("Failed to send %s email for payment %s", template, payment.id)

    # Lookups shared by operations

    def _require_student(self, student_id: UUID) -> Student:
        student = self.store.get_student(student_id)
        if not student:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def _require_event(self, event_id: UUID) -> Event:
        event = self.store.get_event(event_id)
        if not event:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    def _require_payment(self, payment_id: Union[UUID, str]) -> Payment:
        if isinstance(payment_id, str):
            if payment_id.startswith(SYNTHETIC_ID_PREFIX):
                raise PaymentValidationError("Outstanding balance rows are computed and cannot be modified")
            try:
                payment_id = UUID(payment_id)
            except ValueError:
                raise PaymentValidationError(f"Invalid payment id: {payment_id}")
        payment = self.store.get_payment(payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def _validate_roster(self, participant_ids: Iterable[UUID]) -> list[UUID]:
        roster = list(dict.fromkeys(participant_ids))
        missing = [str(p) for p in roster if not self.store.get_student(p)]
        if missing:
            raise NotFoundError(f"Unknown participants: {', '.join(missing)}")
        return roster

    # Students

    def add_student(self, request: CreateStudentRequest) -> Result[Student]:
        return self._run("add student", self._add_student, request)

    def _add_student(self, request: CreateStudentRequest) -> Student:
        with self.store.transaction():
            return self._insert_student(request)

    def _insert_student(self, request: CreateStudentRequest) -> Student:
        roll_no = request.roll_no.strip()
        if self.store.find_student_by_roll(roll_no):
            raise AlreadyExistsError("A student with this roll number already exists")
        student = Student(
            id=uuid4(),
            name=request.name.strip(),
            roll_no=roll_no,
            email=request.email.strip(),
            class_name=request.class_name.strip(),
            created_at=_now(),
        )
        return self.store.save_student(student)

    def import_students(self, requests: list[CreateStudentRequest]) -> Result[ImportSummary]:
        return self._run("import students", self._import_students, requests)

    def _import_students(self, requests: list[CreateStudentRequest]) -> ImportSummary:
        created = skipped = 0
        with self.store.transaction():
            for request in requests:
                try:
                    self._insert_student(request)
                    created += 1
                except AlreadyExistsError:
                    logger.info("Skipping duplicate roll number %s during import", request.roll_no)
                    skipped += 1
        return ImportSummary(created=created, skipped=skipped)

    def list_students(self) -> Result[list[Student]]:
        return self._run(
            "list students",
            lambda: sorted(self.store.list_students(), key=lambda s: s.roll_no),
        )

    def get_student(self, student_id: UUID) -> Result[Student]:
        return self._run("fetch student", self._require_student, student_id)

    def delete_student(self, student_id: UUID) -> Result[None]:
        return self._run("delete student", self._delete_student, student_id)

    def _delete_student(self, student_id: UUID) -> None:
        with self.store.transaction():
            self._require_student(student_id)
            payments = self.store.delete_payments(student_id=student_id)
            distributions = self.store.delete_distributions(student_id=student_id)
            self.store.delete_student(student_id)
        logger.info(
            "Deleted student %s with %d payments and %d distributions",
            student_id, payments, distributions,
        )

    # Events

    def create_event(self, request: CreateEventRequest) -> Result[Event]:
        return self._run("create event", self._create_event, request)

    def _create_event(self, request: CreateEventRequest) -> Event:
        now = _now()
        with self.store.transaction():
            event = Event(
                id=uuid4(),
                name=request.name,
                description=request.description,
                cost=request.cost,
                deadline=request.deadline,
                category=request.category,
                status=EventStatus.PUBLISHED,
                payment_options=list(dict.fromkeys(request.payment_options)),
                qr_code_url=request.qr_code_url,
                participant_ids=self._validate_roster(request.participant_ids),
                created_at=now,
                updated_at=now,
            )
            return self.store.save_event(event)

    def save_draft(self, request: SaveDraftRequest) -> Result[Event]:
        return self._run("save draft", self._save_draft, request)

    def _save_draft(self, request: SaveDraftRequest) -> Event:
        now = _now()
        with self.store.transaction():
            if request.id:
                data = self._require_event(request.id).model_dump()
            else:
                data = {
                    "id": uuid4(),
                    "name": "Untitled event",
                    "cost": Decimal("0"),
                    "created_at": now,
                }
            updates = request.model_dump(exclude={"id"}, exclude_none=True)
            if "participant_ids" in updates:
                updates["participant_ids"] = self._validate_roster(updates["participant_ids"])
            data.update(updates)
            data["status"] = EventStatus.DRAFT
            data["updated_at"] = now
            return self.store.save_event(Event(**data))

    def update_event(self, event_id: UUID, request: CreateEventRequest) -> Result[Event]:
        return self._run("update event", self._update_event, event_id, request)

    def _update_event(self, event_id: UUID, request: CreateEventRequest) -> Event:
        with self.store.transaction():
            event = self._require_event(event_id)
            updated = event.model_copy(update={
                "name": request.name,
                "description": request.description,
                "cost": request.cost,
                "deadline": request.deadline,
                "category": request.category,
                "payment_options": list(dict.fromkeys(request.payment_options)),
                "qr_code_url": request.qr_code_url,
                "participant_ids": self._validate_roster(request.participant_ids),
                "status": EventStatus.PUBLISHED,
                "updated_at": _now(),
            })
            return self.store.save_event(updated)

    def get_event(self, event_id: UUID) -> Result[Event]:
        return self._run("fetch event", self._require_event, event_id)

    def delete_event(self, event_id: UUID) -> Result[None]:
        return self._run("delete event", self._delete_event, event_id)

    def _delete_event(self, event_id: UUID) -> None:
        with self.store.transaction():
            self._require_event(event_id)
            payments = self.store.delete_payments(event_id=event_id)
            distributions = self.store.delete_distributions(event_id=event_id)
            self.store.delete_event(event_id)
        logger.info(
            "Deleted event %s with %d payments and %d distributions",
            event_id, payments, distributions,
        )

    def list_events(self) -> Result[list[EventStats]]:
        return self._run("list events", self._list_events)

    def _list_events(self) -> list[EventStats]:
        events = sorted(self.store.list_events(), key=lambda e: e.created_at, reverse=True)
        stats = []
        for event in events:
            payments = self.store.list_payments(event_id=event.id)
            collected = paid_total(payments)
            participant_count = len(event.participant_ids)
            settled = sum(
                1 for student_id in event.participant_ids
                if calculate_balance(
                    event.cost, [p for p in payments if p.student_id == student_id]
                ).status == BalanceStatus.FULLY_PAID
            )
            stats.append(EventStats(
                event=event,
                total_collected=collected,
                total_pending=max(Decimal("0"), event.cost * participant_count - collected),
                participant_count=participant_count,
                paid_count=settled,
                pending_count=participant_count - settled,
            ))
        return stats

    # Payments

    def create_payment(self, request: CreatePaymentRequest) -> Result[Payment]:
        return self._run("create payment", self._create_payment, request)

    def _create_payment(self, request: CreatePaymentRequest) -> Payment:
        amount = _positive_amount(request.amount)
        status = request.initial_status or INITIAL_STATUS_BY_METHOD[request.payment_method]
        if status in TERMINAL_STATUSES:
            raise PaymentValidationError(
                f"Payments cannot be created in {status.value} state; use cash recording or verification"
            )

        with self.store.transaction():
            self._require_student(request.student_id)
            event = self._require_event(request.event_id)
            self._warn_if_over_balance(event, request.student_id, amount)

            if request.razorpay_order_id and self.store.find_payment_by_order_id(request.razorpay_order_id):
                raise AlreadyExistsError(f"A payment already exists for order {request.razorpay_order_id}")

            now = _now()
            payment = Payment(
                id=uuid4(),
                student_id=request.student_id,
                event_id=request.event_id,
                amount=amount,
                payment_method=request.payment_method,
                status=status,
                transaction_id=request.transaction_id,
                razorpay_order_id=request.razorpay_order_id,
                screenshot_url=request.screenshot_url,
                payment_date=now,
                created_at=now,
                updated_at=now,
            )
            self.store.save_payment(payment)

        logger.info(
            "Created %s payment %s of %s for student %s on event %s",
            payment.payment_method.value, payment.id, amount, payment.student_id, payment.event_id,
        )
        if payment.status == PaymentStatus.VERIFICATION_PENDING:
            self._notify("payment_submitted", payment)
        return payment

    def _warn_if_over_balance(self, event: Event, student_id: UUID, amount: Decimal) -> None:
        payments = self.store.list_payments(event_id=event.id, student_id=student_id)
        remaining = remaining_balance(event.cost, payments)
        if amount > remaining:
            logger.warning(
                "Payment of %s for student %s exceeds remaining balance %s on event %s",
                amount, student_id, remaining, event.id,
            )

    def get_payment(self, payment_id: Union[UUID, str]) -> Result[Payment]:
        return self._run("fetch payment", self._require_payment, payment_id)

    def set_status(self, payment_id: Union[UUID, str], new_status: PaymentStatus) -> Result[Payment]:
        return self._run("update payment status", self._set_status, payment_id, new_status)

    def _set_status(self, payment_id: Union[UUID, str], new_status: PaymentStatus) -> Payment:
        with self.store.transaction():
            payment = self._require_payment(payment_id)
            if not payment.can_transition_to(new_status):
                raise InvalidStateTransitionError(
                    f"Cannot move payment from {payment.status.value} to {new_status.value}"
                )
            updated = payment.model_copy(update={"status": new_status, "updated_at": _now()})
            self.store.save_payment(updated)

        logger.info("Payment %s moved %s -> %s", payment.id, payment.status.value, new_status.value)
        if new_status == PaymentStatus.PAID:
            self._notify("payment_approved", updated)
        return updated

    def apply_gateway_capture(self, order_id: str, transaction_id: str) -> Result[CaptureOutcome]:
        return self._run("apply gateway capture", self._apply_gateway_capture, order_id, transaction_id)

    def _apply_gateway_capture(self, order_id: str, transaction_id: str) -> CaptureOutcome:
        if not isinstance(order_id, str) or not isinstance(transaction_id, str) or not transaction_id:
            raise PaymentValidationError("Gateway order id and transaction id must be non-empty strings")
        with self.store.transaction():
            payment = self.store.find_payment_by_order_id(order_id)
            if not payment:
                logger.warning("No payment found for gateway order %s", order_id)
                raise NotFoundError(f"No payment found for order {order_id}")

            if payment.status == PaymentStatus.PAID:
                return CaptureOutcome(payment=payment, applied=False, message="Payment already captured")

            if payment.status == PaymentStatus.FAILED:
                logger.warning(
                    "Capture %s arrived for failed payment %s (order %s); needs manual review",
                    transaction_id, payment.id, order_id,
                )
                return CaptureOutcome(payment=payment, applied=False, message="Payment already failed")

            captured = payment.model_copy(update={
                "status": PaymentStatus.PAID,
                "transaction_id": transaction_id,
                "updated_at": _now(),
            })
            self.store.save_payment(captured)

        logger.info("Payment %s updated to Paid for order %s", captured.id, order_id)
        self._notify("payment_received", captured)
        return CaptureOutcome(payment=captured, applied=True, message="Payment captured")

    def record_cash_payment(self, request: RecordCashPaymentRequest) -> Result[Payment]:
        return self._run("record cash payment", self._record_cash_payment, request)

    def _record_cash_payment(self, request: RecordCashPaymentRequest) -> Payment:
        amount = _positive_amount(request.amount)
        with self.store.transaction():
            self._require_student(request.student_id)
            event = self._require_event(request.event_id)
            self._warn_if_over_balance(event, request.student_id, amount)

            now = _now()
            payment = Payment(
                id=uuid4(),
                student_id=request.student_id,
                event_id=request.event_id,
                amount=amount,
                payment_method=PaymentMethod.CASH,
                status=PaymentStatus.PAID,
                payment_date=request.payment_date or now,
                is_manual_entry=True,
                recorded_by=request.recorded_by,
                manual_entry_notes=request.notes,
                receipt_number=request.receipt_number,
                created_at=now,
                updated_at=now,
            )
            self.store.save_payment(payment)

        logger.info("Recorded cash payment %s of %s by %s", payment.id, amount, request.recorded_by or "unknown")
        return payment

    # Prints

    def distribute_print(self, student_id: UUID, event_id: UUID) -> Result[PrintDistribution]:
        return self._run("distribute print", self._distribute_print, student_id, event_id)

    def _distribute_print(self, student_id: UUID, event_id: UUID) -> PrintDistribution:
        with self.store.transaction():
            self._require_student(student_id)
            event = self._require_event(event_id)
            if event.category != EventCategory.PRINT:
                raise PaymentValidationError(f"Event {event.name} is not a print event")
            if self.store.find_distribution(student_id, event_id):
                raise AlreadyDistributedError("Print already distributed to this student")
            distribution = PrintDistribution(
                id=uuid4(), student_id=student_id, event_id=event_id, distributed_at=_now(),
            )
            return self.store.save_distribution(distribution)

    def get_print_overview(self, event_id: UUID) -> Result[PrintOverview]:
        return self._run("fetch print overview", self._get_print_overview, event_id)

    def _get_print_overview(self, event_id: UUID) -> PrintOverview:
        event = self._require_event(event_id)
        if event.category != EventCategory.PRINT:
            raise PaymentValidationError(f"Event {event.name} is not a print event")

        payments = self.store.list_payments(event_id=event_id)
        distributed = {d.student_id: d for d in self.store.list_distributions(event_id=event_id)}
        recipients = []
        for student_id in event.participant_ids:
            student = self.store.get_student(student_id)
            if not student:
                continue
            balance = calculate_balance(event.cost, [p for p in payments if p.student_id == student_id])
            distribution = distributed.get(student_id)
            recipients.append(PrintRecipient(
                student=student,
                balance_status=balance.status,
                distributed=distribution is not None,
                distributed_at=distribution.distributed_at if distribution else None,
            ))
        recipients.sort(key=lambda r: r.student.name.lower())
        return PrintOverview(event=event, recipients=recipients, distributed_count=len(distributed))

    # Views

    def get_event_payments(self, event_id: UUID) -> Result[EventPaymentsView]:
        return self._run("fetch payments", self._get_event_payments, event_id)

    def _get_event_payments(self, event_id: UUID) -> EventPaymentsView:
        event = self._require_event(event_id)
        payments = self.store.list_payments(event_id=event_id)
        students = {s.id: s for s in self.store.list_students()}

        rows: list = []
        for payment in payments:
            student = students.get(payment.student_id)
            rows.append(RealPaymentRow(
                id=str(payment.id),
                payment=payment,
                student_name=student.name if student else "Unknown",
                student_roll=student.roll_no if student else "",
            ))

        now = _now()
        for student_id in event.participant_ids:
            student = students.get(student_id)
            if not student:
                continue
            balance = calculate_balance(event.cost, [p for p in payments if p.student_id == student_id])
            if balance.pending_amount > 0:
                rows.append(SyntheticPendingRow(
                    id=synthetic_row_id(student_id, event.id),
                    student_id=student_id,
                    event_id=event.id,
                    amount=balance.pending_amount,
                    payment_date=now,
                    student_name=student.name,
                    student_roll=student.roll_no,
                ))

        rows.sort(key=lambda r: r.payment_date, reverse=True)
        return EventPaymentsView(event=event, transactions=rows)

    def _event_balances(self, student: Student, payments: list[Payment]) -> list[EventBalance]:
        events = {e.id: e for e in self.store.list_events()}
        event_ids = [e_id for e_id, e in events.items() if student.id in e.participant_ids]
        for payment in payments:
            if payment.status == PaymentStatus.PAID and payment.event_id not in event_ids:
                event_ids.append(payment.event_id)

        balances = []
        for event_id in event_ids:
            event = events.get(event_id)
            if not event:
                continue
            result = calculate_balance(event.cost, [p for p in payments if p.event_id == event_id])
            balances.append(EventBalance(
                student_id=student.id,
                event_id=event.id,
                event_name=event.name,
                event_cost=event.cost,
                total_paid=result.total_paid,
                pending_amount=result.pending_amount,
                status=result.status,
            ))
        return balances

    def get_student_payments(self, student_id: UUID) -> Result[StudentPaymentsView]:
        return self._run("fetch payments", self._get_student_payments, student_id)

    def _get_student_payments(self, student_id: UUID) -> StudentPaymentsView:
        student = self._require_student(student_id)
        payments = sorted(
            self.store.list_payments(student_id=student_id),
            key=lambda p: p.payment_date,
            reverse=True,
        )
        return StudentPaymentsView(
            student=student,
            transactions=payments,
            payment_summary=self._event_balances(student, payments),
        )

    def get_payment_page_data(self, event_id: UUID) -> Result[PaymentPageData]:
        return self._run("fetch data", self._get_payment_page_data, event_id)

    def _get_payment_page_data(self, event_id: UUID) -> PaymentPageData:
        event = self._require_event(event_id)
        payments = self.store.list_payments(event_id=event_id)
        available = []
        for student_id in event.participant_ids:
            student = self.store.get_student(student_id)
            if not student:
                continue
            balance = calculate_balance(event.cost, [p for p in payments if p.student_id == student_id])
            if balance.total_paid < event.cost:
                available.append(AvailableStudent(student=student, paid_amount=balance.total_paid))
        available.sort(key=lambda a: a.student.roll_no)
        return PaymentPageData(event=event, available_students=available)

    def public_status_lookup(self, query: str, limit: Optional[int] = None) -> Result[list[PublicStudentStatus]]:
        return self._run("retrieve details", self._public_status_lookup, query, limit)

    def _public_status_lookup(self, query: str, limit: Optional[int]) -> list[PublicStudentStatus]:
        needle = (query or "").strip().lower()
        if not needle:
            raise PaymentValidationError("Enter a name or roll number to search")
        limit = limit or self.search_limit

        matches = [
            s for s in self.store.list_students()
            if needle in s.name.lower() or needle in s.roll_no.lower()
        ]
        if not matches:
            raise NotFoundError("No students found matching your search.")
        matches.sort(key=lambda s: s.roll_no)

        return [
            PublicStudentStatus(
                student_id=student.id,
                name=student.name,
                roll_no=student.roll_no,
                class_name=student.class_name,
                payment_summary=self._event_balances(
                    student, self.store.list_payments(student_id=student.id)
                ),
            )
            for student in matches[:limit]
        ]
