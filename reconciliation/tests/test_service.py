"""
Unit Tests for the Reconciliation Service

Tests cover:
1. Student and event management
2. Payment creation and admin verification
3. Gateway capture idempotency
4. Cash recording and print distribution
5. Synthetic pending rows and balance views
6. Store failures and transactional rollback
"""

import logging
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from reconciliation.errors import ErrorKind, StoreError
from reconciliation.models import (
    BalanceStatus,
    CreateEventRequest,
    CreatePaymentRequest,
    CreateStudentRequest,
    EventCategory,
    EventStatus,
    PaymentMethod,
    PaymentStatus,
    RecordCashPaymentRequest,
    SaveDraftRequest,
)
from reconciliation.service import ReconciliationService, synthetic_row_id
from reconciliation.store import InMemoryStorage


DEADLINE = datetime(2026, 12, 1, 18, 0, tzinfo=timezone.utc)
MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


def add_student(service, roll_no, name=None):
    return service.add_student(CreateStudentRequest(
        name=name or f"Student {roll_no}",
        roll_no=roll_no,
        email=f"{roll_no.lower()}@school.test",
        class_name="10-A",
    )).unwrap()


def create_event(service, cost, participants, category=EventCategory.NORMAL, name="Farewell"):
    return service.create_event(CreateEventRequest(
        name=name,
        description="Class contribution",
        cost=Decimal(str(cost)),
        deadline=DEADLINE,
        category=category,
        payment_options=[PaymentMethod.RAZORPAY, PaymentMethod.QR, PaymentMethod.CASH],
        participant_ids=[s.id for s in participants],
    )).unwrap()


def record_cash(service, student, event, amount):
    return service.record_cash_payment(RecordCashPaymentRequest(
        student_id=student.id,
        event_id=event.id,
        amount=Decimal(str(amount)),
        recorded_by="class-rep",
    )).unwrap()


def gateway_payment(service, student, event, amount, order_id):
    return service.create_payment(CreatePaymentRequest(
        student_id=student.id,
        event_id=event.id,
        amount=Decimal(str(amount)),
        payment_method=PaymentMethod.RAZORPAY,
        razorpay_order_id=order_id,
    )).unwrap()


class FailingDeleteStorage(InMemoryStorage):
    def delete_event(self, event_id):
        raise StoreError("connection reset by peer at db-primary:5432")


class TestStudents:
    """Tests for student management."""

    def test_add_student(self):
        service = ReconciliationService()
        student = add_student(service, "R001", "Asha")

        assert student.roll_no == "R001"
        assert service.get_student(student.id).unwrap().name == "Asha"

    def test_duplicate_roll_number_rejected(self):
        service = ReconciliationService()
        add_student(service, "R001")

        result = service.add_student(CreateStudentRequest(name="Other", roll_no="R001"))

        assert not result.ok
        assert result.error.kind == ErrorKind.ALREADY_EXISTS
        assert len(service.list_students().unwrap()) == 1

    def test_import_skips_duplicates(self):
        service = ReconciliationService()
        add_student(service, "R001")

        summary = service.import_students([
            CreateStudentRequest(name="A", roll_no="R001"),
            CreateStudentRequest(name="B", roll_no="R002"),
            CreateStudentRequest(name="C", roll_no="R003"),
            CreateStudentRequest(name="C again", roll_no="R003"),
        ]).unwrap()

        assert summary.created == 2
        assert summary.skipped == 2
        assert [s.roll_no for s in service.list_students().unwrap()] == ["R001", "R002", "R003"]

    def test_delete_student_cascades(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        other = add_student(service, "R002")
        event = create_event(service, 100, [student, other], category=EventCategory.PRINT)
        record_cash(service, student, event, 100)
        service.distribute_print(student.id, event.id).unwrap()

        assert service.delete_student(student.id).ok

        assert service.store.list_payments(student_id=student.id) == []
        assert service.store.list_distributions(event_id=event.id) == []
        assert service.get_event(event.id).unwrap().participant_ids == [other.id]

    def test_delete_missing_student(self):
        service = ReconciliationService()
        result = service.delete_student(MISSING_ID)

        assert result.error.kind == ErrorKind.NOT_FOUND


class TestEvents:
    """Tests for event management."""

    def test_create_event_is_published(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        assert event.status == EventStatus.PUBLISHED
        assert event.participant_ids == [student.id]

    def test_unknown_participant_rejected(self):
        service = ReconciliationService()
        result = service.create_event(CreateEventRequest(
            name="Trip", cost=Decimal("100"), deadline=DEADLINE, participant_ids=[MISSING_ID],
        ))

        assert result.error.kind == ErrorKind.NOT_FOUND
        assert service.store.list_events() == []

    def test_save_draft_then_publish(self):
        service = ReconciliationService()
        student = add_student(service, "R001")

        draft = service.save_draft(SaveDraftRequest(name="Picnic")).unwrap()
        assert draft.status == EventStatus.DRAFT
        assert draft.cost == Decimal("0")

        draft = service.save_draft(SaveDraftRequest(id=draft.id, cost=Decimal("250"))).unwrap()
        assert draft.name == "Picnic"
        assert draft.cost == Decimal("250")

        published = service.update_event(draft.id, CreateEventRequest(
            name="Picnic", cost=Decimal("250"), deadline=DEADLINE, participant_ids=[student.id],
        )).unwrap()
        assert published.status == EventStatus.PUBLISHED
        assert published.id == draft.id

    def test_list_events_stats(self):
        service = ReconciliationService()
        a = add_student(service, "R001")
        b = add_student(service, "R002")
        c = add_student(service, "R003")
        event = create_event(service, 500, [a, b, c])
        record_cash(service, a, event, 500)
        record_cash(service, b, event, 200)

        stats = service.list_events().unwrap()[0]

        assert stats.total_collected == Decimal("700")
        assert stats.total_pending == Decimal("800")
        assert stats.participant_count == 3
        assert stats.paid_count == 1
        assert stats.pending_count == 2

    def test_delete_event_cascades(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 100, [student], category=EventCategory.PRINT)
        record_cash(service, student, event, 100)
        gateway_payment(service, student, event, 50, "order_del")
        service.distribute_print(student.id, event.id).unwrap()

        assert service.delete_event(event.id).ok

        assert service.store.get_event(event.id) is None
        assert service.store.list_payments(event_id=event.id) == []
        assert service.store.list_distributions(event_id=event.id) == []
        assert service.store.find_payment_by_order_id("order_del") is None

    def test_failed_delete_rolls_back_and_hides_cause(self, caplog):
        service = ReconciliationService(store=FailingDeleteStorage())
        student = add_student(service, "R001")
        event = create_event(service, 100, [student])
        record_cash(service, student, event, 40)

        with caplog.at_level(logging.ERROR):
            result = service.delete_event(event.id)

        assert result.error.kind == ErrorKind.STORE_FAILURE
        assert "connection reset" not in result.error.message
        assert "connection reset" in caplog.text
        assert len(service.store.list_payments(event_id=event.id)) == 1


class TestCreatePayment:
    """Tests for payment creation."""

    def test_initial_status_follows_method(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        gateway = gateway_payment(service, student, event, 100, "order_1")
        qr = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("100"),
            payment_method=PaymentMethod.QR, transaction_id="UTR123",
        )).unwrap()

        assert gateway.status == PaymentStatus.PENDING
        assert qr.status == PaymentStatus.VERIFICATION_PENDING

    def test_non_positive_amount_rejected(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        for amount in ("0", "-10"):
            result = service.create_payment(CreatePaymentRequest(
                student_id=student.id, event_id=event.id, amount=Decimal(amount),
                payment_method=PaymentMethod.QR,
            ))
            assert result.error.kind == ErrorKind.VALIDATION_ERROR

        assert service.store.list_payments() == []

    def test_missing_event(self):
        service = ReconciliationService()
        student = add_student(service, "R001")

        result = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=MISSING_ID, amount=Decimal("10"),
            payment_method=PaymentMethod.QR,
        ))

        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_cannot_create_already_paid(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        result = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("10"),
            payment_method=PaymentMethod.QR, initial_status=PaymentStatus.PAID,
        ))

        assert result.error.kind == ErrorKind.VALIDATION_ERROR

    def test_amount_over_balance_is_accepted_with_warning(self, caplog):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 100, [student])

        with caplog.at_level(logging.WARNING):
            result = service.create_payment(CreatePaymentRequest(
                student_id=student.id, event_id=event.id, amount=Decimal("150"),
                payment_method=PaymentMethod.QR,
            ))

        assert result.ok
        assert "exceeds remaining balance" in caplog.text

    def test_duplicate_order_id_rejected(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        gateway_payment(service, student, event, 100, "order_dup")

        result = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("100"),
            payment_method=PaymentMethod.RAZORPAY, razorpay_order_id="order_dup",
        ))

        assert result.error.kind == ErrorKind.ALREADY_EXISTS


class TestVerification:
    """Tests for admin status transitions."""

    def test_verify_claimed_payment(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        claim = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("200"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        verified = service.set_status(claim.id, PaymentStatus.PAID).unwrap()

        assert verified.status == PaymentStatus.PAID
        assert service.get_payment(str(claim.id)).unwrap().status == PaymentStatus.PAID

    def test_reject_claimed_payment(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        claim = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("200"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        assert service.set_status(claim.id, PaymentStatus.FAILED).unwrap().status == PaymentStatus.FAILED

    def test_terminal_states_are_final(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        cash = record_cash(service, student, event, 100)

        for target in (PaymentStatus.FAILED, PaymentStatus.VERIFICATION_PENDING):
            result = service.set_status(cash.id, target)
            assert result.error.kind == ErrorKind.INVALID_TRANSITION

        assert service.get_payment(cash.id).unwrap().status == PaymentStatus.PAID

    def test_cannot_move_back_to_pending(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        payment = gateway_payment(service, student, event, 100, "order_2")

        result = service.set_status(payment.id, PaymentStatus.VERIFICATION_PENDING)

        assert result.error.kind == ErrorKind.INVALID_TRANSITION

    def test_synthetic_row_cannot_be_modified(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        result = service.set_status(synthetic_row_id(student.id, event.id), PaymentStatus.PAID)

        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        assert service.store.list_payments() == []

    def test_missing_payment(self):
        service = ReconciliationService()
        result = service.set_status(MISSING_ID, PaymentStatus.PAID)

        assert result.error.kind == ErrorKind.NOT_FOUND


class TestGatewayCapture:
    """Tests for webhook-driven capture."""

    def test_capture_marks_paid(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        gateway_payment(service, student, event, 500, "order_xyz")

        outcome = service.apply_gateway_capture("order_xyz", "pay_001").unwrap()

        assert outcome.applied is True
        assert outcome.payment.status == PaymentStatus.PAID
        assert outcome.payment.transaction_id == "pay_001"

    def test_capture_twice_is_idempotent(self):
        """A repeated webhook for order_abc leaves the ledger unchanged."""
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        payment = gateway_payment(service, student, event, 300, "order_abc")

        first = service.apply_gateway_capture("order_abc", "pay_abc").unwrap()
        state_after_first = service.get_payment(payment.id).unwrap()

        second = service.apply_gateway_capture("order_abc", "pay_abc")

        assert second.ok
        assert first.applied is True
        assert second.value.applied is False
        assert service.get_payment(payment.id).unwrap() == state_after_first
        assert len(service.store.list_payments()) == 1
        balance = service.get_student_payments(student.id).unwrap().payment_summary[0]
        assert balance.total_paid == Decimal("300")

    def test_unknown_order_is_not_found(self):
        service = ReconciliationService()
        result = service.apply_gateway_capture("order_missing", "pay_1")

        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_capture_arguments_must_be_strings(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        payment = gateway_payment(service, student, event, 300, "order_typed")

        result = service.apply_gateway_capture("order_typed", 12345)

        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        stored = service.get_payment(payment.id).unwrap()
        assert stored.status == PaymentStatus.PENDING
        assert stored.transaction_id is None

    def test_failed_payment_stays_failed(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        payment = gateway_payment(service, student, event, 300, "order_f")
        service.set_status(payment.id, PaymentStatus.FAILED).unwrap()

        outcome = service.apply_gateway_capture("order_f", "pay_late").unwrap()

        assert outcome.applied is False
        assert service.get_payment(payment.id).unwrap().status == PaymentStatus.FAILED


class TestCashPayments:
    """Tests for manually recorded cash."""

    def test_cash_is_paid_immediately(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        paid_on = datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc)

        payment = service.record_cash_payment(RecordCashPaymentRequest(
            student_id=student.id,
            event_id=event.id,
            amount=Decimal("200"),
            payment_date=paid_on,
            receipt_number="RC-17",
            notes="Collected in class",
            recorded_by="rep@school.test",
        )).unwrap()

        assert payment.status == PaymentStatus.PAID
        assert payment.payment_method == PaymentMethod.CASH
        assert payment.is_manual_entry is True
        assert payment.receipt_number == "RC-17"
        assert payment.manual_entry_notes == "Collected in class"
        assert payment.payment_date == paid_on

    def test_cash_amount_must_be_positive(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])

        result = service.record_cash_payment(RecordCashPaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("0"),
        ))

        assert result.error.kind == ErrorKind.VALIDATION_ERROR


class TestPrintDistribution:
    """Tests for print hand-outs."""

    def test_second_distribution_rejected(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 50, [student], category=EventCategory.PRINT)

        first = service.distribute_print(student.id, event.id)
        second = service.distribute_print(student.id, event.id)

        assert first.ok
        assert second.error.kind == ErrorKind.ALREADY_DISTRIBUTED
        assert len(service.store.list_distributions(event_id=event.id)) == 1

    def test_normal_event_rejected(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 50, [student])

        result = service.distribute_print(student.id, event.id)

        assert result.error.kind == ErrorKind.VALIDATION_ERROR

    def test_print_overview(self):
        service = ReconciliationService()
        a = add_student(service, "R001", "Asha")
        b = add_student(service, "R002", "Bilal")
        event = create_event(service, 50, [a, b], category=EventCategory.PRINT)
        record_cash(service, a, event, 50)
        service.distribute_print(a.id, event.id).unwrap()

        overview = service.get_print_overview(event.id).unwrap()

        assert overview.distributed_count == 1
        by_name = {r.student.name: r for r in overview.recipients}
        assert by_name["Asha"].distributed is True
        assert by_name["Asha"].balance_status == BalanceStatus.FULLY_PAID
        assert by_name["Bilal"].distributed is False
        assert by_name["Bilal"].balance_status == BalanceStatus.UNPAID


class TestEventPaymentListing:
    """Tests for synthetic pending rows in the event listing."""

    def test_partial_payer_gets_pending_row(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        record_cash(service, student, event, 200)
        record_cash(service, student, event, 150)

        view = service.get_event_payments(event.id).unwrap()
        synthetic = [r for r in view.transactions if r.kind == "synthetic_pending"]

        assert len(synthetic) == 1
        assert synthetic[0].id == f"pending_{student.id}_{event.id}"
        assert synthetic[0].amount == Decimal("150")
        assert synthetic[0].status == PaymentStatus.PENDING
        assert len([r for r in view.transactions if r.kind == "payment"]) == 2

    def test_fully_paid_student_has_no_pending_row(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        record_cash(service, student, event, 500)

        view = service.get_event_payments(event.id).unwrap()

        assert [r.kind for r in view.transactions] == ["payment"]

    def test_verification_pending_does_not_clear_balance(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("500"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        view = service.get_event_payments(event.id).unwrap()
        synthetic = [r for r in view.transactions if r.kind == "synthetic_pending"]

        assert synthetic[0].amount == Decimal("500")

    def test_zero_cost_event_has_no_pending_rows(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        event = create_event(service, 0, [student])

        assert service.get_event_payments(event.id).unwrap().transactions == []

    def test_synthetic_rows_are_not_persisted(self):
        service = ReconciliationService()
        a = add_student(service, "R001")
        b = add_student(service, "R002")
        event = create_event(service, 100, [a, b])

        first = service.get_event_payments(event.id).unwrap()
        second = service.get_event_payments(event.id).unwrap()

        assert len(first.transactions) == 2
        assert service.store.list_payments() == []
        assert {r.id for r in first.transactions} == {r.id for r in second.transactions}

    def test_missing_event(self):
        service = ReconciliationService()
        assert service.get_event_payments(MISSING_ID).error.kind == ErrorKind.NOT_FOUND


class TestStudentViews:
    """Tests for per-student summaries and the public lookup."""

    def test_student_payment_summary(self):
        service = ReconciliationService()
        student = add_student(service, "R001")
        trip = create_event(service, 500, [student], name="Trip")
        create_event(service, 0, [student], name="Free Workshop")
        record_cash(service, student, trip, 200)
        record_cash(service, student, trip, 150)

        view = service.get_student_payments(student.id).unwrap()
        summary = {b.event_name: b for b in view.payment_summary}

        assert len(view.transactions) == 2
        assert summary["Trip"].total_paid == Decimal("350")
        assert summary["Trip"].pending_amount == Decimal("150")
        assert summary["Trip"].status == BalanceStatus.PARTIALLY_PAID
        assert summary["Free Workshop"].status == BalanceStatus.UNPAID
        assert summary["Free Workshop"].pending_amount == Decimal("0")

    def test_public_lookup_is_case_insensitive(self):
        service = ReconciliationService()
        add_student(service, "CS-101", "Meera Nair")
        add_student(service, "CS-102", "Rahul Menon")
        add_student(service, "EE-201", "Meena Iyer")

        by_name = service.public_status_lookup("MEE").unwrap()
        by_roll = service.public_status_lookup("cs-10").unwrap()

        assert [r.name for r in by_name] == ["Meera Nair", "Meena Iyer"]
        assert [r.roll_no for r in by_roll] == ["CS-101", "CS-102"]

    def test_public_lookup_is_bounded(self):
        service = ReconciliationService(search_limit=3)
        for i in range(6):
            add_student(service, f"R00{i}")

        assert len(service.public_status_lookup("r00").unwrap()) == 3
        assert len(service.public_status_lookup("r00", limit=5).unwrap()) == 5

    def test_public_lookup_errors(self):
        service = ReconciliationService()
        add_student(service, "R001", "Asha")

        assert service.public_status_lookup("   ").error.kind == ErrorKind.VALIDATION_ERROR
        assert service.public_status_lookup("zzz").error.kind == ErrorKind.NOT_FOUND

    def test_payment_page_excludes_settled_students(self):
        service = ReconciliationService()
        a = add_student(service, "R001")
        b = add_student(service, "R002")
        c = add_student(service, "R003")
        event = create_event(service, 300, [a, b, c])
        record_cash(service, a, event, 300)
        record_cash(service, b, event, 100)
        service.create_payment(CreatePaymentRequest(
            student_id=c.id, event_id=event.id, amount=Decimal("300"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        page = service.get_payment_page_data(event.id).unwrap()
        paid_by_roll = {s.student.roll_no: s.paid_amount for s in page.available_students}

        assert paid_by_roll == {"R002": Decimal("100"), "R003": Decimal("0")}


class RecordingNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, email):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(email)


class TestNotifications:
    """Tests for payment emails."""

    def test_claim_sends_submitted_email(self):
        notifier = RecordingNotifier()
        service = ReconciliationService(notifier=notifier)
        student = add_student(service, "R001", "Asha")
        event = create_event(service, 500, [student])

        service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("200"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        assert [e.template for e in notifier.sent] == ["payment_submitted"]
        assert notifier.sent[0].to == "r001@school.test"
        assert notifier.sent[0].subject == 'Your payment for "Farewell" has been submitted'
        assert "pending verification" in notifier.sent[0].body

    def test_gateway_order_sends_nothing_until_captured(self):
        notifier = RecordingNotifier()
        service = ReconciliationService(notifier=notifier)
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        gateway_payment(service, student, event, 300, "order_mail")

        assert notifier.sent == []

        service.apply_gateway_capture("order_mail", "pay_1").unwrap()
        service.apply_gateway_capture("order_mail", "pay_1").unwrap()

        assert [e.template for e in notifier.sent] == ["payment_received"]

    def test_approval_sends_approved_email(self):
        notifier = RecordingNotifier()
        service = ReconciliationService(notifier=notifier)
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        approved = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("200"),
            payment_method=PaymentMethod.QR,
        )).unwrap()
        rejected = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("100"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        service.set_status(approved.id, PaymentStatus.PAID).unwrap()
        service.set_status(rejected.id, PaymentStatus.FAILED).unwrap()

        templates = [e.template for e in notifier.sent]
        assert templates == ["payment_submitted", "payment_submitted", "payment_approved"]
        assert notifier.sent[-1].amount == Decimal("200")

    def test_student_without_email_is_skipped(self):
        notifier = RecordingNotifier()
        service = ReconciliationService(notifier=notifier)
        student = service.add_student(CreateStudentRequest(name="No Mail", roll_no="R009")).unwrap()
        event = create_event(service, 500, [student])

        result = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("50"),
            payment_method=PaymentMethod.QR,
        ))

        assert result.ok
        assert notifier.sent == []

    def test_delivery_failure_does_not_fail_the_payment(self, caplog):
        service = ReconciliationService(notifier=RecordingNotifier(fail=True))
        student = add_student(service, "R001")
        event = create_event(service, 500, [student])
        claim = service.create_payment(CreatePaymentRequest(
            student_id=student.id, event_id=event.id, amount=Decimal("200"),
            payment_method=PaymentMethod.QR,
        )).unwrap()

        with caplog.at_level(logging.ERROR):
            result = service.set_status(claim.id, PaymentStatus.PAID)

        assert result.ok
        assert service.get_payment(claim.id).unwrap().status == PaymentStatus.PAID
        assert "Failed to send payment_approved email" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
