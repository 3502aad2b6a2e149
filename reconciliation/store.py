import copy
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Optional, Protocol
from uuid import UUID

from .models import Event, Payment, PrintDistribution, Student


class LedgerStore(Protocol):
    """
    Persistence boundary for the reconciliation engine.

    Implementations raise ``StoreError`` when the backing store fails.
    ``transaction()`` must make every write inside the block all-or-nothing.
    """

    def transaction(self) -> ContextManager[None]: ...

    def get_student(self, student_id: UUID) -> Optional[Student]: ...
    def find_student_by_roll(self, roll_no: str) -> Optional[Student]: ...
    def list_students(self) -> list[Student]: ...
    def save_student(self, student: Student) -> Student: ...
    def delete_student(self, student_id: UUID) -> None: ...

    def get_event(self, event_id: UUID) -> Optional[Event]: ...
    def list_events(self) -> list[Event]: ...
    def save_event(self, event: Event) -> Event: ...
    def delete_event(self, event_id: UUID) -> None: ...

    def get_payment(self, payment_id: UUID) -> Optional[Payment]: ...
    def find_payment_by_order_id(self, order_id: str) -> Optional[Payment]: ...
    def list_payments(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> list[Payment]: ...
    def save_payment(self, payment: Payment) -> Payment: ...
    def delete_payments(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> int: ...

    def find_distribution(self, student_id: UUID, event_id: UUID) -> Optional[PrintDistribution]: ...
    def list_distributions(self, event_id: Optional[UUID] = None) -> list[PrintDistribution]: ...
    def save_distribution(self, distribution: PrintDistribution) -> PrintDistribution: ...
    def delete_distributions(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> int: ...


class InMemoryStorage:
    """
    Dict-backed store. A transaction holds the store lock for the whole block,
    so a rollback only ever discards writes made inside that block.
    """

    def __init__(self):
        self.students: dict[UUID, dict] = {}
        self.events: dict[UUID, dict] = {}
        self.payments: dict[UUID, dict] = {}
        self.distributions: dict[UUID, dict] = {}
        self.order_index: dict[str, UUID] = {}
        self._lock = threading.RLock()

    def _tables(self) -> tuple:
        return (self.students, self.events, self.payments, self.distributions, self.order_index)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables())
            try:
                yield
            except BaseException:
                (self.students, self.events, self.payments,
                 self.distributions, self.order_index) = snapshot
                raise

    # Students

    def get_student(self, student_id: UUID) -> Optional[Student]:
        data = self.students.get(student_id)
        return Student(**data) if data else None

    def find_student_by_roll(self, roll_no: str) -> Optional[Student]:
        for data in self.students.values():
            if data["roll_no"] == roll_no:
                return Student(**data)
        return None

    def list_students(self) -> list[Student]:
        return [Student(**s) for s in self.students.values()]

    def save_student(self, student: Student) -> Student:
        self.students[student.id] = student.model_dump()
        return student

    def delete_student(self, student_id: UUID) -> None:
        self.students.pop(student_id, None)
        for event_data in self.events.values():
            if student_id in event_data["participant_ids"]:
                event_data["participant_ids"] = [
                    p for p in event_data["participant_ids"] if p != student_id
                ]

    # Events

    def get_event(self, event_id: UUID) -> Optional[Event]:
        data = self.events.get(event_id)
        return Event(**data) if data else None

    def list_events(self) -> list[Event]:
        return [Event(**e) for e in self.events.values()]

    def save_event(self, event: Event) -> Event:
        self.events[event.id] = event.model_dump()
        return event

    def delete_event(self, event_id: UUID) -> None:
        self.events.pop(event_id, None)

    # Payments

    def get_payment(self, payment_id: UUID) -> Optional[Payment]:
        data = self.payments.get(payment_id)
        return Payment(**data) if data else None

    def find_payment_by_order_id(self, order_id: str) -> Optional[Payment]:
        payment_id = self.order_index.get(order_id)
        if payment_id is None:
            return None
        return self.get_payment(payment_id)

    def list_payments(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> list[Payment]:
        return [
            Payment(**p) for p in self.payments.values()
            if (event_id is None or p["event_id"] == event_id)
            and (student_id is None or p["student_id"] == student_id)
        ]

    def save_payment(self, payment: Payment) -> Payment:
        self.payments[payment.id] = payment.model_dump()
        if payment.razorpay_order_id:
            self.order_index[payment.razorpay_order_id] = payment.id
        return payment

    def delete_payments(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> int:
        doomed = [p.id for p in self.list_payments(event_id=event_id, student_id=student_id)]
        for payment_id in doomed:
            data = self.payments.pop(payment_id)
            if data.get("razorpay_order_id"):
                self.order_index.pop(data["razorpay_order_id"], None)
        return len(doomed)

    # Print distributions

    def find_distribution(self, student_id: UUID, event_id: UUID) -> Optional[PrintDistribution]:
        for data in self.distributions.values():
            if data["student_id"] == student_id and data["event_id"] == event_id:
                return PrintDistribution(**data)
        return None

    def list_distributions(self, event_id: Optional[UUID] = None) -> list[PrintDistribution]:
        return [
            PrintDistribution(**d) for d in self.distributions.values()
            if event_id is None or d["event_id"] == event_id
        ]

    def save_distribution(self, distribution: PrintDistribution) -> PrintDistribution:
        self.distributions[distribution.id] = distribution.model_dump()
        return distribution

    def delete_distributions(self, event_id: Optional[UUID] = None, student_id: Optional[UUID] = None) -> int:
        doomed = [
            d_id for d_id, d in self.distributions.items()
            if (event_id is None or d["event_id"] == event_id)
            and (student_id is None or d["student_id"] == student_id)
        ]
        for d_id in doomed:
            del self.distributions[d_id]
        return len(doomed)
