from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class PaymentMethod(str, Enum):
    RAZORPAY = "Razorpay"
    QR = "QR"
    CASH = "Cash"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    VERIFICATION_PENDING = "Verification Pending"
    PAID = "Paid"
    FAILED = "Failed"


TERMINAL_STATUSES = (PaymentStatus.PAID, PaymentStatus.FAILED)


class EventCategory(str, Enum):
    NORMAL = "Normal"
    PRINT = "Print"


class EventStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"


class BalanceStatus(str, Enum):
    FULLY_PAID = "Fully Paid"
    PARTIALLY_PAID = "Partially Paid"
    UNPAID = "Unpaid"


class Student(BaseModel):
    id: UUID
    name: str
    roll_no: str
    email: str = ""
    class_name: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Event(BaseModel):
    id: UUID
    name: str
    description: str = ""
    cost: Decimal = Field(..., ge=0)
    deadline: Optional[datetime] = None
    category: EventCategory = EventCategory.NORMAL
    status: EventStatus = EventStatus.PUBLISHED
    payment_options: list[PaymentMethod] = Field(default_factory=list)
    qr_code_url: Optional[str] = None
    participant_ids: list[UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Payment(BaseModel):
    id: UUID
    student_id: UUID
    event_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    payment_date: datetime
    screenshot_url: Optional[str] = None
    is_manual_entry: bool = False
    recorded_by: Optional[str] = None
    manual_entry_notes: Optional[str] = None
    receipt_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: PaymentStatus) -> bool:
        return not self.is_terminal() and new_status in TERMINAL_STATUSES


class PrintDistribution(BaseModel):
    id: UUID
    student_id: UUID
    event_id: UUID
    distributed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventBalance(BaseModel):
    student_id: UUID
    event_id: UUID
    event_name: str
    event_cost: Decimal
    total_paid: Decimal
    pending_amount: Decimal
    status: BalanceStatus


# Requests

class CreateStudentRequest(BaseModel):
    name: str = Field(..., min_length=1)
    roll_no: str = Field(..., min_length=1)
    email: str = ""
    class_name: str = ""


class CreateEventRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    cost: Decimal = Field(..., ge=0)
    deadline: datetime
    category: EventCategory = EventCategory.NORMAL
    payment_options: list[PaymentMethod] = Field(default_factory=list)
    qr_code_url: Optional[str] = None
    participant_ids: list[UUID] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Farewell Party",
            "description": "Contribution for the class farewell",
            "cost": 500.00,
            "deadline": "2026-11-30T18:00:00Z",
            "category": "Normal",
            "payment_options": ["Razorpay", "QR", "Cash"],
            "participant_ids": ["550e8400-e29b-41d4-a716-446655440000"]
        }
    })


class SaveDraftRequest(BaseModel):
    id: Optional[UUID] = None
    name: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, ge=0)
    deadline: Optional[datetime] = None
    category: Optional[EventCategory] = None
    payment_options: Optional[list[PaymentMethod]] = None
    qr_code_url: Optional[str] = None
    participant_ids: Optional[list[UUID]] = None


class CreatePaymentRequest(BaseModel):
    student_id: UUID
    event_id: UUID
    amount: Decimal
    payment_method: PaymentMethod
    initial_status: Optional[PaymentStatus] = None
    transaction_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    screenshot_url: Optional[str] = None


class UpdatePaymentStatusRequest(BaseModel):
    status: PaymentStatus


class RecordCashPaymentRequest(BaseModel):
    student_id: UUID
    event_id: UUID
    amount: Decimal
    payment_date: Optional[datetime] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class DistributePrintRequest(BaseModel):
    student_id: UUID
    event_id: UUID


class CreateOrderRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    event_id: UUID = Field(..., alias="eventId")
    student_id: UUID = Field(..., alias="studentId")

    model_config = ConfigDict(populate_by_name=True)


# Views

class RealPaymentRow(BaseModel):
    kind: Literal["payment"] = "payment"
    id: str
    payment: Payment
    student_name: str
    student_roll: str

    @property
    def payment_date(self) -> datetime:
        return self.payment.payment_date


class SyntheticPendingRow(BaseModel):
    """Outstanding balance of a participant, rebuilt on every read."""

    kind: Literal["synthetic_pending"] = "synthetic_pending"
    id: str
    student_id: UUID
    event_id: UUID
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = "N/A"
    transaction_id: str = "N/A"
    payment_date: datetime
    student_name: str
    student_roll: str


TransactionRow = Annotated[
    Union[RealPaymentRow, SyntheticPendingRow],
    Field(discriminator="kind"),
]


class EventStats(BaseModel):
    event: Event
    total_collected: Decimal
    total_pending: Decimal
    participant_count: int
    paid_count: int
    pending_count: int


class EventPaymentsView(BaseModel):
    event: Event
    transactions: list[TransactionRow]


class StudentPaymentsView(BaseModel):
    student: Student
    transactions: list[Payment]
    payment_summary: list[EventBalance]


class AvailableStudent(BaseModel):
    student: Student
    paid_amount: Decimal


class PaymentPageData(BaseModel):
    event: Event
    available_students: list[AvailableStudent]


class PublicStudentStatus(BaseModel):
    student_id: UUID
    name: str
    roll_no: str
    class_name: str
    payment_summary: list[EventBalance]


class PrintRecipient(BaseModel):
    student: Student
    balance_status: BalanceStatus
    distributed: bool
    distributed_at: Optional[datetime] = None


class PrintOverview(BaseModel):
    event: Event
    recipients: list[PrintRecipient]
    distributed_count: int


class ImportSummary(BaseModel):
    created: int
    skipped: int


class CaptureOutcome(BaseModel):
    payment: Payment
    applied: bool
    message: str


class ReportFilters(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    event_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    statuses: list[PaymentStatus] = Field(default_factory=list)
    payment_methods: list[PaymentMethod] = Field(default_factory=list)


class ReportSummary(BaseModel):
    total_transactions: int = 0
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")
    paid_count: int = 0
    pending_count: int = 0


class Report(BaseModel):
    title: str
    summary: dict
    rows: list[dict]


class CsvExport(BaseModel):
    filename: str
    content: bytes
