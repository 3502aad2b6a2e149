"""
Payment emails.

The engine builds the message; delivery belongs to whatever ``Notifier`` is
injected. The default notifier only logs, so a deployment without a mail
provider still records what would have been sent.
"""

import logging
from decimal import Decimal
from typing import Literal, Protocol

from pydantic import BaseModel

from .models import Event, Payment, Student

logger = logging.getLogger(__name__)

Template = Literal["payment_submitted", "payment_received", "payment_approved"]

SUBJECTS = {
    "payment_submitted": 'Your payment for "{event}" has been submitted',
    "payment_received": 'We received your payment for "{event}"',
    "payment_approved": 'Your payment for "{event}" has been approved!',
}

BODIES = {
    "payment_submitted": (
        "Hi {student},\n\n"
        'This email confirms that your payment of {amount} for the event "{event}" '
        "via {method} has been submitted successfully.\n\n"
        "It is now pending verification by your class representative. "
        "You will receive another email once it's approved."
    ),
    "payment_received": (
        "Hi {student},\n\n"
        'Your online payment of {amount} for the event "{event}" has been received.\n\n'
        "You're all set for this event."
    ),
    "payment_approved": (
        "Hi {student},\n\n"
        'Great news! Your payment of {amount} for the event "{event}" has been '
        "approved by your class representative.\n\n"
        "You're all set for this event."
    ),
}


class PaymentEmail(BaseModel):
    template: Template
    to: str
    subject: str
    body: str
    student_name: str
    event_name: str
    amount: Decimal


class Notifier(Protocol):
    def send(self, email: PaymentEmail) -> None: ...


class LoggingNotifier:
    def send(self, email: PaymentEmail) -> None:
        logger.info("Queued %s email to %s: %s", email.template, email.to, email.subject)


def build_payment_email(template: Template, student: Student, event: Event, payment: Payment) -> PaymentEmail:
    values = {
        "student": student.name,
        "event": event.name,
        "amount": f"₹{payment.amount}",
        "method": payment.payment_method.value,
    }
    return PaymentEmail(
        template=template,
        to=student.email,
        subject=SUBJECTS[template].format(**values),
        body=BODIES[template].format(**values),
        student_name=student.name,
        event_name=event.name,
        amount=payment.amount,
    )
