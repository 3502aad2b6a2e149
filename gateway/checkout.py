import logging

from reconciliation.errors import GatewayError, PaymentValidationError, Result
from reconciliation.models import CreateOrderRequest, CreatePaymentRequest, PaymentMethod, PaymentStatus
from reconciliation.service import ReconciliationService

from .models import CheckoutSession
from .razorpay_gateway import RazorpayGateway

logger = logging.getLogger(__name__)


def start_checkout(
    service: ReconciliationService,
    gateway: RazorpayGateway,
    request: CreateOrderRequest,
) -> Result[CheckoutSession]:
    """Create a gateway order and the Pending payment the capture webhook will settle."""
    student = service.get_student(request.student_id)
    if not student.ok:
        return Result(error=student.error)
    event = service.get_event(request.event_id)
    if not event.ok:
        return Result(error=event.error)

    options = event.value.payment_options
    if options and PaymentMethod.RAZORPAY not in options:
        return Result.from_exception(PaymentValidationError("Online payment is not enabled for this event"))

    try:
        order = gateway.create_order(request.amount, request.event_id, request.student_id)
    except (GatewayError, PaymentValidationError) as e:
        return Result.from_exception(e)

    payment = service.create_payment(CreatePaymentRequest(
        student_id=request.student_id,
        event_id=request.event_id,
        amount=request.amount,
        payment_method=PaymentMethod.RAZORPAY,
        initial_status=PaymentStatus.PENDING,
        razorpay_order_id=order.order_id,
    ))
    if not payment.ok:
        logger.error("Order %s created but payment could not be recorded: %s", order.order_id, payment.error.message)
        return Result(error=payment.error)

    return Result.success(CheckoutSession(order=order, payment=payment.value, key_id=gateway.key_id))
