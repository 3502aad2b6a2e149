from datetime import date
from typing import Callable, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware

from gateway import CheckoutSession, RazorpayGateway, WebhookOutcome, handle_webhook, start_checkout

from .config import Settings, get_settings
from .errors import ErrorKind, GatewayError, Result
from .logging_config import configure_logging
from .models import (
    CreateEventRequest, CreateOrderRequest, CreatePaymentRequest, CreateStudentRequest,
    DistributePrintRequest, Event, EventPaymentsView, EventStats, ImportSummary, Payment,
    PaymentPageData, PrintDistribution, PrintOverview, PublicStudentStatus, RecordCashPaymentRequest,
    Report, ReportFilters, SaveDraftRequest, Student, StudentPaymentsView, UpdatePaymentStatusRequest,
)
from .reports import ReportAggregator, export_to_csv
from .service import ReconciliationService

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SIGNATURE_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_DISTRIBUTED: status.HTTP_409_CONFLICT,
    ErrorKind.STORE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.GATEWAY_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

router = APIRouter()


def unwrap(result: Result):
    if result.ok:
        return result.value
    raise HTTPException(status_code=STATUS_BY_KIND[result.error.kind], detail=result.error.message)


def get_service(request: Request) -> ReconciliationService:
    return request.app.state.service


def get_reports(request: Request) -> ReportAggregator:
    return request.app.state.reports


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "fund-reconciliation"}


# Students

@router.post("/students", response_model=Student, status_code=status.HTTP_201_CREATED, tags=["Students"])
def add_student(request: CreateStudentRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.add_student(request))


@router.post("/students/import", response_model=ImportSummary, tags=["Students"])
def import_students(requests: list[CreateStudentRequest], service: ReconciliationService = Depends(get_service)):
    return unwrap(service.import_students(requests))


@router.get("/students", response_model=list[Student], tags=["Students"])
def list_students(service: ReconciliationService = Depends(get_service)):
    return unwrap(service.list_students())


@router.get("/students/{student_id}", response_model=Student, tags=["Students"])
def get_student(student_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_student(student_id))


@router.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, tags=["Students"])
def delete_student(student_id: UUID, service: ReconciliationService = Depends(get_service)):
    unwrap(service.delete_student(student_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/students/{student_id}/payments", response_model=StudentPaymentsView, tags=["Students"])
def get_student_payments(student_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_student_payments(student_id))


# Events

@router.post("/events", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
def create_event(request: CreateEventRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.create_event(request))


@router.post("/events/drafts", response_model=Event, tags=["Events"])
def save_draft(request: SaveDraftRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.save_draft(request))


@router.get("/events", response_model=list[EventStats], tags=["Events"])
def list_events(service: ReconciliationService = Depends(get_service)):
    return unwrap(service.list_events())


@router.get("/events/{event_id}", response_model=Event, tags=["Events"])
def get_event(event_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_event(event_id))


@router.put("/events/{event_id}", response_model=Event, tags=["Events"])
def update_event(event_id: UUID, request: CreateEventRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.update_event(event_id, request))


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, tags=["Events"])
def delete_event(event_id: UUID, service: ReconciliationService = Depends(get_service)):
    unwrap(service.delete_event(event_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/events/{event_id}/payments", response_model=EventPaymentsView, tags=["Events"])
def get_event_payments(event_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_event_payments(event_id))


@router.get("/events/{event_id}/payment-page", response_model=PaymentPageData, tags=["Events"])
def get_payment_page_data(event_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_payment_page_data(event_id))


@router.get("/events/{event_id}/prints", response_model=PrintOverview, tags=["Prints"])
def get_print_overview(event_id: UUID, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.get_print_overview(event_id))


# Payments

@router.post("/payments", response_model=Payment, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def create_payment(request: CreatePaymentRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.create_payment(request))


@router.post("/payments/cash", response_model=Payment, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def record_cash_payment(request: RecordCashPaymentRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.record_cash_payment(request))


@router.patch("/payments/{payment_id}/status", response_model=Payment, tags=["Payments"])
def update_payment_status(
    payment_id: str,
    request: UpdatePaymentStatusRequest,
    service: ReconciliationService = Depends(get_service),
):
    return unwrap(service.set_status(payment_id, request.status))


@router.post("/prints/distribute", response_model=PrintDistribution, status_code=status.HTTP_201_CREATED, tags=["Prints"])
def distribute_print(request: DistributePrintRequest, service: ReconciliationService = Depends(get_service)):
    return unwrap(service.distribute_print(request.student_id, request.event_id))


@router.get("/public/status", response_model=list[PublicStudentStatus], tags=["Public"])
def public_status(q: str = Query(..., min_length=1), service: ReconciliationService = Depends(get_service)):
    return unwrap(service.public_status_lookup(q))


# Reports

@router.post("/reports/transactions", response_model=Report, tags=["Reports"])
def transaction_report(filters: ReportFilters, reports: ReportAggregator = Depends(get_reports)):
    return unwrap(reports.transaction_report(filters))


@router.post("/reports/transactions/csv", tags=["Reports"])
def transaction_report_csv(filters: ReportFilters, reports: ReportAggregator = Depends(get_reports)):
    report = unwrap(reports.transaction_report(filters))
    export = export_to_csv(report.rows, "transactions_report", summary=report.summary)
    return Response(
        content=export.content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get("/reports/events/{event_id}", response_model=Report, tags=["Reports"])
def event_report(
    event_id: UUID,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    reports: ReportAggregator = Depends(get_reports),
):
    return unwrap(reports.event_report(event_id, date_from, date_to))


@router.get("/reports/students/{student_id}", response_model=Report, tags=["Reports"])
def student_report(student_id: UUID, reports: ReportAggregator = Depends(get_reports)):
    return unwrap(reports.student_report(student_id))


@router.post("/reports/summary", response_model=Report, tags=["Reports"])
def transaction_summary(filters: ReportFilters, reports: ReportAggregator = Depends(get_reports)):
    return unwrap(reports.transaction_summary(filters))


@router.post("/reports/student-wise", response_model=Report, tags=["Reports"])
def student_wise_report(filters: ReportFilters, reports: ReportAggregator = Depends(get_reports)):
    return unwrap(reports.student_wise_report(filters))


# Gateway

@router.post("/gateway/orders", response_model=CheckoutSession, tags=["Gateway"])
def create_order(
    order_request: CreateOrderRequest,
    request: Request,
    service: ReconciliationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    try:
        gateway = request.app.state.gateway_factory(settings)
    except GatewayError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return unwrap(start_checkout(service, gateway, order_request))


@router.post("/gateway/webhook", response_model=WebhookOutcome, response_model_exclude_none=True, tags=["Gateway"])
async def gateway_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    raw_body = await request.body()
    signature = request.headers.get("x-razorpay-signature")
    return unwrap(handle_webhook(service, raw_body, signature, settings.razorpay_webhook_secret))


def create_app(
    service: Optional[ReconciliationService] = None,
    settings: Optional[Settings] = None,
    gateway_factory: Callable[[Settings], RazorpayGateway] = RazorpayGateway.from_settings,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Class Fund Reconciliation API",
        description="Fee collection reconciliation: balances, payment verification, gateway webhooks and reports",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    service = service or ReconciliationService(search_limit=settings.public_search_limit)
    app.state.settings = settings
    app.state.service = service
    app.state.reports = ReportAggregator(service.store)
    app.state.gateway_factory = gateway_factory
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
