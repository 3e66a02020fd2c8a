import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from common.billing import next_invoice_number, refresh_booking_paid_amount
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import ensure_hotel_access, get_current_user, owned_hotel_ids, require_owned_hotel
from common.errors import add_error_handlers
from common.events import publish_event
from common.logging_middleware import add_audit_middleware
from common.models import (
    Booking,
    BookingStatus,
    Hotel,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    User,
)
from common.payment_gateway import MoyasarClient, PaymentGatewayError, get_gateway_client
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    BillingSummary,
    CaptureRequest,
    CheckoutRequest,
    CheckoutSession,
    DataResponse,
    DirectPaymentRequest,
    InvoiceCreate,
    InvoiceRead,
    InvoiceUpdate,
    PaymentCreateRequest,
    RefundRequest,
    WebhookAck,
)
from common.webhooks import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADERS,
    WebhookError,
    parse_event,
    process_event,
    verify_signature,
)

settings = get_settings()
logger = logging.getLogger(__name__)

GATEWAY_STATUSES = {
    "paid": PaymentStatus.COMPLETED,
    "captured": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def payment_gateway_error_handler(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    logger.error("Payment error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Billing Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    fastapi_app.add_exception_handler(PaymentGatewayError, payment_gateway_error_handler)
    add_audit_middleware(fastapi_app, "billing")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "billing"}


def _metadata_booking(db: Session, current_user: User, metadata: Dict[str, Any]) -> Optional[Booking]:
    """Booking named by ``metadata.booking_id``, checked against the caller's hotels."""
    raw = metadata.get("booking_id")
    if raw in (None, ""):
        return None
    try:
        booking = db.get(Booking, int(raw))
    except (TypeError, ValueError):
        booking = None
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    ensure_hotel_access(db, current_user, booking.hotel_id)
    return booking


def _record_gateway_payment(
    db: Session,
    booking: Booking,
    payment_id: str,
    amount: float,
    currency: str,
    payment_status: PaymentStatus,
    description: str,
) -> None:
    payment = Payment(
        hotel_id=booking.hotel_id,
        booking_id=booking.id,
        amount=amount,
        currency=currency,
        method=PaymentMethod.MOYASAR,
        status=payment_status,
        moyasar_payment_id=payment_id,
        reference=payment_id,
        notes=description,
    )
    db.add(payment)
    db.flush()
    if payment_status == PaymentStatus.COMPLETED:
        refresh_booking_paid_amount(db, booking.id)
    db.commit()
    publish_event(
        "payment_created",
        {"booking_id": booking.id, "moyasar_payment_id": payment_id, "status": payment_status.value},
    )


@app.post("/payments/checkout", response_model=DataResponse[CheckoutSession])
@limiter.limit("10/minute")
def create_checkout(
    request: Request,
    checkout_in: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    booking = _metadata_booking(db, current_user, checkout_in.metadata)
    metadata = {**checkout_in.metadata, "requested_by": current_user.id}
    if checkout_in.cancel_url:
        metadata["cancel_url"] = checkout_in.cancel_url
    session = gateway.create_checkout(
        amount=checkout_in.amount,
        currency=checkout_in.currency,
        description=checkout_in.description,
        metadata=metadata,
        callback_url=checkout_in.callback_url or f"{settings.site_url.rstrip('/')}/payments/callback",
    )
    logger.info("Checkout %s created for user %s", session["payment_id"], current_user.id)
    if booking is not None:
        _record_gateway_payment(
            db,
            booking,
            session["payment_id"],
            checkout_in.amount,
            session["currency"],
            PaymentStatus.PENDING,
            checkout_in.description,
        )
    return {"data": session}


@app.post("/payments/direct", response_model=DataResponse[Dict[str, Any]])
@limiter.limit("10/minute")
def create_direct_payment(
    request: Request,
    payment_in: DirectPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    booking = _metadata_booking(db, current_user, payment_in.metadata)
    source = {"type": "creditcard", **payment_in.source.model_dump()}
    payment = gateway.create_payment(
        amount=payment_in.amount,
        source=source,
        currency=payment_in.currency,
        description=payment_in.description,
        metadata=payment_in.metadata,
        callback_url=payment_in.callback_url,
    )
    if booking is not None and payment.get("id"):
        _record_gateway_payment(
            db,
            booking,
            payment["id"],
            payment_in.amount,
            payment.get("currency", gateway.currency),
            GATEWAY_STATUSES.get(payment.get("status"), PaymentStatus.PENDING),
            payment_in.description,
        )
    return {"data": payment}


@app.post("/payments", response_model=DataResponse[Dict[str, Any]], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_payment(
    request: Request,
    payment_in: PaymentCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    booking = _metadata_booking(db, current_user, payment_in.metadata)
    payment = gateway.create_payment(
        amount=payment_in.amount,
        source=payment_in.source.model_dump(),
        currency=payment_in.currency,
        description=payment_in.description,
        metadata=payment_in.metadata,
        callback_url=payment_in.callback_url,
        return_url=payment_in.return_url,
        installments=payment_in.installments,
    )
    if booking is not None and payment.get("id"):
        _record_gateway_payment(
            db,
            booking,
            payment["id"],
            payment_in.amount,
            payment.get("currency", gateway.currency),
            GATEWAY_STATUSES.get(payment.get("status"), PaymentStatus.PENDING),
            payment_in.description,
        )
    return {"data": payment}


def _owned_gateway_payment(db: Session, current_user: User, payment_id: str) -> Payment:
    """Local record of gateway payment ``payment_id``, checked against the caller's hotels."""
    payment = db.query(Payment).filter(Payment.moyasar_payment_id == payment_id).first()
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    ensure_hotel_access(db, current_user, payment.hotel_id)
    return payment


@app.get("/payments", response_model=DataResponse[Dict[str, Any]])
@limiter.limit("30/minute")
def list_gateway_payments(
    request: Request,
    page: int = 1,
    status_filter: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    hotel_ids = owned_hotel_ids(db, current_user)
    known_ids = set()
    if hotel_ids:
        rows = db.query(Payment.moyasar_payment_id).filter(
            Payment.hotel_id.in_(hotel_ids), Payment.moyasar_payment_id.isnot(None)
        )
        known_ids = {row[0] for row in rows}
    if not known_ids:
        return {"data": {"payments": [], "meta": {"current_page": page}}}
    listing = gateway.list_payments(page=page, status=status_filter)
    listing["payments"] = [item for item in listing.get("payments", []) if item.get("id") in known_ids]
    return {"data": listing}


@app.get("/payments/{payment_id}", response_model=DataResponse[Dict[str, Any]])
@limiter.limit("60/minute")
def get_gateway_payment(
    request: Request,
    payment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    _owned_gateway_payment(db, current_user, payment_id)
    return {"data": gateway.get_payment(payment_id)}


@app.post("/payments/{payment_id}/capture", response_model=DataResponse[Dict[str, Any]])
@limiter.limit("10/minute")
def capture_gateway_payment(
    request: Request,
    payment_id: str,
    capture_in: Optional[CaptureRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    _owned_gateway_payment(db, current_user, payment_id)
    amount = capture_in.amount if capture_in else None
    return {"data": gateway.capture_payment(payment_id, amount)}


@app.post("/payments/{payment_id}/refund", response_model=DataResponse[Dict[str, Any]])
@limiter.limit("10/minute")
def refund_gateway_payment(
    request: Request,
    payment_id: str,
    refund_in: Optional[RefundRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MoyasarClient = Depends(get_gateway_client),
) -> dict:
    _owned_gateway_payment(db, current_user, payment_id)
    refund_in = refund_in or RefundRequest()
    logger.info("User %s refunding payment %s", current_user.id, payment_id)
    return {"data": gateway.refund_payment(payment_id, refund_in.amount, refund_in.reason)}


async def raw_body(request: Request) -> bytes:
    return await request.body()


@app.post("/payments/webhook", response_model=WebhookAck)
def receive_webhook(
    request: Request,
    payload: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
) -> WebhookAck:
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = next((request.headers[name] for name in TIMESTAMP_HEADERS if request.headers.get(name)), None)
    try:
        verify_signature(get_settings().moyasar_webhook_secret, payload, signature, timestamp)
        data = parse_event(payload)
        outcome = process_event(db, data)
        db.commit()
    except WebhookError as exc:
        db.rollback()
        logger.warning("Webhook rejected: %s", exc)
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    logger.info("Webhook %s handled (processed=%s)", outcome.event, outcome.processed)
    if outcome.processed:
        publish_event("payment_webhook", {"event": outcome.event})
    return WebhookAck(processed=outcome.processed, event=outcome.event)


@app.get("/invoices", response_model=DataResponse[List[InvoiceRead]])
@limiter.limit("60/minute")
def list_invoices(
    request: Request,
    hotel_id: Optional[int] = None,
    status_filter: Optional[InvoiceStatus] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if hotel_id is not None:
        require_owned_hotel(db, current_user, hotel_id)
        hotel_ids = [hotel_id]
    else:
        hotel_ids = owned_hotel_ids(db, current_user)
    if not hotel_ids:
        return {"data": []}
    query = db.query(Invoice).filter(Invoice.hotel_id.in_(hotel_ids))
    if status_filter is not None:
        query = query.filter(Invoice.status == status_filter)
    return {"data": query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()}


@app.post("/invoices", response_model=DataResponse[InvoiceRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_invoice(
    request: Request,
    invoice_in: InvoiceCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, invoice_in.hotel_id)
    if invoice_in.booking_id is not None:
        booking = db.get(Booking, invoice_in.booking_id)
        if not booking or booking.hotel_id != invoice_in.hotel_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking does not belong to this hotel")
    invoice = Invoice(
        **invoice_in.model_dump(),
        invoice_number=next_invoice_number(db, invoice_in.hotel_id),
        total_amount=round(invoice_in.subtotal + invoice_in.tax_amount, 2),
        status=InvoiceStatus.DRAFT,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return {"data": invoice}


@app.put("/invoices/{invoice_id}", response_model=DataResponse[InvoiceRead])
@limiter.limit("20/minute")
def update_invoice(
    request: Request,
    invoice_id: int,
    invoice_update: InvoiceUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    ensure_hotel_access(db, current_user, invoice.hotel_id)
    data = invoice_update.model_dump(exclude_unset=True)
    for key, value in data.items():
        setattr(invoice, key, value)
    if data.get("status") == InvoiceStatus.PAID and invoice.paid_at is None:
        invoice.paid_at = datetime.utcnow()
    db.commit()
    db.refresh(invoice)
    return {"data": invoice}


@app.get("/reports/billing", response_model=DataResponse[BillingSummary])
@limiter.limit("20/minute")
def billing_report(
    request: Request,
    hotel_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotel: Hotel = require_owned_hotel(db, current_user, hotel_id)
    if start and end and end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End date must not be before start date")

    payments = db.query(Payment).filter(Payment.hotel_id == hotel.id)
    bookings = db.query(Booking).filter(Booking.hotel_id == hotel.id, Booking.status != BookingStatus.CANCELLED)
    if start:
        payments = payments.filter(Payment.created_at >= datetime.combine(start, time.min))
        bookings = bookings.filter(Booking.check_in >= start)
    if end:
        payments = payments.filter(Payment.created_at < datetime.combine(end + timedelta(days=1), time.min))
        bookings = bookings.filter(Booking.check_in <= end)

    collected = 0.0
    refunded = 0.0
    by_method: Dict[str, float] = {}
    rows = payments.all()
    for payment in rows:
        if payment.status == PaymentStatus.COMPLETED:
            collected += payment.amount
            by_method[payment.method.value] = round(by_method.get(payment.method.value, 0) + payment.amount, 2)
        elif payment.status == PaymentStatus.REFUNDED:
            refunded += payment.amount

    totals = bookings.with_entities(
        func.coalesce(func.sum(Booking.total_amount), 0),
        func.coalesce(func.sum(Booking.paid_amount), 0),
    ).one()
    bookings_total = float(totals[0] or 0)
    bookings_paid = float(totals[1] or 0)
    summary = BillingSummary(
        hotel_id=hotel.id,
        start=start,
        end=end,
        payments_count=len(rows),
        total_collected=round(collected, 2),
        total_refunded=round(refunded, 2),
        by_method=by_method,
        bookings_total=round(bookings_total, 2),
        outstanding=round(max(bookings_total - bookings_paid, 0), 2),
    )
    return {"data": summary}
