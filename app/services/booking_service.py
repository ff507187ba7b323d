import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    StaleTransition,
)
from app.models.booking import Booking, BookingStatus
from app.models.customer import Customer
from app.models.payment import Payment, PaymentStatus
from app.models.session_type import SessionType
from app.models.tenant import Tenant
from app.services.audit_service import log_audit
from app.services.booking_lifecycle import (
    MANUAL_CANCEL,
    apply_payment_transition,
    apply_transition,
    can_apply,
    initial_status,
)
from app.services.business_hours_service import fits_business_hours
from app.services.customer_service import find_or_create_by_email
from app.services.fee_service import FeeBreakdown, calculate_fees
from app.services.notification_service import notify_confirmed_safely
from app.services.settings_service import get_platform_fee_percentage
from app.services.slot_service import as_utc, is_slot_available

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    booking: Booking
    payment: Payment | None
    fees: FeeBreakdown
    checkout_url: str | None = None


def create_booking(
    db: Session,
    tenant_id: str,
    session_type_id: str,
    start_time: datetime,
    *,
    gateway,
    notifier,
    participants: int = 1,
    notes: str = "",
    customer_timezone: str = "",
    customer_id: str | None = None,
    email: str | None = None,
    first_name: str = "",
    last_name: str = "",
    phone: str = "",
    actor: str = "public",
) -> AdmissionResult:
    """Admit a booking request and persist it as CONFIRMED or PENDING_PAYMENT.

    Free sessions (or PAYMENTS_ENABLED=false) are confirmed immediately and the
    confirmation is dispatched after commit. Priced sessions get a PENDING
    payment tied to a new gateway checkout session, committed together with the
    booking. Rejections raise NotFound / SlotUnavailable / InvalidRequest and
    leave nothing behind.
    """
    if participants < 1:
        raise InvalidRequest("participants must be >= 1")

    try:
        # Serialises admissions per tenant so check-then-insert cannot double-book
        tenant = db.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        ).scalar_one_or_none()
        if not tenant:
            raise NotFound("tenant not found")

        st = db.scalar(select(SessionType).where(
            SessionType.id == session_type_id,
            SessionType.tenant_id == tenant_id,
        ))
        if not st or not st.is_active:
            raise NotFound("session type not found")

        start = as_utc(start_time)
        end = start + timedelta(minutes=st.duration_minutes)

        if not is_slot_available(db, tenant_id, start, end):
            raise SlotUnavailable("This time slot is not available. Please choose another time.")
        if settings.BOOKING_ENFORCE_BUSINESS_HOURS and not fits_business_hours(db, tenant_id, start, end):
            raise SlotUnavailable("The business is closed at this time. Please choose another time.")

        if customer_id:
            customer = db.get(Customer, customer_id)
            if not customer:
                raise NotFound("customer not found")
        elif email:
            customer = find_or_create_by_email(db, email, first_name, last_name, phone)
        else:
            raise InvalidRequest("Customer information is required")

        price = Decimal(st.price or 0)
        fees = calculate_fees(price, get_platform_fee_percentage(db, tenant))
        payment_required = settings.PAYMENTS_ENABLED and price > 0

        booking = Booking(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            customer_id=customer.id,
            session_type_id=st.id,
            start_time=start,
            end_time=end,
            status=initial_status(payment_required),
            participants=participants,
            notes=notes or "",
            customer_timezone=customer_timezone or "",
        )
        db.add(booking)
        db.flush()

        payment = None
        checkout_url = None
        if payment_required:
            checkout = gateway.create_checkout_session(
                booking_id=booking.id,
                tenant_id=tenant_id,
                session_type_id=st.id,
                product_name=st.name,
                total_amount=fees.total_amount,
                currency=st.currency,
                customer_email=customer.email,
                metadata=fees.as_metadata(),
            )
            payment = Payment(
                id=str(uuid.uuid4()),
                booking_id=booking.id,
                tenant_id=tenant_id,
                customer_id=customer.id,
                amount=fees.total_amount,
                currency=st.currency,
                platform_fee=fees.platform_fee,
                business_amount=fees.business_amount,
                status=PaymentStatus.PENDING,
                checkout_session_id=checkout.id,
            )
            db.add(payment)
            checkout_url = checkout.url

        log_audit(db, actor=actor, action="booking.created", entity_type="booking", entity_id=booking.id, details={
            "status": booking.status.value,
            "sessionTypeId": st.id,
            "start": start.isoformat(),
            "totalAmount": str(fees.total_amount),
            "paymentsEnabled": settings.PAYMENTS_ENABLED,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    if payment is not None:
        db.refresh(payment)
    logger.info(
        "Booking %s created for tenant %s with status %s (payments enabled: %s, price: %s)",
        booking.id, tenant_id, booking.status.value, settings.PAYMENTS_ENABLED, price,
    )

    if booking.status == BookingStatus.CONFIRMED:
        if not notify_confirmed_safely(notifier, booking.id, db):
            db.refresh(booking)
    else:
        logger.info("Confirmation for booking %s waits for payment", booking.id)

    return AdmissionResult(booking=booking, payment=payment, fees=fees, checkout_url=checkout_url)


def get_booking(db: Session, tenant_id: str, booking_id: str) -> Booking:
    b = db.scalar(select(Booking).where(Booking.id == booking_id, Booking.tenant_id == tenant_id))
    if not b:
        raise NotFound("booking not found")
    return b


def get_payment_for_booking(db: Session, tenant_id: str, booking_id: str) -> Payment:
    p = db.scalar(select(Payment).where(Payment.booking_id == booking_id, Payment.tenant_id == tenant_id))
    if not p:
        raise NotFound("payment not found")
    return p


def list_bookings(db: Session, tenant_id: str, status: BookingStatus | None = None) -> list[Booking]:
    q = select(Booking).where(Booking.tenant_id == tenant_id)
    if status is not None:
        q = q.where(Booking.status == status)
    return list(db.scalars(q.order_by(Booking.start_time.desc())))


def list_upcoming_bookings(db: Session, tenant_id: str, now: datetime | None = None) -> list[Booking]:
    now = as_utc(now or datetime.now(timezone.utc))
    return list(db.scalars(
        select(Booking)
        .where(Booking.tenant_id == tenant_id, Booking.start_time >= now)
        .order_by(Booking.start_time.asc())
    ))


def cancel_booking(db: Session, tenant_id: str, booking_id: str, reason: str = "", actor: str = "business") -> Booking:
    b = get_booking(db, tenant_id, booking_id)
    if not can_apply(MANUAL_CANCEL, b.status):
        raise InvalidTransition(f"booking is already {b.status.value}")

    try:
        apply_transition(
            db, b.id, MANUAL_CANCEL,
            cancellation_reason=reason or None,
            cancelled_at=datetime.now(timezone.utc),
            cancelled_by=actor,
        )
        payment_cancelled = apply_payment_transition(db, b.id, MANUAL_CANCEL)
        log_audit(db, actor=actor, action="booking.cancelled", entity_type="booking", entity_id=b.id, details={
            "reason": reason,
            "paymentCancelled": payment_cancelled,
        })
        db.commit()
    except StaleTransition as e:
        db.rollback()
        raise InvalidTransition(f"booking is already {e.actual}") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(b)
    logger.info("Booking %s cancelled by %s", b.id, actor)
    return b
