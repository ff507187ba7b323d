"""Booking status transitions.

Each transition names the statuses it may start from, the status it lands on,
what happens to the booking's payment row and whether a confirmation should be
sent. Applying a transition is a single conditional UPDATE, so two concurrent
webhook deliveries can never both move the same booking.
"""
import enum
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import StaleTransition
from app.models.booking import Booking, BookingStatus
from app.models.payment import Payment, PaymentStatus


class GatewayEventKind(str, enum.Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CHECKOUT_EXPIRED_OR_CANCELLED = "checkout_expired_or_cancelled"
    # A declined attempt inside a still-open checkout; the customer may retry
    PAYMENT_ATTEMPT_FAILED = "payment_attempt_failed"


@dataclass(frozen=True)
class Transition:
    name: str
    sources: tuple[BookingStatus, ...]
    target: BookingStatus
    payment_sources: tuple[PaymentStatus, ...] = ()
    payment_target: PaymentStatus | None = None
    notify_confirmed: bool = False
    defaults: dict = field(default_factory=dict)


GATEWAY_TRANSITIONS: dict[GatewayEventKind, Transition] = {
    GatewayEventKind.PAYMENT_SUCCEEDED: Transition(
        name="payment_succeeded",
        sources=(BookingStatus.PENDING_PAYMENT,),
        target=BookingStatus.CONFIRMED,
        payment_sources=(PaymentStatus.PENDING,),
        payment_target=PaymentStatus.COMPLETED,
        notify_confirmed=True,
    ),
    GatewayEventKind.PAYMENT_FAILED: Transition(
        name="payment_failed",
        sources=(BookingStatus.PENDING_PAYMENT,),
        target=BookingStatus.PAYMENT_FAILED,
        payment_sources=(PaymentStatus.PENDING,),
        payment_target=PaymentStatus.FAILED,
    ),
    GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED: Transition(
        name="checkout_expired_or_cancelled",
        sources=(BookingStatus.PENDING_PAYMENT,),
        target=BookingStatus.CANCELLED,
        payment_sources=(PaymentStatus.PENDING,),
        payment_target=PaymentStatus.CANCELLED,
        defaults={"cancellation_reason": "Checkout session expired or was cancelled", "cancelled_by": "system"},
    ),
}

MANUAL_CANCEL = Transition(
    name="manual_cancel",
    sources=(BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED),
    target=BookingStatus.CANCELLED,
    payment_sources=(PaymentStatus.PENDING,),
    payment_target=PaymentStatus.CANCELLED,
)

# Recorded against the payment without moving the booking
NON_TRANSITION_KINDS = frozenset({GatewayEventKind.PAYMENT_ATTEMPT_FAILED})


def initial_status(payment_required: bool) -> BookingStatus:
    return BookingStatus.PENDING_PAYMENT if payment_required else BookingStatus.CONFIRMED


def transition_for(kind: GatewayEventKind) -> Transition:
    return GATEWAY_TRANSITIONS[GatewayEventKind(kind)]


def can_apply(transition: Transition, current: BookingStatus) -> bool:
    return current in transition.sources


def apply_transition(db: Session, booking_id: str, transition: Transition, **values) -> None:
    """Move the booking to `transition.target` iff its stored status is still a source.

    Runs inside the caller's transaction and does not commit. Raises
    StaleTransition when no row matched; nothing has been written in that case.
    """
    changes = {**transition.defaults, **values, "status": transition.target}
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status.in_(transition.sources))
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        actual = db.scalar(select(Booking.status).where(Booking.id == booking_id))
        raise StaleTransition(booking_id, tuple(s.value for s in transition.sources), actual.value if actual else None)
    booking = db.get(Booking, booking_id)
    if booking is not None:
        db.refresh(booking)


def apply_payment_transition(db: Session, booking_id: str, transition: Transition, **values) -> bool:
    """Move the booking's payment alongside a booking transition. Returns False if nothing matched."""
    if transition.payment_target is None:
        return False
    result = db.execute(
        update(Payment)
        .where(Payment.booking_id == booking_id, Payment.status.in_(transition.payment_sources))
        .values(status=transition.payment_target, **values)
        .execution_options(synchronize_session=False)
    )
    payment = db.scalar(select(Payment).where(Payment.booking_id == booking_id))
    if payment is not None:
        db.refresh(payment)
    return result.rowcount == 1
