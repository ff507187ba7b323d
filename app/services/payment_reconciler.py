"""Applies payment-gateway events to bookings and payments.

Deliveries are at-least-once and may arrive out of order. Every event maps to
one guarded lifecycle transition out of PENDING_PAYMENT, apart from declined
attempts inside a still-open checkout, which are only recorded on the payment.
Anything else is acknowledged as a no-op. Nothing here raises to the webhook
caller.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import GatewayCorrelationMissing, NotFound, StaleTransition
from app.models.booking import Booking
from app.models.payment import Payment, PaymentStatus
from app.services.audit_service import log_audit
from app.services.booking_lifecycle import (
    NON_TRANSITION_KINDS,
    GatewayEventKind,
    apply_payment_transition,
    apply_transition,
    transition_for,
)
from app.services.fee_service import calculate_fees, to_minor_units, to_money
from app.services.notification_service import notify_confirmed_safely
from app.services.stripe_client import GatewayEvent

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    RECORDED = "recorded"
    STALE = "stale"
    BOOKING_NOT_FOUND = "booking_not_found"
    CORRELATION_MISSING = "correlation_missing"
    ERROR = "error"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    booking_id: str | None = None
    notified: bool = False
    detail: str = ""


def verify_figures(event: GatewayEvent, payment: Payment) -> list[str]:
    """Cross-check the event's fee metadata against the stored payment.

    The fee is recomputed from business amount and percentage with the same
    calculator used at checkout. Returns a list of discrepancies (empty if the
    figures agree or the event carries none).
    """
    problems = []
    if event.business_amount is None or event.platform_fee is None:
        return problems

    if event.fee_percentage is not None:
        expected = calculate_fees(event.business_amount, event.fee_percentage)
        if expected.platform_fee != to_money(event.platform_fee):
            problems.append(f"platform_fee {event.platform_fee} != recomputed {expected.platform_fee}")

    total = to_money(event.business_amount) + to_money(event.platform_fee)
    if total != to_money(payment.amount):
        problems.append(f"metadata total {total} != stored amount {payment.amount}")
    if event.amount_total is not None and event.amount_total != to_minor_units(total):
        problems.append(f"charged {event.amount_total} minor units != metadata total {total}")
    if event.currency and payment.currency and event.currency != payment.currency.upper():
        problems.append(f"currency {event.currency} != stored {payment.currency}")
    return problems


class PaymentReconciler:
    def __init__(self, db: Session, notifier):
        self.db = db
        self.notifier = notifier

    def _find_booking(self, event: GatewayEvent) -> Booking:
        db = self.db
        booking_id = event.booking_id
        if not booking_id and event.checkout_session_id:
            booking_id = db.scalar(
                select(Payment.booking_id).where(Payment.checkout_session_id == event.checkout_session_id)
            )
        if not booking_id:
            raise GatewayCorrelationMissing(f"event {event.event_id} ({event.event_type}) has no booking reference")

        b = db.get(Booking, booking_id)
        if not b:
            raise NotFound(f"booking {booking_id} not found")
        if event.tenant_id and event.tenant_id != b.tenant_id:
            # Fail closed: never act on another tenant's booking
            raise NotFound(f"booking {booking_id} not found for tenant {event.tenant_id}")
        return b

    def reconcile(self, event: GatewayEvent) -> ReconcileResult:
        db = self.db
        try:
            booking = self._find_booking(event)
        except GatewayCorrelationMissing as e:
            logger.warning("Dropping gateway event: %s", e)
            return ReconcileResult(ReconcileOutcome.CORRELATION_MISSING, detail=str(e))
        except NotFound as e:
            logger.warning("Dropping gateway event %s (%s): %s", event.event_id, event.event_type, e)
            return ReconcileResult(ReconcileOutcome.BOOKING_NOT_FOUND, booking_id=event.booking_id, detail=str(e))
        except Exception:
            db.rollback()
            logger.exception("Looking up booking for gateway event %s failed", event.event_id)
            return ReconcileResult(ReconcileOutcome.ERROR, booking_id=event.booking_id)

        booking_id = booking.id
        try:
            if event.kind in NON_TRANSITION_KINDS:
                return self._record_attempt_failure(booking_id, event)
            result = self._apply(booking_id, event)
        except StaleTransition as e:
            db.rollback()
            self._record_stale(booking_id, event, e)
            return ReconcileResult(ReconcileOutcome.STALE, booking_id=booking_id, detail=str(e))
        except Exception:
            db.rollback()
            logger.exception("Reconciling gateway event %s for booking %s failed", event.event_id, booking_id)
            return ReconcileResult(ReconcileOutcome.ERROR, booking_id=booking_id)

        if transition_for(event.kind).notify_confirmed:
            result.notified = notify_confirmed_safely(self.notifier, booking_id, db)
        return result

    def _apply(self, booking_id: str, event: GatewayEvent) -> ReconcileResult:
        """Booking and payment move together in one transaction, or not at all."""
        db = self.db
        transition = transition_for(event.kind)
        payment = db.scalar(select(Payment).where(Payment.booking_id == booking_id))

        booking_values = {}
        if event.kind is GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED:
            booking_values["cancelled_at"] = datetime.now(timezone.utc)
        apply_transition(db, booking_id, transition, **booking_values)

        payment_values = {}
        problems = []
        if payment is not None:
            if event.checkout_session_id:
                payment_values["checkout_session_id"] = event.checkout_session_id
            if event.payment_intent_id:
                payment_values["payment_intent_id"] = event.payment_intent_id
            if event.kind is GatewayEventKind.PAYMENT_SUCCEEDED:
                payment_values["payment_method"] = "card"
                problems = verify_figures(event, payment)
                if not problems and event.business_amount is not None and event.platform_fee is not None:
                    payment_values["business_amount"] = to_money(event.business_amount)
                    payment_values["platform_fee"] = to_money(event.platform_fee)
            elif event.kind is GatewayEventKind.PAYMENT_FAILED:
                payment_values["failure_reason"] = event.failure_message
            else:
                payment_values["failure_reason"] = "Checkout session expired or was cancelled"
            apply_payment_transition(db, booking_id, transition, **payment_values)
        else:
            logger.warning("Booking %s has no payment row; applying %s to booking only", booking_id, transition.name)

        if problems:
            logger.warning("Payment figures for booking %s disagree with gateway event %s: %s",
                           booking_id, event.event_id, "; ".join(problems))
            log_audit(db, actor="stripe", action="payment.figures_mismatch", entity_type="payment",
                      entity_id=payment.id, details={"eventId": event.event_id, "problems": problems})

        log_audit(db, actor="stripe", action=f"booking.{transition.name}", entity_type="booking", entity_id=booking_id,
                  details={"eventId": event.event_id, "eventType": event.event_type, "status": transition.target.value})
        db.commit()
        logger.info("Booking %s -> %s from gateway event %s (%s)",
                    booking_id, transition.target.value, event.event_id, event.event_type)
        return ReconcileResult(ReconcileOutcome.APPLIED, booking_id=booking_id)

    def _record_attempt_failure(self, booking_id: str, event: GatewayEvent) -> ReconcileResult:
        """A declined card inside an open checkout. The customer can still pay, so
        only the payment's failure reason is updated and the booking stays put."""
        db = self.db
        values = {"failure_reason": event.failure_message}
        if event.payment_intent_id:
            values["payment_intent_id"] = event.payment_intent_id
        result = db.execute(
            update(Payment)
            .where(Payment.booking_id == booking_id, Payment.status == PaymentStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        log_audit(db, actor="stripe", action="payment.attempt_failed", entity_type="booking", entity_id=booking_id,
                  details={"eventId": event.event_id, "eventType": event.event_type,
                           "reason": event.failure_message, "recorded": result.rowcount == 1})
        db.commit()
        logger.info("Payment attempt for booking %s declined (%s); checkout stays open",
                    booking_id, event.failure_message)
        return ReconcileResult(ReconcileOutcome.RECORDED, booking_id=booking_id, detail=event.failure_message or "")

    def _record_stale(self, booking_id: str, event: GatewayEvent, err: StaleTransition) -> None:
        if event.kind is GatewayEventKind.PAYMENT_SUCCEEDED and err.actual in ("CANCELLED", "PAYMENT_FAILED"):
            # Money was collected for a booking that no longer holds its slot
            logger.warning("Payment succeeded for booking %s which is %s; refund must be handled manually",
                           booking_id, err.actual)
        else:
            logger.info("Ignoring gateway event %s for booking %s: %s", event.event_id, booking_id, err)
        try:
            log_audit(self.db, actor="stripe", action="booking.stale_gateway_event", entity_type="booking",
                      entity_id=booking_id, details={"eventId": event.event_id, "eventType": event.event_type,
                                                      "status": err.actual})
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Could not record stale gateway event %s", event.event_id)


def reconcile_event(db: Session, event: GatewayEvent, notifier) -> ReconcileResult:
    return PaymentReconciler(db, notifier).reconcile(event)
