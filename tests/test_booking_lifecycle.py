import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.errors import StaleTransition
from app.db.session import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.models.payment import Payment, PaymentStatus
from app.services.booking_lifecycle import (
    GATEWAY_TRANSITIONS,
    MANUAL_CANCEL,
    NON_TRANSITION_KINDS,
    GatewayEventKind,
    apply_payment_transition,
    apply_transition,
    can_apply,
    initial_status,
    transition_for,
)

START = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def pending(db, tenant):
    b = Booking(
        id=str(uuid.uuid4()),
        tenant_id=tenant.id,
        customer_id=str(uuid.uuid4()),
        session_type_id=str(uuid.uuid4()),
        start_time=START,
        end_time=START + timedelta(hours=1),
        status=BookingStatus.PENDING_PAYMENT,
        participants=1,
    )
    db.add(b)
    db.add(Payment(
        id=str(uuid.uuid4()),
        booking_id=b.id,
        tenant_id=tenant.id,
        customer_id=b.customer_id,
        amount=Decimal("52.50"),
        platform_fee=Decimal("2.50"),
        business_amount=Decimal("50.00"),
        status=PaymentStatus.PENDING,
        checkout_session_id="cs_test_lifecycle",
    ))
    db.commit()
    return b


def test_initial_status():
    assert initial_status(True) is BookingStatus.PENDING_PAYMENT
    assert initial_status(False) is BookingStatus.CONFIRMED


def test_every_gateway_event_has_a_transition():
    assert set(GATEWAY_TRANSITIONS) == set(GatewayEventKind) - NON_TRANSITION_KINDS
    assert transition_for("payment_succeeded").target is BookingStatus.CONFIRMED
    assert transition_for(GatewayEventKind.PAYMENT_FAILED).target is BookingStatus.PAYMENT_FAILED
    assert transition_for(GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED).target is BookingStatus.CANCELLED


def test_unknown_event_kind_rejected():
    with pytest.raises(ValueError):
        transition_for("refunded")


@pytest.mark.parametrize("status", list(BookingStatus))
def test_gateway_transitions_only_leave_pending_payment(status):
    for transition in GATEWAY_TRANSITIONS.values():
        assert can_apply(transition, status) is (status is BookingStatus.PENDING_PAYMENT)


@pytest.mark.parametrize("status", list(BookingStatus))
def test_manual_cancel_sources(status):
    expected = status in (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)
    assert can_apply(MANUAL_CANCEL, status) is expected


def test_only_success_notifies():
    notifying = [k for k, t in GATEWAY_TRANSITIONS.items() if t.notify_confirmed]
    assert notifying == [GatewayEventKind.PAYMENT_SUCCEEDED]


def test_guarded_update_applies_once(db, pending):
    success = transition_for(GatewayEventKind.PAYMENT_SUCCEEDED)
    apply_transition(db, pending.id, success)
    assert apply_payment_transition(db, pending.id, success)
    db.commit()

    with pytest.raises(StaleTransition) as exc:
        apply_transition(db, pending.id, success)
    assert exc.value.actual == "CONFIRMED"
    db.rollback()

    db.expire_all()
    assert db.get(Booking, pending.id).status is BookingStatus.CONFIRMED
    p = db.query(Payment).filter(Payment.booking_id == pending.id).one()
    assert p.status is PaymentStatus.COMPLETED


def test_failed_cannot_overwrite_confirmed(db, pending):
    apply_transition(db, pending.id, transition_for(GatewayEventKind.PAYMENT_SUCCEEDED))
    db.commit()
    with pytest.raises(StaleTransition):
        apply_transition(db, pending.id, transition_for(GatewayEventKind.PAYMENT_FAILED))
    db.rollback()
    db.expire_all()
    assert db.get(Booking, pending.id).status is BookingStatus.CONFIRMED


def test_expiry_sets_cancellation_defaults(db, pending):
    expired = transition_for(GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED)
    apply_transition(db, pending.id, expired)
    apply_payment_transition(db, pending.id, expired)
    db.commit()
    db.expire_all()
    b = db.get(Booking, pending.id)
    assert b.status is BookingStatus.CANCELLED
    assert b.cancellation_reason == "Checkout session expired or was cancelled"
    assert b.cancelled_by == "system"


def test_missing_booking_is_stale(db):
    with pytest.raises(StaleTransition) as exc:
        apply_transition(db, "does-not-exist", MANUAL_CANCEL)
    assert exc.value.actual is None


def test_declined_attempt_has_no_transition():
    assert GatewayEventKind.PAYMENT_ATTEMPT_FAILED in NON_TRANSITION_KINDS
    with pytest.raises(KeyError):
        transition_for(GatewayEventKind.PAYMENT_ATTEMPT_FAILED)


def test_concurrent_sessions_only_one_transition_wins(pending):
    # Both sessions read the booking as PENDING_PAYMENT before either writes
    first, second = SessionLocal(), SessionLocal()
    try:
        assert first.get(Booking, pending.id).status is BookingStatus.PENDING_PAYMENT
        assert second.get(Booking, pending.id).status is BookingStatus.PENDING_PAYMENT

        success = transition_for(GatewayEventKind.PAYMENT_SUCCEEDED)
        apply_transition(second, pending.id, success)
        apply_payment_transition(second, pending.id, success)
        second.commit()

        with pytest.raises(StaleTransition) as exc:
            apply_transition(first, pending.id, transition_for(GatewayEventKind.PAYMENT_FAILED))
        assert exc.value.actual == "CONFIRMED"
        first.rollback()

        first.expire_all()
        assert first.get(Booking, pending.id).status is BookingStatus.CONFIRMED
        p = first.query(Payment).filter(Payment.booking_id == pending.id).one()
        assert p.status is PaymentStatus.COMPLETED
    finally:
        first.close()
        second.close()
