from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.errors import InvalidRequest, NotFound
from app.models.booking import BookingStatus
from app.services import booking_service, catalog_service

START = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)


def test_update_session_type(db, tenant, paid_session):
    st = catalog_service.update_session_type(
        db, tenant.id, paid_session.id, " Long coaching ", 90, Decimal("75.00"), currency="eur",
    )
    assert st.name == "Long coaching"
    assert st.duration_minutes == 90
    assert st.price == Decimal("75.00")
    assert st.currency == "EUR"


def test_update_keeps_admitted_bookings(db, tenant, paid_session, gateway, notifier):
    before = booking_service.create_booking(
        db, tenant.id, paid_session.id, START, gateway=gateway, notifier=notifier, email="client@example.com",
    )
    end, total = before.booking.end_time, before.payment.amount
    catalog_service.update_session_type(db, tenant.id, paid_session.id, "Coaching", 30, Decimal("20.00"))
    db.expire_all()
    b = booking_service.get_booking(db, tenant.id, before.booking.id)
    assert b.end_time.replace(tzinfo=timezone.utc) == end.replace(tzinfo=timezone.utc)
    assert booking_service.get_payment_for_booking(db, tenant.id, b.id).amount == total


@pytest.mark.parametrize("duration,price,name", [(0, "10.00", "X"), (30, "-1.00", "X"), (30, "10.00", "  ")])
def test_update_rejects_invalid_values(db, tenant, paid_session, duration, price, name):
    with pytest.raises(InvalidRequest):
        catalog_service.update_session_type(db, tenant.id, paid_session.id, name, duration, Decimal(price))


def test_session_type_of_other_tenant_is_not_found(db, paid_session, make_tenant):
    other = make_tenant("other")
    with pytest.raises(NotFound):
        catalog_service.update_session_type(db, other.id, paid_session.id, "Mine now", 30, Decimal("1.00"))
    with pytest.raises(NotFound):
        catalog_service.deactivate_session_type(db, other.id, paid_session.id)


def test_deactivated_session_type_refuses_new_bookings(db, tenant, paid_session, gateway, notifier):
    admitted = booking_service.create_booking(
        db, tenant.id, paid_session.id, START, gateway=gateway, notifier=notifier, email="client@example.com",
    )
    catalog_service.deactivate_session_type(db, tenant.id, paid_session.id)

    assert catalog_service.list_session_types(db, tenant.id, active_only=True) == []
    with pytest.raises(NotFound):
        booking_service.create_booking(
            db, tenant.id, paid_session.id, START.replace(hour=14), gateway=gateway, notifier=notifier,
            email="client@example.com",
        )
    db.expire_all()
    assert booking_service.get_booking(db, tenant.id, admitted.booking.id).status is BookingStatus.PENDING_PAYMENT


def test_update_tenant_timezone(db, tenant):
    t = catalog_service.update_tenant_timezone(db, tenant.id, " Europe/London ")
    assert t.timezone == "Europe/London"
    with pytest.raises(InvalidRequest):
        catalog_service.update_tenant_timezone(db, tenant.id, "Mars/Olympus_Mons")
    db.expire_all()
    assert catalog_service.get_tenant(db, tenant.id).timezone == "Europe/London"
