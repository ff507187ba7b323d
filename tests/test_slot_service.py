import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import InvalidRequest, NotFound
from app.models.booking import Booking, BookingStatus
from app.services import slot_service
from app.services.slot_service import as_utc, intervals_overlap, is_slot_available

START = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return START.replace(hour=hour, minute=minute)


def test_abutting_intervals_do_not_overlap():
    assert not intervals_overlap(at(9), at(10), at(10), at(11))
    assert not intervals_overlap(at(11), at(12), at(10), at(11))


def test_overlapping_intervals():
    assert intervals_overlap(at(10, 30), at(11), at(10), at(11))
    assert intervals_overlap(at(9), at(12), at(10), at(11))
    assert intervals_overlap(at(10, 15), at(10, 45), at(10), at(11))


def test_naive_datetimes_read_as_utc():
    naive = datetime(2030, 3, 4, 10, 0)
    assert as_utc(naive) == START
    plus_two = datetime(2030, 3, 4, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus_two) == START


def test_blocked_interval_rejects_inner_request(db, tenant):
    slot_service.create_blocked_slot(db, tenant.id, at(10), at(11), reason="Staff meeting")
    assert not is_slot_available(db, tenant.id, at(10, 30), at(11))
    assert is_slot_available(db, tenant.id, at(9), at(10))
    assert is_slot_available(db, tenant.id, at(11), at(12))


def test_union_of_overlapping_blocks_rejects(db, tenant):
    slot_service.create_blocked_slot(db, tenant.id, at(10), at(11))
    slot_service.create_blocked_slot(db, tenant.id, at(10, 30), at(12))
    assert not is_slot_available(db, tenant.id, at(10, 45), at(11, 45))


def test_blocks_are_tenant_scoped(db, make_tenant):
    a = make_tenant("alpha")
    b = make_tenant("beta")
    slot_service.create_blocked_slot(db, a.id, at(10), at(11))
    assert not is_slot_available(db, a.id, at(10), at(11))
    assert is_slot_available(db, b.id, at(10), at(11))


def _booking(db, tenant, status, start, end):
    b = Booking(
        id=str(uuid.uuid4()),
        tenant_id=tenant.id,
        customer_id=str(uuid.uuid4()),
        session_type_id=str(uuid.uuid4()),
        start_time=start,
        end_time=end,
        status=status,
        participants=1,
    )
    db.add(b)
    db.commit()
    return b


def test_live_booking_blocks_when_overlap_prevented(db, tenant):
    _booking(db, tenant, BookingStatus.PENDING_PAYMENT, at(10), at(11))
    assert not is_slot_available(db, tenant.id, at(10, 30), at(11, 30), prevent_overlap=True)
    assert is_slot_available(db, tenant.id, at(10, 30), at(11, 30), prevent_overlap=False)
    assert is_slot_available(db, tenant.id, at(11), at(12), prevent_overlap=True)


def test_released_bookings_do_not_hold_slot(db, tenant):
    _booking(db, tenant, BookingStatus.CANCELLED, at(10), at(11))
    _booking(db, tenant, BookingStatus.PAYMENT_FAILED, at(10), at(11))
    assert is_slot_available(db, tenant.id, at(10), at(11), prevent_overlap=True)


def test_block_requires_start_before_end(db, tenant):
    with pytest.raises(InvalidRequest):
        slot_service.create_blocked_slot(db, tenant.id, at(11), at(10))
    with pytest.raises(InvalidRequest):
        slot_service.create_blocked_slot(db, tenant.id, at(10), at(10))


def test_delete_block_is_tenant_scoped(db, make_tenant):
    a = make_tenant("alpha")
    b = make_tenant("beta")
    block = slot_service.create_blocked_slot(db, a.id, at(10), at(11))
    with pytest.raises(NotFound):
        slot_service.delete_blocked_slot(db, b.id, block.id)
    slot_service.delete_blocked_slot(db, a.id, block.id)
    assert slot_service.list_blocked_slots(db, a.id) == []
