import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidRequest, NotFound
from app.models.blocked_slot import BlockedSlot
from app.models.booking import Booking, BookingStatus
from app.services.audit_service import log_audit

# Bookings in these states hold their slot
SLOT_HOLDING_STATUSES = (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def intervals_overlap(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open overlap: [start, end) and [other_start, other_end) share time.

    Abutting intervals (end == other_start or start == other_end) do not overlap.
    """
    return start < other_end and end > other_start


def list_conflicting_blocks(db: Session, tenant_id: str, start: datetime, end: datetime) -> list[BlockedSlot]:
    return list(db.scalars(
        select(BlockedSlot)
        .where(
            BlockedSlot.tenant_id == tenant_id,
            BlockedSlot.start_time < end,
            BlockedSlot.end_time > start,
        )
        .order_by(BlockedSlot.start_time.asc())
    ))


def list_overlapping_bookings(db: Session, tenant_id: str, start: datetime, end: datetime) -> list[Booking]:
    return list(db.scalars(
        select(Booking)
        .where(
            Booking.tenant_id == tenant_id,
            Booking.status.in_(SLOT_HOLDING_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        .order_by(Booking.start_time.asc())
    ))


def is_slot_available(
    db: Session,
    tenant_id: str,
    start: datetime,
    end: datetime,
    prevent_overlap: bool | None = None,
) -> bool:
    """Admit [start, end) unless a blocked interval (or, by default, a live booking) overlaps it."""
    if list_conflicting_blocks(db, tenant_id, start, end):
        return False
    if prevent_overlap is None:
        prevent_overlap = settings.BOOKING_PREVENT_OVERLAP
    if prevent_overlap and list_overlapping_bookings(db, tenant_id, start, end):
        return False
    return True


def list_blocked_slots(db: Session, tenant_id: str) -> list[BlockedSlot]:
    return list(db.scalars(
        select(BlockedSlot).where(BlockedSlot.tenant_id == tenant_id).order_by(BlockedSlot.start_time.asc())
    ))


def create_blocked_slot(db: Session, tenant_id: str, start: datetime, end: datetime, reason: str = "", created_by: str = "") -> BlockedSlot:
    start, end = as_utc(start), as_utc(end)
    if not start < end:
        raise InvalidRequest("start time must be before end time")
    slot = BlockedSlot(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        start_time=start,
        end_time=end,
        reason=reason or "",
        created_by=created_by,
    )
    db.add(slot)
    log_audit(db, actor=created_by or "business", action="blocked_slot.created", entity_type="blocked_slot", entity_id=slot.id,
              details={"start": start.isoformat(), "end": end.isoformat(), "reason": reason})
    db.commit()
    db.refresh(slot)
    return slot


def delete_blocked_slot(db: Session, tenant_id: str, slot_id: str, actor: str = "business") -> None:
    slot = db.scalar(select(BlockedSlot).where(BlockedSlot.id == slot_id, BlockedSlot.tenant_id == tenant_id))
    if not slot:
        raise NotFound("blocked slot not found")
    db.delete(slot)
    log_audit(db, actor=actor, action="blocked_slot.deleted", entity_type="blocked_slot", entity_id=slot_id)
    db.commit()
