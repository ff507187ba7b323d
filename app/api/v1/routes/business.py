from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_gateway, get_notifier, require_roles, to_http
from app.core.errors import BookingError
from app.db.session import get_db
from app.models.booking import BookingStatus
from app.models.business_user import BusinessUser
from app.schemas.booking import BookingCreated, BookingOut, BusinessBookingCreate, CancelRequest, booking_out, utc_or_none
from app.schemas.catalog import (
    BlockedSlotIn,
    BlockedSlotOut,
    BusinessHoursIn,
    BusinessHoursOut,
    SessionTypeIn,
    SessionTypeOut,
    TenantOut,
    TenantTimezoneUpdate,
)
from app.services import audit_service, booking_service, business_hours_service, catalog_service, slot_service

router = APIRouter(tags=["business"])

staff = require_roles("owner", "staff", "admin")
managers = require_roles("owner", "admin")


@router.get("/business/bookings", response_model=list[BookingOut])
def list_bookings(status: Optional[BookingStatus] = None, db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    return [BookingOut(**booking_out(b)) for b in booking_service.list_bookings(db, me.tenant_id, status=status)]


@router.get("/business/bookings/upcoming", response_model=list[BookingOut])
def list_upcoming(db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    return [BookingOut(**booking_out(b)) for b in booking_service.list_upcoming_bookings(db, me.tenant_id)]


@router.post("/business/bookings", response_model=BookingCreated)
def create_booking(
    body: BusinessBookingCreate,
    db: Session = Depends(get_db),
    me: BusinessUser = Depends(staff),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    try:
        result = booking_service.create_booking(
            db, me.tenant_id, body.sessionTypeId, body.startTime,
            gateway=gateway,
            notifier=notifier,
            participants=body.participants,
            notes=body.notes or "",
            customer_timezone=body.customerTimezone or "",
            customer_id=body.customerId,
            email=body.email,
            first_name=body.firstName or "",
            last_name=body.lastName or "",
            phone=body.phone or "",
            actor=me.id,
        )
    except BookingError as e:
        raise to_http(e)
    return BookingCreated(
        **booking_out(result.booking),
        checkoutUrl=result.checkout_url,
        totalAmount=result.fees.total_amount,
        platformFee=result.fees.platform_fee,
        businessAmount=result.fees.business_amount,
    )


@router.post("/business/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(booking_id: str, body: CancelRequest, db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    try:
        b = booking_service.cancel_booking(db, me.tenant_id, booking_id, reason=body.reason or "", actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return BookingOut(**booking_out(b))


@router.get("/business/blocked-slots", response_model=list[BlockedSlotOut])
def list_blocked_slots(db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    return [
        BlockedSlotOut(id=s.id, startTime=utc_or_none(s.start_time), endTime=utc_or_none(s.end_time), reason=s.reason or "", createdBy=s.created_by or "")
        for s in slot_service.list_blocked_slots(db, me.tenant_id)
    ]


@router.post("/business/blocked-slots", response_model=BlockedSlotOut)
def create_blocked_slot(body: BlockedSlotIn, db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    try:
        s = slot_service.create_blocked_slot(db, me.tenant_id, body.startTime, body.endTime, reason=body.reason or "", created_by=me.id)
    except BookingError as e:
        raise to_http(e)
    return BlockedSlotOut(id=s.id, startTime=utc_or_none(s.start_time), endTime=utc_or_none(s.end_time), reason=s.reason or "", createdBy=s.created_by or "")


@router.delete("/business/blocked-slots/{slot_id}")
def delete_blocked_slot(slot_id: str, db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    try:
        slot_service.delete_blocked_slot(db, me.tenant_id, slot_id, actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return {"ok": True}


def _session_type_out(st) -> SessionTypeOut:
    return SessionTypeOut(
        id=st.id, name=st.name, description=st.description or "", durationMinutes=st.duration_minutes,
        price=st.price, currency=st.currency, isActive=st.is_active,
    )


@router.get("/business/session-types", response_model=list[SessionTypeOut])
def list_session_types(db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    return [_session_type_out(st) for st in catalog_service.list_session_types(db, me.tenant_id)]


@router.post("/business/session-types", response_model=SessionTypeOut)
def create_session_type(body: SessionTypeIn, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        st = catalog_service.create_session_type(
            db, me.tenant_id, body.name, body.durationMinutes, body.price,
            currency=body.currency, description=body.description or "", is_active=body.isActive,
        )
    except BookingError as e:
        raise to_http(e)
    return _session_type_out(st)


@router.get("/business/bookings/{booking_id}/history")
def booking_history(booking_id: str, db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    try:
        b = booking_service.get_booking(db, me.tenant_id, booking_id)
    except BookingError as e:
        raise to_http(e)
    return audit_service.entity_history(db, "booking", b.id)


@router.put("/business/session-types/{session_type_id}", response_model=SessionTypeOut)
def update_session_type(session_type_id: str, body: SessionTypeIn, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        st = catalog_service.update_session_type(
            db, me.tenant_id, session_type_id, body.name, body.durationMinutes, body.price,
            currency=body.currency, description=body.description or "", is_active=body.isActive, actor=me.id,
        )
    except BookingError as e:
        raise to_http(e)
    return _session_type_out(st)


@router.delete("/business/session-types/{session_type_id}")
def delete_session_type(session_type_id: str, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        catalog_service.deactivate_session_type(db, me.tenant_id, session_type_id, actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return {"ok": True}


@router.get("/business/tenant", response_model=TenantOut)
def get_tenant(db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    try:
        t = catalog_service.get_tenant(db, me.tenant_id)
    except BookingError as e:
        raise to_http(e)
    return TenantOut(id=t.id, name=t.name, slug=t.slug, timezone=t.timezone)


@router.put("/business/tenant/timezone", response_model=TenantOut)
def update_tenant_timezone(body: TenantTimezoneUpdate, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        t = catalog_service.update_tenant_timezone(db, me.tenant_id, body.timezone, actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return TenantOut(id=t.id, name=t.name, slug=t.slug, timezone=t.timezone)


def _hours_out(h) -> BusinessHoursOut:
    return BusinessHoursOut(id=h.id, dayOfWeek=h.day_of_week, startTime=h.start_time, endTime=h.end_time, enabled=h.enabled)


@router.get("/business/business-hours", response_model=list[BusinessHoursOut])
def list_business_hours(db: Session = Depends(get_db), me: BusinessUser = Depends(staff)):
    return [_hours_out(h) for h in business_hours_service.list_business_hours(db, me.tenant_id)]


@router.post("/business/business-hours", response_model=BusinessHoursOut)
def create_business_hours(body: BusinessHoursIn, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        h = business_hours_service.create_business_hours(
            db, me.tenant_id, body.dayOfWeek, body.startTime, body.endTime, enabled=body.enabled, actor=me.id,
        )
    except BookingError as e:
        raise to_http(e)
    return _hours_out(h)


# Declared before /{hours_id} so "batch" is not taken for an id
@router.put("/business/business-hours/batch", response_model=list[BusinessHoursOut])
def replace_business_hours(body: list[BusinessHoursIn], db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    windows = [
        {"day_of_week": w.dayOfWeek, "start_time": w.startTime, "end_time": w.endTime, "enabled": w.enabled}
        for w in body
    ]
    try:
        hours = business_hours_service.replace_business_hours(db, me.tenant_id, windows, actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return [_hours_out(h) for h in hours]


@router.put("/business/business-hours/{hours_id}", response_model=BusinessHoursOut)
def update_business_hours(hours_id: str, body: BusinessHoursIn, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        h = business_hours_service.update_business_hours(
            db, me.tenant_id, hours_id, body.dayOfWeek, body.startTime, body.endTime, enabled=body.enabled, actor=me.id,
        )
    except BookingError as e:
        raise to_http(e)
    return _hours_out(h)


@router.delete("/business/business-hours/{hours_id}")
def delete_business_hours(hours_id: str, db: Session = Depends(get_db), me: BusinessUser = Depends(managers)):
    try:
        business_hours_service.delete_business_hours(db, me.tenant_id, hours_id, actor=me.id)
    except BookingError as e:
        raise to_http(e)
    return {"ok": True}
