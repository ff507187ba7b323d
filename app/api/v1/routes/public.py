from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_gateway, get_notifier, to_http
from app.core.errors import BookingError
from app.db.session import get_db
from app.schemas.booking import BookingCreate, BookingCreated, BookingOut, booking_out
from app.schemas.catalog import BusinessHoursOut, SessionTypeOut, TenantOut
from app.schemas.payments import PaymentOut, payment_out
from app.services import booking_service, business_hours_service, catalog_service

router = APIRouter(tags=["public"])


@router.get("/public/tenants/{slug}", response_model=TenantOut)
def get_tenant(slug: str, db: Session = Depends(get_db)):
    try:
        t = catalog_service.get_tenant_by_slug(db, slug)
    except BookingError as e:
        raise to_http(e)
    return TenantOut(id=t.id, name=t.name, slug=t.slug, timezone=t.timezone)


@router.get("/public/tenants/{tenant_id}/session-types", response_model=list[SessionTypeOut])
def list_session_types(tenant_id: str, db: Session = Depends(get_db)):
    return [
        SessionTypeOut(
            id=st.id, name=st.name, description=st.description or "", durationMinutes=st.duration_minutes,
            price=st.price, currency=st.currency, isActive=st.is_active,
        )
        for st in catalog_service.list_session_types(db, tenant_id, active_only=True)
    ]


@router.get("/public/tenants/{tenant_id}/business-hours", response_model=list[BusinessHoursOut])
def list_business_hours(tenant_id: str, db: Session = Depends(get_db)):
    return [
        BusinessHoursOut(id=h.id, dayOfWeek=h.day_of_week, startTime=h.start_time, endTime=h.end_time, enabled=h.enabled)
        for h in business_hours_service.list_business_hours(db, tenant_id)
        if h.enabled
    ]


@router.post("/public/tenants/{tenant_id}/bookings", response_model=BookingCreated)
def create_public_booking(
    tenant_id: str,
    body: BookingCreate,
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    try:
        result = booking_service.create_booking(
            db, tenant_id, body.sessionTypeId, body.startTime,
            gateway=gateway,
            notifier=notifier,
            participants=body.participants,
            notes=body.notes or "",
            customer_timezone=body.customerTimezone or "",
            email=body.email,
            first_name=body.firstName or "",
            last_name=body.lastName or "",
            phone=body.phone or "",
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


@router.get("/public/tenants/{tenant_id}/bookings/{booking_id}", response_model=BookingOut)
def get_booking(tenant_id: str, booking_id: str, db: Session = Depends(get_db)):
    try:
        b = booking_service.get_booking(db, tenant_id, booking_id)
    except BookingError as e:
        raise to_http(e)
    return BookingOut(**booking_out(b))


@router.get("/public/tenants/{tenant_id}/bookings/{booking_id}/payment", response_model=PaymentOut)
def get_booking_payment(tenant_id: str, booking_id: str, db: Session = Depends(get_db)):
    try:
        p = booking_service.get_payment_for_booking(db, tenant_id, booking_id)
    except BookingError as e:
        raise to_http(e)
    return payment_out(p)
