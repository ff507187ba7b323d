import uuid
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import InvalidRequest, NotFound
from app.models.session_type import SessionType
from app.models.tenant import Tenant
from app.services.audit_service import log_audit


def get_tenant(db: Session, tenant_id: str) -> Tenant:
    t = db.get(Tenant, tenant_id)
    if not t:
        raise NotFound("tenant not found")
    return t


def get_tenant_by_slug(db: Session, slug: str) -> Tenant:
    t = db.scalar(select(Tenant).where(Tenant.slug == slug.strip().lower()))
    if not t:
        raise NotFound("tenant not found")
    return t


def list_session_types(db: Session, tenant_id: str, active_only: bool = False) -> list[SessionType]:
    q = select(SessionType).where(SessionType.tenant_id == tenant_id)
    if active_only:
        q = q.where(SessionType.is_active.is_(True))
    return list(db.scalars(q.order_by(SessionType.name.asc())))


def create_session_type(
    db: Session,
    tenant_id: str,
    name: str,
    duration_minutes: int,
    price: Decimal,
    currency: str = "USD",
    description: str = "",
    is_active: bool = True,
) -> SessionType:
    if duration_minutes <= 0:
        raise InvalidRequest("duration must be > 0 minutes")
    if Decimal(str(price)) < 0:
        raise InvalidRequest("price must be >= 0")
    if not (name or "").strip():
        raise InvalidRequest("name is required")
    st = SessionType(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        name=name.strip(),
        description=description or "",
        duration_minutes=duration_minutes,
        price=Decimal(str(price)),
        currency=(currency or "USD").strip().upper(),
        is_active=is_active,
    )
    db.add(st)
    db.commit()
    db.refresh(st)
    return st


def get_session_type(db: Session, tenant_id: str, session_type_id: str) -> SessionType:
    st = db.scalar(select(SessionType).where(SessionType.id == session_type_id, SessionType.tenant_id == tenant_id))
    if not st:
        raise NotFound("session type not found")
    return st


def update_session_type(
    db: Session,
    tenant_id: str,
    session_type_id: str,
    name: str,
    duration_minutes: int,
    price: Decimal,
    currency: str = "USD",
    description: str = "",
    is_active: bool = True,
    actor: str = "business",
) -> SessionType:
    """Existing bookings keep the end time and fees they were admitted with."""
    st = get_session_type(db, tenant_id, session_type_id)
    if duration_minutes <= 0:
        raise InvalidRequest("duration must be > 0 minutes")
    if Decimal(str(price)) < 0:
        raise InvalidRequest("price must be >= 0")
    if not (name or "").strip():
        raise InvalidRequest("name is required")
    st.name = name.strip()
    st.description = description or ""
    st.duration_minutes = duration_minutes
    st.price = Decimal(str(price))
    st.currency = (currency or "USD").strip().upper()
    st.is_active = is_active
    log_audit(db, actor=actor, action="session_type.updated", entity_type="session_type", entity_id=st.id,
              details={"name": st.name, "durationMinutes": duration_minutes, "price": str(st.price),
                       "isActive": is_active})
    db.commit()
    db.refresh(st)
    return st


def deactivate_session_type(db: Session, tenant_id: str, session_type_id: str, actor: str = "business") -> SessionType:
    """Soft delete: the row stays for existing bookings, new admissions are refused."""
    st = get_session_type(db, tenant_id, session_type_id)
    st.is_active = False
    log_audit(db, actor=actor, action="session_type.deactivated", entity_type="session_type", entity_id=st.id)
    db.commit()
    db.refresh(st)
    return st


def update_tenant_timezone(db: Session, tenant_id: str, tz_name: str, actor: str = "business") -> Tenant:
    tenant = get_tenant(db, tenant_id)
    tz_name = (tz_name or "").strip()
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidRequest(f"unknown timezone {tz_name!r}")
    previous = tenant.timezone
    tenant.timezone = tz_name
    log_audit(db, actor=actor, action="tenant.timezone_updated", entity_type="tenant", entity_id=tenant.id,
              details={"from": previous, "to": tz_name})
    db.commit()
    db.refresh(tenant)
    return tenant
