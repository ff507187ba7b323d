"""
Weekly opening hours per tenant.

Day-of-week convention matches date.weekday(): 0 = Monday ... 6 = Sunday.
Times are "HH:MM" wall-clock times in the tenant's timezone; a window covers
[start_time, end_time).
"""
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.errors import InvalidRequest, NotFound
from app.models.business_hours import BusinessHours
from app.models.tenant import Tenant
from app.services.audit_service import log_audit
from app.services.slot_service import as_utc

DEFAULT_WEEKDAYS = (0, 1, 2, 3, 4)
DEFAULT_OPEN, DEFAULT_CLOSE = "09:00", "17:00"


def parse_hhmm(value: str) -> str:
    """Normalise "9:5" / "09:05" to "09:05"; InvalidRequest for anything else."""
    try:
        hh, mm = (int(p) for p in (value or "").strip().split(":"))
    except ValueError:
        raise InvalidRequest(f"invalid time {value!r}, expected HH:MM")
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise InvalidRequest(f"invalid time {value!r}, expected HH:MM")
    return f"{hh:02d}:{mm:02d}"


def _validated(day_of_week: int, start_time: str, end_time: str) -> tuple[int, str, str]:
    if day_of_week not in range(7):
        raise InvalidRequest("dayOfWeek must be 0 (Monday) to 6 (Sunday)")
    start, end = parse_hhmm(start_time), parse_hhmm(end_time)
    if not start < end:
        raise InvalidRequest("start time must be before end time")
    return day_of_week, start, end


def _details(h: BusinessHours) -> dict:
    return {"dayOfWeek": h.day_of_week, "start": h.start_time, "end": h.end_time, "enabled": h.enabled}


def list_business_hours(db: Session, tenant_id: str) -> list[BusinessHours]:
    return list(db.scalars(
        select(BusinessHours)
        .where(BusinessHours.tenant_id == tenant_id)
        .order_by(BusinessHours.day_of_week.asc(), BusinessHours.start_time.asc())
    ))


def get_business_hours(db: Session, tenant_id: str, hours_id: str) -> BusinessHours:
    h = db.scalar(select(BusinessHours).where(BusinessHours.id == hours_id, BusinessHours.tenant_id == tenant_id))
    if not h:
        raise NotFound("business hours not found")
    return h


def create_business_hours(
    db: Session,
    tenant_id: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    enabled: bool = True,
    actor: str = "business",
) -> BusinessHours:
    day, start, end = _validated(day_of_week, start_time, end_time)
    h = BusinessHours(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        day_of_week=day,
        start_time=start,
        end_time=end,
        enabled=enabled,
    )
    db.add(h)
    log_audit(db, actor=actor, action="business_hours.created", entity_type="business_hours", entity_id=h.id,
              details=_details(h))
    db.commit()
    db.refresh(h)
    return h


def update_business_hours(
    db: Session,
    tenant_id: str,
    hours_id: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    enabled: bool = True,
    actor: str = "business",
) -> BusinessHours:
    h = get_business_hours(db, tenant_id, hours_id)
    h.day_of_week, h.start_time, h.end_time = _validated(day_of_week, start_time, end_time)
    h.enabled = enabled
    log_audit(db, actor=actor, action="business_hours.updated", entity_type="business_hours", entity_id=h.id,
              details=_details(h))
    db.commit()
    db.refresh(h)
    return h


def delete_business_hours(db: Session, tenant_id: str, hours_id: str, actor: str = "business") -> None:
    h = get_business_hours(db, tenant_id, hours_id)
    db.delete(h)
    log_audit(db, actor=actor, action="business_hours.deleted", entity_type="business_hours", entity_id=hours_id)
    db.commit()


def replace_business_hours(db: Session, tenant_id: str, windows: list[dict], actor: str = "business") -> list[BusinessHours]:
    """Swap the whole weekly schedule in one transaction.

    Each window is a dict with day_of_week, start_time, end_time and optional
    enabled. Nothing changes if any window is invalid.
    """
    validated = [
        (*_validated(w["day_of_week"], w["start_time"], w["end_time"]), w.get("enabled", True))
        for w in windows
    ]
    try:
        db.execute(delete(BusinessHours).where(BusinessHours.tenant_id == tenant_id))
        for day, start, end, enabled in validated:
            db.add(BusinessHours(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                day_of_week=day,
                start_time=start,
                end_time=end,
                enabled=enabled,
            ))
        log_audit(db, actor=actor, action="business_hours.replaced", entity_type="tenant", entity_id=tenant_id,
                  details={"windows": len(validated)})
        db.commit()
    except Exception:
        db.rollback()
        raise
    return list_business_hours(db, tenant_id)


def initialize_default_hours(db: Session, tenant_id: str) -> list[BusinessHours]:
    """Monday to Friday, 09:00-17:00. Leaves an existing schedule alone."""
    existing = list_business_hours(db, tenant_id)
    if existing:
        return existing
    return replace_business_hours(
        db, tenant_id,
        [{"day_of_week": d, "start_time": DEFAULT_OPEN, "end_time": DEFAULT_CLOSE} for d in DEFAULT_WEEKDAYS],
        actor="system",
    )


def _tenant_zone(tenant: Tenant) -> ZoneInfo:
    try:
        return ZoneInfo(tenant.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def is_within_business_hours(db: Session, tenant_id: str, at: datetime) -> bool:
    """True if `at` falls inside an enabled window, read in the tenant's timezone."""
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise NotFound("tenant not found")
    local = as_utc(at).astimezone(_tenant_zone(tenant))
    hhmm = local.strftime("%H:%M")
    windows = db.scalars(select(BusinessHours).where(
        BusinessHours.tenant_id == tenant_id,
        BusinessHours.day_of_week == local.weekday(),
        BusinessHours.enabled.is_(True),
    ))
    return any(w.start_time <= hhmm < w.end_time for w in windows)


def fits_business_hours(db: Session, tenant_id: str, start: datetime, end: datetime) -> bool:
    """True if [start, end) lies inside one enabled window of its local day.

    A tenant with no schedule at all is treated as always open.
    """
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise NotFound("tenant not found")
    if not list_business_hours(db, tenant_id):
        return True
    tz = _tenant_zone(tenant)
    local_start, local_end = as_utc(start).astimezone(tz), as_utc(end).astimezone(tz)
    if local_end.date() != local_start.date():
        return False
    s, e = local_start.strftime("%H:%M"), local_end.strftime("%H:%M")
    windows = db.scalars(select(BusinessHours).where(
        BusinessHours.tenant_id == tenant_id,
        BusinessHours.day_of_week == local_start.weekday(),
        BusinessHours.enabled.is_(True),
    ))
    return any(w.start_time <= s and e <= w.end_time for w in windows)
