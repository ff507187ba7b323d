import uuid
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError

from app.db.session import SessionLocal
from app.core.security import hash_password
from app.models.tenant import Tenant
from app.models.business_user import BusinessUser
from app.models.session_type import SessionType
from app.services.business_hours_service import initialize_default_hours

DEMO_SLUG = "demo-studio"


def ensure_tenant(db: Session, slug: str, name: str, email: str, tz: str = "UTC") -> Tenant:
    t = db.query(Tenant).filter(Tenant.slug == slug).first()
    if t:
        return t
    t = Tenant(id=str(uuid.uuid4()), name=name, slug=slug, email=email, timezone=tz)
    db.add(t)
    db.commit()
    return t


def ensure_user(db: Session, tenant_id: str, email: str, password: str, role: str, name: str):
    u = db.query(BusinessUser).filter(BusinessUser.email == email).first()
    if u:
        return
    db.add(
        BusinessUser(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()


def ensure_session_type(db: Session, tenant_id: str, name: str, duration_minutes: int, price: Decimal, description: str = ""):
    st = db.query(SessionType).filter(SessionType.tenant_id == tenant_id, SessionType.name == name).first()
    if st:
        return
    db.add(
        SessionType(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=name,
            description=description,
            duration_minutes=duration_minutes,
            price=price,
            currency="USD",
            is_active=True,
        )
    )
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM tenants LIMIT 1"))
        except ProgrammingError:
            db.rollback()
            print("[seed] tenants table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        tenant = ensure_tenant(db, DEMO_SLUG, "Demo Studio", "bookings@demo-studio.example", "Europe/London")

        # roles
        ensure_user(db, tenant.id, "owner@demo-studio.example", "owner12345", "owner", "Owner")
        ensure_user(db, tenant.id, "staff@demo-studio.example", "staff12345", "staff", "Front desk")
        ensure_user(db, tenant.id, "admin@slotbook.example", "admin12345", "platform_admin", "Platform admin")

        # one free and one paid session so both admission paths can be exercised
        ensure_session_type(db, tenant.id, "Intro call", 15, Decimal("0.00"), "Free 15 minute introduction")
        ensure_session_type(db, tenant.id, "Coaching session", 60, Decimal("50.00"), "One hour one-to-one session")

        initialize_default_hours(db, tenant.id)
    finally:
        db.close()


if __name__ == "__main__":
    run()
