import os
import tempfile
import uuid
from decimal import Decimal

import pytest

# Settings are read at import time; point the app at a throwaway SQLite file
_tmpdir = tempfile.mkdtemp(prefix="slotbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'tests.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SANDBOX"] = "false"
os.environ["PAYMENTS_ENABLED"] = "true"
os.environ["PLATFORM_FEE_PERCENTAGE"] = "5.0"
os.environ["BOOKING_PREVENT_OVERLAP"] = "true"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import text  # noqa: E402

from app.db.session import Base, SessionLocal, engine, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.api import deps  # noqa: E402
from app.core.errors import NotificationFailure, PaymentGatewayError  # noqa: E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.models.tenant import Tenant  # noqa: E402
from app.models.business_user import BusinessUser  # noqa: E402
from app.models.customer import Customer  # noqa: E402, F401
from app.models.session_type import SessionType  # noqa: E402
from app.models.blocked_slot import BlockedSlot  # noqa: E402, F401
from app.models.booking import Booking  # noqa: E402, F401
from app.models.payment import Payment  # noqa: E402, F401
from app.models.audit_log import AuditLog  # noqa: E402, F401
from app.models.email_log import EmailLog  # noqa: E402
from app.models.setting import Setting  # noqa: E402, F401
from app.models.business_hours import BusinessHours  # noqa: E402, F401
from app.services.stripe_client import CheckoutSession  # noqa: E402

Base.metadata.create_all(bind=engine)



def override_get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeGateway:
    """Stands in for Stripe Checkout; records every session it was asked for."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def create_checkout_session(self, **kwargs):
        if self.fail:
            raise PaymentGatewayError("gateway down")
        self.calls.append(kwargs)
        sid = f"cs_test_{uuid.uuid4().hex[:16]}"
        return CheckoutSession(id=sid, url=f"https://checkout.test/{sid}")


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify_confirmed(self, booking_id: str) -> None:
        if self.fail:
            raise NotificationFailure("mail server unreachable")
        self.sent.append(booking_id)



class CommitThenFailNotifier:
    """Commits one email row on the caller's session, then fails a flush on it."""

    def __init__(self, db):
        self.db = db

    def notify_confirmed(self, booking_id: str) -> None:
        self.db.add(EmailLog(id=str(uuid.uuid4()), to_email="client@example.com", subject="Confirmed",
                             body="", related_booking_id=booking_id))
        self.db.commit()
        # to_email is NOT NULL
        self.db.add(EmailLog(id=str(uuid.uuid4()), to_email=None, subject="Confirmed", related_booking_id=booking_id))
        self.db.flush()


@pytest.fixture(autouse=True)
def clear_db():
    """Empty every table before each test."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(gateway, notifier):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_tenant(db):
    def _make(slug: str = "studio", fee: Decimal | None = None, email: str = "owner@studio.test") -> Tenant:
        t = Tenant(
            id=str(uuid.uuid4()),
            name=slug.title(),
            slug=slug,
            email=email,
            timezone="UTC",
            platform_fee_percentage=fee,
        )
        db.add(t)
        db.commit()
        db.refresh(t)
        return t
    return _make


@pytest.fixture
def make_session_type(db):
    def _make(tenant: Tenant, price="50.00", duration: int = 60, name: str = "Session", active: bool = True) -> SessionType:
        st = SessionType(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            name=name,
            description="",
            duration_minutes=duration,
            price=Decimal(price),
            currency="USD",
            is_active=active,
        )
        db.add(st)
        db.commit()
        db.refresh(st)
        return st
    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture
def paid_session(make_session_type, tenant):
    return make_session_type(tenant, price="50.00", duration=60, name="Coaching")


@pytest.fixture
def free_session(make_session_type, tenant):
    return make_session_type(tenant, price="0.00", duration=30, name="Intro call")


@pytest.fixture
def make_user(db):
    def _make(tenant: Tenant, role: str = "owner", email: str | None = None, password: str = "secret12345") -> BusinessUser:
        u = BusinessUser(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            email=email or f"{role}-{uuid.uuid4().hex[:6]}@studio.test",
            full_name=role.title(),
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u
    return _make


@pytest.fixture
def auth_headers(make_user, tenant):
    user = make_user(tenant, role="owner")
    token = create_access_token(user.id, user.tenant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(make_user, tenant):
    user = make_user(tenant, role="platform_admin")
    token = create_access_token(user.id, user.tenant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def commit_then_fail_notifier():
    return CommitThenFailNotifier
