import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotificationFailure
from app.models.booking import Booking
from app.models.customer import Customer
from app.models.session_type import SessionType
from app.models.tenant import Tenant
from app.services.email_service import queue_email

logger = logging.getLogger(__name__)


def _local_time(dt: datetime, tz_name: str | None) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")
    return dt.astimezone(tz).strftime("%A %d %B %Y, %H:%M %Z")


class NotificationDispatcher:
    """Sends the booking-confirmed emails (customer + business) through the email queue."""

    def __init__(self, db: Session):
        self.db = db

    def notify_confirmed(self, booking_id: str) -> None:
        try:
            self._send_confirmed(booking_id)
        except Exception:
            self.db.rollback()
            raise

    def _send_confirmed(self, booking_id: str) -> None:
        db = self.db
        b = db.get(Booking, booking_id)
        if not b:
            raise NotificationFailure(f"booking {booking_id} not found")
        customer = db.get(Customer, b.customer_id)
        st = db.get(SessionType, b.session_type_id)
        tenant = db.get(Tenant, b.tenant_id)
        if not customer or not st or not tenant:
            raise NotificationFailure(f"booking {booking_id} is missing customer, session type or tenant")

        when = _local_time(b.start_time, b.customer_timezone or customer.timezone)
        subject = f"{tenant.name}: booking {b.confirmation_number} confirmed"
        body = (
            f"Hi {customer.first_name or customer.full_name or 'there'},\n\n"
            f"Your booking for {st.name} ({st.duration_minutes} minutes) is confirmed.\n"
            f"When: {when}\n"
            f"Participants: {b.participants}\n"
            f"Confirmation number: {b.confirmation_number}\n"
        )
        if settings.CLIENT_BASE_URL:
            body += f"\nManage your booking: {settings.CLIENT_BASE_URL}/bookings/{b.id}\n"
        queue_email(db, customer.email, subject, body, related_booking_id=b.id)

        if tenant.email:
            business_when = _local_time(b.start_time, tenant.timezone)
            business_body = (
                f"New confirmed booking {b.confirmation_number}.\n\n"
                f"Session: {st.name}\n"
                f"When: {business_when}\n"
                f"Customer: {customer.full_name} <{customer.email}> {customer.phone or ''}\n"
                f"Participants: {b.participants}\n"
                f"Notes: {b.notes or '-'}\n"
            )
            queue_email(db, tenant.email, f"New booking {b.confirmation_number}", business_body, related_booking_id=b.id)


def notify_confirmed_safely(notifier, booking_id: str, db: Session | None = None) -> bool:
    """Best-effort dispatch. Never raises; a committed booking is never undone by a notification outage.

    On failure `db` is rolled back; the notifier may have left it mid-transaction.
    """
    try:
        notifier.notify_confirmed(booking_id)
        return True
    except Exception:
        logger.exception("Confirmation notification for booking %s failed", booking_id)
        if db is not None:
            db.rollback()
        return False
