import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from app.db.session import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.services.email_service import process_pending_emails
from app.services.notification_service import NotificationDispatcher, notify_confirmed_safely

logger = logging.getLogger(__name__)


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_emails(db, limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def resend_confirmation(booking_id: str) -> dict:
    """Re-send the confirmation emails for a confirmed booking (ops tool)."""
    db: Session = SessionLocal()
    try:
        b = db.get(Booking, booking_id)
        if not b or b.status != BookingStatus.CONFIRMED:
            logger.info("Not resending confirmation for booking %s (missing or not confirmed)", booking_id)
            return {"sent": False}
        return {"sent": notify_confirmed_safely(NotificationDispatcher(db), booking_id)}
    finally:
        db.close()
