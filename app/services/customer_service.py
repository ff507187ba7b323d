import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InvalidRequest
from app.models.customer import Customer

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def find_by_email(db: Session, email: str) -> Customer | None:
    return db.scalar(select(Customer).where(Customer.email == normalize_email(email)))


def find_or_create_by_email(db: Session, email: str, first_name: str = "", last_name: str = "", phone: str = "") -> Customer:
    """Return the customer owning `email`, creating it on first use.

    Existing customers are reused as-is; the supplied names/phone only seed a new
    row. A concurrent insert of the same email is resolved by re-reading inside
    a savepoint, so callers never see a duplicate-key error.
    """
    email_l = normalize_email(email)
    if not email_l or "@" not in email_l:
        raise InvalidRequest("a valid customer email is required")

    existing = find_by_email(db, email_l)
    if existing:
        return existing

    customer = Customer(
        id=str(uuid.uuid4()),
        email=email_l,
        first_name=(first_name or "").strip(),
        last_name=(last_name or "").strip(),
        phone=(phone or "").strip(),
    )
    try:
        with db.begin_nested():
            db.add(customer)
            db.flush()
    except IntegrityError:
        logger.info("Customer %s created concurrently; reusing existing row", email_l)
        existing = find_by_email(db, email_l)
        if existing is None:
            raise
        return existing
    return customer
