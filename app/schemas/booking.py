from datetime import datetime, timezone
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional

from app.models.booking import Booking, BookingStatus


class BookingCreate(BaseModel):
    sessionTypeId: str
    startTime: datetime  # naive values are read as UTC
    participants: int = Field(default=1, ge=1)
    notes: Optional[str] = ""
    customerTimezone: Optional[str] = ""
    # Inline identity for customers without an account
    email: Optional[str] = None  # plain str to allow .local and other dev domains
    firstName: Optional[str] = ""
    lastName: Optional[str] = ""
    phone: Optional[str] = ""


class BusinessBookingCreate(BookingCreate):
    customerId: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = ""


class BookingOut(BaseModel):
    id: str
    confirmationNumber: str
    tenantId: str
    customerId: str
    sessionTypeId: str
    startTime: datetime
    endTime: datetime
    status: BookingStatus
    participants: int
    notes: str = ""
    customerTimezone: str = ""
    cancellationReason: Optional[str] = None
    cancelledAt: Optional[datetime] = None
    cancelledBy: Optional[str] = None
    createdAt: Optional[datetime] = None


class BookingCreated(BookingOut):
    checkoutUrl: Optional[str] = None
    totalAmount: Decimal
    platformFee: Decimal
    businessAmount: Decimal


def utc_or_none(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive values; everything is stored in UTC
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def booking_out(b: Booking) -> dict:
    return dict(
        id=b.id,
        confirmationNumber=b.confirmation_number,
        tenantId=b.tenant_id,
        customerId=b.customer_id,
        sessionTypeId=b.session_type_id,
        startTime=utc_or_none(b.start_time),
        endTime=utc_or_none(b.end_time),
        status=b.status,
        participants=b.participants,
        notes=b.notes or "",
        customerTimezone=b.customer_timezone or "",
        cancellationReason=b.cancellation_reason,
        cancelledAt=utc_or_none(b.cancelled_at),
        cancelledBy=b.cancelled_by,
        createdAt=utc_or_none(b.created_at),
    )
