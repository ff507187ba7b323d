from decimal import Decimal
from pydantic import BaseModel
from typing import Optional

from app.models.payment import Payment, PaymentStatus


class PaymentOut(BaseModel):
    id: str
    bookingId: str
    amount: Decimal
    currency: str
    platformFee: Decimal
    businessAmount: Decimal
    status: PaymentStatus
    checkoutSessionId: str
    failureReason: Optional[str] = None


class PaymentConfigOut(BaseModel):
    publishableKey: str
    paymentsEnabled: bool
    platformFeePercentage: Decimal


class PlatformFeeUpdate(BaseModel):
    percentage: Decimal


class WebhookAck(BaseModel):
    ok: bool = True
    eventType: str = ""
    handled: bool = True
    outcome: Optional[str] = None


def payment_out(p: Payment) -> PaymentOut:
    return PaymentOut(
        id=p.id,
        bookingId=p.booking_id,
        amount=p.amount,
        currency=p.currency,
        platformFee=p.platform_fee,
        businessAmount=p.business_amount,
        status=p.status,
        checkoutSessionId=p.checkout_session_id,
        failureReason=p.failure_reason,
    )
