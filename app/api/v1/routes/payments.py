import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.config import settings
from app.db.session import get_db
from app.schemas.payments import PaymentConfigOut, WebhookAck
from app.services.audit_service import log_audit
from app.services.payment_reconciler import ReconcileOutcome, reconcile_event
from app.services.settings_service import get_system_fee_percentage
from app.services.stripe_client import parse_event, verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.get("/payments/config", response_model=PaymentConfigOut)
def payment_config(db: Session = Depends(get_db)):
    return PaymentConfigOut(
        publishableKey=settings.STRIPE_PUBLISHABLE_KEY,
        paymentsEnabled=settings.PAYMENTS_ENABLED,
        platformFeePercentage=get_system_fee_percentage(db),
    )


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(req: Request, db: Session = Depends(get_db), notifier=Depends(get_notifier)):
    """Gateway notifications. Always 200 once the event is authentic and readable,
    including duplicates and no-ops, so Stripe does not redeliver forever."""
    body = await req.body()
    # Signature check needs the raw bytes; the database and mail work is blocking
    return await run_in_threadpool(handle_stripe_event, body, req.headers.get("stripe-signature"), db, notifier)


def handle_stripe_event(body: bytes, sig_header: str | None, db: Session, notifier) -> WebhookAck:
    try:
        event = verify_webhook(body, sig_header)
    except stripe.SignatureVerificationError:
        logger.warning("Rejected Stripe webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    event_type = event.get("type") or ""
    gateway_event = parse_event(event)
    if gateway_event is None:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return WebhookAck(eventType=event_type, handled=False)

    logger.info("Received Stripe event %s (%s)", gateway_event.event_id, event_type)
    result = reconcile_event(db, gateway_event, notifier)
    if result.outcome in (ReconcileOutcome.BOOKING_NOT_FOUND, ReconcileOutcome.CORRELATION_MISSING):
        log_audit(db, actor="stripe", action="webhook.dropped", entity_type="booking",
                  entity_id=gateway_event.booking_id or gateway_event.checkout_session_id or gateway_event.event_id,
                  details={"eventId": gateway_event.event_id, "eventType": event_type, "reason": result.outcome.value})
        db.commit()
    return WebhookAck(eventType=event_type, outcome=result.outcome.value)
