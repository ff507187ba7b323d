import json
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

import stripe

from app.core.config import settings
from app.core.errors import PaymentGatewayError
from app.services.booking_lifecycle import GatewayEventKind
from app.services.fee_service import to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class StripeConfig:
    secret_key: str
    success_url: str        # {CHECKOUT_SESSION_ID} is substituted by Stripe
    cancel_url: str
    sandbox: bool = False   # fake sessions, no network
    timeout: int = 25       # seconds per Stripe request
    max_network_retries: int = 1


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class GatewayEvent:
    event_id: str
    event_type: str
    kind: GatewayEventKind
    checkout_session_id: str | None = None
    payment_intent_id: str | None = None
    booking_id: str | None = None
    tenant_id: str | None = None
    platform_fee: Decimal | None = None
    business_amount: Decimal | None = None
    fee_percentage: Decimal | None = None
    amount_total: int | None = None  # minor units as charged by the gateway
    currency: str | None = None
    failure_message: str | None = None
    metadata: dict = field(default_factory=dict)


# Stripe event type -> lifecycle event
EVENT_KINDS = {
    "checkout.session.completed": GatewayEventKind.PAYMENT_SUCCEEDED,
    "checkout.session.async_payment_succeeded": GatewayEventKind.PAYMENT_SUCCEEDED,
    "checkout.session.async_payment_failed": GatewayEventKind.PAYMENT_FAILED,
    "payment_intent.payment_failed": GatewayEventKind.PAYMENT_ATTEMPT_FAILED,
    "checkout.session.expired": GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED,
    "payment_intent.canceled": GatewayEventKind.CHECKOUT_EXPIRED_OR_CANCELLED,
}


class StripeCheckoutClient:
    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg
        if not cfg.sandbox:
            # Checkout creation runs while the tenant row is locked
            stripe.default_http_client = stripe.RequestsClient(timeout=cfg.timeout)
            stripe.max_network_retries = cfg.max_network_retries

    def create_checkout_session(
        self,
        *,
        booking_id: str,
        tenant_id: str,
        session_type_id: str,
        product_name: str,
        total_amount: Decimal,
        currency: str,
        customer_email: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        md = {
            "booking_id": booking_id,
            "tenant_id": tenant_id,
            "session_type_id": session_type_id,
            **(metadata or {}),
        }
        if self.cfg.sandbox:
            sid = f"cs_sandbox_{uuid.uuid4().hex}"
            logger.info("Sandbox checkout session %s for booking %s", sid, booking_id)
            return CheckoutSession(id=sid, url=self.cfg.success_url.replace("{CHECKOUT_SESSION_ID}", sid))
        if not self.cfg.secret_key:
            raise PaymentGatewayError("Stripe is not configured (missing STRIPE_SECRET_KEY)")

        try:
            session = stripe.checkout.Session.create(
                api_key=self.cfg.secret_key,
                idempotency_key=f"checkout-{booking_id}",
                mode="payment",
                success_url=self.cfg.success_url,
                cancel_url=self.cfg.cancel_url,
                customer_email=customer_email,
                client_reference_id=booking_id,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": to_minor_units(total_amount),
                        "product_data": {"name": product_name},
                    },
                }],
                metadata=md,
                # payment_intent.* events carry the intent's metadata, not the session's
                payment_intent_data={"metadata": md},
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout creation failed for booking %s: %s", booking_id, e)
            raise PaymentGatewayError(f"Stripe error: {e}") from e

        logger.info("Created Stripe checkout session %s for booking %s", session.id, booking_id)
        return CheckoutSession(id=session.id, url=session.url)


def get_payment_gateway() -> StripeCheckoutClient:
    base = (settings.CLIENT_BASE_URL or "").rstrip("/")
    return StripeCheckoutClient(StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        success_url=f"{base}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/booking-cancelled",
        sandbox=settings.STRIPE_SANDBOX,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
    ))


def verify_webhook(payload: bytes, sig_header: str | None) -> dict:
    """Check the Stripe-Signature header and return the decoded event.

    Raises ValueError for an unreadable body and stripe.SignatureVerificationError
    for a bad signature. Verification is skipped when STRIPE_WEBHOOK_VERIFY is off.
    """
    if settings.STRIPE_WEBHOOK_VERIFY:
        if not sig_header or not settings.STRIPE_WEBHOOK_SECRET:
            raise stripe.SignatureVerificationError("missing signature or webhook secret", sig_header)
        stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    event = json.loads(payload.decode("utf-8") or "{}")
    if not isinstance(event, dict):
        raise ValueError("event body must be a JSON object")
    return event


def _decimal(v) -> Decimal | None:
    if v is None or v == "":
        return None
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return None


def parse_event(event: dict) -> GatewayEvent | None:
    """Map a Stripe event onto a lifecycle event; None for types this service ignores."""
    event_type = event.get("type") or ""
    kind = EVENT_KINDS.get(event_type)
    if kind is None:
        return None
    obj = (event.get("data") or {}).get("object") or {}
    md = obj.get("metadata") or {}

    if event_type == "checkout.session.completed" and obj.get("payment_status") not in (None, "paid", "no_payment_required"):
        # Delayed payment methods complete the session before the money moves;
        # the outcome arrives later as async_payment_succeeded/failed.
        return None

    is_session = obj.get("object") == "checkout.session" or event_type.startswith("checkout.session.")
    failure = None
    if kind in (GatewayEventKind.PAYMENT_FAILED, GatewayEventKind.PAYMENT_ATTEMPT_FAILED):
        failure = ((obj.get("last_payment_error") or {}).get("message")) or "Payment failed during checkout"

    return GatewayEvent(
        event_id=event.get("id") or "",
        event_type=event_type,
        kind=kind,
        checkout_session_id=obj.get("id") if is_session else None,
        payment_intent_id=obj.get("payment_intent") if is_session else obj.get("id"),
        booking_id=md.get("booking_id") or obj.get("client_reference_id"),
        tenant_id=md.get("tenant_id"),
        platform_fee=_decimal(md.get("platform_fee")),
        business_amount=_decimal(md.get("business_amount")),
        fee_percentage=_decimal(md.get("fee_percentage")),
        amount_total=obj.get("amount_total") if is_session else obj.get("amount"),
        currency=(obj.get("currency") or "").upper() or None,
        failure_message=failure,
        metadata=dict(md),
    )
