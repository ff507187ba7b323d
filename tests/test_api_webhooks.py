import asyncio
import hashlib
import hmac
import json
import time

import pytest

from app.api.v1.routes import payments as payments_routes
from app.core.config import settings
from app.models.audit_log import AuditLog
from app.services.payment_reconciler import reconcile_event

API = "/api/v1"


def signed(payload: str, secret: str | None = None, ts: int | None = None) -> dict:
    ts = ts or int(time.time())
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


def completed_event(booking: dict, checkout_session_id: str, event_id="evt_1", event_type="checkout.session.completed"):
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {
            "id": checkout_session_id,
            "object": "checkout.session",
            "payment_intent": "pi_123",
            "payment_status": "paid",
            "amount_total": 5250,
            "currency": "usd",
            "client_reference_id": booking["id"],
            "metadata": {
                "booking_id": booking["id"],
                "tenant_id": booking["tenantId"],
                "platform_fee": "2.50",
                "business_amount": "50.00",
                "fee_percentage": "5.0",
            },
        }},
    })


@pytest.fixture
def priced_booking(client, tenant, paid_session):
    r = client.post(f"{API}/public/tenants/{tenant.id}/bookings", json={
        "sessionTypeId": paid_session.id,
        "startTime": "2030-03-04T10:00:00Z",
        "email": "client@example.com",
    })
    booking = r.json()
    payment = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}/payment").json()
    return booking, payment["checkoutSessionId"]


def test_signed_success_confirms(client, tenant, priced_booking, notifier):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id)
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.status_code == 200, r.text
    assert r.json()["outcome"] == "applied"

    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "CONFIRMED"
    p = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}/payment").json()
    assert p["status"] == "COMPLETED"
    assert notifier.sent == [booking["id"]]


def test_redelivery_is_acknowledged_without_effect(client, priced_booking, notifier):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id)
    client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.status_code == 200
    assert r.json()["outcome"] == "stale"
    assert notifier.sent == [booking["id"]]


def test_bad_signature_is_400(client, tenant, priced_booking, notifier):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id)
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload, secret="whsec_wrong"))
    assert r.status_code == 400
    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "PENDING_PAYMENT"
    assert notifier.sent == []


def test_missing_signature_is_400(client, priced_booking):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id)
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_stale_timestamp_is_400(client, priced_booking):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id)
    old = int(time.time()) - settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS - 60
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload, ts=old))
    assert r.status_code == 400


def test_unhandled_event_type_acknowledged(client):
    payload = json.dumps({"id": "evt_9", "type": "customer.created", "data": {"object": {}}})
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.status_code == 200
    assert r.json()["handled"] is False


def test_unknown_booking_acknowledged_and_audited(client, db, tenant):
    booking = {"id": "00000000-0000-0000-0000-000000000000", "tenantId": tenant.id}
    payload = completed_event(booking, "cs_unknown")
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.status_code == 200
    assert r.json()["outcome"] == "booking_not_found"
    assert db.query(AuditLog).filter(AuditLog.action == "webhook.dropped").count() == 1


def test_expired_checkout_frees_slot(client, tenant, paid_session, priced_booking, notifier):
    booking, cs_id = priced_booking
    payload = completed_event(booking, cs_id, event_id="evt_exp", event_type="checkout.session.expired")
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.json()["outcome"] == "applied"
    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "CANCELLED"
    assert notifier.sent == []

    again = client.post(f"{API}/public/tenants/{tenant.id}/bookings", json={
        "sessionTypeId": paid_session.id,
        "startTime": "2030-03-04T10:00:00Z",
        "email": "second@example.com",
    })
    assert again.status_code == 200


def declined_event(booking: dict, event_id="evt_declined"):
    return json.dumps({
        "id": event_id,
        "type": "payment_intent.payment_failed",
        "data": {"object": {
            "id": "pi_123",
            "object": "payment_intent",
            "amount": 5250,
            "currency": "usd",
            "last_payment_error": {"message": "Your card was declined."},
            "metadata": {"booking_id": booking["id"], "tenant_id": booking["tenantId"]},
        }},
    })


def test_declined_card_then_success_confirms(client, tenant, priced_booking, notifier):
    booking, cs_id = priced_booking
    declined = declined_event(booking)
    r = client.post(f"{API}/webhooks/stripe", content=declined, headers=signed(declined))
    assert r.status_code == 200
    assert r.json()["outcome"] == "recorded"
    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "PENDING_PAYMENT"

    paid = completed_event(booking, cs_id, event_id="evt_paid")
    r = client.post(f"{API}/webhooks/stripe", content=paid, headers=signed(paid))
    assert r.json()["outcome"] == "applied"
    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "CONFIRMED"
    p = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}/payment").json()
    assert p["status"] == "COMPLETED"
    assert notifier.sent == [booking["id"]]


def test_async_payment_failure_is_terminal(client, tenant, priced_booking, notifier):
    booking, cs_id = priced_booking
    failed = completed_event(booking, cs_id, event_id="evt_async_failed",
                             event_type="checkout.session.async_payment_failed")
    assert client.post(f"{API}/webhooks/stripe", content=failed, headers=signed(failed)).json()["outcome"] == "applied"

    paid = completed_event(booking, cs_id, event_id="evt_paid")
    assert client.post(f"{API}/webhooks/stripe", content=paid, headers=signed(paid)).json()["outcome"] == "stale"
    b = client.get(f"{API}/public/tenants/{tenant.id}/bookings/{booking['id']}").json()
    assert b["status"] == "PAYMENT_FAILED"
    assert notifier.sent == []


def test_reconciliation_runs_off_the_event_loop(client, priced_booking, monkeypatch):
    booking, cs_id = priced_booking
    loops = []

    def recording_reconcile(db, event, notifier):
        try:
            loops.append(asyncio.get_running_loop())
        except RuntimeError:
            loops.append(None)
        return reconcile_event(db, event, notifier)

    monkeypatch.setattr(payments_routes, "reconcile_event", recording_reconcile)
    payload = completed_event(booking, cs_id)
    r = client.post(f"{API}/webhooks/stripe", content=payload, headers=signed(payload))
    assert r.json()["outcome"] == "applied"
    assert loops == [None]
