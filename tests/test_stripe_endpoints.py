import json

from belief_blueprint import config
from belief_blueprint.licenses import Resolved, resolve_by_key

from conftest import PERIOD_END, sign_payload


def checkout_event(event_id="evt_1", customer="cus_1", email="a@b.com", **extra):
    obj = {
        "id": "cs_1",
        "object": "checkout.session",
        "customer": customer,
        "customer_details": {"email": email},
        "mode": "subscription",
        "currency": "usd",
        "amount_total": 1900,
    }
    obj.update(extra)
    return {"id": event_id, "type": "checkout.session.completed", "data": {"object": obj}}


def subscription_event(event_type, event_id="evt_sub", status="active", customer="cus_1", price_id="price_month_usd"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {
            "id": "sub_1",
            "object": "subscription",
            "customer": customer,
            "status": status,
            "current_period_end": PERIOD_END,
            "items": {"data": [{"price": {"id": price_id}}]},
        }},
    }


# --------- signatures ----------
def test_missing_signature_is_rejected(client, store):
    r = client.post("/api/stripe/webhook", content=json.dumps(checkout_event()).encode())
    assert r.status_code == 400


def test_bad_signature_is_rejected_and_nothing_written(client, store, post_event):
    r = post_event(checkout_event(), secret="whsec_wrong")
    assert r.status_code == 400
    assert store._blobs == {}


def test_stale_signature_is_rejected(client):
    body = json.dumps(checkout_event()).encode()
    r = client.post("/api/stripe/webhook", content=body, headers={"Stripe-Signature": sign_payload(body, ts=1000)})
    assert r.status_code == 400


def test_webhook_secret_must_be_configured(client, monkeypatch, post_event):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)
    assert post_event(checkout_event()).status_code == 500


# --------- checkout ----------
def test_checkout_issues_and_records_license(client, stripe_api, store, post_event):
    stripe_api.add_customer("cus_1", email="billing@b.com")

    r = post_event(checkout_event())
    assert r.status_code == 200
    assert r.json() == {"received": True}

    key = stripe_api.customers["cus_1"]["metadata"]["license_key"]
    assert resolve_by_key(key) == Resolved("cus_1")

    latest = store._blobs["licenses/cus_1.json"]
    record = json.loads(latest[0])
    assert record["licenseKey"] == key
    assert record["email"] == "a@b.com"
    assert record["sessionId"] == "cs_1"
    assert record["source"] == "checkout.session.completed"
    assert "licenses_by_email/a_b.com.json" in store._blobs
    assert any(p.startswith("licenses_history/cus_1-") for p in store._blobs)
    assert json.loads(store._blobs["stripe_events/evt_1.json"][0])["outcome"] == "processed"


def test_checkout_reuses_existing_key(client, stripe_api, store, post_event):
    stripe_api.add_customer("cus_1", email="a@b.com", license_key="LIC-PRO-cus_1-CAFEBABE")
    post_event(checkout_event())

    assert ("POST", "/v1/customers/cus_1") not in stripe_api.calls
    assert json.loads(store._blobs["licenses/cus_1.json"][0])["licenseKey"] == "LIC-PRO-cus_1-CAFEBABE"


def test_redelivered_event_is_applied_once(client, stripe_api, post_event):
    stripe_api.add_customer("cus_1", email="a@b.com")
    assert post_event(checkout_event()).json() == {"received": True}
    calls = len(stripe_api.calls)

    again = post_event(checkout_event())
    assert again.status_code == 200
    assert again.json() == {"received": True, "duplicate": True}
    assert len(stripe_api.calls) == calls


def test_processing_failure_is_acknowledged_and_retryable(client, stripe_api, store, post_event):
    stripe_api.fail = True
    r = post_event(checkout_event())
    assert r.status_code == 200
    assert "stripe_events/evt_1.json" not in store._blobs

    stripe_api.fail = False
    stripe_api.add_customer("cus_1", email="a@b.com")
    post_event(checkout_event())
    assert "licenses/cus_1.json" in store._blobs


# --------- subscriptions ----------
def test_subscription_created_backfills_key(client, stripe_api, store, post_event):
    stripe_api.add_customer("cus_1", email="a@b.com")
    post_event(subscription_event("customer.subscription.created"))

    record = json.loads(store._blobs["licenses/cus_1.json"][0])
    assert record["status"] == "active"
    assert record["subscriptionId"] == "sub_1"
    assert record["currentPeriodEnd"] == PERIOD_END
    assert record["licenseKey"] == stripe_api.customers["cus_1"]["metadata"]["license_key"]


def test_subscription_deleted_records_status_without_issuing(client, stripe_api, store, post_event):
    stripe_api.add_customer("cus_1", email="a@b.com")
    post_event(subscription_event("customer.subscription.deleted", status="canceled"))

    record = json.loads(store._blobs["licenses/cus_1.json"][0])
    assert record["status"] == "canceled"
    assert record["licenseKey"] is None
    assert "license_key" not in stripe_api.customers["cus_1"]["metadata"]


def test_unrelated_event_is_ignored(client, store, post_event):
    r = post_event({"id": "evt_x", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}})
    assert r.status_code == 200
    assert json.loads(store._blobs["stripe_events/evt_x.json"][0])["outcome"] == "ignored"
    assert not any(p.startswith("licenses") for p in store._blobs)


def test_price_allowlist_skips_foreign_products(client, monkeypatch, stripe_api, store, post_event):
    monkeypatch.setattr(config, "ALLOWED_PRICE_IDS", ["price_month_usd"])
    stripe_api.add_customer("cus_1", email="a@b.com")

    post_event(subscription_event("customer.subscription.updated", event_id="evt_a", price_id="price_other"))
    assert "licenses/cus_1.json" not in store._blobs

    post_event(subscription_event("customer.subscription.updated", event_id="evt_b"))
    assert "licenses/cus_1.json" in store._blobs


# --------- checkout / portal / session ----------
def test_create_checkout_session(client, stripe_api):
    r = client.post("/api/stripe/create-checkout-session", json={"interval": "month", "currency": "USD", "email": "a@b.com"})
    assert r.status_code == 200
    assert r.json() == {"url": "https://checkout.stripe.test/cs_test_new"}

    params = stripe_api.checkout_params
    assert params["line_items[0][price]"] == "price_month_usd"
    assert params["customer_email"] == "a@b.com"
    assert params["mode"] == "subscription"
    assert params["success_url"] == "https://blueprint.test/success?session_id={CHECKOUT_SESSION_ID}"
    assert "customer_creation" not in params


def test_checkout_payment_mode_creates_customer(client, stripe_api):
    client.post("/api/stripe/create-checkout-session", json={"interval": "year", "currency": "INR", "email": "a@b.com", "mode": "payment"})
    assert stripe_api.checkout_params["customer_creation"] == "always"
    assert stripe_api.checkout_params["line_items[0][price]"] == "price_year_inr"


def test_checkout_missing_price(client):
    r = client.post("/api/stripe/create-checkout-session", json={"interval": "year", "currency": "USD", "email": "a@b.com"})
    assert r.status_code == 500


def test_checkout_rejects_bad_input(client):
    assert client.post("/api/stripe/create-checkout-session", json={"currency": "EUR", "email": "a@b.com"}).status_code == 422
    assert client.post("/api/stripe/create-checkout-session", json={"email": "nope"}).status_code == 422


def test_checkout_provider_error(client, stripe_api):
    stripe_api.fail = True
    r = client.post("/api/stripe/create-checkout-session", json={"currency": "USD", "email": "a@b.com"})
    assert r.status_code == 502


def test_portal_from_session(client, stripe_api):
    stripe_api.add_session("cs_1", "cus_1")
    r = client.post("/api/stripe/create-portal-session", json={"returnUrl": "https://blueprint.test/account", "sessionId": "cs_1"})
    assert r.status_code == 200
    assert r.json() == {"url": "https://billing.stripe.test/p/cus_1"}


def test_portal_needs_a_customer(client):
    r = client.post("/api/stripe/create-portal-session", json={"returnUrl": "https://blueprint.test/account"})
    assert r.status_code == 400
    bad = client.post("/api/stripe/create-portal-session", json={"returnUrl": "javascript:alert(1)", "customerId": "cus_1"})
    assert bad.status_code == 422


def test_license_from_session(client, stripe_api):
    stripe_api.add_session("cs_1", "cus_1")
    stripe_api.add_customer("cus_1", email="a@b.com", license_key="LIC-PRO-cus_1-CAFEBABE")

    r = client.get("/api/stripe/get-license-from-session", params={"session_id": "cs_1"})
    assert r.json() == {"licenseKey": "LIC-PRO-cus_1-CAFEBABE", "customerId": "cus_1"}

    assert client.get("/api/stripe/get-license-from-session").status_code == 400
    assert client.get("/api/stripe/get-license-from-session", params={"session_id": "cs_missing"}).status_code == 502
