"""
Shared fixtures: a fake Stripe API behind the SDK's HTTP client hook, a controllable clock,
the in-memory blob store and a TestClient over an app wired to all three.
"""
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from belief_blueprint import config
from belief_blueprint.billing import StripeClient
from belief_blueprint.blob_store import MemoryBlobStore
from belief_blueprint.licenses import LicenseResolver
from belief_blueprint.main import create_app
from belief_blueprint.trials import TrialTracker

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_TOKEN = "admin-test-token"
BASE_URL = "http://testserver"
PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeStripe:
    """Just enough of the Stripe REST API for the billing client."""

    def __init__(self):
        self.customers = {}
        self.subscriptions = {}
        self.sessions = {}
        self.fail = False
        self.calls = []
        self.checkout_params = None

    # --------- seeding ----------
    def add_customer(self, customer_id, email=None, license_key=None):
        metadata = {"license_key": license_key} if license_key else {}
        self.customers[customer_id] = {"id": customer_id, "object": "customer", "email": email, "metadata": metadata}
        return self.customers[customer_id]

    def add_subscription(self, customer_id, status, sub_id=None, price_id="price_month_usd"):
        sub_id = sub_id or f"sub_{len(self.subscriptions) + 1}"
        self.subscriptions[sub_id] = {
            "id": sub_id,
            "object": "subscription",
            "customer": customer_id,
            "status": status,
            "current_period_end": PERIOD_END,
            "items": {"data": [{"price": {"id": price_id}}]},
            "metadata": {},
        }
        return self.subscriptions[sub_id]

    def add_session(self, session_id, customer_id):
        self.sessions[session_id] = {"id": session_id, "object": "checkout.session", "customer": customer_id}

    # --------- transport ----------
    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.fail:
            return httpx.Response(500, json={"error": {"type": "api_error", "message": "stripe is down"}})

        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()} if request.content else {}
        params = request.url.params
        parts = path.strip("/").split("/")

        if parts[:2] == ["v1", "subscriptions"]:
            if request.method == "GET":
                cid = params.get("customer")
                data = [s for s in reversed(list(self.subscriptions.values())) if s["customer"] == cid]
                after = params.get("starting_after")
                if after:
                    data = data[[s["id"] for s in data].index(after) + 1:]
                limit = int(params.get("limit") or 10)
                return httpx.Response(200, json={"object": "list", "url": "/v1/subscriptions", "data": data[:limit], "has_more": len(data) > limit})
            if request.method == "DELETE":
                sub = self.subscriptions.get(parts[2])
                if sub is None:
                    return self._missing("subscription")
                sub["status"] = "canceled"
                return httpx.Response(200, json=sub)

        if parts[:2] == ["v1", "customers"]:
            if len(parts) == 2 and request.method == "GET":
                hits = [c for c in self.customers.values() if c["email"] == params.get("email")]
                return httpx.Response(200, json={"object": "list", "url": "/v1/customers", "data": hits[:1], "has_more": False})
            if len(parts) == 2 and request.method == "POST":
                cid = f"cus_new{len(self.customers) + 1}"
                return httpx.Response(200, json=self.add_customer(cid, email=form.get("email")))
            customer = self.customers.get(parts[2])
            if customer is None:
                return self._missing("customer")
            if request.method == "POST":
                for k, v in form.items():
                    if k.startswith("metadata[") and k.endswith("]"):
                        customer["metadata"][k[len("metadata["):-1]] = v
            return httpx.Response(200, json=customer)

        if parts[:3] == ["v1", "checkout", "sessions"]:
            if request.method == "POST":
                self.checkout_params = form
                return httpx.Response(200, json={"id": "cs_test_new", "object": "checkout.session", "url": "https://checkout.stripe.test/cs_test_new"})
            session = self.sessions.get(parts[3])
            return httpx.Response(200, json=session) if session else self._missing("checkout session")

        if parts[:3] == ["v1", "billing_portal", "sessions"]:
            return httpx.Response(200, json={"id": "bps_1", "object": "billing_portal.session", "url": f"https://billing.stripe.test/p/{form.get('customer')}"})

        return self._missing("route")

    @staticmethod
    def _missing(what):
        return httpx.Response(404, json={"error": {"type": "invalid_request_error", "message": f"No such {what}"}})


class FakeStripeHTTPClient(stripe.HTTPClient):
    """Routes the SDK's requests to an in-process handler."""

    name = "fake"

    def __init__(self, handler):
        super().__init__()
        self.handler = handler

    def request(self, method, url, headers, post_data=None):
        r = self.handler(httpx.Request(method.upper(), url, headers=headers, content=post_data))
        return r.content, r.status_code, dict(r.headers)

    async def request_async(self, method, url, headers, post_data=None):
        return self.request(method, url, headers, post_data)

    def close(self):
        pass

    async def close_async(self):
        pass


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, ts: int = None) -> str:
    ts = ts or int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


@pytest.fixture(autouse=True)
def settings(monkeypatch):
    monkeypatch.setattr(config, "TRIAL_DAYS", 7)
    monkeypatch.setattr(config, "SESSION_SECRET", "test-session-secret")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(config, "ALLOWED_PRICE_IDS", [])
    monkeypatch.setattr(config, "FREE_DAILY_LIMIT", 5)
    monkeypatch.setattr(config, "REPORTS_RATE_LIMIT", 30)
    monkeypatch.setattr(config, "REPORTS_RATE_WINDOW_SECONDS", 60)
    monkeypatch.setattr(config, "DOMAIN", "https://blueprint.test")
    monkeypatch.setattr(config, "PRICE_IDS", {
        "INR": {"month": "price_month_inr", "year": "price_year_inr"},
        "USD": {"month": "price_month_usd", "year": None},
    })


@pytest.fixture
def clock():
    return MutableClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def stripe_api():
    return FakeStripe()


@pytest.fixture
def billing(stripe_api):
    return StripeClient(
        "sk_test_123",
        api_base="https://api.stripe.test",
        max_retries=0,
        http_client=FakeStripeHTTPClient(stripe_api.handler),
    )


@pytest.fixture
def store():
    return MemoryBlobStore(BASE_URL)


@pytest.fixture
def licenses(billing, store, clock):
    return LicenseResolver(billing, store, clock)


@pytest.fixture
def trials(store, clock):
    return TrialTracker(store, clock, 7)


@pytest.fixture
def app(store, billing, clock):
    return create_app(blob_store=store, billing=billing, clock=clock)


@pytest.fixture
def client(app):
    # https so the Secure trial cookie round-trips
    with TestClient(app, base_url="https://testserver") as c:
        yield c


@pytest.fixture
def post_event(client):
    def _post(event, secret=WEBHOOK_SECRET):
        body = json.dumps(event).encode()
        return client.post(
            "/api/stripe/webhook",
            content=body,
            headers={"Stripe-Signature": sign_payload(body, secret), "Content-Type": "application/json"},
        )
    return _post
