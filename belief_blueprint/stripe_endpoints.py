import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Request

from belief_blueprint import config
from belief_blueprint.billing import (
    BillingError,
    StripeClient,
    Subscription,
    WebhookSignatureError,
    construct_event,
    customer_id_of,
)
from belief_blueprint.blob_store import BlobStore
from belief_blueprint.deps import get_billing, get_licenses, get_store
from belief_blueprint.licenses import LicenseResolver
from belief_blueprint.schemas import CheckoutBody, PortalBody

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe")

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)

# =========================
# WEBHOOK
# =========================
def event_marker_path(event_id: str) -> str:
    return f"stripe_events/{event_id}.json"

def price_ids_of(obj: Dict[str, Any]) -> Set[str]:
    """Price ids from the usual event object shapes (session lines, subscription items)."""
    found: Set[str] = set()
    entries = []
    for key in ("lines", "items", "subscription_items"):
        entries.extend(((obj.get(key) or {}).get("data")) or [])
    entries.extend(obj.get("display_items") or [])

    for li in entries:
        for field in ("price", "plan"):
            v = li.get(field)
            if isinstance(v, dict):
                v = v.get("id")
            if isinstance(v, str):
                found.add(v)
    return found

async def _on_checkout_completed(session: Dict[str, Any], licenses: LicenseResolver) -> None:
    customer_id = customer_id_of(session)
    if not customer_id:
        logger.error("checkout.session.completed %s without customer", session.get("id"))
        return

    customer = await licenses.billing.retrieve_customer(customer_id)
    license_key = await licenses.ensure_customer_license(customer_id, customer or {})
    email = (session.get("customer_details") or {}).get("email") or (customer or {}).get("email")

    record = licenses.make_record(
        customer_id,
        license_key,
        email,
        "checkout.session.completed",
        sessionId=session.get("id"),
        mode=session.get("mode"),
        currency=session.get("currency"),
        amount_total=session.get("amount_total"),
    )
    await licenses.save_license_record(record)

async def _on_subscription_event(event_type: str, obj: Dict[str, Any], licenses: LicenseResolver) -> None:
    sub = Subscription.from_api(obj)
    if not sub.customer:
        logger.error("%s %s without customer", event_type, sub.id)
        return

    customer: Optional[Dict[str, Any]]
    try:
        customer = await licenses.billing.retrieve_customer(sub.customer)
    except BillingError as e:
        logger.warning("could not read customer %s: %s", sub.customer, e)
        customer = None

    email = (customer or {}).get("email")
    license_key = ((customer or {}).get("metadata") or {}).get("license_key")
    if event_type == "customer.subscription.created" and customer is not None:
        license_key = await licenses.ensure_customer_license(sub.customer, customer)

    record = licenses.make_record(
        sub.customer,
        license_key,
        email,
        event_type,
        subscriptionId=sub.id,
        status=sub.status,
        currentPeriodEnd=sub.current_period_end,
    )
    await licenses.save_license_record(record)

async def handle_event(event: Dict[str, Any], licenses: LicenseResolver) -> str:
    """Apply one verified event; returns what was done, for logs and the ack body."""
    event_type = event.get("type")
    obj = ((event.get("data") or {}).get("object")) or {}

    if config.ALLOWED_PRICE_IDS:
        ids = price_ids_of(obj)
        if not ids & set(config.ALLOWED_PRICE_IDS):
            logger.info("webhook %s skipped (price ids %s not allowed)", event_type, sorted(ids))
            return "skipped"

    if event_type == "checkout.session.completed":
        await _on_checkout_completed(obj, licenses)
        return "processed"
    if event_type in SUBSCRIPTION_EVENTS:
        await _on_subscription_event(event_type, obj, licenses)
        return "processed"
    return "ignored"

@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    licenses: LicenseResolver = Depends(get_licenses),
    store: BlobStore = Depends(get_store),
):
    secret = config.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET not set")
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")

    payload = await request.body()
    try:
        event = construct_event(payload, sig, secret)
    except WebhookSignatureError as e:
        logger.warning("webhook signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail="Invalid Stripe signature")

    event_id = event.get("id")
    if event_id and await store.head(event_marker_path(event_id)) is not None:
        logger.info("webhook %s already processed", event_id)
        return {"received": True, "duplicate": True}

    try:
        outcome = await handle_event(event, licenses)
    except Exception:
        # acknowledged so the provider does not retry a poison event forever
        logger.exception("webhook %s (%s) failed", event_id, event.get("type"))
        return {"received": True}

    if event_id:
        await store.put_json(event_marker_path(event_id), {
            "id": event_id,
            "type": event.get("type"),
            "outcome": outcome,
            "processedAt": licenses.clock().isoformat(),
        })
    logger.info("webhook %s (%s) %s", event_id, event.get("type"), outcome)
    return {"received": True}

# =========================
# CHECKOUT / PORTAL
# =========================
@router.post("/create-checkout-session")
async def create_checkout_session(body: CheckoutBody, billing: StripeClient = Depends(get_billing)):
    price_id = config.PRICE_IDS[body.currency][body.interval]
    if not price_id:
        kind = "ANNUAL" if body.interval == "year" else "MONTHLY"
        raise HTTPException(status_code=500, detail=f"Missing Price ID for {body.currency} {body.interval} (PRICE_PRO_{kind}_{body.currency})")
    if not config.DOMAIN:
        raise HTTPException(status_code=500, detail="DOMAIN env var not set")

    domain = config.DOMAIN.rstrip("/")
    params: Dict[str, Any] = {
        "mode": body.mode,
        "line_items": [{"price": price_id, "quantity": 1}],
        "customer_email": body.email,
        "billing_address_collection": "required",
        "phone_number_collection": {"enabled": True},
        "allow_promotion_codes": True,
        "success_url": f"{domain}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{domain}/cancelled",
        "metadata": {"app": "belief-blueprint", "plan_interval": body.interval, "plan_currency": body.currency},
    }
    if body.mode == "payment":
        params["customer_creation"] = "always"

    try:
        session = await billing.create_checkout_session(params)
    except BillingError as e:
        logger.error("create-checkout-session failed: %s", e)
        raise HTTPException(status_code=502, detail="Checkout session error")
    return {"url": session.get("url")}

@router.post("/create-portal-session")
async def create_portal_session(body: PortalBody, billing: StripeClient = Depends(get_billing)):
    try:
        customer_id = (body.customerId or "").strip() or None
        if not customer_id and body.sessionId:
            session = await billing.retrieve_checkout_session(body.sessionId)
            customer_id = customer_id_of(session)
        if not customer_id:
            raise HTTPException(status_code=400, detail="Could not determine customerId. Pass customerId or a valid sessionId.")

        portal = await billing.create_portal_session(customer_id, body.returnUrl)
    except BillingError as e:
        logger.error("create-portal-session failed: %s", e)
        raise HTTPException(status_code=502, detail="Portal session error")
    return {"url": portal.get("url")}

@router.get("/get-license-from-session")
async def get_license_from_session(session_id: str = "", licenses: LicenseResolver = Depends(get_licenses)):
    session_id = session_id.strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session_id")

    try:
        session = await licenses.billing.retrieve_checkout_session(session_id)
        customer_id = customer_id_of(session)
        if not customer_id:
            raise HTTPException(status_code=400, detail="No customer on session")
        license_key = await licenses.ensure_customer_license(customer_id)
    except BillingError as e:
        logger.error("get-license-from-session failed: %s", e)
        raise HTTPException(status_code=502, detail="LICENSE_FETCH_FAILED")

    return {"licenseKey": license_key, "customerId": customer_id}
