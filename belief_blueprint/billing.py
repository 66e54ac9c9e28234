from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import stripe

from belief_blueprint import config

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2024-06-20"
WEBHOOK_TOLERANCE_SECONDS = 300
LIST_PAGE_SIZE = 100

class BillingError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @classmethod
    def from_stripe(cls, e: stripe.StripeError) -> "BillingError":
        msg = e.user_message or str(e) or type(e).__name__
        if e.http_status:
            return cls(f"Stripe HTTP {e.http_status}: {msg}", status_code=e.http_status)
        return cls(f"Stripe request failed: {msg}")

class WebhookSignatureError(Exception):
    pass

@dataclass
class Subscription:
    id: str
    customer: str
    status: str
    current_period_end: Optional[int] = None
    price_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Subscription":
        items = ((data.get("items") or {}).get("data")) or []
        period_end = data.get("current_period_end")
        if period_end is None and items:
            period_end = items[0].get("current_period_end")
        price_ids = []
        for it in items:
            price = it.get("price") or it.get("plan") or {}
            if isinstance(price, dict) and price.get("id"):
                price_ids.append(price["id"])
        customer = data.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")
        return cls(
            id=data["id"],
            customer=customer or "",
            status=data.get("status") or "",
            current_period_end=period_end,
            price_ids=price_ids,
            metadata=data.get("metadata") or {},
        )

def customer_id_of(obj: Dict[str, Any]) -> Optional[str]:
    cust = obj.get("customer")
    if isinstance(cust, dict):
        return cust.get("id")
    return cust or None

class StripeClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        *,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[stripe.HTTPClient] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else config.STRIPE_SECRET_KEY
        self.api_base = (api_base or config.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout if timeout is not None else config.STRIPE_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else config.STRIPE_MAX_RETRIES

        self._sdk: Optional[stripe.StripeClient] = None
        if self.secret_key:
            self._sdk = stripe.StripeClient(
                self.secret_key,
                stripe_version=STRIPE_API_VERSION,
                base_addresses={"api": self.api_base},
                max_network_retries=self.max_retries,
                http_client=http_client or stripe.HTTPXClient(timeout=self.timeout),
            )

    @property
    def sdk(self) -> stripe.StripeClient:
        if self._sdk is None:
            raise BillingError("STRIPE_SECRET_KEY not set")
        return self._sdk

    async def _call(self, method: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        try:
            return await method(*args, **kwargs)
        except stripe.StripeError as e:
            raise BillingError.from_stripe(e) from e

    # --------- subscriptions ----------
    async def list_subscriptions(self, customer_id: str) -> List[Subscription]:
        page = await self._call(
            self.sdk.subscriptions.list_async,
            params={"customer": customer_id, "status": "all", "limit": LIST_PAGE_SIZE},
        )
        subs: List[Subscription] = []
        try:
            async for s in page.auto_paging_iter():
                subs.append(Subscription.from_api(s))
        except stripe.StripeError as e:
            raise BillingError.from_stripe(e) from e
        return subs

    async def cancel_subscription(self, subscription_id: str) -> Subscription:
        data = await self._call(self.sdk.subscriptions.cancel_async, subscription_id)
        return Subscription.from_api(data)

    # --------- customers ----------
    async def retrieve_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """Customer object, or None for a deleted customer."""
        data = await self._call(self.sdk.customers.retrieve_async, customer_id)
        if data.get("deleted"):
            return None
        return data

    async def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        return await self._call(self.sdk.customers.update_async, customer_id, params={"metadata": metadata})

    async def find_customer_by_email(self, email: str) -> Optional[str]:
        page = await self._call(self.sdk.customers.list_async, params={"email": email, "limit": 1})
        hits = page.get("data") or []
        return hits[0]["id"] if hits else None

    async def create_customer(self, email: str) -> str:
        data = await self._call(self.sdk.customers.create_async, params={"email": email})
        return data["id"]

    # --------- checkout / portal ----------
    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return await self._call(self.sdk.checkout.sessions.retrieve_async, session_id)

    async def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(self.sdk.checkout.sessions.create_async, params=params)

    async def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return await self._call(
            self.sdk.billing_portal.sessions.create_async,
            params={"customer": customer_id, "return_url": return_url},
        )

def construct_event(payload: bytes, sig_header: str, secret: str, tolerance: int = WEBHOOK_TOLERANCE_SECONDS) -> Dict[str, Any]:
    """Verify a webhook signature header and return the decoded event."""
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError("Webhook payload is not valid JSON") from e
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Webhook payload is not an event")
    return event
