# License keys look like LIC-PRO-<customerId>-<8 hex>; billing stays the source of truth.
# Blobs: licenses/<customerId>.json (latest), licenses_by_email/<emailKey>.json,
# licenses_history/<customerId>-<millis>.json (append-only).
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from belief_blueprint.billing import BillingError, StripeClient, Subscription
from belief_blueprint.blob_store import BlobStore

logger = logging.getLogger(__name__)

CUSTOMER_ID_PREFIX = "cus_"
LICENSE_PREFIX = "LIC-PRO"

# Statuses that grant Pro access.
ACTIVE_STATUSES = frozenset({"active", "trialing"})
# Statuses that may still bill the customer; revocation cancels all of them.
REVOCABLE_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid", "incomplete"})
# Statuses the status page still shows as the Pro plan.
PLAN_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid"})

_EMAIL_UNSAFE = re.compile(r"[^a-z0-9._-]+")

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

# =========================
# KEYS
# =========================
@dataclass(frozen=True)
class Resolved:
    customer_id: str

@dataclass(frozen=True)
class Unresolvable:
    key: str

ParsedKey = Union[Resolved, Unresolvable]

def resolve_by_key(license_key: str) -> ParsedKey:
    """Extract the customer id segment; exactly one ``cus_`` segment must be present."""
    parts = (license_key or "").strip().split("-")
    hits = [p for p in parts if p.startswith(CUSTOMER_ID_PREFIX)]
    # a bare prefix still counts toward the multiplicity check
    if len(hits) != 1 or hits[0] == CUSTOMER_ID_PREFIX:
        return Unresolvable(key=license_key)
    return Resolved(customer_id=hits[0])

def issue_license(customer_id: str) -> str:
    return f"{LICENSE_PREFIX}-{customer_id}-{secrets.token_hex(4).upper()}"

def email_key(email: str) -> str:
    """Blob-safe email key: trimmed, lowercased, runs outside ``[a-z0-9._-]`` become ``_``."""
    e = str(email or "").strip().lower()
    return _EMAIL_UNSAFE.sub("_", e)

# =========================
# RECORDS
# =========================
class LicenseRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    customerId: str
    licenseKey: Optional[str] = None
    email: Optional[str] = None
    source: str
    savedAt: str
    subscriptionId: Optional[str] = None
    status: Optional[str] = None
    currentPeriodEnd: Optional[int] = None

def latest_path(customer_id: str) -> str:
    return f"licenses/{customer_id}.json"

def email_index_path(email: str) -> str:
    return f"licenses_by_email/{email_key(email)}.json"

def history_path(customer_id: str, at: datetime) -> str:
    return f"licenses_history/{customer_id}-{int(at.timestamp() * 1000)}.json"

# =========================
# VERIFICATION
# =========================
class Verification(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"

@dataclass
class SubscriptionCheck:
    verification: Verification
    subscription: Optional[Subscription] = None
    error: Optional[str] = None
    subscriptions: List[Subscription] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.verification is Verification.ACTIVE

    @property
    def failed(self) -> bool:
        return self.verification is Verification.FAILED

def pick_subscription(subs: List[Subscription]) -> Optional[Subscription]:
    """First access-granting subscription, else the most recent one."""
    for s in subs:
        if s.status in ACTIVE_STATUSES:
            return s
    return subs[0] if subs else None

def plan_subscription(subs: List[Subscription]) -> Optional[Subscription]:
    """Most recent subscription still on the Pro plan."""
    return next((s for s in subs if s.status in PLAN_STATUSES), None)

class LicenseResolver:
    def __init__(self, billing: StripeClient, store: BlobStore, clock: Callable[[], datetime] = utc_now):
        self.billing = billing
        self.store = store
        self.clock = clock

    async def has_active_subscription(self, customer_id: str) -> SubscriptionCheck:
        try:
            subs = await self.billing.list_subscriptions(customer_id)
        except BillingError as e:
            logger.warning("subscription check failed for %s: %s", customer_id, e)
            return SubscriptionCheck(Verification.FAILED, error=str(e))

        picked = pick_subscription(subs)
        if picked is not None and picked.status in ACTIVE_STATUSES:
            return SubscriptionCheck(Verification.ACTIVE, subscription=picked, subscriptions=subs)
        return SubscriptionCheck(Verification.INACTIVE, subscription=picked, subscriptions=subs)

    async def find_license_by_email(self, email: str) -> Optional[LicenseRecord]:
        if not (email or "").strip():
            return None
        path = email_index_path(email)
        try:
            raw = await self.store.get_json(path)
            if raw is None:
                return None
            return LicenseRecord.model_validate(raw)
        except (ValueError, ValidationError) as e:
            logger.warning("unreadable license index %s: %s", path, e)
            return None

    async def find_license_by_customer(self, customer_id: str) -> Optional[LicenseRecord]:
        raw = await self.store.get_json(latest_path(customer_id))
        return LicenseRecord.model_validate(raw) if raw is not None else None

    def make_record(self, customer_id: str, license_key: Optional[str], email: Optional[str], source: str, **extra) -> LicenseRecord:
        return LicenseRecord(
            customerId=customer_id,
            licenseKey=license_key,
            email=email,
            source=source,
            savedAt=self.clock().isoformat(),
            **extra,
        )

    async def save_license_record(self, record: LicenseRecord, *, write_latest: bool = True, write_history: bool = True) -> None:
        data = record.model_dump()

        if write_latest:
            latest = await self.store.put_json(latest_path(record.customerId), data)
            logger.info("wrote latest license record %s", latest.pathname)
            if record.email:
                by_email = await self.store.put_json(email_index_path(record.email), data)
                logger.info("wrote email index %s", by_email.pathname)

        if write_history:
            hist = await self.store.put_json(history_path(record.customerId, self.clock()), data)
            logger.info("wrote license history %s", hist.pathname)

    async def ensure_customer_license(self, customer_id: str, customer: Optional[dict] = None) -> str:
        """Reuse the key stored in customer metadata, or issue and store a new one."""
        if customer is None:
            customer = await self.billing.retrieve_customer(customer_id)
        existing = ((customer or {}).get("metadata") or {}).get("license_key")
        if existing and resolve_by_key(existing) == Resolved(customer_id):
            return existing

        key = issue_license(customer_id)
        await self.billing.update_customer_metadata(customer_id, {"license_key": key})
        logger.info("issued license %s for %s", key, customer_id)
        return key

    async def revoke(self, customer_id: str) -> List[Subscription]:
        """Cancel anything that could still bill the customer and record the revocation."""
        subs = await self.billing.list_subscriptions(customer_id)
        targets = [s for s in subs if s.status in REVOCABLE_STATUSES]
        for s in targets:
            await self.billing.cancel_subscription(s.id)

        email = license_key = None
        try:
            customer = await self.billing.retrieve_customer(customer_id)
        except BillingError as e:
            logger.warning("could not read customer %s after revoke: %s", customer_id, e)
            customer = None
        if customer:
            email = customer.get("email")
            license_key = (customer.get("metadata") or {}).get("license_key")

        record = self.make_record(
            customer_id,
            license_key,
            email,
            "admin.revoke",
            status="canceled",
            revokedAt=self.clock().isoformat(),
            revokedSubs=[{"id": s.id, "status": s.status} for s in targets],
        )
        await self.save_license_record(record)
        return targets
