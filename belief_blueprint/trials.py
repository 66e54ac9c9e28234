# startedAt is write-once per identity; an expired trial is never restarted.
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from belief_blueprint import config
from belief_blueprint.blob_store import BlobStore
from belief_blueprint.licenses import email_key, utc_now

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400

def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

@dataclass
class TrialStatus:
    started_at: datetime
    expires_at: datetime
    days_used: int
    days_total: int
    days_left: int
    active: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": iso(self.started_at),
            "expiresAt": iso(self.expires_at),
            "daysUsed": self.days_used,
            "daysTotal": self.days_total,
            "active": self.active,
        }

def compute_trial(started_at: datetime, now: datetime, days: int) -> TrialStatus:
    expires_at = started_at + timedelta(days=days)
    elapsed = (now - started_at).total_seconds()
    remaining = (expires_at - now).total_seconds()
    return TrialStatus(
        started_at=started_at,
        expires_at=expires_at,
        days_used=max(0, math.floor(elapsed / DAY_SECONDS)),
        days_total=days,
        days_left=max(0, math.ceil(remaining / DAY_SECONDS)),
        active=now < expires_at,
    )

def trial_path(email: str) -> str:
    return f"trials/{email_key(email)}.json"

class TrialTracker:
    def __init__(self, store: BlobStore, clock: Callable[[], datetime] = utc_now, days: Optional[int] = None):
        self.store = store
        self.clock = clock
        self.days = days or config.TRIAL_DAYS

    async def trial_status(self, email: str) -> Optional[TrialStatus]:
        """Current trial for ``email``, None when never started. Never writes."""
        raw = await self.store.get_json(trial_path(email))
        if not raw or not raw.get("startedAt"):
            return None
        return compute_trial(parse_iso(raw["startedAt"]), self.clock(), self.days)

    async def ensure_trial(self, email: str) -> TrialStatus:
        existing = await self.trial_status(email)
        if existing is not None:
            return existing

        now = self.clock()
        await self.store.put_json(trial_path(email), {"startedAt": iso(now)})
        logger.info("trial started for %s", email_key(email))

        # A concurrent first contact may have written its own start; read back what won.
        stored = await self.trial_status(email)
        return stored or compute_trial(now, now, self.days)

# =========================
# COOKIE TRIAL
# =========================
def issue_trial_cookie(started_at: datetime) -> str:
    return jwt.encode({"startedAt": iso(started_at)}, config.SESSION_SECRET, algorithm=config.JWT_ALGORITHM)

def read_trial_cookie(token: Optional[str]) -> Optional[datetime]:
    """``startedAt`` from a cookie we signed; None for missing or tampered cookies."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, config.SESSION_SECRET, algorithms=[config.JWT_ALGORITHM])
        return parse_iso(claims["startedAt"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        logger.info("ignoring invalid trial cookie: %s", e)
        return None

def cookie_max_age(days: Optional[int] = None) -> int:
    return (days or config.TRIAL_DAYS) * DAY_SECONDS

def cookie_trial_payload(started_at: Optional[datetime], now: datetime, days: Optional[int] = None) -> Dict[str, Any]:
    days = days or config.TRIAL_DAYS
    if started_at is None:
        return {"trialDays": days, "startedAt": None, "isActive": False, "daysLeft": days, "endsAtISO": None}

    status = compute_trial(started_at, now, days)
    return {
        "trialDays": days,
        "startedAt": iso(started_at),
        "isActive": status.active,
        "daysLeft": status.days_left,
        "endsAtISO": iso(status.expires_at),
    }
