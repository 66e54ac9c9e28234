from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from belief_blueprint.licenses import utc_now

@dataclass
class Window:
    expires: float
    count: int

@dataclass
class RateDecision:
    allowed: bool
    retry_after: int
    count: int
    limit: int

class WindowCounter:
    """Fixed-window counter kept in process memory. Each instance counts on its own."""
    def __init__(self, clock: Callable[[], datetime] = utc_now, max_keys: int = 10000):
        self.clock = clock
        self.max_keys = max_keys
        self._windows: Dict[str, Window] = {}

    def hit(self, key: str, window_seconds: float, limit: int) -> RateDecision:
        now = self.clock().timestamp()
        w = self._windows.get(key)
        if w is None or now >= w.expires:
            if len(self._windows) >= self.max_keys:
                self._sweep(now)
            w = Window(expires=now + window_seconds, count=0)
            self._windows[key] = w

        if w.count >= limit:
            # seconds until the window rolls over
            retry_after = max(1, math.ceil(w.expires - now))
            return RateDecision(False, retry_after, w.count, limit)

        w.count += 1
        return RateDecision(True, 0, w.count, limit)

    def _sweep(self, now: float) -> None:
        for k in [k for k, w in self._windows.items() if now >= w.expires]:
            del self._windows[k]

# =========================
# DAILY QUOTA
# =========================
@dataclass
class QuotaDecision:
    allowed: bool
    count: int
    limit: int
    reset_at: datetime

def day_stamp(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")

def next_utc_midnight(now: datetime) -> datetime:
    d = now.astimezone(timezone.utc)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc) + timedelta(days=1)

def check_daily_quota(counter: WindowCounter, identity: str, limit: int) -> QuotaDecision:
    """One counter per identity per UTC day; the window closes at the next midnight."""
    now = counter.clock()
    reset_at = next_utc_midnight(now)
    d = counter.hit(f"{identity}::{day_stamp(now)}", (reset_at - now).total_seconds(), limit)
    return QuotaDecision(allowed=d.allowed, count=d.count, limit=limit, reset_at=reset_at)
