from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request

from belief_blueprint import config
from belief_blueprint.licenses import LicenseResolver, Resolved, resolve_by_key
from belief_blueprint.trials import TrialStatus, TrialTracker

logger = logging.getLogger(__name__)

DEBUG_DIAGNOSTIC_MAX = 200

class DenyReason(str, Enum):
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    LEGACY_LICENSE_FORMAT = "LEGACY_LICENSE_FORMAT"
    SUB_INACTIVE = "SUB_INACTIVE"
    PAYWALL_ERROR = "PAYWALL_ERROR"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"

MESSAGES = {
    DenyReason.UPGRADE_REQUIRED: "Pro is required for this feature. Visit /pricing and paste your license key.",
    DenyReason.LEGACY_LICENSE_FORMAT: "Your license key is from an older format. Please regenerate your license from the latest checkout success page or contact support.",
    DenyReason.SUB_INACTIVE: "Your subscription isn't active. Please renew in the billing portal or purchase a plan.",
    DenyReason.PAYWALL_ERROR: "Could not verify license at the moment. Please try again shortly.",
    DenyReason.TRIAL_EXPIRED: "Your free trial has ended. Please purchase a Pro license to continue.",
    DenyReason.RATE_LIMITED: "Too many requests. Please slow down and try again shortly.",
}

STATUS_CODES = {
    DenyReason.PAYWALL_ERROR: 401,
    DenyReason.RATE_LIMITED: 429,
}

class Via(str, Enum):
    LICENSE = "license"
    TRIAL = "trial"
    NONE = "none"

@dataclass
class AccessVerdict:
    allowed: bool
    via: Via = Via.NONE
    reason: Optional[DenyReason] = None
    customer_id: Optional[str] = None
    trial: Optional[TrialStatus] = None
    # internal detail, only surfaced under ?debug=1
    diagnostic: Optional[str] = None

    @classmethod
    def deny(cls, reason: DenyReason, *, diagnostic: Optional[str] = None, trial: Optional[TrialStatus] = None) -> "AccessVerdict":
        return cls(allowed=False, reason=reason, diagnostic=diagnostic, trial=trial)

    @classmethod
    def via_license(cls, customer_id: str) -> "AccessVerdict":
        return cls(allowed=True, via=Via.LICENSE, customer_id=customer_id)

    @classmethod
    def via_trial(cls, trial: TrialStatus) -> "AccessVerdict":
        return cls(allowed=True, via=Via.TRIAL, trial=trial)

    @property
    def status_code(self) -> int:
        return STATUS_CODES.get(self.reason, 402)

def deny_body(verdict: AccessVerdict, debug: bool = False) -> Dict[str, Any]:
    reason = verdict.reason or DenyReason.UPGRADE_REQUIRED
    body: Dict[str, Any] = {
        "error": reason.value,
        "message": MESSAGES[reason],
        "upgradeUrl": config.UPGRADE_URL,
    }
    if verdict.trial is not None:
        body["trial"] = verdict.trial.as_dict()
    if debug and verdict.diagnostic:
        body["debug"] = verdict.diagnostic[:DEBUG_DIAGNOSTIC_MAX]
    return body

class AccessDenied(Exception):
    def __init__(self, verdict: AccessVerdict, *, retry_after: Optional[int] = None, debug: bool = False):
        super().__init__(verdict.reason.value if verdict.reason else "denied")
        self.verdict = verdict
        self.retry_after = retry_after
        self.debug = debug

    @property
    def status_code(self) -> int:
        return self.verdict.status_code

    def body(self) -> Dict[str, Any]:
        return deny_body(self.verdict, self.debug)

@dataclass
class IdentityHints:
    license_key: str = ""
    email: str = ""

def license_key_from(request: Request) -> str:
    return (request.query_params.get("key") or request.headers.get("x-license-key") or "").strip()

def hints_from_request(request: Request) -> IdentityHints:
    return IdentityHints(
        license_key=license_key_from(request),
        email=(request.query_params.get("email") or "").strip(),
    )

class AccessGate:
    def __init__(self, licenses: LicenseResolver, trials: TrialTracker):
        self.licenses = licenses
        self.trials = trials

    async def check_access(self, hints: IdentityHints, *, allow_trial: bool = False) -> AccessVerdict:
        if hints.license_key:
            return await self._check_key(hints.license_key)
        if hints.email:
            return await self._check_email(hints.email, allow_trial)
        return AccessVerdict.deny(DenyReason.UPGRADE_REQUIRED)

    async def _check_key(self, license_key: str) -> AccessVerdict:
        parsed = resolve_by_key(license_key)
        if not isinstance(parsed, Resolved):
            return AccessVerdict.deny(DenyReason.LEGACY_LICENSE_FORMAT)

        check = await self.licenses.has_active_subscription(parsed.customer_id)
        if check.failed:
            return AccessVerdict.deny(DenyReason.PAYWALL_ERROR, diagnostic=check.error)
        if not check.active:
            return AccessVerdict.deny(DenyReason.SUB_INACTIVE)
        return AccessVerdict.via_license(parsed.customer_id)

    async def _check_email(self, email: str, allow_trial: bool) -> AccessVerdict:
        failure: Optional[str] = None

        record = await self.licenses.find_license_by_email(email)
        if record is not None:
            check = await self.licenses.has_active_subscription(record.customerId)
            if check.active:
                return AccessVerdict.via_license(record.customerId)
            if check.failed:
                failure = check.error

        trial = None
        if allow_trial:
            trial = await self.trials.trial_status(email)
            if trial is None:
                return AccessVerdict.via_trial(await self.trials.ensure_trial(email))
            if trial.active:
                return AccessVerdict.via_trial(trial)

        # a license lookup we could not verify is not the same as no license
        if failure is not None:
            return AccessVerdict.deny(DenyReason.PAYWALL_ERROR, diagnostic=failure)
        return AccessVerdict.deny(DenyReason.UPGRADE_REQUIRED, trial=trial)
