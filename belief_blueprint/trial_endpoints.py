import logging

from fastapi import APIRouter, Depends, Request

from belief_blueprint import config
from belief_blueprint.deps import get_clock, get_licenses, get_trials
from belief_blueprint.licenses import LicenseResolver
from belief_blueprint.trials import TrialStatus, TrialTracker, cookie_trial_payload, read_trial_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trial")

def _trial_payload(mode: str, message: str, status: TrialStatus) -> dict:
    return {"mode": mode, "message": message, **status.as_dict()}

def _day_index(status: TrialStatus) -> int:
    return min(status.days_total, status.days_used + 1)

@router.get("/boot")
async def trial_boot(
    email: str = "",
    licenses: LicenseResolver = Depends(get_licenses),
    trials: TrialTracker = Depends(get_trials),
):
    email = email.strip()
    if not email:
        return {
            "mode": "email_required",
            "message": "Email required to start or look up your trial/license. Please provide your email to continue.",
        }

    # 1) paid license linked to this email
    record = await licenses.find_license_by_email(email)
    if record is not None:
        check = await licenses.has_active_subscription(record.customerId)
        if check.active:
            return {
                "mode": "pro",
                "message": "Pro license active.",
                "customerId": record.customerId,
                "licenseKey": record.licenseKey,
            }

    # 2) existing trial; an expired one is never restarted
    existing = await trials.trial_status(email)
    if existing is not None:
        if existing.active:
            return _trial_payload("trial", f"Free trial active: day {_day_index(existing)} of {existing.days_total}.", existing)
        return _trial_payload("trial_expired", "Your free trial has ended. Please purchase a Pro license to continue.", existing)

    # 3) first contact
    started = await trials.ensure_trial(email)
    if started.active:
        return _trial_payload("trial", f"Free trial started: day {_day_index(started)} of {started.days_total}.", started)
    return _trial_payload("trial_expired", "Your free trial is not active. Please purchase a Pro license to continue.", started)

@router.get("/status")
async def trial_status(request: Request, clock=Depends(get_clock)):
    started_at = read_trial_cookie(request.cookies.get(config.TRIAL_COOKIE_NAME))
    return cookie_trial_payload(started_at, clock(), config.TRIAL_DAYS)
