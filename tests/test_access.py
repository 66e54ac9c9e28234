import pytest

from belief_blueprint.access import AccessGate, AccessVerdict, DenyReason, IdentityHints, Via, deny_body
from belief_blueprint.licenses import issue_license


@pytest.fixture
def gate(licenses, trials):
    return AccessGate(licenses, trials)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["active", "trialing"])
async def test_key_with_access_granting_subscription(gate, stripe_api, status):
    stripe_api.add_subscription("cus_1", status)
    verdict = await gate.check_access(IdentityHints(license_key=issue_license("cus_1")))
    assert verdict.allowed
    assert verdict.via is Via.LICENSE
    assert verdict.customer_id == "cus_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["canceled", "past_due", "unpaid"])
async def test_key_with_lapsed_subscription(gate, stripe_api, status):
    stripe_api.add_subscription("cus_1", status)
    verdict = await gate.check_access(IdentityHints(license_key=issue_license("cus_1")))
    assert verdict.reason is DenyReason.SUB_INACTIVE
    assert verdict.status_code == 402


@pytest.mark.asyncio
async def test_legacy_key_is_rejected_without_calling_billing(gate, stripe_api):
    verdict = await gate.check_access(IdentityHints(license_key="BB-OLD-1234"))
    assert verdict.reason is DenyReason.LEGACY_LICENSE_FORMAT
    assert stripe_api.calls == []


@pytest.mark.asyncio
async def test_billing_outage_fails_closed(gate, stripe_api):
    stripe_api.fail = True
    verdict = await gate.check_access(IdentityHints(license_key=issue_license("cus_1")))
    assert not verdict.allowed
    assert verdict.reason is DenyReason.PAYWALL_ERROR
    assert verdict.status_code == 401


@pytest.mark.asyncio
async def test_key_wins_over_email(gate, stripe_api, store):
    verdict = await gate.check_access(IdentityHints(license_key="bad", email="a@b.com"), allow_trial=True)
    assert verdict.reason is DenyReason.LEGACY_LICENSE_FORMAT
    assert (await store.list("trials/")).blobs == []


@pytest.mark.asyncio
async def test_no_hints_requires_upgrade(gate):
    verdict = await gate.check_access(IdentityHints(), allow_trial=True)
    assert verdict.reason is DenyReason.UPGRADE_REQUIRED


@pytest.mark.asyncio
async def test_new_email_starts_exactly_one_trial(gate, store):
    first = await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)
    second = await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)

    assert first.via is Via.TRIAL and second.via is Via.TRIAL
    assert first.trial.days_left == 7
    page = await store.list("trials/")
    assert [b.pathname for b in page.blobs] == ["trials/a_b.com.json"]


@pytest.mark.asyncio
async def test_trial_not_offered_without_allow_trial(gate, store):
    verdict = await gate.check_access(IdentityHints(email="a@b.com"))
    assert verdict.reason is DenyReason.UPGRADE_REQUIRED
    assert (await store.list("trials/")).blobs == []


@pytest.mark.asyncio
async def test_expired_trial_denies_with_trial_snapshot(gate, clock):
    await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)
    clock.advance(days=8)

    verdict = await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)
    assert verdict.reason is DenyReason.UPGRADE_REQUIRED
    body = deny_body(verdict)
    assert body["trial"]["active"] is False
    assert body["trial"]["daysUsed"] == 8


@pytest.mark.asyncio
async def test_email_license_beats_trial(gate, licenses, stripe_api, store):
    stripe_api.add_subscription("cus_7", "active")
    await licenses.save_license_record(licenses.make_record("cus_7", issue_license("cus_7"), "a@b.com", "checkout.session.completed"))

    verdict = await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)
    assert verdict.via is Via.LICENSE
    assert verdict.customer_id == "cus_7"
    assert (await store.list("trials/")).blobs == []


@pytest.mark.asyncio
async def test_email_license_lapsed_falls_back_to_trial(gate, licenses, stripe_api):
    stripe_api.add_subscription("cus_7", "canceled")
    await licenses.save_license_record(licenses.make_record("cus_7", None, "a@b.com", "customer.subscription.deleted"))

    verdict = await gate.check_access(IdentityHints(email="a@b.com"), allow_trial=True)
    assert verdict.via is Via.TRIAL


@pytest.mark.asyncio
async def test_email_license_unverifiable_and_no_trial(gate, licenses, stripe_api):
    await licenses.save_license_record(licenses.make_record("cus_7", None, "a@b.com", "checkout.session.completed"))
    stripe_api.fail = True

    verdict = await gate.check_access(IdentityHints(email="a@b.com"))
    assert verdict.reason is DenyReason.PAYWALL_ERROR
    assert "500" in verdict.diagnostic


def test_deny_body_shape():
    verdict = AccessVerdict.deny(DenyReason.SUB_INACTIVE, diagnostic="x" * 500)
    body = deny_body(verdict)
    assert set(body) == {"error", "message", "upgradeUrl"}
    assert body["error"] == "SUB_INACTIVE"
    assert body["upgradeUrl"] == "/pricing"

    debug = deny_body(verdict, debug=True)
    assert len(debug["debug"]) == 200


def test_status_codes():
    assert AccessVerdict.deny(DenyReason.PAYWALL_ERROR).status_code == 401
    assert AccessVerdict.deny(DenyReason.RATE_LIMITED).status_code == 429
    assert AccessVerdict.deny(DenyReason.UPGRADE_REQUIRED).status_code == 402
    assert AccessVerdict.deny(DenyReason.TRIAL_EXPIRED).status_code == 402


@pytest.mark.asyncio
async def test_past_due_denies_access(gate, stripe_api):
    stripe_api.add_subscription("cus_123", "past_due")
    verdict = await gate.check_access(IdentityHints(license_key="LIC-PRO-cus_123-DEADBEEF"))
    assert verdict.reason is DenyReason.SUB_INACTIVE
