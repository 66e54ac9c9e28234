import pytest

from belief_blueprint import billing as billing_module
from belief_blueprint.billing import BillingError, StripeClient


@pytest.mark.asyncio
async def test_subscriptions_are_paged_through(billing, stripe_api, monkeypatch):
    monkeypatch.setattr(billing_module, "LIST_PAGE_SIZE", 2)
    for _ in range(5):
        stripe_api.add_subscription("cus_1", "canceled")
    stripe_api.add_subscription("cus_2", "active")

    subs = await billing.list_subscriptions("cus_1")
    assert [s.id for s in subs] == ["sub_5", "sub_4", "sub_3", "sub_2", "sub_1"]
    assert stripe_api.calls.count(("GET", "/v1/subscriptions")) == 3


@pytest.mark.asyncio
async def test_subscription_fields_come_through(billing, stripe_api):
    stripe_api.add_subscription("cus_1", "trialing", price_id="price_year_inr")
    [sub] = await billing.list_subscriptions("cus_1")
    assert sub.customer == "cus_1"
    assert sub.status == "trialing"
    assert sub.price_ids == ["price_year_inr"]
    assert sub.current_period_end == 1767225600


@pytest.mark.asyncio
async def test_provider_errors_become_billing_errors(billing, stripe_api):
    stripe_api.fail = True
    with pytest.raises(BillingError) as exc:
        await billing.list_subscriptions("cus_1")
    assert exc.value.status_code == 500
    assert str(exc.value) == "Stripe HTTP 500: stripe is down"


@pytest.mark.asyncio
async def test_unknown_customer_is_a_404(billing):
    with pytest.raises(BillingError) as exc:
        await billing.retrieve_customer("cus_missing")
    assert exc.value.status_code == 404
    assert "No such customer" in str(exc.value)


@pytest.mark.asyncio
async def test_metadata_update_is_form_encoded(billing, stripe_api):
    stripe_api.add_customer("cus_1", email="a@b.com")
    await billing.update_customer_metadata("cus_1", {"license_key": "LIC-PRO-cus_1-ABCD"})
    assert stripe_api.customers["cus_1"]["metadata"] == {"license_key": "LIC-PRO-cus_1-ABCD"}

    customer = await billing.retrieve_customer("cus_1")
    assert customer["metadata"]["license_key"] == "LIC-PRO-cus_1-ABCD"


@pytest.mark.asyncio
async def test_missing_secret_key_fails_without_a_request(stripe_api):
    client = StripeClient("")
    with pytest.raises(BillingError, match="STRIPE_SECRET_KEY"):
        await client.list_subscriptions("cus_1")
    assert stripe_api.calls == []
