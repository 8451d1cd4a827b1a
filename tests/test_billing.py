import orjson
import pytest

from app.core.exceptions import BadRequestError
from app.core.security import sign_payload
from app.models.credit_balance import Currency
from app.services.billing import plan_for_amount

pytestmark = pytest.mark.asyncio

OWNER = "owner-1"


def signed(event: dict, secret: str = "whsec-test") -> tuple[bytes, str]:
    body = orjson.dumps(event)
    return body, sign_payload(body, secret)


@pytest.mark.parametrize(
    "amount,plan,credits",
    [(999, "Starter", 18), (1199, "Starter", 18), (1200, "Growth", 25), (2999, "Growth", 25), (4999, "Impact", 55)],
)
def test_plan_for_amount(amount, plan, credits):
    assert plan_for_amount(amount) == (plan, credits)


async def test_credit_purchase_applies_once(services):
    body, sig = signed({"type": "credit_purchase", "data": {"owner_id": OWNER, "reference": "cs_1", "credits": 30}})
    out = await services.billing.handle_webhook(body, sig)
    assert out == {"status": "ok", "credits": 30, "balance": 30}

    again = await services.billing.handle_webhook(body, sig)
    assert again["status"] == "already_applied"
    assert await services.ledger.get_balance(OWNER) == 30

    titles = [n.title for n in await services.notifications.list_for_owner(OWNER)]
    assert titles == ["Credit Purchase Confirmed"]


async def test_subscription_renewal_uses_plan_tier(services):
    body, sig = signed({"type": "subscription_renewal", "data": {"owner_id": OWNER, "reference": "in_7", "amount": 2999}})
    out = await services.billing.handle_webhook(body, sig)
    assert out["credits"] == 25
    page = await services.ledger.list_transactions(OWNER)
    assert page.items[0].description == "Monthly subscription credits (Growth) - Invoice in_7"
    assert await services.ledger.get_balance(OWNER, Currency.HEALTH_SCORE) == 0


async def test_bad_signature_rejected(services):
    body, _ = signed({"type": "credit_purchase", "data": {"owner_id": OWNER, "reference": "cs_2", "credits": 5}})
    with pytest.raises(BadRequestError):
        await services.billing.handle_webhook(body, "not-a-signature")
    assert await services.ledger.get_balance(OWNER) == 0


async def test_unknown_event_ignored(services):
    body, sig = signed({"type": "customer.updated", "data": {}})
    assert await services.billing.handle_webhook(body, sig) == {"status": "ignored"}


async def test_missing_reference_rejected(services):
    body, sig = signed({"type": "credit_purchase", "data": {"owner_id": OWNER, "credits": 5}})
    with pytest.raises(BadRequestError):
        await services.billing.handle_webhook(body, sig)


async def test_malformed_payload_rejected(services):
    body = b"not json"
    with pytest.raises(BadRequestError):
        await services.billing.handle_webhook(body, sign_payload(body, services.billing.webhook_secret))
