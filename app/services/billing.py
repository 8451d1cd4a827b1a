"""Billing webhook: signed payment events credit the ledger exactly once."""

import orjson

from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.core.security import verify_webhook_signature
from app.models.credit_balance import Currency
from app.services.credits import LedgerService
from app.services.notifications import NotificationService, notify_quietly

log = get_logger(__name__)

CREDIT_PURCHASE = "credit_purchase"
SUBSCRIPTION_RENEWAL = "subscription_renewal"

# (max monthly price in cents, monthly credits, plan)
PLAN_TIERS = (
    (1199, 18, "Starter"),
    (2999, 25, "Growth"),
)
TOP_TIER_CREDITS = 55
TOP_TIER_PLAN = "Impact"


def plan_for_amount(amount_cents: int) -> tuple[str, int]:
    """Map a subscription price to (plan name, monthly credits)."""
    for ceiling, credits, plan in PLAN_TIERS:
        if amount_cents <= ceiling:
            return plan, credits
    return TOP_TIER_PLAN, TOP_TIER_CREDITS


class BillingService:
    def __init__(
        self,
        ledger: LedgerService,
        notifications: NotificationService,
        webhook_secret: str,
    ) -> None:
        self.ledger = ledger
        self.notifications = notifications
        self.webhook_secret = webhook_secret

    async def handle_webhook(self, payload: bytes, signature: str) -> dict:
        """Verify HMAC and apply credits idempotently (credit purchases and subscription renewals)."""
        if not self.webhook_secret:
            raise BadRequestError("Webhook secret not configured")
        if not verify_webhook_signature(payload, signature, self.webhook_secret):
            raise BadRequestError("Invalid webhook signature")
        try:
            event = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise BadRequestError("Malformed webhook payload") from e
        if not isinstance(event, dict):
            raise BadRequestError("Malformed webhook payload")
        event_type = event.get("type")
        data = event.get("data") or {}
        owner_id = data.get("owner_id")
        reference = data.get("reference")
        if event_type not in (CREDIT_PURCHASE, SUBSCRIPTION_RENEWAL):
            log.info("billing_event_ignored", event_type=event_type)
            return {"status": "ignored"}
        if not owner_id or not reference:
            raise BadRequestError("Webhook event missing owner_id or reference")

        if event_type == CREDIT_PURCHASE:
            credits = int(data.get("credits") or 0)
            if credits <= 0:
                log.info("billing_event_ignored", event_type=event_type, reference=reference, reason="no_credits")
                return {"status": "ignored"}
            description = f"Credits purchased - Session {reference}"
            feature_type = CREDIT_PURCHASE
        else:
            plan, credits = plan_for_amount(int(data.get("amount") or 0))
            description = f"Monthly subscription credits ({plan}) - Invoice {reference}"
            feature_type = "subscription"

        write = await self.ledger.credit(
            owner_id,
            Currency.GENERAL,
            credits,
            description,
            feature_type,
            idempotency_key=f"billing:{reference}",
        )
        if write.replayed:
            return {"status": "already_applied", "credits": credits, "balance": write.balance_after}
        log.info("billing_credits_applied", owner_id=owner_id, event_type=event_type, reference=reference, credits=credits)
        await notify_quietly(self.notifications.notify_credits_added(owner_id, credits))
        return {"status": "ok", "credits": credits, "balance": write.balance_after}
