from fastapi import APIRouter, Depends, Header, Request

from app.deps import get_services
from app.services.registry import Services

router = APIRouter()


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    x_billing_signature: str = Header(..., alias="X-Billing-Signature"),
    services: Services = Depends(get_services),
):
    """Payment provider webhook: credit purchases and subscription renewals (idempotent per reference)."""
    body = await request.body()
    return await services.billing.handle_webhook(body, x_billing_signature)
