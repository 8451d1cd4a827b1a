from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.exceptions import InsufficientBalanceError
from app.deps import get_services, require_admin
from app.models.credit_balance import Currency
from app.models.owner import Owner
from app.services.registry import Services

router = APIRouter()


class CreditAdjustment(BaseModel):
    action: Literal["add", "remove"]
    amount: int = Field(..., gt=0)
    currency: Currency = Currency.GENERAL
    reason: str = Field("", max_length=500)


@router.get("/credits/{owner_id}")
async def admin_credits_get(owner_id: str, admin: Owner = Depends(require_admin), services: Services = Depends(get_services)):
    """Admin: both balances and recent ledger entries for any owner."""
    balances = await services.ledger.get_balances(owner_id)
    page = await services.ledger.list_transactions(owner_id, limit=20)
    return {
        "balance": balances.model_dump(mode="json"),
        "transactions": [t.model_dump(mode="json") for t in page.items],
    }


@router.post("/credits/{owner_id}")
async def admin_credits_adjust(
    owner_id: str,
    body: CreditAdjustment,
    admin: Owner = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Admin: add or remove credits. Removal never takes a balance below zero."""
    description = body.reason or f"Admin adjustment by {admin.email or admin.id}"
    if body.action == "add":
        balance = await services.ledger.add(owner_id, body.currency, body.amount, description, "admin_adjustment")
        return {"balance": balance}
    result = await services.ledger.deduct(owner_id, body.currency, body.amount, description, "admin_adjustment")
    if not result.success:
        raise InsufficientBalanceError(body.currency.value, body.amount, result.available)
    return {"balance": result.new_balance}
