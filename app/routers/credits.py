from fastapi import APIRouter, Depends, Query

from app.core.pagination import DEFAULT_LIMIT, MAX_LIMIT
from app.deps import get_current_owner, get_services
from app.models.credit_balance import Currency
from app.models.owner import Owner
from app.services.features import get_pricing
from app.services.registry import Services

router = APIRouter()


@router.get("/balance")
async def credits_balance(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    """Return both credit balances."""
    balances = await services.ledger.get_balances(owner.id)
    return {"credits": balances.credits, "health_score_credits": balances.health_score_credits}


@router.get("/transactions")
async def credits_transactions(
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
    currency: Currency | None = None,
):
    """Return ledger entries for current owner (newest first)."""
    page = await services.ledger.list_transactions(owner.id, limit=limit, offset=offset, currency=currency)
    return page.model_dump(mode="json")


@router.post("/account")
async def credits_open_account(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    """Seed the signup allowance. Safe to call on every login."""
    balances = await services.ledger.open_account(owner.id)
    return {"credits": balances.credits, "health_score_credits": balances.health_score_credits}


@router.get("/pricing")
async def credits_pricing():
    """Credit cost of each feature."""
    return get_pricing()
