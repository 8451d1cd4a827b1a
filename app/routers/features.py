from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.deps import get_current_owner, get_services, idempotency_key
from app.models.owner import Owner
from app.services.registry import Services

router = APIRouter()


class GeneratePackageRequest(BaseModel):
    report_id: str = Field(..., min_length=1)
    package_code: str = Field(..., min_length=1)
    documents: list[str] | None = None


class HealthScoreRequest(BaseModel):
    report_name: str = Field(..., min_length=1)


@router.post("/packages")
async def generate_package(
    body: GeneratePackageRequest,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
    key: str | None = Depends(idempotency_key),
):
    """Charge the package price and queue it. Send Idempotency-Key to make retries safe."""
    request = await services.features.generate_package(
        owner.id,
        body.report_id,
        body.package_code,
        documents=body.documents,
        idempotency_key=key,
    )
    return {
        "entry": request.entry.model_dump(mode="json"),
        "new_balance": request.deduction.new_balance,
        "replayed": request.deduction.replayed,
    }


@router.post("/health-score")
async def run_health_score(
    body: HealthScoreRequest,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
    key: str | None = Depends(idempotency_key),
):
    """Charge one health-score credit for a Business Health Score submission."""
    result = await services.features.run_health_score(owner.id, body.report_name, idempotency_key=key)
    result.raise_for_error()
    return {"new_balance": result.new_balance, "replayed": result.replayed}
