from fastapi import APIRouter, Depends, Query

from app.core.pagination import DEFAULT_LIMIT, MAX_LIMIT
from app.deps import get_current_owner, get_services
from app.models.owner import Owner
from app.services.registry import Services

router = APIRouter()


@router.get("")
async def notifications_list(
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Newest first."""
    rows = await services.notifications.list_for_owner(owner.id, limit=limit, offset=offset)
    return {"notifications": [n.model_dump(mode="json") for n in rows], "limit": limit, "offset": offset}


@router.get("/unread-count")
async def notifications_unread_count(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    return {"unread": await services.notifications.unread_count(owner.id)}


@router.post("/{notification_id}/read")
async def notifications_mark_read(
    notification_id: str,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
):
    row = await services.notifications.mark_read(owner.id, notification_id)
    return row.model_dump(mode="json")


@router.post("/read-all")
async def notifications_mark_all_read(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    return {"updated": await services.notifications.mark_all_read(owner.id)}


@router.delete("/{notification_id}")
async def notifications_delete(
    notification_id: str,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
):
    await services.notifications.delete(owner.id, notification_id)
    return {"status": "ok"}


@router.delete("")
async def notifications_delete_all(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    return {"deleted": await services.notifications.delete_all(owner.id)}
