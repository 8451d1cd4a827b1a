from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_owner, get_services, require_worker
from app.models.owner import Owner
from app.models.queue_entry import QueueEntry, QueueStatus
from app.services.notifications import notify_quietly
from app.services.registry import Services

router = APIRouter()
internal_router = APIRouter()


class StatusUpdate(BaseModel):
    status: QueueStatus


def _entry_out(services: Services, entry: QueueEntry) -> dict:
    out = entry.model_dump(mode="json")
    out["remaining_seconds"] = services.queue.remaining_seconds(entry)
    return out


@router.get("/active")
async def queue_active(owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    """Queued and processing packages for the current owner, newest first."""
    entries = await services.queue.list_active_for_owner(owner.id)
    return {"entries": [_entry_out(services, e) for e in entries]}


@router.get("/reports/{report_id}")
async def queue_for_report(
    report_id: str,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
):
    entries = await services.queue.list_active_for_report(owner.id, report_id)
    return {"entries": [_entry_out(services, e) for e in entries]}


@router.get("/{entry_id}")
async def queue_entry(entry_id: str, owner: Owner = Depends(get_current_owner), services: Services = Depends(get_services)):
    entry = await services.queue.get_entry(entry_id, owner_id=owner.id)
    return _entry_out(services, entry)


@router.delete("/reports/{report_id}/completed")
async def queue_purge_completed(
    report_id: str,
    owner: Owner = Depends(get_current_owner),
    services: Services = Depends(get_services),
):
    """Remove completed entries for a report. Repeating it is harmless."""
    deleted = await services.queue.purge_completed(report_id, owner_id=owner.id)
    return {"deleted": deleted}


@internal_router.post("/{entry_id}/status", dependencies=[Depends(require_worker)])
async def queue_update_status(entry_id: str, body: StatusUpdate, services: Services = Depends(get_services)):
    """Worker: move an entry forward (queued -> processing -> completed, or -> failed)."""
    entry = await services.queue.transition_status(entry_id, body.status)
    if entry.status == "completed":
        await notify_quietly(services.notifications.notify_analysis_complete(entry.owner_id, entry.package_name))
    elif entry.status == "failed":
        await notify_quietly(
            services.notifications.notify_system_error(
                entry.owner_id, f"{entry.package_name} could not be generated. Please contact support."
            )
        )
    return entry.model_dump(mode="json")
