"""Package generation queue: enqueue, forward-only status, countdown estimate."""

import math
from datetime import datetime, timedelta
from typing import Callable, get_args

from app.core.clock import utcnow
from app.core.exceptions import BadRequestError, NotAuthenticatedError, NotFoundError
from app.core.logging import get_logger
from app.models.queue_entry import QueueEntry, QueueStatus
from app.stores.base import QueueStore

log = get_logger(__name__)

QUEUE_STATUSES = get_args(QueueStatus)
MAX_ESTIMATED_MINUTES = 7 * 24 * 60


def remaining_seconds(entry: QueueEntry, now: datetime | None = None) -> int:
    """
    Whole seconds until the estimated completion, clamped at 0.
    Display hint only: zero does not mean the package is done, the status does.
    """
    now = now or utcnow()
    return max(0, math.floor((entry.estimated_completion_time - now).total_seconds()))


class QueueService:
    def __init__(
        self,
        store: QueueStore,
        default_estimated_minutes: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.default_estimated_minutes = default_estimated_minutes
        self.clock = clock

    async def enqueue(
        self,
        owner_id: str | None,
        report_id: str,
        package_name: str,
        documents: list[str] | None = None,
        estimated_minutes: int | None = None,
    ) -> QueueEntry:
        """Insert a queued entry. Charging credits first is the caller's job."""
        if not owner_id:
            raise NotAuthenticatedError("User not authenticated")
        if not report_id or not package_name:
            raise BadRequestError("report_id and package_name are required")
        minutes = self.default_estimated_minutes if estimated_minutes is None else estimated_minutes
        if minutes < 0:
            raise BadRequestError("estimated_minutes must not be negative")
        if minutes > MAX_ESTIMATED_MINUTES:
            raise BadRequestError(f"estimated_minutes must be at most {MAX_ESTIMATED_MINUTES}")
        now = self.clock()
        entry = await self.store.create(
            owner_id=owner_id,
            report_id=report_id,
            package_name=package_name,
            documents=list(documents or []),
            estimated_completion_time=now + timedelta(minutes=minutes),
            requested_at=now,
        )
        log.info(
            "package_enqueued",
            owner_id=owner_id,
            entry_id=entry.id,
            report_id=report_id,
            package_name=package_name,
            estimated_minutes=minutes,
        )
        return entry

    async def transition_status(self, entry_id: str, new_status: str) -> QueueEntry:
        if new_status not in QUEUE_STATUSES:
            raise BadRequestError(f"Invalid status: {new_status}")
        entry = await self.store.transition(entry_id, new_status, self.clock())
        log.info("package_status_changed", entry_id=entry_id, owner_id=entry.owner_id, status=new_status)
        return entry

    def remaining_seconds(self, entry: QueueEntry) -> int:
        return remaining_seconds(entry, self.clock())

    async def get_entry(self, entry_id: str, owner_id: str | None = None) -> QueueEntry:
        entry = await self.store.get(entry_id)
        if entry is None or (owner_id is not None and entry.owner_id != owner_id):
            raise NotFoundError("Queue entry not found")
        return entry

    async def list_active_for_owner(self, owner_id: str | None) -> list[QueueEntry]:
        if not owner_id:
            raise NotAuthenticatedError()
        return await self.store.list_active(owner_id)

    async def list_active_for_report(self, owner_id: str | None, report_id: str) -> list[QueueEntry]:
        if not owner_id:
            raise NotAuthenticatedError()
        return await self.store.list_active(owner_id, report_id=report_id)

    async def purge_completed(self, report_id: str, owner_id: str | None = None) -> int:
        """Remove completed entries for a report. Running it twice removes nothing more."""
        removed = await self.store.delete_completed(report_id, owner_id=owner_id)
        if removed:
            log.info("package_queue_purged", report_id=report_id, owner_id=owner_id, removed=removed)
        return removed
