"""Owner notifications and the system messages the app sends."""

from app.core.exceptions import AppError, NotAuthenticatedError, NotFoundError
from app.core.logging import get_logger
from app.core.pagination import DEFAULT_LIMIT, paginate
from app.models.notification import Notification, NotificationKind
from app.stores.base import NotificationStore

log = get_logger(__name__)

APP_NAME = "Prosper With Purpose"


async def notify_quietly(coro) -> None:
    """Await a notification send; a store failure is logged, never raised.

    Notifications follow writes that are already committed, so callers must not
    report those writes as failed.
    """
    try:
        await coro
    except AppError as e:
        log.warning("notification_failed", code=e.code, reason=e.message)


class NotificationService:
    def __init__(self, store: NotificationStore) -> None:
        self.store = store

    @staticmethod
    def _owner(owner_id: str | None) -> str:
        if not owner_id:
            raise NotAuthenticatedError()
        return owner_id

    async def create(
        self,
        owner_id: str | None,
        title: str,
        message: str,
        type: NotificationKind = "info",
    ) -> Notification:
        row = await self.store.create(self._owner(owner_id), title, message, type)
        log.info("notification_created", owner_id=owner_id, notification_id=row.id, type=type)
        return row

    async def list_for_owner(self, owner_id: str | None, limit: int = DEFAULT_LIMIT, offset: int = 0) -> list[Notification]:
        limit, offset = paginate(limit, offset)
        return await self.store.list_for_owner(self._owner(owner_id), limit, offset)

    async def unread_count(self, owner_id: str | None) -> int:
        return await self.store.count_unread(self._owner(owner_id))

    async def mark_read(self, owner_id: str | None, notification_id: str) -> Notification:
        row = await self.store.mark_read(self._owner(owner_id), notification_id)
        if row is None:
            raise NotFoundError("Notification not found")
        return row

    async def mark_all_read(self, owner_id: str | None) -> int:
        return await self.store.mark_all_read(self._owner(owner_id))

    async def delete(self, owner_id: str | None, notification_id: str) -> None:
        if not await self.store.delete(self._owner(owner_id), notification_id):
            raise NotFoundError("Notification not found")

    async def delete_all(self, owner_id: str | None) -> int:
        removed = await self.store.delete_all(self._owner(owner_id))
        log.info("notifications_cleared", owner_id=owner_id, removed=removed)
        return removed

    # Common notification scenarios

    async def notify_welcome(self, owner_id: str) -> Notification:
        return await self.create(
            owner_id,
            f"Welcome to {APP_NAME}",
            "Get started by completing your first exercise or generating a business health report",
            "info",
        )

    async def notify_exercise_completed(self, owner_id: str, exercise_name: str) -> Notification:
        return await self.create(
            owner_id,
            "Exercise Completed",
            f"You've successfully completed the '{exercise_name}' exercise",
            "success",
        )

    async def notify_report_ready(self, owner_id: str, report_name: str) -> Notification:
        return await self.create(
            owner_id,
            "New Report Available",
            f"Your Business Health Score report for '{report_name}' is ready",
            "info",
        )

    async def notify_credits_added(self, owner_id: str, amount: int) -> Notification:
        return await self.create(
            owner_id,
            "Credit Purchase Confirmed",
            f"{amount} credits have been added to your account",
            "success",
        )

    async def notify_low_credits(self, owner_id: str, remaining: int) -> Notification:
        return await self.create(
            owner_id,
            "Low Credits Warning",
            f"You have less than {remaining} credits remaining",
            "warning",
        )

    async def notify_system_error(self, owner_id: str, error_message: str) -> Notification:
        return await self.create(owner_id, "System Error", error_message, "error")

    async def notify_analysis_started(self, owner_id: str, report_type: str) -> Notification:
        return await self.create(
            owner_id,
            "Analysis Started",
            f"Your {report_type} analysis has started. You'll be notified when it's complete.",
            "info",
        )

    async def notify_analysis_complete(self, owner_id: str, report_type: str) -> Notification:
        return await self.create(
            owner_id,
            "Analysis Complete",
            f"Your {report_type} analysis is ready for review.",
            "success",
        )
