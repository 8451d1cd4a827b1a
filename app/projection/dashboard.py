"""
Client-side mirror of one owner's dashboard state.

Built from a full fetch, then kept current by change events merged on the
row id. Everything here is a disposable cache: `refresh()` rebuilds it from the
stores, and it is the answer to any feed gap. Two signals are kept apart: the
one-second ticker only recomputes countdowns from the stored estimate, while
queue statuses change only through fetches and change events.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from app.core.clock import utcnow
from app.core.exceptions import (
    AppError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotAuthenticatedError,
)
from app.core.logging import get_logger
from app.models.credit_balance import CreditBalance, Currency, balance_field
from app.models.notification import Notification
from app.models.queue_entry import QueueEntry
from app.realtime.events import ChangeEvent, ResourceKind
from app.realtime.notifier import Subscription
from app.services.package_queue import remaining_seconds
from app.services.registry import Services

log = get_logger(__name__)

ToastKind = Literal["success", "error", "warning", "info"]

_STATUS_RANK = {"queued": 0, "processing": 1, "completed": 2, "failed": 2}


class Toast(BaseModel):
    """Transient, dismissible message for the user."""
    kind: ToastKind
    message: str
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)


def _error_message(exc: AppError) -> str:
    if isinstance(exc, NotAuthenticatedError):
        return "You must be logged in to use this feature"
    if isinstance(exc, InsufficientBalanceError):
        return exc.message
    if exc.code == "STORE_UNAVAILABLE":
        return "We couldn't reach the server. Please try again."
    return exc.message


class DashboardProjection:
    def __init__(
        self,
        owner_id: str | None,
        services: Services,
        clock: Callable[[], datetime] = utcnow,
        tick_interval: float = 1.0,
        notification_limit: int = 50,
    ) -> None:
        self.owner_id = owner_id
        self.services = services
        self.clock = clock
        self.tick_interval = tick_interval
        self.notification_limit = notification_limit

        self.balances: CreditBalance | None = None
        self.queue: dict[str, QueueEntry] = {}
        self.notifications: list[Notification] = []
        self.countdowns: dict[str, int] = {}
        self.toasts: list[Toast] = []
        self.loading = False
        self.in_flight: set[str] = set()

        self._mounted = False
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._ticker: asyncio.Task | None = None

    # Lifecycle

    @property
    def mounted(self) -> bool:
        return self._mounted

    async def mount(self) -> None:
        """Subscribe, fetch everything, start the countdown ticker."""
        if self._mounted:
            return
        if not self.owner_id:
            self._toast("error", "You must be logged in to use this feature")
            return
        self._mounted = True
        notifier = self.services.notifier
        self._subscriptions = [
            notifier.subscribe(ResourceKind.CREDIT_BALANCES, self.owner_id, self.apply, on_resync=self.refresh),
            notifier.subscribe(ResourceKind.PACKAGE_QUEUE, self.owner_id, self.apply),
            notifier.subscribe(ResourceKind.NOTIFICATIONS, self.owner_id, self.apply),
        ]
        await self.refresh()
        if self._mounted and self.tick_interval > 0:
            self._ticker = asyncio.create_task(self._run_ticker())

    async def unmount(self) -> None:
        """Release subscriptions and the ticker; results still in flight are dropped."""
        self._mounted = False
        self._generation += 1
        for sub in self._subscriptions:
            self.services.notifier.unsubscribe(sub)
        self._subscriptions = []
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

    async def refresh(self) -> None:
        """Full re-fetch. Only the latest refresh of a live projection is applied."""
        if not self._mounted:
            return
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            balances = await self.services.ledger.get_balances(self.owner_id)
            active = await self.services.queue.list_active_for_owner(self.owner_id)
            notifications = await self.services.notifications.list_for_owner(
                self.owner_id, limit=self.notification_limit
            )
        except AppError as e:
            if generation == self._generation:
                self._toast("error", _error_message(e))
            log.warning("projection_refresh_failed", owner_id=self.owner_id, code=e.code)
            return
        finally:
            if generation == self._generation:
                self.loading = False
        if generation != self._generation or not self._mounted:
            return
        self.balances = balances
        self.queue = {e.id: e for e in active}
        self.notifications = notifications
        self.tick()

    # Derived state

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    @property
    def active_entries(self) -> list[QueueEntry]:
        rows = [e for e in self.queue.values() if e.is_active]
        return sorted(rows, key=lambda e: e.requested_at, reverse=True)

    def balance(self, currency: Currency = Currency.GENERAL) -> int:
        return self.balances.balance_for(currency) if self.balances else 0

    def remaining_seconds(self, entry_id: str) -> int:
        entry = self.queue.get(entry_id)
        if entry is None:
            return 0
        return remaining_seconds(entry, self.clock())

    def tick(self) -> None:
        """Recompute display countdowns. Never touches a status."""
        now = self.clock()
        self.countdowns = {e.id: remaining_seconds(e, now) for e in self.queue.values() if e.is_active}

    async def _run_ticker(self) -> None:
        while self._mounted:
            self.tick()
            await asyncio.sleep(self.tick_interval)

    # Change events

    def apply(self, event: ChangeEvent) -> None:
        if not self._mounted or event.owner_id != self.owner_id:
            return
        if event.resource == ResourceKind.CREDIT_BALANCES and event.new is not None:
            self._apply_balances(CreditBalance.model_validate(event.new))
        elif event.resource == ResourceKind.PACKAGE_QUEUE:
            self._apply_queue(event)
        elif event.resource == ResourceKind.NOTIFICATIONS:
            self._apply_notification(event)

    def _apply_balances(self, incoming: CreditBalance) -> None:
        # Redelivered or reordered rows carry an older seq and never roll the mirror back.
        if self.balances is not None and incoming.seq < self.balances.seq:
            return
        self.balances = incoming

    def _apply_balance_value(self, currency: Currency, value: int, seq: int) -> None:
        balances = self.balances or CreditBalance(owner_id=self.owner_id)
        if seq < balances.seq:
            return
        self.balances = balances.model_copy(update={balance_field(currency): value, "seq": seq})

    def _apply_queue(self, event: ChangeEvent) -> None:
        if event.kind == "delete":
            self.queue.pop(event.record_id, None)
            self.countdowns.pop(event.record_id, None)
            return
        if event.new is None:
            return
        entry = QueueEntry.model_validate(event.new)
        current = self.queue.get(entry.id)
        # A redelivered older event must not move a status backwards.
        if current is not None and _STATUS_RANK[entry.status] < _STATUS_RANK[current.status]:
            return
        self.queue[entry.id] = entry
        if entry.is_active:
            self.countdowns[entry.id] = remaining_seconds(entry, self.clock())
        else:
            self.countdowns.pop(entry.id, None)

    def _apply_notification(self, event: ChangeEvent) -> None:
        record_id = event.record_id
        if event.kind == "delete":
            self.notifications = [n for n in self.notifications if n.id != record_id]
            return
        if event.new is None:
            return
        row = Notification.model_validate(event.new)
        index = next((i for i, n in enumerate(self.notifications) if n.id == row.id), None)
        if index is None:
            if event.kind == "insert":
                self.notifications.insert(0, row)
            return
        if self.notifications[index].read and not row.read:
            return
        self.notifications[index] = row

    # Actions

    def _toast(self, kind: ToastKind, message: str) -> None:
        self.toasts.append(Toast(kind=kind, message=message))

    def dismiss(self, toast_id: str) -> None:
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    async def _run(self, action: str, op: Callable[[], Awaitable[Any]]) -> tuple[bool, Any]:
        """Run one user action: in-flight flag always cleared, failures become toasts, late results dropped."""
        self.in_flight.add(action)
        try:
            result = await op()
        except InvalidTransitionError as e:
            log.error("projection_invalid_transition", owner_id=self.owner_id, **e.details)
            await self.refresh()
            return False, None
        except AppError as e:
            if self._mounted:
                self._toast("error", _error_message(e))
            return False, None
        finally:
            self.in_flight.discard(action)
        if not self._mounted:
            return False, None
        return True, result

    async def deduct(
        self,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> bool:
        ok, result = await self._run(
            "deduct",
            lambda: self.services.ledger.deduct(
                self.owner_id, currency, amount, description, feature_type, idempotency_key=idempotency_key
            ),
        )
        if not ok:
            return False
        if not result.success:
            self._toast("error", result.message or "Failed to deduct credits")
            return False
        self._apply_balance_value(currency, result.new_balance, result.transaction.seq)
        self._toast("success", f"{amount} credits deducted successfully")
        return True

    async def generate_package(
        self,
        report_id: str,
        package_code: str,
        idempotency_key: str | None = None,
    ) -> QueueEntry | None:
        ok, request = await self._run(
            "generate_package",
            lambda: self.services.features.generate_package(
                self.owner_id, report_id, package_code, idempotency_key=idempotency_key
            ),
        )
        if not ok:
            return None
        self.queue.setdefault(request.entry.id, request.entry)
        self.tick()
        deduction = request.deduction
        self._apply_balance_value(Currency.GENERAL, deduction.new_balance, deduction.transaction.seq)
        self._toast("success", f"{request.entry.package_name} has been queued")
        return request.entry

    async def mark_read(self, notification_id: str) -> bool:
        ok, row = await self._run(
            "mark_read", lambda: self.services.notifications.mark_read(self.owner_id, notification_id)
        )
        if not ok:
            return False
        self.notifications = [row if n.id == row.id else n for n in self.notifications]
        return True

    async def mark_all_read(self) -> bool:
        ok, _ = await self._run("mark_all_read", lambda: self.services.notifications.mark_all_read(self.owner_id))
        if not ok:
            return False
        self.notifications = [n if n.read else n.model_copy(update={"read": True}) for n in self.notifications]
        return True

    async def delete_notification(self, notification_id: str) -> bool:
        ok, _ = await self._run(
            "delete_notification", lambda: self.services.notifications.delete(self.owner_id, notification_id)
        )
        if not ok:
            return False
        self.notifications = [n for n in self.notifications if n.id != notification_id]
        return True

    async def delete_all_notifications(self) -> bool:
        ok, _ = await self._run(
            "delete_all_notifications", lambda: self.services.notifications.delete_all(self.owner_id)
        )
        if not ok:
            return False
        self.notifications = []
        return True
