from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from app.models.credit_balance import CreditBalance, Currency
from app.models.credit_transaction import CreditTransaction
from app.models.notification import Notification, NotificationKind
from app.models.queue_entry import QueueEntry, QueueStatus
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed


@dataclass
class LedgerWrite:
    """Outcome of a committed (or replayed) balance mutation."""
    transaction: CreditTransaction
    balance: CreditBalance
    replayed: bool = False

    @property
    def balance_after(self) -> int:
        return self.balance.balance_for(self.transaction.currency)


class _FeedPublisher:
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed

    async def _emit(self, *events: ChangeEvent) -> None:
        if self.feed is None:
            return
        for event in events:
            await self.feed.publish(event)


class LedgerStore(_FeedPublisher, ABC):
    @abstractmethod
    async def get_balance(self, owner_id: str) -> CreditBalance | None:
        """Return the owner's balance row, or None if never created."""
        ...

    @abstractmethod
    async def apply_debit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite | None:
        """
        Decrement-if-sufficient and append a "deduct" transaction as one unit.
        Returns None (and changes nothing) when the balance is below `amount`.
        A known idempotency key returns the first write with replayed=True.
        """
        ...

    @abstractmethod
    async def apply_credit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite:
        """Increment (creating the balance row if needed) and append an "add" transaction."""
        ...

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        limit: int,
        offset: int = 0,
        currency: Currency | None = None,
    ) -> list[CreditTransaction]:
        """Newest first."""
        ...

    @abstractmethod
    async def sum_transactions(self, owner_id: str, currency: Currency) -> int:
        ...


class QueueStore(_FeedPublisher, ABC):
    @abstractmethod
    async def create(
        self,
        owner_id: str,
        report_id: str,
        package_name: str,
        documents: list[str],
        estimated_completion_time: datetime,
        requested_at: datetime,
    ) -> QueueEntry:
        ...

    @abstractmethod
    async def get(self, entry_id: str) -> QueueEntry | None:
        ...

    @abstractmethod
    async def transition(self, entry_id: str, new_status: QueueStatus, now: datetime) -> QueueEntry:
        """
        Conditionally move an entry forward. Raises NotFoundError for unknown ids and
        InvalidTransitionError (entry untouched) when `new_status` is not reachable.
        """
        ...

    @abstractmethod
    async def list_active(self, owner_id: str, report_id: str | None = None) -> list[QueueEntry]:
        """Queued/processing entries, requested_at descending."""
        ...

    @abstractmethod
    async def delete_completed(self, report_id: str, owner_id: str | None = None) -> int:
        ...


class NotificationStore(_FeedPublisher, ABC):
    @abstractmethod
    async def create(self, owner_id: str, title: str, message: str, type: NotificationKind) -> Notification:
        ...

    @abstractmethod
    async def get(self, owner_id: str, notification_id: str) -> Notification | None:
        ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str, limit: int, offset: int = 0) -> list[Notification]:
        """Newest first."""
        ...

    @abstractmethod
    async def count_unread(self, owner_id: str) -> int:
        ...

    @abstractmethod
    async def mark_read(self, owner_id: str, notification_id: str) -> Notification | None:
        """Set read=True; a read notification is returned unchanged. None if not found."""
        ...

    @abstractmethod
    async def mark_all_read(self, owner_id: str) -> int:
        ...

    @abstractmethod
    async def delete(self, owner_id: str, notification_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_all(self, owner_id: str) -> int:
        ...
