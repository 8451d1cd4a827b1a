"""In-process stores for local runs and tests. Not durable."""

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime

from app.core.clock import utcnow
from app.core.exceptions import InsufficientBalanceError, InvalidTransitionError, NotFoundError
from app.models.credit_balance import CreditBalance, Currency, balance_field
from app.models.credit_transaction import CreditTransaction, TransactionKind
from app.models.notification import Notification, NotificationKind
from app.models.queue_entry import ACTIVE_STATUSES, QueueEntry, QueueStatus, can_transition
from app.realtime.events import ResourceKind, change_event
from app.realtime.feed import ChangeFeed
from app.stores.base import LedgerStore, LedgerWrite, NotificationStore, QueueStore


def _new_id() -> str:
    return uuid.uuid4().hex


class MemoryLedgerStore(LedgerStore):
    """Balance rows and the transaction log; one lock per owner serializes mutations."""

    def __init__(self, feed: ChangeFeed | None = None) -> None:
        super().__init__(feed)
        self._balances: dict[str, CreditBalance] = {}
        self._transactions: list[CreditTransaction] = []
        self._by_key: dict[tuple[str, str], CreditTransaction] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_balance(self, owner_id: str) -> CreditBalance | None:
        return self._balances.get(owner_id)

    def _replay(self, owner_id: str, idempotency_key: str | None) -> LedgerWrite | None:
        if not idempotency_key:
            return None
        existing = self._by_key.get((owner_id, idempotency_key))
        if existing is None:
            return None
        balance = self._balances.get(owner_id) or CreditBalance(owner_id=owner_id)
        return LedgerWrite(transaction=existing, balance=balance, replayed=True)

    async def _commit(
        self,
        owner_id: str,
        currency: Currency,
        delta: int,
        kind: TransactionKind,
        description: str,
        feature_type: str,
        idempotency_key: str | None,
    ) -> LedgerWrite:
        async with self._locks[owner_id]:
            replay = self._replay(owner_id, idempotency_key)
            if replay is not None:
                return replay
            old = self._balances.get(owner_id)
            available = old.balance_for(currency) if old else 0
            if available + delta < 0:
                raise InsufficientBalanceError(currency.value, -delta, available)
            now = utcnow()
            base = old or CreditBalance(owner_id=owner_id)
            new = base.model_copy(
                update={balance_field(currency): available + delta, "updated_at": now, "seq": base.seq + 1}
            )
            self._balances[owner_id] = new
            tx = CreditTransaction(
                id=_new_id(),
                owner_id=owner_id,
                currency=currency,
                amount=delta,
                kind=kind,
                balance_after=available + delta,
                description=description,
                feature_type=feature_type,
                idempotency_key=idempotency_key,
                seq=new.seq,
                created_at=now,
            )
            self._transactions.append(tx)
            if idempotency_key:
                self._by_key[(owner_id, idempotency_key)] = tx
        await self._emit(
            change_event(ResourceKind.CREDIT_BALANCES, "insert" if old is None else "update", owner_id, new=new, old=old),
            change_event(ResourceKind.CREDIT_TRANSACTIONS, "insert", owner_id, new=tx),
        )
        return LedgerWrite(transaction=tx, balance=new)

    async def apply_debit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite | None:
        try:
            return await self._commit(owner_id, currency, -amount, "deduct", description, feature_type, idempotency_key)
        except InsufficientBalanceError:
            return None

    async def apply_credit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite:
        return await self._commit(owner_id, currency, amount, "add", description, feature_type, idempotency_key)

    async def list_transactions(
        self,
        owner_id: str,
        limit: int,
        offset: int = 0,
        currency: Currency | None = None,
    ) -> list[CreditTransaction]:
        rows = [
            t for t in reversed(self._transactions)
            if t.owner_id == owner_id and (currency is None or t.currency == currency)
        ]
        return rows[offset:offset + limit]

    async def sum_transactions(self, owner_id: str, currency: Currency) -> int:
        return sum(t.amount for t in self._transactions if t.owner_id == owner_id and t.currency == currency)


class MemoryQueueStore(QueueStore):
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        super().__init__(feed)
        self._entries: dict[str, QueueEntry] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        owner_id: str,
        report_id: str,
        package_name: str,
        documents: list[str],
        estimated_completion_time: datetime,
        requested_at: datetime,
    ) -> QueueEntry:
        entry = QueueEntry(
            id=_new_id(),
            owner_id=owner_id,
            report_id=report_id,
            package_name=package_name,
            documents=list(documents),
            status="queued",
            estimated_completion_time=estimated_completion_time,
            requested_at=requested_at,
            updated_at=requested_at,
        )
        async with self._lock:
            self._entries[entry.id] = entry
        await self._emit(change_event(ResourceKind.PACKAGE_QUEUE, "insert", owner_id, new=entry))
        return entry

    async def get(self, entry_id: str) -> QueueEntry | None:
        return self._entries.get(entry_id)

    async def transition(self, entry_id: str, new_status: QueueStatus, now: datetime) -> QueueEntry:
        async with self._lock:
            old = self._entries.get(entry_id)
            if old is None:
                raise NotFoundError("Queue entry not found")
            if not can_transition(old.status, new_status):
                raise InvalidTransitionError(entry_id, old.status, new_status)
            update: dict = {"status": new_status, "updated_at": now}
            if new_status == "completed":
                update["completed_at"] = now
            new = old.model_copy(update=update)
            self._entries[entry_id] = new
        await self._emit(change_event(ResourceKind.PACKAGE_QUEUE, "update", new.owner_id, new=new, old=old))
        return new

    async def list_active(self, owner_id: str, report_id: str | None = None) -> list[QueueEntry]:
        rows = [
            e for e in self._entries.values()
            if e.owner_id == owner_id
            and e.status in ACTIVE_STATUSES
            and (report_id is None or e.report_id == report_id)
        ]
        return sorted(rows, key=lambda e: e.requested_at, reverse=True)

    async def delete_completed(self, report_id: str, owner_id: str | None = None) -> int:
        async with self._lock:
            doomed = [
                e for e in self._entries.values()
                if e.report_id == report_id
                and e.status == "completed"
                and (owner_id is None or e.owner_id == owner_id)
            ]
            for e in doomed:
                del self._entries[e.id]
        await self._emit(*[change_event(ResourceKind.PACKAGE_QUEUE, "delete", e.owner_id, old=e) for e in doomed])
        return len(doomed)


class MemoryNotificationStore(NotificationStore):
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        super().__init__(feed)
        self._rows: dict[str, Notification] = {}
        self._lock = asyncio.Lock()

    def _owned(self, owner_id: str) -> list[Notification]:
        return [n for n in self._rows.values() if n.owner_id == owner_id]

    async def create(self, owner_id: str, title: str, message: str, type: NotificationKind) -> Notification:
        now = utcnow()
        row = Notification(
            id=_new_id(),
            owner_id=owner_id,
            title=title,
            message=message,
            type=type,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._rows[row.id] = row
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "insert", owner_id, new=row))
        return row

    async def get(self, owner_id: str, notification_id: str) -> Notification | None:
        row = self._rows.get(notification_id)
        if row is None or row.owner_id != owner_id:
            return None
        return row

    async def list_for_owner(self, owner_id: str, limit: int, offset: int = 0) -> list[Notification]:
        return list(reversed(self._owned(owner_id)))[offset:offset + limit]

    async def count_unread(self, owner_id: str) -> int:
        return sum(1 for n in self._owned(owner_id) if not n.read)

    async def mark_read(self, owner_id: str, notification_id: str) -> Notification | None:
        async with self._lock:
            old = await self.get(owner_id, notification_id)
            if old is None or old.read:
                return old
            new = old.model_copy(update={"read": True, "updated_at": utcnow()})
            self._rows[notification_id] = new
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "update", owner_id, new=new, old=old))
        return new

    async def mark_all_read(self, owner_id: str) -> int:
        now = utcnow()
        changed: list[tuple[Notification, Notification]] = []
        async with self._lock:
            for old in self._owned(owner_id):
                if old.read:
                    continue
                new = old.model_copy(update={"read": True, "updated_at": now})
                self._rows[old.id] = new
                changed.append((old, new))
        await self._emit(
            *[change_event(ResourceKind.NOTIFICATIONS, "update", owner_id, new=new, old=old) for old, new in changed]
        )
        return len(changed)

    async def delete(self, owner_id: str, notification_id: str) -> bool:
        async with self._lock:
            old = await self.get(owner_id, notification_id)
            if old is None:
                return False
            del self._rows[notification_id]
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "delete", owner_id, old=old))
        return True

    async def delete_all(self, owner_id: str) -> int:
        async with self._lock:
            doomed = self._owned(owner_id)
            for row in doomed:
                del self._rows[row.id]
        await self._emit(*[change_event(ResourceKind.NOTIFICATIONS, "delete", owner_id, old=row) for row in doomed])
        return len(doomed)
