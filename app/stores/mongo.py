"""MongoDB stores. Balance changes are single conditional find_one_and_update calls."""

import functools
from datetime import datetime
from typing import Any

import pymongo
from beanie import PydanticObjectId
from beanie.operators import In
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.clock import utcnow
from app.core.exceptions import InvalidTransitionError, NotFoundError, StoreUnavailableError
from app.core.logging import get_logger
from app.db.documents import (
    CreditBalanceDocument,
    CreditTransactionDocument,
    NotificationDocument,
    QueueEntryDocument,
)
from app.models.credit_balance import CreditBalance, Currency, balance_field
from app.models.credit_transaction import CreditTransaction, TransactionKind
from app.models.notification import Notification, NotificationKind
from app.models.queue_entry import ACTIVE_STATUSES, QueueEntry, QueueStatus, sources_for
from app.realtime.events import ResourceKind, change_event
from app.stores.base import LedgerStore, LedgerWrite, NotificationStore, QueueStore

log = get_logger(__name__)


def _store_call(fn):
    """Surface driver failures as StoreUnavailableError."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except PyMongoError as e:
            log.error("store_unavailable", op=fn.__qualname__, reason=str(e))
            raise StoreUnavailableError() from e

    return wrapper


def _object_id(value: str) -> PydanticObjectId | None:
    if not ObjectId.is_valid(value):
        return None
    return PydanticObjectId(value)


def _balance(raw: dict[str, Any]) -> CreditBalance:
    return CreditBalance(
        owner_id=raw["owner_id"],
        credits=raw.get("credits", 0),
        health_score_credits=raw.get("health_score_credits", 0),
        seq=raw.get("seq", 0),
        updated_at=raw.get("updated_at") or utcnow(),
    )


def _queue_entry(raw: dict[str, Any]) -> QueueEntry:
    return QueueEntry(
        id=str(raw["_id"]),
        owner_id=raw["owner_id"],
        report_id=raw["report_id"],
        package_name=raw["package_name"],
        documents=raw.get("documents") or [],
        status=raw["status"],
        estimated_completion_time=raw["estimated_completion_time"],
        requested_at=raw["requested_at"],
        completed_at=raw.get("completed_at"),
        updated_at=raw.get("updated_at") or raw["requested_at"],
    )


def _notification(raw: dict[str, Any]) -> Notification:
    return Notification(
        id=str(raw["_id"]),
        owner_id=raw["owner_id"],
        title=raw["title"],
        message=raw["message"],
        type=raw.get("type", "info"),
        read=raw.get("read", False),
        created_at=raw["created_at"],
        updated_at=raw.get("updated_at") or raw["created_at"],
    )


class MongoLedgerStore(LedgerStore):
    async def _replay(self, owner_id: str, idempotency_key: str | None) -> LedgerWrite | None:
        if not idempotency_key:
            return None
        existing = await CreditTransactionDocument.find_one(
            CreditTransactionDocument.owner_id == owner_id,
            CreditTransactionDocument.idempotency_key == idempotency_key,
        )
        if not existing:
            return None
        balance = await self.get_balance(owner_id) or CreditBalance(owner_id=owner_id)
        return LedgerWrite(transaction=existing.to_model(), balance=balance, replayed=True)

    async def _undo(self, owner_id: str, currency: Currency, delta: int, new: CreditBalance) -> None:
        after = await CreditBalanceDocument.get_motor_collection().find_one_and_update(
            {"owner_id": owner_id},
            {"$inc": {balance_field(currency): -delta, "seq": 1}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        log.warning("ledger_compensated", owner_id=owner_id, currency=currency.value, delta=delta)
        if after is not None:
            await self._emit(
                change_event(ResourceKind.CREDIT_BALANCES, "update", owner_id, new=_balance(after), old=new)
            )

    async def _record(
        self,
        owner_id: str,
        currency: Currency,
        delta: int,
        kind: TransactionKind,
        description: str,
        feature_type: str,
        idempotency_key: str | None,
        old: CreditBalance | None,
        new: CreditBalance,
    ) -> LedgerWrite:
        doc = CreditTransactionDocument(
            owner_id=owner_id,
            currency=currency,
            amount=delta,
            kind=kind,
            balance_after=new.balance_for(currency),
            description=description,
            feature_type=feature_type,
            idempotency_key=idempotency_key,
            seq=new.seq,
            created_at=new.updated_at,
        )
        try:
            await doc.insert()
        except DuplicateKeyError:
            # Same idempotency key committed concurrently: give our increment back, replay theirs.
            await self._undo(owner_id, currency, delta, new)
            replay = await self._replay(owner_id, idempotency_key)
            if replay is None:
                raise
            return replay
        except PyMongoError:
            await self._undo(owner_id, currency, delta, new)
            raise
        tx = doc.to_model()
        await self._emit(
            change_event(ResourceKind.CREDIT_BALANCES, "insert" if old is None else "update", owner_id, new=new, old=old),
            change_event(ResourceKind.CREDIT_TRANSACTIONS, "insert", owner_id, new=tx),
        )
        return LedgerWrite(transaction=tx, balance=new)

    @_store_call
    async def get_balance(self, owner_id: str) -> CreditBalance | None:
        doc = await CreditBalanceDocument.find_one(CreditBalanceDocument.owner_id == owner_id)
        return doc.to_model() if doc else None

    @_store_call
    async def apply_debit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite | None:
        replay = await self._replay(owner_id, idempotency_key)
        if replay is not None:
            return replay
        field = balance_field(currency)
        now = utcnow()
        before = await CreditBalanceDocument.get_motor_collection().find_one_and_update(
            {"owner_id": owner_id, field: {"$gte": amount}},
            {"$inc": {field: -amount, "seq": 1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            return None
        old = _balance(before)
        new = old.model_copy(
            update={field: old.balance_for(currency) - amount, "updated_at": now, "seq": old.seq + 1}
        )
        return await self._record(
            owner_id, currency, -amount, "deduct", description, feature_type, idempotency_key, old, new
        )

    @_store_call
    async def apply_credit(
        self,
        owner_id: str,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite:
        replay = await self._replay(owner_id, idempotency_key)
        if replay is not None:
            return replay
        field = balance_field(currency)
        other = balance_field(Currency.GENERAL if currency == Currency.HEALTH_SCORE else Currency.HEALTH_SCORE)
        now = utcnow()
        before = await CreditBalanceDocument.get_motor_collection().find_one_and_update(
            {"owner_id": owner_id},
            {"$inc": {field: amount, "seq": 1}, "$set": {"updated_at": now}, "$setOnInsert": {other: 0}},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
        old = _balance(before) if before else None
        base = old or CreditBalance(owner_id=owner_id)
        new = base.model_copy(
            update={field: base.balance_for(currency) + amount, "updated_at": now, "seq": base.seq + 1}
        )
        return await self._record(
            owner_id, currency, amount, "add", description, feature_type, idempotency_key, old, new
        )

    @_store_call
    async def list_transactions(
        self,
        owner_id: str,
        limit: int,
        offset: int = 0,
        currency: Currency | None = None,
    ) -> list[CreditTransaction]:
        query: dict[str, Any] = {"owner_id": owner_id}
        if currency is not None:
            query["currency"] = currency.value
        docs = (
            await CreditTransactionDocument.find(query)
            .sort([("seq", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)])
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [d.to_model() for d in docs]

    @_store_call
    async def sum_transactions(self, owner_id: str, currency: Currency) -> int:
        total = await CreditTransactionDocument.find(
            {"owner_id": owner_id, "currency": currency.value}
        ).sum(CreditTransactionDocument.amount)
        return int(total or 0)


class MongoQueueStore(QueueStore):
    @_store_call
    async def create(
        self,
        owner_id: str,
        report_id: str,
        package_name: str,
        documents: list[str],
        estimated_completion_time: datetime,
        requested_at: datetime,
    ) -> QueueEntry:
        doc = QueueEntryDocument(
            owner_id=owner_id,
            report_id=report_id,
            package_name=package_name,
            documents=list(documents),
            status="queued",
            estimated_completion_time=estimated_completion_time,
            requested_at=requested_at,
            updated_at=requested_at,
        )
        await doc.insert()
        entry = doc.to_model()
        await self._emit(change_event(ResourceKind.PACKAGE_QUEUE, "insert", owner_id, new=entry))
        return entry

    @_store_call
    async def get(self, entry_id: str) -> QueueEntry | None:
        oid = _object_id(entry_id)
        if oid is None:
            return None
        doc = await QueueEntryDocument.get(oid)
        return doc.to_model() if doc else None

    @_store_call
    async def transition(self, entry_id: str, new_status: QueueStatus, now: datetime) -> QueueEntry:
        oid = _object_id(entry_id)
        if oid is None:
            raise NotFoundError("Queue entry not found")
        update: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == "completed":
            update["completed_at"] = now
        before = await QueueEntryDocument.get_motor_collection().find_one_and_update(
            {"_id": oid, "status": {"$in": sources_for(new_status)}},
            {"$set": update},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            current = await QueueEntryDocument.get(oid)
            if current is None:
                raise NotFoundError("Queue entry not found")
            raise InvalidTransitionError(entry_id, current.status, new_status)
        old = _queue_entry(before)
        new = old.model_copy(update=update)
        await self._emit(change_event(ResourceKind.PACKAGE_QUEUE, "update", new.owner_id, new=new, old=old))
        return new

    @_store_call
    async def list_active(self, owner_id: str, report_id: str | None = None) -> list[QueueEntry]:
        criteria = [
            QueueEntryDocument.owner_id == owner_id,
            In(QueueEntryDocument.status, list(ACTIVE_STATUSES)),
        ]
        if report_id is not None:
            criteria.append(QueueEntryDocument.report_id == report_id)
        docs = await QueueEntryDocument.find(*criteria).sort(-QueueEntryDocument.requested_at).to_list()
        return [d.to_model() for d in docs]

    @_store_call
    async def delete_completed(self, report_id: str, owner_id: str | None = None) -> int:
        criteria = [QueueEntryDocument.report_id == report_id, QueueEntryDocument.status == "completed"]
        if owner_id is not None:
            criteria.append(QueueEntryDocument.owner_id == owner_id)
        docs = await QueueEntryDocument.find(*criteria).to_list()
        if not docs:
            return 0
        result = await QueueEntryDocument.get_motor_collection().delete_many(
            {"_id": {"$in": [d.id for d in docs]}, "status": "completed"}
        )
        await self._emit(
            *[change_event(ResourceKind.PACKAGE_QUEUE, "delete", d.owner_id, old=d.to_model()) for d in docs]
        )
        return result.deleted_count


class MongoNotificationStore(NotificationStore):
    @_store_call
    async def create(self, owner_id: str, title: str, message: str, type: NotificationKind) -> Notification:
        now = utcnow()
        doc = NotificationDocument(
            owner_id=owner_id,
            title=title,
            message=message,
            type=type,
            created_at=now,
            updated_at=now,
        )
        await doc.insert()
        row = doc.to_model()
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "insert", owner_id, new=row))
        return row

    async def _find(self, owner_id: str, notification_id: str) -> NotificationDocument | None:
        oid = _object_id(notification_id)
        if oid is None:
            return None
        return await NotificationDocument.find_one(
            NotificationDocument.id == oid,
            NotificationDocument.owner_id == owner_id,
        )

    @_store_call
    async def get(self, owner_id: str, notification_id: str) -> Notification | None:
        doc = await self._find(owner_id, notification_id)
        return doc.to_model() if doc else None

    @_store_call
    async def list_for_owner(self, owner_id: str, limit: int, offset: int = 0) -> list[Notification]:
        docs = (
            await NotificationDocument.find(NotificationDocument.owner_id == owner_id)
            .sort([("created_at", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)])
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [d.to_model() for d in docs]

    @_store_call
    async def count_unread(self, owner_id: str) -> int:
        return await NotificationDocument.find(
            NotificationDocument.owner_id == owner_id,
            NotificationDocument.read == False,  # noqa: E712
        ).count()

    @_store_call
    async def mark_read(self, owner_id: str, notification_id: str) -> Notification | None:
        oid = _object_id(notification_id)
        if oid is None:
            return None
        now = utcnow()
        before = await NotificationDocument.get_motor_collection().find_one_and_update(
            {"_id": oid, "owner_id": owner_id, "read": False},
            {"$set": {"read": True, "updated_at": now}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            # Unknown, or already read (read never reverts)
            doc = await self._find(owner_id, notification_id)
            return doc.to_model() if doc else None
        old = _notification(before)
        new = old.model_copy(update={"read": True, "updated_at": now})
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "update", owner_id, new=new, old=old))
        return new

    @_store_call
    async def mark_all_read(self, owner_id: str) -> int:
        unread = await NotificationDocument.find(
            NotificationDocument.owner_id == owner_id,
            NotificationDocument.read == False,  # noqa: E712
        ).to_list()
        if not unread:
            return 0
        now = utcnow()
        result = await NotificationDocument.get_motor_collection().update_many(
            {"_id": {"$in": [d.id for d in unread]}, "read": False},
            {"$set": {"read": True, "updated_at": now}},
        )
        events = []
        for d in unread:
            old = d.to_model()
            events.append(
                change_event(
                    ResourceKind.NOTIFICATIONS,
                    "update",
                    owner_id,
                    new=old.model_copy(update={"read": True, "updated_at": now}),
                    old=old,
                )
            )
        await self._emit(*events)
        return result.modified_count

    @_store_call
    async def delete(self, owner_id: str, notification_id: str) -> bool:
        doc = await self._find(owner_id, notification_id)
        if doc is None:
            return False
        await doc.delete()
        await self._emit(change_event(ResourceKind.NOTIFICATIONS, "delete", owner_id, old=doc.to_model()))
        return True

    @_store_call
    async def delete_all(self, owner_id: str) -> int:
        docs = await NotificationDocument.find(NotificationDocument.owner_id == owner_id).to_list()
        if not docs:
            return 0
        result = await NotificationDocument.get_motor_collection().delete_many(
            {"_id": {"$in": [d.id for d in docs]}}
        )
        await self._emit(
            *[change_event(ResourceKind.NOTIFICATIONS, "delete", owner_id, old=d.to_model()) for d in docs]
        )
        return result.deleted_count
