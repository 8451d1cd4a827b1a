"""MongoDB collections (beanie). Services see the pydantic models in app.models."""

from datetime import datetime

import pymongo
from beanie import Document, Indexed
from pydantic import Field
from pymongo import IndexModel

from app.core.clock import utcnow
from app.models.credit_balance import CreditBalance, Currency
from app.models.credit_transaction import CreditTransaction
from app.models.notification import Notification
from app.models.queue_entry import QueueEntry


class CreditBalanceDocument(Document):
    """Current balances per owner; updated only with conditional $inc."""
    owner_id: Indexed(str, unique=True)
    credits: int = 0
    health_score_credits: int = 0
    seq: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "user_credits"

    def to_model(self) -> CreditBalance:
        return CreditBalance(
            owner_id=self.owner_id,
            credits=self.credits,
            health_score_credits=self.health_score_credits,
            seq=self.seq,
            updated_at=self.updated_at,
        )


class CreditTransactionDocument(Document):
    owner_id: str
    currency: Currency = Currency.GENERAL
    amount: int  # positive = add, negative = deduct
    kind: str
    balance_after: int
    description: str = ""
    feature_type: str = ""
    idempotency_key: str | None = None
    seq: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("owner_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)],
            [("owner_id", pymongo.ASCENDING), ("seq", pymongo.DESCENDING)],
            IndexModel(
                [("owner_id", pymongo.ASCENDING), ("idempotency_key", pymongo.ASCENDING)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
                name="owner_idempotency_key_unique",
            ),
        ]

    def to_model(self) -> CreditTransaction:
        return CreditTransaction(
            id=str(self.id),
            owner_id=self.owner_id,
            currency=self.currency,
            amount=self.amount,
            kind=self.kind,
            balance_after=self.balance_after,
            description=self.description,
            feature_type=self.feature_type,
            idempotency_key=self.idempotency_key,
            seq=self.seq,
            created_at=self.created_at,
        )


class QueueEntryDocument(Document):
    owner_id: str
    report_id: str
    package_name: str
    documents: list[str] = Field(default_factory=list)
    status: str = "queued"
    estimated_completion_time: datetime
    requested_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "package_queue"
        indexes = [
            [("owner_id", pymongo.ASCENDING), ("status", pymongo.ASCENDING), ("requested_at", pymongo.DESCENDING)],
            [("report_id", pymongo.ASCENDING), ("status", pymongo.ASCENDING)],
        ]

    def to_model(self) -> QueueEntry:
        return QueueEntry(
            id=str(self.id),
            owner_id=self.owner_id,
            report_id=self.report_id,
            package_name=self.package_name,
            documents=self.documents,
            status=self.status,
            estimated_completion_time=self.estimated_completion_time,
            requested_at=self.requested_at,
            completed_at=self.completed_at,
            updated_at=self.updated_at,
        )


class NotificationDocument(Document):
    owner_id: str
    title: str
    message: str
    type: str = "info"
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "notifications"
        indexes = [
            [("owner_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)],
            [("owner_id", pymongo.ASCENDING), ("read", pymongo.ASCENDING)],
        ]

    def to_model(self) -> Notification:
        return Notification(
            id=str(self.id),
            owner_id=self.owner_id,
            title=self.title,
            message=self.message,
            type=self.type,
            read=self.read,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


DOCUMENT_MODELS = [
    CreditBalanceDocument,
    CreditTransactionDocument,
    QueueEntryDocument,
    NotificationDocument,
]
