"""Row-level change events carried by the change feed."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.core.clock import utcnow

ChangeKind = Literal["insert", "update", "delete"]


class ResourceKind(str, Enum):
    PACKAGE_QUEUE = "package_queue"
    NOTIFICATIONS = "notifications"
    CREDIT_TRANSACTIONS = "credit_transactions"
    CREDIT_BALANCES = "credit_balances"


class ChangeEvent(BaseModel):
    resource: ResourceKind
    kind: ChangeKind
    owner_id: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: datetime = Field(default_factory=utcnow)

    @property
    def record_id(self) -> str:
        """Primary id of the changed row (balances are keyed by owner)."""
        record = self.new if self.new is not None else (self.old or {})
        return str(record.get("id") or record.get("owner_id") or "")


def change_event(
    resource: ResourceKind,
    kind: ChangeKind,
    owner_id: str,
    new: BaseModel | None = None,
    old: BaseModel | None = None,
) -> ChangeEvent:
    return ChangeEvent(
        resource=resource,
        kind=kind,
        owner_id=owner_id,
        new=new.model_dump(mode="json") if new is not None else None,
        old=old.model_dump(mode="json") if old is not None else None,
    )
