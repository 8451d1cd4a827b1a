from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.core.clock import utcnow

QueueStatus = Literal["queued", "processing", "completed", "failed"]

ACTIVE_STATUSES: tuple[str, ...] = ("queued", "processing")

# current status -> statuses it may move to; completed/failed are terminal
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"processing", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(new: str) -> list[str]:
    """Statuses from which `new` is reachable in one step."""
    return [s for s, targets in ALLOWED_TRANSITIONS.items() if new in targets]


class QueueEntry(BaseModel):
    """One package-generation job, from request to worker completion."""
    id: str
    owner_id: str
    report_id: str
    package_name: str
    documents: list[str] = Field(default_factory=list)
    status: QueueStatus = "queued"
    estimated_completion_time: datetime
    requested_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _estimate_not_before_request(self) -> "QueueEntry":
        if self.estimated_completion_time < self.requested_at:
            raise ValueError("estimated_completion_time must not precede requested_at")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
