from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.core.clock import utcnow

NotificationKind = Literal["info", "success", "warning", "error"]


class Notification(BaseModel):
    id: str
    owner_id: str
    title: str
    message: str
    type: NotificationKind = "info"
    read: bool = False  # false -> true only
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
