from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.core.clock import utcnow
from app.models.credit_balance import Currency

TransactionKind = Literal["add", "deduct"]


class CreditTransaction(BaseModel):
    id: str
    owner_id: str
    currency: Currency = Currency.GENERAL
    amount: int  # positive = add, negative = deduct
    kind: TransactionKind
    balance_after: int
    description: str = ""
    feature_type: str = ""  # package code, BUSINESS_HEALTH_SCORE, credit_purchase, refund, ...
    idempotency_key: str | None = None
    seq: int = 0  # balance seq this entry committed at
    created_at: datetime = Field(default_factory=utcnow)
