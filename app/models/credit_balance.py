from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.core.clock import utcnow


class Currency(str, Enum):
    """The two independent credit ledgers every owner has."""

    GENERAL = "general"
    HEALTH_SCORE = "health_score"


class CreditBalance(BaseModel):
    """Current balances per owner; mutated only through the ledger."""
    owner_id: str
    credits: int = Field(default=0, ge=0)
    health_score_credits: int = Field(default=0, ge=0)
    seq: int = 0  # per-owner commit counter; higher is newer
    updated_at: datetime = Field(default_factory=utcnow)

    def balance_for(self, currency: Currency) -> int:
        if currency == Currency.HEALTH_SCORE:
            return self.health_score_credits
        return self.credits


def balance_field(currency: Currency) -> str:
    """Stored field holding the balance of `currency`."""
    return "health_score_credits" if currency == Currency.HEALTH_SCORE else "credits"
