"""Credits ledger and atomic balance updates."""

from pydantic import BaseModel

from app.core.exceptions import BadRequestError, InsufficientBalanceError, NotAuthenticatedError
from app.core.logging import get_logger
from app.core.pagination import DEFAULT_LIMIT, Page, page_of, paginate
from app.models.credit_balance import CreditBalance, Currency
from app.models.credit_transaction import CreditTransaction
from app.stores.base import LedgerStore, LedgerWrite

log = get_logger(__name__)

NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class DeductResult(BaseModel):
    success: bool
    new_balance: int | None = None
    error: str | None = None  # NOT_AUTHENTICATED | INSUFFICIENT_BALANCE
    message: str | None = None
    currency: Currency = Currency.GENERAL
    required: int = 0
    available: int = 0
    transaction: CreditTransaction | None = None
    replayed: bool = False
    low_balance: bool = False

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)

    def raise_for_error(self) -> None:
        if self.success:
            return
        if self.error == NOT_AUTHENTICATED:
            raise NotAuthenticatedError(self.message or "Not authenticated")
        raise InsufficientBalanceError(self.currency.value, self.required, self.available)


class Reconciliation(BaseModel):
    owner_id: str
    currency: Currency
    balance: int
    ledger_sum: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise BadRequestError("Amount must be a positive whole number of credits", details={"amount": amount})
    return amount


class LedgerService:
    """
    Balances for the two currencies plus the append-only transaction log.

    Holds no per-request state; the store does the check-and-decrement in one
    conditional write so concurrent deductions for one owner cannot both pass.
    """

    def __init__(
        self,
        store: LedgerStore,
        low_credit_threshold: int = 5,
        signup_general_credits: int = 0,
        signup_health_score_credits: int = 5,
    ) -> None:
        self.store = store
        self.low_credit_threshold = low_credit_threshold
        self.signup_general_credits = signup_general_credits
        self.signup_health_score_credits = signup_health_score_credits

    async def get_balances(self, owner_id: str | None) -> CreditBalance:
        """Both balances; an owner with no record reads as zero."""
        if not owner_id:
            raise NotAuthenticatedError()
        return await self.store.get_balance(owner_id) or CreditBalance(owner_id=owner_id)

    async def get_balance(self, owner_id: str | None, currency: Currency = Currency.GENERAL) -> int:
        return (await self.get_balances(owner_id)).balance_for(currency)

    async def has_sufficient_balance(self, owner_id: str | None, currency: Currency, amount: int) -> bool:
        return await self.get_balance(owner_id, currency) >= amount

    async def deduct(
        self,
        owner_id: str | None,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> DeductResult:
        """
        Deduct `amount` or change nothing.
        Failures come back as a result (NOT_AUTHENTICATED, INSUFFICIENT_BALANCE), not as exceptions.
        """
        if not owner_id:
            return DeductResult(
                success=False,
                error=NOT_AUTHENTICATED,
                message="You must be logged in to use this feature",
                currency=currency,
                required=amount,
            )
        _check_amount(amount)
        write = await self.store.apply_debit(owner_id, currency, amount, description, feature_type, idempotency_key)
        if write is None:
            available = await self.get_balance(owner_id, currency)
            log.info(
                "credits_deduct_rejected",
                owner_id=owner_id,
                currency=currency.value,
                amount=amount,
                available=available,
                feature_type=feature_type,
            )
            return DeductResult(
                success=False,
                error=INSUFFICIENT_BALANCE,
                message=f"Insufficient credits. You need {amount} credits but only have {available}.",
                currency=currency,
                required=amount,
                available=available,
            )
        new_balance = write.balance_after
        previous = new_balance - write.transaction.amount
        low = (
            not write.replayed
            and currency == Currency.GENERAL
            and new_balance < self.low_credit_threshold <= previous
        )
        log.info(
            "credits_deducted" if not write.replayed else "credits_deduct_replayed",
            owner_id=owner_id,
            currency=currency.value,
            amount=amount,
            balance_after=new_balance,
            feature_type=feature_type,
            transaction_id=write.transaction.id,
        )
        return DeductResult(
            success=True,
            new_balance=new_balance,
            currency=currency,
            required=amount,
            available=previous if not write.replayed else new_balance,
            transaction=write.transaction,
            replayed=write.replayed,
            low_balance=low,
        )

    async def add(
        self,
        owner_id: str | None,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> int:
        """Credit the owner (subscription renewals, purchases, refunds). Returns the new balance."""
        write = await self.credit(owner_id, currency, amount, description, feature_type, idempotency_key)
        return write.balance_after

    async def credit(
        self,
        owner_id: str | None,
        currency: Currency,
        amount: int,
        description: str,
        feature_type: str,
        idempotency_key: str | None = None,
    ) -> LedgerWrite:
        if not owner_id:
            raise NotAuthenticatedError()
        _check_amount(amount)
        write = await self.store.apply_credit(owner_id, currency, amount, description, feature_type, idempotency_key)
        log.info(
            "credits_added" if not write.replayed else "credits_add_replayed",
            owner_id=owner_id,
            currency=currency.value,
            amount=amount,
            balance_after=write.balance_after,
            feature_type=feature_type,
            transaction_id=write.transaction.id,
        )
        return write

    async def list_transactions(
        self,
        owner_id: str | None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        currency: Currency | None = None,
    ) -> Page[CreditTransaction]:
        """Return ledger entries for owner (newest first)."""
        if not owner_id:
            raise NotAuthenticatedError()
        limit, offset = paginate(limit, offset)
        rows = await self.store.list_transactions(owner_id, limit + 1, offset, currency=currency)
        return page_of(rows, limit, offset)

    async def open_account(self, owner_id: str | None) -> CreditBalance:
        """Seed the signup allowance once per owner; repeat calls change nothing."""
        if not owner_id:
            raise NotAuthenticatedError()
        seeds = (
            (Currency.GENERAL, self.signup_general_credits, "Signup credits"),
            (Currency.HEALTH_SCORE, self.signup_health_score_credits, "Complimentary Business Health Score credits"),
        )
        for currency, amount, description in seeds:
            if amount > 0:
                await self.add(
                    owner_id,
                    currency,
                    amount,
                    description,
                    "signup_bonus",
                    idempotency_key=f"signup:{currency.value}",
                )
        return await self.get_balances(owner_id)

    async def reconcile(self, owner_id: str, currency: Currency) -> Reconciliation:
        balance = await self.get_balance(owner_id, currency)
        ledger_sum = await self.store.sum_transactions(owner_id, currency)
        out = Reconciliation(owner_id=owner_id, currency=currency, balance=balance, ledger_sum=ledger_sum)
        if not out.consistent:
            log.error("ledger_out_of_balance", owner_id=owner_id, currency=currency.value, balance=balance, ledger_sum=ledger_sum)
        return out
