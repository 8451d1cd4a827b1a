"""Credit ledger behaviour against the in-memory store."""

import asyncio

import pytest

from app.core.exceptions import BadRequestError, InsufficientBalanceError, NotAuthenticatedError
from app.models.credit_balance import Currency
from app.services.credits import INSUFFICIENT_BALANCE, NOT_AUTHENTICATED, LedgerService
from app.stores.memory import MemoryLedgerStore

pytestmark = pytest.mark.asyncio

OWNER = "owner-1"


@pytest.fixture
def ledger() -> LedgerService:
    return LedgerService(MemoryLedgerStore())


async def test_new_owner_reads_zero(ledger):
    assert await ledger.get_balance(OWNER) == 0
    assert await ledger.get_balance(OWNER, Currency.HEALTH_SCORE) == 0


async def test_deduct_until_insufficient(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 50, "Top up", "credit_purchase")

    first = await ledger.deduct(OWNER, Currency.GENERAL, 30, "Package", "PYBLC1")
    assert first.success
    assert first.new_balance == 20

    second = await ledger.deduct(OWNER, Currency.GENERAL, 30, "Package", "PYBLC1")
    assert not second.success
    assert second.error == INSUFFICIENT_BALANCE
    assert second.available == 20
    assert second.shortfall == 10
    assert await ledger.get_balance(OWNER) == 20

    page = await ledger.list_transactions(OWNER)
    assert [t.amount for t in page.items] == [-30, 50]
    assert [t.balance_after for t in page.items] == [20, 50]


async def test_failed_deduct_writes_nothing(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 5, "Top up", "credit_purchase")
    result = await ledger.deduct(OWNER, Currency.GENERAL, 6, "Package", "USICD2")
    assert not result.success
    page = await ledger.list_transactions(OWNER)
    assert len(page.items) == 1
    with pytest.raises(InsufficientBalanceError) as exc:
        result.raise_for_error()
    assert exc.value.details["shortfall"] == 1


async def test_missing_owner(ledger):
    result = await ledger.deduct(None, Currency.GENERAL, 1, "x", "x")
    assert not result.success
    assert result.error == NOT_AUTHENTICATED
    with pytest.raises(NotAuthenticatedError):
        result.raise_for_error()
    with pytest.raises(NotAuthenticatedError):
        await ledger.get_balance(None)
    with pytest.raises(NotAuthenticatedError):
        await ledger.add("", Currency.GENERAL, 1, "x", "x")


@pytest.mark.parametrize("amount", [0, -3])
async def test_non_positive_amount_rejected(ledger, amount):
    with pytest.raises(BadRequestError):
        await ledger.deduct(OWNER, Currency.GENERAL, amount, "x", "x")
    with pytest.raises(BadRequestError):
        await ledger.add(OWNER, Currency.GENERAL, amount, "x", "x")


async def test_currencies_are_independent(ledger):
    await ledger.add(OWNER, Currency.HEALTH_SCORE, 2, "Signup", "signup_bonus")
    result = await ledger.deduct(OWNER, Currency.GENERAL, 1, "Package", "DIIP3")
    assert not result.success
    result = await ledger.deduct(OWNER, Currency.HEALTH_SCORE, 1, "Score", "BUSINESS_HEALTH_SCORE")
    assert result.success
    balances = await ledger.get_balances(OWNER)
    assert balances.credits == 0
    assert balances.health_score_credits == 1


async def test_concurrent_deductions_never_overdraw(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 50, "Top up", "credit_purchase")
    results = await asyncio.gather(
        *[ledger.deduct(OWNER, Currency.GENERAL, 20, "Package", "PYBLC1") for _ in range(5)]
    )
    assert sum(1 for r in results if r.success) == 2
    assert await ledger.get_balance(OWNER) == 10
    assert (await ledger.reconcile(OWNER, Currency.GENERAL)).consistent


async def test_idempotent_deduct_applies_once(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 20, "Top up", "credit_purchase")
    first = await ledger.deduct(OWNER, Currency.GENERAL, 8, "Package", "PYBLC1", idempotency_key="req-1")
    again = await ledger.deduct(OWNER, Currency.GENERAL, 8, "Package", "PYBLC1", idempotency_key="req-1")
    assert first.success and again.success
    assert again.replayed
    assert again.transaction.id == first.transaction.id
    assert await ledger.get_balance(OWNER) == 12


async def test_idempotent_add_applies_once(ledger):
    a = await ledger.credit(OWNER, Currency.GENERAL, 25, "Renewal", "subscription", idempotency_key="inv-1")
    b = await ledger.credit(OWNER, Currency.GENERAL, 25, "Renewal", "subscription", idempotency_key="inv-1")
    assert not a.replayed
    assert b.replayed
    assert await ledger.get_balance(OWNER) == 25


async def test_low_balance_flag_only_when_crossing_threshold(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 10, "Top up", "credit_purchase")
    crossing = await ledger.deduct(OWNER, Currency.GENERAL, 6, "Package", "USICD2")
    assert crossing.new_balance == 4
    assert crossing.low_balance
    below = await ledger.deduct(OWNER, Currency.GENERAL, 1, "Package", "USICD2")
    assert not below.low_balance


async def test_open_account_seeds_once(ledger):
    first = await ledger.open_account(OWNER)
    second = await ledger.open_account(OWNER)
    assert first.health_score_credits == 5
    assert second.health_score_credits == 5
    assert second.credits == 0


async def test_reconcile_matches_ledger(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 30, "Top up", "credit_purchase")
    await ledger.deduct(OWNER, Currency.GENERAL, 7, "Package", "DIIP3")
    await ledger.deduct(OWNER, Currency.GENERAL, 100, "Package", "DIIP3")
    await ledger.add(OWNER, Currency.GENERAL, 3, "Refund", "refund")
    rec = await ledger.reconcile(OWNER, Currency.GENERAL)
    assert rec.balance == 26
    assert rec.ledger_sum == 26
    assert rec.consistent


async def test_transactions_paginate_newest_first(ledger):
    for i in range(1, 6):
        await ledger.add(OWNER, Currency.GENERAL, i, f"Top up {i}", "credit_purchase")
    page = await ledger.list_transactions(OWNER, limit=2)
    assert [t.amount for t in page.items] == [5, 4]
    assert page.has_more
    last = await ledger.list_transactions(OWNER, limit=2, offset=4)
    assert [t.amount for t in last.items] == [1]
    assert not last.has_more
    general_only = await ledger.list_transactions(OWNER, currency=Currency.HEALTH_SCORE)
    assert general_only.items == []


async def test_history_follows_commit_order(ledger):
    await ledger.add(OWNER, Currency.GENERAL, 40, "Top up", "credit_purchase")
    await asyncio.gather(
        *[ledger.deduct(OWNER, Currency.GENERAL, 3, "Package", "PYBLC1") for _ in range(4)],
        *[ledger.add(OWNER, Currency.GENERAL, 2, "Refund", "refund") for _ in range(4)],
    )
    history = (await ledger.list_transactions(OWNER, limit=50)).items
    assert [t.seq for t in history] == list(range(9, 0, -1))
    for newer, older in zip(history, history[1:]):
        assert newer.balance_after == older.balance_after + newer.amount
    balances = await ledger.get_balances(OWNER)
    assert balances.seq == 9
    assert balances.credits == history[0].balance_after == 36
