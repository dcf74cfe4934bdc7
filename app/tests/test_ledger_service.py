# D:\CashMais\app\tests\test_ledger_service.py

"""
test_ledger_service.py

Testes do serviço de saldo dos afiliados: créditos, movimentações de saque,
consultas, conferência com o histórico e repetição em caso de conflito.
"""

import asyncio
from decimal import Decimal, InvalidOperation

import pytest
from sqlalchemy.exc import OperationalError

from app.services.commission_service import CommissionService
from app.services.ledger_service import (
    LedgerService,
    LedgerContentionError,
    InsufficientBalanceError,
    affiliate_lock,
    profile_key_for,
    to_money,
    with_ledger_retry,
)
from app.tests.utils.auth_utils import create_affiliate, create_chain


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(0.1 + 0.2) == Decimal("0.30")
    assert to_money(None) == Decimal("0.00")


@pytest.mark.parametrize("value", ["NaN", "Infinity", float("-inf")])
def test_to_money_rejects_non_finite(value):
    with pytest.raises(InvalidOperation):
        to_money(value)


@pytest.mark.asyncio
async def test_credit_eligible_creates_account(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)

    await ledger.credit(affiliate.id, Decimal("10.00"), eligible=True)
    await ledger.credit(affiliate.id, Decimal("5.55"), eligible=True)

    account = await ledger.get_account(affiliate.id)
    assert account.profile_key == profile_key_for(affiliate.id)

    snapshot = await ledger.read(affiliate.id)
    assert snapshot.total_earnings == Decimal("15.55")
    assert snapshot.available_balance == Decimal("15.55")
    assert snapshot.frozen_balance == Decimal("0.00")
    assert snapshot.is_active_this_month is True


@pytest.mark.asyncio
async def test_credit_ineligible_goes_to_frozen(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)

    await ledger.credit(affiliate.id, Decimal("4.20"), eligible=False)

    snapshot = await ledger.read(affiliate.id)
    assert snapshot.total_earnings == Decimal("4.20")
    assert snapshot.available_balance == Decimal("0.00")
    assert snapshot.frozen_balance == Decimal("4.20")


@pytest.mark.asyncio
async def test_freeze_unfreeze_and_debit(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)
    await ledger.credit(affiliate.id, Decimal("100.00"), eligible=True)

    await ledger.freeze(affiliate.id, Decimal("40.00"))
    snapshot = await ledger.read(affiliate.id)
    assert (snapshot.available_balance, snapshot.frozen_balance) == (Decimal("60.00"), Decimal("40.00"))

    await ledger.unfreeze(affiliate.id, Decimal("10.00"))
    snapshot = await ledger.read(affiliate.id)
    assert (snapshot.available_balance, snapshot.frozen_balance) == (Decimal("70.00"), Decimal("30.00"))

    await ledger.debit(affiliate.id, Decimal("30.00"))
    snapshot = await ledger.read(affiliate.id)
    assert snapshot.available_balance == Decimal("70.00")
    assert snapshot.frozen_balance == Decimal("0.00")
    assert snapshot.total_withdrawn == Decimal("30.00")
    assert snapshot.total_earnings == Decimal("100.00")


@pytest.mark.asyncio
async def test_freeze_insufficient_balance(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)
    await ledger.credit(affiliate.id, Decimal("10.00"), eligible=True)

    with pytest.raises(InsufficientBalanceError):
        await ledger.freeze(affiliate.id, Decimal("10.01"))

    with pytest.raises(InsufficientBalanceError):
        await ledger.debit(affiliate.id, Decimal("1.00"))

    snapshot = await ledger.read(affiliate.id)
    assert snapshot.available_balance == Decimal("10.00")
    assert snapshot.frozen_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_concurrent_credits_are_not_lost(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)

    await asyncio.gather(*[
        ledger.credit(affiliate.id, Decimal("1.10"), eligible=True) for _ in range(20)
    ])

    snapshot = await ledger.read(affiliate.id)
    assert snapshot.total_earnings == Decimal("22.00")
    assert snapshot.available_balance == Decimal("22.00")


@pytest.mark.asyncio
async def test_get_balance_without_account(async_db_session):
    balance = await LedgerService(async_db_session).get_balance(12345)

    assert balance == {
        "affiliate_id": 12345,
        "total_earnings": 0.0,
        "available_balance": 0.0,
        "frozen_balance": 0.0,
        "total_withdrawn": 0.0,
        "is_active_this_month": False,
        "pix_key": None,
    }


@pytest.mark.asyncio
async def test_set_pix_key_creates_account(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)

    account = await ledger.set_pix_key(affiliate.id, "  pix@example.com ")

    assert account.pix_key == "pix@example.com"
    balance = await ledger.get_balance(affiliate.id)
    assert balance["pix_key"] == "pix@example.com"
    assert balance["is_active_this_month"] is False


@pytest.mark.asyncio
async def test_reset_monthly_activity(async_db_session):
    first = await create_affiliate(async_db_session)
    second = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)
    await ledger.credit(first.id, Decimal("1.00"), eligible=True)
    await ledger.credit(second.id, Decimal("1.00"), eligible=False)

    assert await ledger.reset_monthly_activity() == 2

    assert (await ledger.read(first.id)).is_active_this_month is False
    assert (await ledger.read(second.id)).is_active_this_month is False


@pytest.mark.asyncio
async def test_platform_revenue_and_consistency(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)
    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    ledger = LedgerService(session)
    assert await ledger.get_platform_revenue() == Decimal("79.00")

    for affiliate in chain:
        report = await ledger.check_consistency(affiliate.id)
        assert report["is_consistent"] is True

    blocked = await ledger.check_consistency(chain[2].id)
    assert blocked["blocked_total"] == Decimal("7.00")
    assert blocked["derived_total"] == Decimal("0.00")


@pytest.mark.asyncio
async def test_consistency_flags_divergence(async_db_session):
    affiliate = await create_affiliate(async_db_session)
    ledger = LedgerService(async_db_session)
    # Crédito sem linha de distribuição correspondente
    await ledger.credit(affiliate.id, Decimal("5.00"), eligible=True)

    report = await ledger.check_consistency(affiliate.id)

    assert report["is_consistent"] is False
    assert report["difference"] == Decimal("5.00")


@pytest.mark.asyncio
async def test_affiliate_lock_is_shared_per_affiliate():
    assert affiliate_lock(1) is affiliate_lock(1)
    assert affiliate_lock(1) is not affiliate_lock(2)


@pytest.mark.asyncio
async def test_ledger_retry_gives_up(async_db_session):
    calls = []

    async def always_locked():
        calls.append(1)
        raise OperationalError("UPDATE ledger_accounts", {}, Exception("database is locked"))

    with pytest.raises(LedgerContentionError):
        await with_ledger_retry(async_db_session, always_locked, max_retries=3)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_ledger_retry_recovers(async_db_session):
    calls = []

    async def locked_once():
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE ledger_accounts", {}, Exception("database is locked"))
        return "ok"

    assert await with_ledger_retry(async_db_session, locked_once, max_retries=3) == "ok"
    assert len(calls) == 2
