# D:\CashMais\app\tests\test_commission_service.py

"""
test_commission_service.py

Testes da distribuição de comissões pela cadeia de patrocinadores.

Test Functions:
    - test_distribution_sums_to_cashback: A soma das linhas da compra fecha o cashback.
    - test_short_chain_remainder_goes_to_platform: Cadeia curta manda o restante à plataforma.
    - test_deep_levels_blocked_without_referrals: Níveis 2+ sem 3 indicados ficam bloqueados.
    - test_levels_zero_and_one_always_eligible: Níveis 0 e 1 nunca bloqueiam.
    - test_deep_level_eligible_with_three_referrals: Com 3 indicados ativos o nível é liberado.
    - test_eligible_credit_releases_blocked: Um crédito elegível libera os bloqueados.
    - test_non_uniform_percentages: Percentuais diferentes por nível e parada em nível inativo.
    - test_missing_level_ends_chain: Nível sem configuração encerra a cadeia.
    - test_no_settings_writes_nothing: Sem configuração nada é gravado.
    - test_plain_user_purchase_writes_nothing: Compra de cliente comum não distribui.
    - test_distribute_never_raises: Falha no saldo não chega ao chamador.
    - test_rounding_is_absorbed_by_platform: Arredondamento fecha na linha da plataforma.
    - test_summarize_purchase: Resumo da distribuição.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.config.settings import PLATFORM_ACCOUNT_ID, PLATFORM_LEVEL
from app.models.finance_models import CommissionDistribution, CommissionLevelSetting
from app.services.commission_service import CommissionService
from app.services.ledger_service import LedgerService
from app.tests.utils.auth_utils import create_chain, add_direct_referrals, create_affiliate


async def _rows(session, purchase_id):
    result = await session.execute(
        select(CommissionDistribution)
        .where(CommissionDistribution.purchase_id == purchase_id)
        .order_by(CommissionDistribution.level)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _sum(session, purchase_id):
    result = await session.execute(
        select(func.sum(CommissionDistribution.commission_amount))
        .where(CommissionDistribution.purchase_id == purchase_id)
    )
    return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))


@pytest.mark.asyncio
async def test_distribution_sums_to_cashback(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 11)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    network_rows = [row for row in rows if row.level != PLATFORM_LEVEL]
    platform_rows = [row for row in rows if row.level == PLATFORM_LEVEL]

    assert [row.level for row in network_rows] == list(range(10))
    assert [row.affiliate_id for row in network_rows] == [a.id for a in chain[:10]]
    assert all(Decimal(str(row.commission_amount)) == Decimal("7.00") for row in network_rows)
    assert len(platform_rows) == 1
    assert platform_rows[0].affiliate_id == PLATFORM_ACCOUNT_ID
    assert Decimal(str(platform_rows[0].commission_amount)) == Decimal("30.00")
    assert await _sum(session, 1) == Decimal("100.00")

    # A raiz (11º da cadeia) fica fora dos 10 níveis
    snapshot = await LedgerService(session).read(chain[10].id)
    assert snapshot.total_earnings == Decimal("0.00")


@pytest.mark.asyncio
async def test_short_chain_remainder_goes_to_platform(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 2)

    await CommissionService(session).distribute(7, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 7)
    assert [row.level for row in rows] == [0, 1, PLATFORM_LEVEL]
    assert Decimal(str(rows[-1].commission_amount)) == Decimal("86.00")
    assert await _sum(session, 7) == Decimal("100.00")


@pytest.mark.asyncio
async def test_deep_levels_blocked_without_referrals(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    assert rows[2].level == 2
    assert rows[2].is_blocked is True

    snapshot = await LedgerService(session).read(chain[2].id)
    assert snapshot.total_earnings == Decimal("7.00")
    assert snapshot.available_balance == Decimal("0.00")
    assert snapshot.frozen_balance == Decimal("7.00")
    assert snapshot.is_active_this_month is True


@pytest.mark.asyncio
async def test_levels_zero_and_one_always_eligible(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 2)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("50.00"))

    rows = await _rows(session, 1)
    assert rows[0].is_blocked is False
    assert rows[1].is_blocked is False

    ledger = LedgerService(session)
    for affiliate in chain:
        snapshot = await ledger.read(affiliate.id)
        assert snapshot.available_balance == Decimal("3.50")
        assert snapshot.frozen_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_deep_level_eligible_with_three_referrals(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)
    # chain[1] já é indicado de chain[2]; mais dois completam o mínimo
    await add_direct_referrals(session, chain[2].id, 2)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    assert rows[2].is_blocked is False
    snapshot = await LedgerService(session).read(chain[2].id)
    assert snapshot.available_balance == Decimal("7.00")


@pytest.mark.asyncio
async def test_inactive_referrals_do_not_count(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)
    await create_affiliate(session, sponsor_id=chain[2].id)
    await create_affiliate(session, sponsor_id=chain[2].id, is_active=False)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    assert rows[2].is_blocked is True


@pytest.mark.asyncio
async def test_eligible_credit_releases_blocked(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)
    service = CommissionService(session)

    await service.distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))
    # O afiliado bloqueado compra: nível 0 é elegível e libera os bloqueados
    await service.distribute(2, chain[2].id, 'affiliate', Decimal("100.00"))

    snapshot = await LedgerService(session).read(chain[2].id)
    assert snapshot.total_earnings == Decimal("14.00")
    assert snapshot.available_balance == Decimal("14.00")
    assert snapshot.frozen_balance == Decimal("0.00")

    rows = await _rows(session, 1)
    assert rows[2].is_blocked is False
    assert rows[2].released_at is not None



async def _configure_levels(session, levels):
    for level, (percentage, is_active) in levels.items():
        session.add(CommissionLevelSetting(level=level, percentage=Decimal(percentage), is_active=is_active))
    await session.commit()


@pytest.mark.asyncio
async def test_non_uniform_percentages(async_db_session):
    session = async_db_session
    await _configure_levels(session, {1: ("40", True), 2: ("20", True), 3: ("40", False)})
    chain = await create_chain(session, 5)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    assert [
        (row.level, row.affiliate_id, Decimal(str(row.commission_amount)), row.is_blocked) for row in rows
    ] == [
        (0, chain[0].id, Decimal("28.00"), False),
        (1, chain[1].id, Decimal("28.00"), False),
        (2, chain[2].id, Decimal("14.00"), True),
        (PLATFORM_LEVEL, PLATFORM_ACCOUNT_ID, Decimal("30.00"), False),
    ]
    assert await _sum(session, 1) == Decimal("100.00")

    # Nível 3 inativo: quem está acima não recebe
    ledger = LedgerService(session)
    assert (await ledger.get_account(chain[3].id)) is None
    assert (await ledger.get_account(chain[4].id)) is None


@pytest.mark.asyncio
async def test_missing_level_ends_chain(async_db_session):
    session = async_db_session
    await _configure_levels(session, {1: ("50", True)})
    chain = await create_chain(session, 4)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    assert [(row.level, Decimal(str(row.commission_amount))) for row in rows] == [
        (0, Decimal("35.00")),
        (1, Decimal("35.00")),
        (PLATFORM_LEVEL, Decimal("30.00")),
    ]
    assert (await LedgerService(session).get_account(chain[2].id)) is None

@pytest.mark.asyncio
async def test_no_settings_writes_nothing(async_db_session):
    chain = await create_chain(async_db_session, 2)

    await CommissionService(async_db_session).distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    assert await _rows(async_db_session, 1) == []
    assert (await LedgerService(async_db_session).get_account(chain[0].id)) is None


@pytest.mark.asyncio
async def test_plain_user_purchase_writes_nothing(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 2)

    await CommissionService(session).distribute(1, chain[0].id, 'user', Decimal("100.00"))

    assert await _rows(session, 1) == []


@pytest.mark.asyncio
async def test_inactive_customer_writes_nothing(commission_settings):
    session = commission_settings
    customer = await create_affiliate(session, is_active=False)

    await CommissionService(session).distribute(1, customer.id, 'affiliate', Decimal("100.00"))

    assert await _rows(session, 1) == []


@pytest.mark.asyncio
async def test_distribute_never_raises(commission_settings, monkeypatch):
    session = commission_settings
    chain = await create_chain(session, 2)
    service = CommissionService(session)

    async def broken_credit(*args, **kwargs):
        raise RuntimeError("saldo indisponível")

    monkeypatch.setattr(service.ledger, "credit", broken_credit)

    await service.distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))

    rows = await _rows(session, 1)
    # A falha no nível 0 encerra a cadeia; a plataforma fica com tudo
    assert [row.level for row in rows] == [PLATFORM_LEVEL]
    assert Decimal(str(rows[0].commission_amount)) == Decimal("100.00")


@pytest.mark.asyncio
async def test_rounding_is_absorbed_by_platform(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 2)

    await CommissionService(session).distribute(1, chain[0].id, 'affiliate', Decimal("0.33"))

    rows = await _rows(session, 1)
    assert [Decimal(str(row.commission_amount)) for row in rows] == [
        Decimal("0.02"), Decimal("0.02"), Decimal("0.29")
    ]
    assert await _sum(session, 1) == Decimal("0.33")


@pytest.mark.asyncio
async def test_summarize_purchase(commission_settings):
    session = commission_settings
    chain = await create_chain(session, 3)
    service = CommissionService(session)

    await service.distribute(1, chain[0].id, 'affiliate', Decimal("100.00"))
    summary = await service.summarize_purchase(1)

    assert summary["base_cashback"] == 100.0
    assert summary["network_total"] == 21.0
    assert summary["blocked_total"] == 7.0
    assert summary["platform_share"] == 79.0
    assert summary["total"] == 100.0
    assert [level["level"] for level in summary["levels"]] == [0, 1, 2]
