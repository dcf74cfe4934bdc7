# D:\CashMais\app\services\ledger_service.py
"""
ledger_service.py

Módulo responsável pelo saldo dos afiliados da rede: créditos de comissão,
liberação de valores bloqueados e as movimentações dos saques.

Funcionalidades principais:
    - Crédito de comissões (disponível ou congelado)
    - Liberação dos valores bloqueados de um afiliado
    - Congelamento, descongelamento e baixa de valores de saque
    - Consulta de saldo e chave PIX
    - Conferência do saldo pelo histórico de distribuições

Regras de Negócio:
    - Toda alteração é um incremento atômico no banco, nunca leitura seguida de escrita
    - O saldo nunca fica negativo: congelar, descongelar e baixar exigem saldo suficiente
    - O saldo gravado é a fonte de verdade; o cálculo derivado serve só para conferência
    - Conflitos de escrita são repetidos internamente até LEDGER_MAX_RETRIES vezes

Dependências:
    - SQLAlchemy para persistência e upsert com incremento em conflito
    - app.models.finance_models para saldos e distribuições
"""

import asyncio
import logging
import weakref
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import (
    LEDGER_MAX_RETRIES, OWN_PURCHASE_RATE, PLATFORM_LEVEL, get_current_timezone
)
from app.models.database import Affiliate, Purchase
from app.models.finance_models import CommissionDistribution, LedgerAccount

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Converte um valor para Decimal arredondado em centavos.

    Args:
        value: Número, string ou Decimal (None vira zero).

    Returns:
        Decimal: Valor com duas casas decimais.

    Raises:
        InvalidOperation: Se o valor não for um número finito (NaN, Infinity).
    """
    if value is None:
        return ZERO
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise InvalidOperation(f"Valor monetário não finito: {value}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def profile_key_for(affiliate_id: int) -> str:
    return f"affiliate_{affiliate_id}"


class LedgerError(Exception):
    """Erro base das operações de saldo."""


class LedgerContentionError(LedgerError):
    """Conflito de escrita que persistiu após todas as tentativas."""


class InsufficientBalanceError(LedgerError):
    """A operação deixaria o saldo negativo."""


@dataclass
class LedgerSnapshot:
    """
    Retrato do saldo de um afiliado em um instante.

    Attributes:
        affiliate_id (int): ID do afiliado.
        total_earnings (Decimal): Total histórico de comissões.
        available_balance (Decimal): Saldo disponível.
        frozen_balance (Decimal): Saldo congelado.
        total_withdrawn (Decimal): Total já sacado.
        is_active_this_month (bool): Recebeu comissão no mês.
    """
    affiliate_id: int
    total_earnings: Decimal = ZERO
    available_balance: Decimal = ZERO
    frozen_balance: Decimal = ZERO
    total_withdrawn: Decimal = ZERO
    is_active_this_month: bool = False

    @classmethod
    def from_account(cls, account: LedgerAccount) -> "LedgerSnapshot":
        return cls(
            affiliate_id=account.affiliate_id,
            total_earnings=to_money(account.total_earnings),
            available_balance=to_money(account.available_balance),
            frozen_balance=to_money(account.frozen_balance),
            total_withdrawn=to_money(account.total_withdrawn),
            is_active_this_month=bool(account.is_active_this_month),
        )

    def as_dict(self) -> Dict:
        data = asdict(self)
        for key in ("total_earnings", "available_balance", "frozen_balance", "total_withdrawn"):
            data[key] = float(data[key])
        return data


# Locks por afiliado, separados por event loop
_loop_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[int, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def affiliate_lock(affiliate_id: int) -> asyncio.Lock:
    """
    Retorna o lock em processo que serializa as alterações de saldo de um afiliado.

    Args:
        affiliate_id (int): ID do afiliado.

    Returns:
        asyncio.Lock: Lock exclusivo do afiliado no event loop atual.
    """
    loop = asyncio.get_running_loop()
    locks = _loop_locks.get(loop)
    if locks is None:
        locks = defaultdict(asyncio.Lock)
        _loop_locks[loop] = locks
    return locks[affiliate_id]


async def with_ledger_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable],
    max_retries: int = LEDGER_MAX_RETRIES
):
    """
    Executa uma unidade de escrita repetindo em caso de conflito no banco.

    A unidade deve ser idempotente até o commit: em caso de falha a sessão é
    revertida e a unidade inteira é executada de novo.

    Args:
        session (AsyncSession): Sessão do banco de dados
        operation (Callable): Corrotina sem argumentos que executa e confirma a unidade
        max_retries (int): Número máximo de tentativas

    Returns:
        O retorno da operação.

    Raises:
        LedgerContentionError: Se todas as tentativas falharem.
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except (OperationalError, IntegrityError) as e:
            await session.rollback()
            logger.warning(
                "Conflito de escrita no saldo (tentativa %s de %s): %s",
                attempt, max_retries, e
            )
            if attempt == max_retries:
                raise LedgerContentionError(
                    f"Falha ao atualizar saldo após {max_retries} tentativas"
                ) from e
            await asyncio.sleep(0.05 * attempt)


def _round_money(expression):
    return func.round(expression, 2)


class LedgerService:
    """
    Serviço de saldo dos afiliados.

    Attributes:
        db (AsyncSession): Sessão do banco de dados.

    Methods:
        credit: Credita uma comissão (disponível ou congelada).
        release_blocked: Libera todas as comissões bloqueadas do afiliado.
        freeze: Move valor do disponível para o congelado (pedido de saque).
        unfreeze: Devolve valor congelado ao disponível (saque rejeitado).
        debit: Baixa valor congelado como sacado (saque aprovado).
        read: Retorna o retrato do saldo.
        get_balance: Retorna o saldo no formato da consulta de saldo.
        set_pix_key: Grava a chave PIX de pagamento.
        reset_monthly_activity: Zera a marcação de atividade mensal.
        get_platform_revenue: Soma a parte da plataforma nas distribuições.
        derive_total_earnings: Recalcula o total pelo histórico.
        check_consistency: Compara o saldo gravado com o histórico.
    """

    def __init__(self, db: AsyncSession):
        """
        Inicializa o serviço com a sessão do banco de dados.

        Args:
            db (AsyncSession): Sessão assíncrona do SQLAlchemy.
        """
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert
        if dialect == "postgresql":
            return postgresql.insert
        raise NotImplementedError(f"Upsert de saldo não suportado para o banco '{dialect}'")

    async def _run(self, affiliate_id: int, operation: Callable[[], Awaitable], commit: bool):
        if not commit:
            return await operation()

        async def unit():
            value = await operation()
            await self.db.commit()
            return value

        async with affiliate_lock(affiliate_id):
            return await with_ledger_retry(self.db, unit)

    # ========== Créditos da distribuição ==========

    async def credit(
        self,
        affiliate_id: int,
        amount,
        eligible: bool,
        commit: bool = True
    ) -> None:
        """
        Credita uma comissão no saldo do afiliado, criando o saldo se necessário.

        O total sempre aumenta; o valor vai para o disponível se o afiliado for
        elegível e para o congelado caso contrário. Marca o afiliado como ativo no mês.

        Args:
            affiliate_id (int): ID do afiliado
            amount: Valor da comissão
            eligible (bool): Se o afiliado pode receber o valor livre
            commit (bool): Se False, a escrita fica na transação do chamador
        """
        amount = to_money(amount)

        async def operation():
            insert = self._insert()
            stmt = insert(LedgerAccount).values(
                profile_key=profile_key_for(affiliate_id),
                affiliate_id=affiliate_id,
                total_earnings=amount,
                available_balance=amount if eligible else ZERO,
                frozen_balance=ZERO if eligible else amount,
                total_withdrawn=ZERO,
                is_active_this_month=True,
                updated_at=get_current_timezone(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[LedgerAccount.affiliate_id],
                set_={
                    "total_earnings": _round_money(LedgerAccount.total_earnings + stmt.excluded.total_earnings),
                    "available_balance": _round_money(LedgerAccount.available_balance + stmt.excluded.available_balance),
                    "frozen_balance": _round_money(LedgerAccount.frozen_balance + stmt.excluded.frozen_balance),
                    "is_active_this_month": True,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.db.execute(stmt)

        await self._run(affiliate_id, operation, commit)

    async def release_blocked(self, affiliate_id: int, commit: bool = True) -> Decimal:
        """
        Libera todas as comissões bloqueadas do afiliado.

        Soma as linhas bloqueadas, move a soma do congelado para o disponível e
        marca exatamente essas linhas como liberadas.

        Args:
            affiliate_id (int): ID do afiliado
            commit (bool): Se False, a escrita fica na transação do chamador

        Returns:
            Decimal: Valor liberado (zero se não havia nada bloqueado)
        """
        async def operation():
            result = await self.db.execute(
                select(CommissionDistribution.id, CommissionDistribution.commission_amount)
                .where(
                    CommissionDistribution.affiliate_id == affiliate_id,
                    CommissionDistribution.is_blocked.is_(True)
                )
                .with_for_update()
            )
            rows = result.all()
            released = to_money(sum((to_money(row.commission_amount) for row in rows), ZERO))
            if released <= ZERO:
                return ZERO

            await self.db.execute(
                update(LedgerAccount)
                .where(LedgerAccount.affiliate_id == affiliate_id)
                .values(
                    available_balance=_round_money(LedgerAccount.available_balance + released),
                    frozen_balance=_round_money(LedgerAccount.frozen_balance - released),
                    updated_at=get_current_timezone(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                update(CommissionDistribution)
                .where(CommissionDistribution.id.in_([row.id for row in rows]))
                .values(is_blocked=False, released_at=get_current_timezone())
                .execution_options(synchronize_session=False)
            )
            logger.info(
                "Liberadas %s comissões bloqueadas do afiliado %s: R$ %s",
                len(rows), affiliate_id, released
            )
            return released

        return await self._run(affiliate_id, operation, commit)

    # ========== Movimentações de saque ==========

    async def _conditional_move(self, affiliate_id: int, amount: Decimal, guard, values: Dict):
        result = await self.db.execute(
            update(LedgerAccount)
            .where(
                LedgerAccount.affiliate_id == affiliate_id,
                _round_money(guard - amount) >= 0
            )
            .values(updated_at=get_current_timezone(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientBalanceError(
                f"Saldo insuficiente para movimentar R$ {amount} do afiliado {affiliate_id}"
            )

    async def freeze(self, affiliate_id: int, amount, commit: bool = True) -> None:
        """
        Move um valor do saldo disponível para o congelado.

        Raises:
            InsufficientBalanceError: Se o disponível for menor que o valor.
        """
        amount = to_money(amount)

        async def operation():
            await self._conditional_move(affiliate_id, amount, LedgerAccount.available_balance, {
                "available_balance": _round_money(LedgerAccount.available_balance - amount),
                "frozen_balance": _round_money(LedgerAccount.frozen_balance + amount),
            })

        await self._run(affiliate_id, operation, commit)

    async def unfreeze(self, affiliate_id: int, amount, commit: bool = True) -> None:
        """
        Devolve um valor congelado ao saldo disponível.

        Raises:
            InsufficientBalanceError: Se o congelado for menor que o valor.
        """
        amount = to_money(amount)

        async def operation():
            await self._conditional_move(affiliate_id, amount, LedgerAccount.frozen_balance, {
                "available_balance": _round_money(LedgerAccount.available_balance + amount),
                "frozen_balance": _round_money(LedgerAccount.frozen_balance - amount),
            })

        await self._run(affiliate_id, operation, commit)

    async def debit(self, affiliate_id: int, amount, commit: bool = True) -> None:
        """
        Baixa um valor congelado como sacado.

        O valor já saiu do disponível no pedido de saque; a baixa o remove do
        congelado e soma ao total sacado.

        Raises:
            InsufficientBalanceError: Se o congelado for menor que o valor.
        """
        amount = to_money(amount)

        async def operation():
            await self._conditional_move(affiliate_id, amount, LedgerAccount.frozen_balance, {
                "frozen_balance": _round_money(LedgerAccount.frozen_balance - amount),
                "total_withdrawn": _round_money(LedgerAccount.total_withdrawn + amount),
            })

        await self._run(affiliate_id, operation, commit)

    # ========== Consultas ==========

    async def get_account(self, affiliate_id: int, for_update: bool = False) -> Optional[LedgerAccount]:
        query = (
            select(LedgerAccount)
            .where(LedgerAccount.affiliate_id == affiliate_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_account(self, affiliate_id: int) -> LedgerAccount:
        """
        Obtém ou cria o registro de saldo de um afiliado.

        Args:
            affiliate_id (int): ID do afiliado

        Returns:
            LedgerAccount: Registro de saldo do afiliado
        """
        async def operation():
            insert = self._insert()
            await self.db.execute(
                insert(LedgerAccount)
                .values(
                    profile_key=profile_key_for(affiliate_id),
                    affiliate_id=affiliate_id,
                    total_earnings=ZERO,
                    available_balance=ZERO,
                    frozen_balance=ZERO,
                    total_withdrawn=ZERO,
                    is_active_this_month=False,
                    updated_at=get_current_timezone(),
                )
                .on_conflict_do_nothing(index_elements=[LedgerAccount.affiliate_id])
            )

        await self._run(affiliate_id, operation, commit=True)
        return await self.get_account(affiliate_id)

    async def read(self, affiliate_id: int) -> LedgerSnapshot:
        """
        Retorna o retrato do saldo do afiliado.

        Afiliados que ainda não receberam comissão têm saldo zerado.
        """
        account = await self.get_account(affiliate_id)
        if not account:
            return LedgerSnapshot(affiliate_id=affiliate_id)
        return LedgerSnapshot.from_account(account)

    async def get_balance(self, affiliate_id: int) -> Dict:
        """
        Retorna o saldo no formato consumido pela consulta de saldo.

        Returns:
            Dict: total_earnings, available_balance, frozen_balance,
                total_withdrawn, is_active_this_month e pix_key
        """
        account = await self.get_account(affiliate_id)
        snapshot = LedgerSnapshot.from_account(account) if account else LedgerSnapshot(affiliate_id=affiliate_id)
        data = snapshot.as_dict()
        data["pix_key"] = account.pix_key if account else None
        return data

    async def set_pix_key(self, affiliate_id: int, pix_key: str) -> LedgerAccount:
        """
        Grava a chave PIX usada nos saques do afiliado.

        Args:
            affiliate_id (int): ID do afiliado
            pix_key (str): Chave PIX

        Returns:
            LedgerAccount: Registro de saldo atualizado
        """
        account = await self.get_or_create_account(affiliate_id)
        account.pix_key = pix_key.strip() if pix_key else None
        await self.db.commit()
        return account

    async def reset_monthly_activity(self) -> int:
        """
        Zera a marcação de atividade mensal de todos os saldos (virada do mês).

        Returns:
            int: Quantidade de saldos alterados
        """
        result = await self.db.execute(
            update(LedgerAccount)
            .where(LedgerAccount.is_active_this_month.is_(True))
            .values(is_active_this_month=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def get_platform_revenue(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Decimal:
        """
        Soma a parte da plataforma (linhas de nível 999) no período.
        """
        query = select(func.coalesce(func.sum(CommissionDistribution.commission_amount), 0)).where(
            CommissionDistribution.level == PLATFORM_LEVEL
        )
        if start_date:
            query = query.where(CommissionDistribution.created_at >= start_date)
        if end_date:
            query = query.where(CommissionDistribution.created_at <= end_date)
        result = await self.db.execute(query)
        return to_money(result.scalar_one())

    # ========== Conferência ==========

    async def _sum_distributions(self, affiliate_id: int, blocked: bool) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(CommissionDistribution.commission_amount), 0)).where(
                CommissionDistribution.affiliate_id == affiliate_id,
                CommissionDistribution.level != PLATFORM_LEVEL,
                CommissionDistribution.is_blocked.is_(blocked)
            )
        )
        return to_money(result.scalar_one())

    async def derive_total_earnings(self, affiliate_id: int) -> Decimal:
        """
        Recalcula o total ganho pelo histórico.

        Usa a soma das distribuições não bloqueadas do afiliado; se não houver
        nenhuma, aproxima por 7% do cashback das compras feitas com o CPF dele.
        Serve apenas para conferência e migração.

        Args:
            affiliate_id (int): ID do afiliado

        Returns:
            Decimal: Total derivado
        """
        result = await self.db.execute(
            select(func.count(CommissionDistribution.id)).where(
                CommissionDistribution.affiliate_id == affiliate_id,
                CommissionDistribution.level != PLATFORM_LEVEL,
                CommissionDistribution.is_blocked.is_(False)
            )
        )
        if result.scalar_one():
            return await self._sum_distributions(affiliate_id, blocked=False)

        result = await self.db.execute(
            select(func.coalesce(func.sum(Purchase.cashback_generated), 0))
            .join(Affiliate, Affiliate.cpf == Purchase.customer_cpf)
            .where(Affiliate.id == affiliate_id)
        )
        return to_money(to_money(result.scalar_one()) * OWN_PURCHASE_RATE)

    async def check_consistency(self, affiliate_id: int) -> Dict:
        """
        Compara o total gravado com o total derivado do histórico.

        O total gravado inclui valores ainda bloqueados, então a comparação soma
        o derivado com o bloqueado.

        Returns:
            Dict: stored_total, derived_total, blocked_total, difference, is_consistent
        """
        snapshot = await self.read(affiliate_id)
        derived = await self.derive_total_earnings(affiliate_id)
        blocked = await self._sum_distributions(affiliate_id, blocked=True)
        difference = snapshot.total_earnings - (derived + blocked)

        if difference != ZERO:
            logger.warning(
                "Saldo do afiliado %s diverge do histórico: gravado %s, derivado %s, bloqueado %s",
                affiliate_id, snapshot.total_earnings, derived, blocked
            )

        return {
            "affiliate_id": affiliate_id,
            "stored_total": snapshot.total_earnings,
            "derived_total": derived,
            "blocked_total": blocked,
            "difference": difference,
            "is_consistent": abs(difference) < CENT,
        }
