# D:\CashMais\app\services\withdrawal_service.py
"""
withdrawal_service.py

Módulo responsável pelas solicitações de saque dos afiliados e pela decisão
administrativa sobre elas.

Funcionalidades principais:
    - Criação da solicitação, congelando o valor no saldo
    - Aprovação (baixa do valor congelado) e rejeição (devolução ao disponível)
    - Listagem de solicitações com filtros e paginação
    - Registro das transições no log de auditoria, com saldo antes e depois

Regras de Negócio:
    - Saques só podem ser solicitados nos dias 10 ou 15 de cada mês
    - Apenas uma solicitação por afiliado por mês, mesmo que a anterior tenha sido rejeitada
    - É preciso ter chave PIX cadastrada e ter recebido comissão no mês
    - O valor não pode passar de (total * 0.70) - (total - disponível)
    - Não há taxa no saque: a parte da plataforma já saiu do cashback
    - pending -> approved ou pending -> rejected, uma única vez

Dependências:
    - SQLAlchemy para persistência
    - app.services.ledger_service para as movimentações de saldo
"""

import enum
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import WITHDRAWAL_DAYS, NETWORK_SHARE, get_current_timezone
from app.models.finance_models import WithdrawalRequest, LedgerAccount, AdminAuditLog
from app.services.ledger_service import (
    LedgerService, LedgerSnapshot, InsufficientBalanceError, affiliate_lock, to_money, ZERO
)

logger = logging.getLogger(__name__)


class WithdrawalError(str, enum.Enum):
    """
    Motivos de recusa das operações de saque, legíveis por máquina.
    """
    INVALID_AMOUNT = "invalid_amount"
    OUTSIDE_WINDOW = "outside_withdrawal_window"
    MONTHLY_LIMIT = "monthly_limit_reached"
    ACCOUNT_NOT_FOUND = "account_not_found"
    MISSING_PIX_KEY = "missing_pix_key"
    INACTIVE_THIS_MONTH = "inactive_this_month"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    REQUEST_NOT_FOUND = "request_not_found"
    INVALID_STATUS = "invalid_status"
    ALREADY_PROCESSED = "already_processed"


WITHDRAWAL_ERROR_MESSAGES = {
    WithdrawalError.INVALID_AMOUNT: "Valor inválido",
    WithdrawalError.OUTSIDE_WINDOW: "Saques só podem ser solicitados nos dias 10 ou 15 de cada mês",
    WithdrawalError.MONTHLY_LIMIT: "Você já solicitou um saque este mês. Saques são limitados a 1 por mês.",
    WithdrawalError.ACCOUNT_NOT_FOUND: "Configure suas informações primeiro",
    WithdrawalError.MISSING_PIX_KEY: "Configure sua chave PIX primeiro",
    WithdrawalError.INACTIVE_THIS_MONTH: "Você precisa ter recebido comissão neste mês para sacar",
    WithdrawalError.INSUFFICIENT_BALANCE: "Saldo insuficiente",
    WithdrawalError.REQUEST_NOT_FOUND: "Solicitação de saque não encontrada",
    WithdrawalError.INVALID_STATUS: "Status inválido. Use 'approved' ou 'rejected'",
    WithdrawalError.ALREADY_PROCESSED: "Solicitação já processada",
}


def period_for(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def net_available_for_withdrawal(snapshot: LedgerSnapshot) -> Decimal:
    """
    Calcula o valor líquido que pode ser sacado.

    (total * 0.70) - (total - disponível): a parte de 70% dos ganhos, descontado
    o que já foi sacado ou está congelado.

    Args:
        snapshot (LedgerSnapshot): Saldo do afiliado

    Returns:
        Decimal: Valor máximo do saque
    """
    total = snapshot.total_earnings
    return to_money(total * NETWORK_SHARE - (total - snapshot.available_balance))


async def _end_read_transaction(session: AsyncSession) -> None:
    # Só houve leituras: o commit encerra a transação e solta o lock da linha
    # sem expirar os objetos já carregados na sessão.
    await session.commit()


async def _request_rejection(
    session: AsyncSession,
    account: Optional[LedgerAccount],
    amount: Decimal,
    period: str
) -> Optional[WithdrawalError]:
    """
    Verifica as regras do pedido de saque sobre o saldo já travado.

    Returns:
        Optional[WithdrawalError]: Motivo da recusa, ou None se o pedido pode seguir
    """
    if not account:
        return WithdrawalError.ACCOUNT_NOT_FOUND

    result = await session.execute(
        select(WithdrawalRequest.id).where(
            WithdrawalRequest.ledger_account_id == account.id,
            WithdrawalRequest.period == period
        )
    )
    if result.first():
        return WithdrawalError.MONTHLY_LIMIT

    if not account.pix_key:
        return WithdrawalError.MISSING_PIX_KEY

    if not account.is_active_this_month:
        return WithdrawalError.INACTIVE_THIS_MONTH

    if amount > net_available_for_withdrawal(LedgerSnapshot.from_account(account)):
        return WithdrawalError.INSUFFICIENT_BALANCE

    return None


async def create_withdrawal_request(
    session: AsyncSession,
    affiliate_id: int,
    amount,
    now: Optional[datetime] = None
) -> Tuple[bool, Optional[WithdrawalError], Optional[WithdrawalRequest]]:
    """
    Cria uma nova solicitação de saque e congela o valor no saldo.

    Args:
        session (AsyncSession): Sessão do banco de dados
        affiliate_id (int): ID do afiliado
        amount: Valor solicitado
        now (Optional[datetime]): Data de referência (padrão: agora)

    Returns:
        Tuple[bool, Optional[WithdrawalError], Optional[WithdrawalRequest]]:
            - Sucesso da operação
            - Motivo da recusa (se houver)
            - Solicitação criada (se sucesso)
    """
    now = now or get_current_timezone()

    try:
        amount = to_money(amount)
    except (ArithmeticError, ValueError, TypeError):
        return False, WithdrawalError.INVALID_AMOUNT, None
    if amount <= ZERO:
        return False, WithdrawalError.INVALID_AMOUNT, None

    if now.day not in WITHDRAWAL_DAYS:
        return False, WithdrawalError.OUTSIDE_WINDOW, None

    ledger = LedgerService(session)
    period = period_for(now)

    async with affiliate_lock(affiliate_id):
        account = await ledger.get_account(affiliate_id, for_update=True)
        reason = await _request_rejection(session, account, amount, period)
        if reason:
            await _end_read_transaction(session)
            return False, reason, None

        withdrawal = WithdrawalRequest(
            ledger_account_id=account.id,
            amount_requested=amount,
            fee_amount=ZERO,
            net_amount=amount,
            status='pending',
            pix_key=account.pix_key,
            period=period,
            created_at=now
        )

        try:
            session.add(withdrawal)
            # A constraint única (saldo, mês) barra pedidos simultâneos
            await session.flush()
            await ledger.freeze(affiliate_id, amount, commit=False)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info("Saque duplicado no mês %s para o afiliado %s", period, affiliate_id)
            return False, WithdrawalError.MONTHLY_LIMIT, None
        except InsufficientBalanceError:
            await session.rollback()
            return False, WithdrawalError.INSUFFICIENT_BALANCE, None

    await session.refresh(withdrawal)
    logger.info("Saque %s solicitado pelo afiliado %s: R$ %s", withdrawal.id, affiliate_id, amount)
    return True, None, withdrawal


async def set_withdrawal_status(
    session: AsyncSession,
    request_id: int,
    status: str,
    admin_id: Optional[int] = None,
    admin_notes: Optional[str] = None
) -> Tuple[bool, Optional[WithdrawalError], Optional[WithdrawalRequest]]:
    """
    Aprova ou rejeita uma solicitação de saque pendente.

    Aprovação baixa o valor congelado como sacado; rejeição devolve o valor ao
    saldo disponível. A transição é registrada no log de auditoria.

    Args:
        session (AsyncSession): Sessão do banco de dados
        request_id (int): ID da solicitação de saque
        status (str): Novo status ('approved' ou 'rejected')
        admin_id (Optional[int]): ID do administrador
        admin_notes (Optional[str]): Notas do administrador

    Returns:
        Tuple[bool, Optional[WithdrawalError], Optional[WithdrawalRequest]]:
            - Sucesso da operação
            - Motivo da recusa (se houver)
            - Solicitação atualizada (se sucesso)
    """
    if status not in ('approved', 'rejected'):
        return False, WithdrawalError.INVALID_STATUS, None

    result = await session.execute(
        select(WithdrawalRequest, LedgerAccount.affiliate_id)
        .join(LedgerAccount, LedgerAccount.id == WithdrawalRequest.ledger_account_id)
        .where(WithdrawalRequest.id == request_id)
    )
    row = result.one_or_none()
    if not row:
        await _end_read_transaction(session)
        return False, WithdrawalError.REQUEST_NOT_FOUND, None
    affiliate_id = row.affiliate_id

    ledger = LedgerService(session)

    async with affiliate_lock(affiliate_id):
        result = await session.execute(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        withdrawal = result.scalar_one()
        if withdrawal.status != 'pending':
            await _end_read_transaction(session)
            return False, WithdrawalError.ALREADY_PROCESSED, None

        before = await ledger.read(affiliate_id)
        old_status = withdrawal.status

        try:
            if status == 'approved':
                await ledger.debit(affiliate_id, withdrawal.net_amount, commit=False)
            else:
                await ledger.unfreeze(affiliate_id, withdrawal.net_amount, commit=False)
        except InsufficientBalanceError:
            await session.rollback()
            logger.error(
                "Saldo congelado insuficiente para processar o saque %s do afiliado %s",
                request_id, affiliate_id
            )
            return False, WithdrawalError.INSUFFICIENT_BALANCE, None

        after = await ledger.read(affiliate_id)

        withdrawal.status = status
        withdrawal.processed_at = get_current_timezone()
        withdrawal.admin_notes = admin_notes

        session.add(AdminAuditLog(
            admin_id=admin_id,
            action='APPROVE_WITHDRAWAL' if status == 'approved' else 'REJECT_WITHDRAWAL',
            entity_type='withdrawal',
            entity_id=withdrawal.id,
            old_data={"status": old_status, "balance": before.as_dict()},
            new_data={"status": status, "notes": admin_notes, "balance": after.as_dict()}
        ))
        await session.commit()

    logger.info("Saque %s do afiliado %s %s", request_id, affiliate_id, status)
    return True, None, withdrawal


async def list_withdrawals(
    session: AsyncSession,
    affiliate_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[WithdrawalRequest], int]:
    """
    Obtém solicitações de saque com opções de filtragem.

    Args:
        session (AsyncSession): Sessão do banco de dados
        affiliate_id (Optional[int]): Filtrar por ID do afiliado
        status (Optional[str]): Filtrar por status
        page (int): Página de resultados
        page_size (int): Tamanho da página

    Returns:
        Tuple[List[WithdrawalRequest], int]:
            - Lista de solicitações
            - Total de solicitações encontradas
    """
    query = select(WithdrawalRequest).join(
        LedgerAccount, LedgerAccount.id == WithdrawalRequest.ledger_account_id
    )

    if affiliate_id:
        query = query.where(LedgerAccount.affiliate_id == affiliate_id)

    if status:
        query = query.where(WithdrawalRequest.status == status)

    count_query = select(func.count()).select_from(query.subquery())
    result = await session.execute(count_query)
    total_count = result.scalar_one()

    query = query.order_by(desc(WithdrawalRequest.created_at), desc(WithdrawalRequest.id))
    query = query.offset((page - 1) * page_size).limit(page_size)

    result = await session.execute(query)
    return list(result.scalars().all()), total_count
