# D:\CashMais\app\services\commission_service.py
"""
commission_service.py

Este módulo contém a distribuição de comissões de uma compra pela cadeia de
patrocinadores da rede CashMais.

Regras de Negócio:
    - 30% do cashback fica com a plataforma e 70% é distribuído na rede
    - Nível 0 é o próprio comprador e usa o percentual do nível 1
    - Até 10 níveis (0 = comprador, 1 a 9 = patrocinadores)
    - Níveis 0 e 1 sempre recebem; do nível 2 em diante o afiliado precisa de
      pelo menos 3 indicados diretos ativos, senão o valor fica bloqueado
    - Um crédito elegível libera todos os valores bloqueados do afiliado
    - O que não foi distribuído volta para a plataforma na linha de nível 999,
      de modo que a soma das linhas da compra é exatamente o cashback
    - A distribuição nunca interrompe a compra: erros são registrados em log

Classes:
    CommissionService: Motor de distribuição de comissões.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import (
    MAX_NETWORK_LEVELS, NETWORK_SHARE, PLATFORM_SHARE,
    PLATFORM_ACCOUNT_ID, PLATFORM_LEVEL
)
from app.models.finance_models import CommissionDistribution
from app.services.affiliate_service import AffiliateService
from app.services.commission_settings_service import get_active_settings
from app.services.ledger_service import (
    LedgerService, affiliate_lock, to_money, with_ledger_retry, ZERO
)

logger = logging.getLogger(__name__)

ALWAYS_ELIGIBLE_LEVELS = (0, 1)


class CommissionService:
    """
    Motor de distribuição de comissões pela rede.

    Attributes:
        db (AsyncSession): Sessão do banco de dados.
        affiliates (AffiliateService): Diretório de afiliados.
        ledger (LedgerService): Saldos dos afiliados.

    Methods:
        distribute: Distribui as comissões de uma compra (nunca lança exceção).
        get_purchase_distributions: Lista as linhas de distribuição de uma compra.
        summarize_purchase: Resume a distribuição de uma compra.
    """

    def __init__(self, db: AsyncSession):
        """
        Inicializa o serviço com a sessão do banco de dados.

        Args:
            db (AsyncSession): Sessão assíncrona do SQLAlchemy.
        """
        self.db = db
        self.affiliates = AffiliateService(db)
        self.ledger = LedgerService(db)

    async def distribute(
        self,
        purchase_id: int,
        customer_id: int,
        customer_kind: str,
        base_cashback
    ) -> None:
        """
        Distribui as comissões de uma compra pela cadeia de patrocinadores.

        Nunca lança exceção para o chamador: a compra já foi gravada e não
        depende da saúde da rede. Linhas gravadas antes de uma falha permanecem.

        Args:
            purchase_id (int): ID da compra
            customer_id (int): ID do cliente (afiliado) que comprou
            customer_kind (str): 'affiliate' ou 'user'
            base_cashback: Cashback total gerado pela compra
        """
        try:
            await self._distribute(purchase_id, customer_id, customer_kind, to_money(base_cashback))
        except Exception:
            await self._safe_rollback()
            logger.exception("Erro crítico na distribuição da compra %s", purchase_id)

    async def _distribute(
        self,
        purchase_id: int,
        customer_id: int,
        customer_kind: str,
        base_cashback: Decimal
    ) -> None:
        logger.info(
            "Iniciando distribuição: compra=%s cliente=%s tipo=%s cashback=%s",
            purchase_id, customer_id, customer_kind, base_cashback
        )

        if customer_kind != 'affiliate':
            logger.info("Compra %s ignorada: cliente não é afiliado", purchase_id)
            return

        customer = await self.affiliates.get_affiliate(customer_id, active_only=True)
        if not customer:
            logger.info("Compra %s ignorada: afiliado %s não encontrado", purchase_id, customer_id)
            return

        customer_sponsor_id = customer.sponsor_id

        settings = await get_active_settings(self.db)
        if not settings:
            logger.error("Nenhum nível de comissão configurado, distribuição da compra %s abortada", purchase_id)
            return
        percentages = {setting.level: to_money(setting.percentage) for setting in settings}

        total_distributable = to_money(base_cashback * NETWORK_SHARE)
        total_distributed = ZERO

        current_id: Optional[int] = customer_id
        level = 0

        while current_id and level < MAX_NETWORK_LEVELS:
            try:
                settings_level = 1 if level == 0 else level
                percentage = percentages.get(settings_level)
                if percentage is None:
                    logger.info("Sem configuração para o nível %s, fim da cadeia", settings_level)
                    break

                eligible = level in ALWAYS_ELIGIBLE_LEVELS or await self.affiliates.has_minimum_referrals(current_id)
                amount = to_money(total_distributable * percentage / Decimal("100"))

                await self._apply_level(
                    purchase_id, current_id, level, amount, percentage, base_cashback, eligible
                )
                # Valores bloqueados também saem do montante distribuível
                total_distributed += amount

                logger.debug(
                    "Nível %s: afiliado=%s percentual=%s valor=%s bloqueado=%s",
                    level, current_id, percentage, amount, not eligible
                )

                if level == 0:
                    current_id = customer_sponsor_id
                else:
                    current_id = await self.affiliates.get_sponsor_id(current_id)
                level += 1

                if not current_id:
                    logger.info("Cadeia encerrada no nível %s: sem patrocinador", level)
            except Exception:
                await self._safe_rollback()
                logger.exception(
                    "Erro ao processar o nível %s (afiliado %s) da compra %s",
                    level, current_id, purchase_id
                )
                break

        await self._record_platform_share(purchase_id, base_cashback, total_distributable, total_distributed)

    async def _apply_level(
        self,
        purchase_id: int,
        affiliate_id: int,
        level: int,
        amount: Decimal,
        percentage: Decimal,
        base_cashback: Decimal,
        eligible: bool
    ) -> None:
        """
        Grava a linha do nível, credita o saldo e, se elegível, libera os
        bloqueados do afiliado em uma única transação.
        """
        async def unit():
            self.db.add(CommissionDistribution(
                purchase_id=purchase_id,
                affiliate_id=affiliate_id,
                level=level,
                commission_amount=amount,
                commission_percentage=percentage,
                base_cashback=base_cashback,
                is_blocked=not eligible,
            ))
            await self.db.flush()
            await self.ledger.credit(affiliate_id, amount, eligible, commit=False)
            if eligible:
                await self.ledger.release_blocked(affiliate_id, commit=False)
            await self.db.commit()

        async with affiliate_lock(affiliate_id):
            await with_ledger_retry(self.db, unit)

    async def _record_platform_share(
        self,
        purchase_id: int,
        base_cashback: Decimal,
        total_distributable: Decimal,
        total_distributed: Decimal
    ) -> None:
        undistributed = total_distributable - total_distributed
        # Fecha a soma da compra no cashback exato, absorvendo o arredondamento
        platform_share = base_cashback - total_distributed

        logger.info(
            "Resumo da compra %s: cashback=%s distribuível=%s distribuído=%s "
            "não distribuído=%s plataforma=%s (base %s)",
            purchase_id, base_cashback, total_distributable, total_distributed,
            undistributed, platform_share, to_money(base_cashback * PLATFORM_SHARE)
        )

        try:
            self.db.add(CommissionDistribution(
                purchase_id=purchase_id,
                affiliate_id=PLATFORM_ACCOUNT_ID,
                level=PLATFORM_LEVEL,
                commission_amount=platform_share,
                commission_percentage=ZERO,
                base_cashback=base_cashback,
                is_blocked=False,
            ))
            await self.db.commit()
        except Exception:
            await self._safe_rollback()
            logger.exception("Falha ao registrar a parte da plataforma da compra %s", purchase_id)

    async def _safe_rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception:
            logger.exception("Falha ao reverter a transação da distribuição")

    async def get_purchase_distributions(self, purchase_id: int) -> List[CommissionDistribution]:
        """
        Lista as linhas de distribuição de uma compra, ordenadas por nível.
        """
        result = await self.db.execute(
            select(CommissionDistribution)
            .where(CommissionDistribution.purchase_id == purchase_id)
            .order_by(CommissionDistribution.level, CommissionDistribution.id)
        )
        return list(result.scalars().all())

    async def summarize_purchase(self, purchase_id: int) -> Dict:
        """
        Resume a distribuição de uma compra.

        Returns:
            Dict: purchase_id, base_cashback, network_total, blocked_total,
                platform_share, total e a lista de níveis
        """
        rows = await self.get_purchase_distributions(purchase_id)
        levels = []
        network_total = ZERO
        blocked_total = ZERO
        platform_share = ZERO
        base_cashback = ZERO

        for row in rows:
            amount = to_money(row.commission_amount)
            base_cashback = to_money(row.base_cashback)
            if row.level == PLATFORM_LEVEL:
                platform_share += amount
                continue
            network_total += amount
            if row.is_blocked:
                blocked_total += amount
            levels.append({
                "level": row.level,
                "affiliate_id": row.affiliate_id,
                "amount": float(amount),
                "percentage": float(to_money(row.commission_percentage)),
                "is_blocked": row.is_blocked,
                "released_at": row.released_at.isoformat() if row.released_at else None,
            })

        return {
            "purchase_id": purchase_id,
            "base_cashback": float(base_cashback),
            "network_total": float(network_total),
            "blocked_total": float(blocked_total),
            "platform_share": float(platform_share),
            "total": float(network_total + platform_share),
            "levels": levels,
        }
