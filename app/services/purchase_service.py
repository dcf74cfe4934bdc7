# D:\CashMais\app\services\purchase_service.py
"""
purchase_service.py

Este módulo registra as compras feitas no caixa das empresas parceiras e dispara
a distribuição de comissões da rede.

Classes:
    PurchaseService: Registro de compras e gatilho da distribuição.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import DEFAULT_CASHBACK_PERCENTAGE
from app.models.database import Purchase, User
from app.services.affiliate_service import AffiliateService, normalize_cpf
from app.services.commission_service import CommissionService
from app.services.ledger_service import to_money

logger = logging.getLogger(__name__)


class PurchaseService:
    """
    Serviço de registro de compras.

    Attributes:
        db (AsyncSession): Sessão do banco de dados.

    Methods:
        record_purchase: Registra a compra e distribui as comissões.
        get_purchase: Busca uma compra pelo ID.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.affiliates = AffiliateService(db)

    async def record_purchase(
        self,
        customer_cpf: str,
        cashier_cpf: str,
        purchase_value,
        cashback_percentage=DEFAULT_CASHBACK_PERCENTAGE
    ) -> Dict[str, Union[Purchase, str, bool, None]]:
        """
        Registra uma compra feita com o CPF do cliente como cupom.

        O caixa não pode usar o próprio CPF. A compra é gravada antes da
        distribuição, e o resultado da distribuição não altera o da compra.

        Args:
            customer_cpf (str): CPF do cliente
            cashier_cpf (str): CPF do caixa
            purchase_value: Valor da compra
            cashback_percentage: Percentual de cashback da empresa

        Returns:
            Dict[str, Union[Purchase, str, bool, None]]: Resultado da operação.
                Estrutura: {"success": bool, "data": Purchase, "error": str}
        """
        clean_cpf = normalize_cpf(customer_cpf)
        clean_cashier_cpf = normalize_cpf(cashier_cpf)

        if clean_cpf == clean_cashier_cpf:
            return {"success": False, "error": "Você não pode usar seu próprio CPF", "data": None}

        try:
            value = to_money(purchase_value)
            percentage = Decimal(str(cashback_percentage))
            if not percentage.is_finite():
                raise InvalidOperation(f"Percentual não finito: {cashback_percentage}")
        except (InvalidOperation, ValueError, TypeError):
            return {"success": False, "error": "Valor da compra inválido", "data": None}
        if value <= 0 or percentage < 0 or percentage > 100:
            return {"success": False, "error": "Valor da compra inválido", "data": None}

        customer_id: Optional[int] = None
        customer_kind = 'affiliate'

        affiliate = await self.affiliates.get_affiliate_by_cpf(clean_cpf)
        if affiliate:
            customer_id = affiliate.id
        else:
            result = await self.db.execute(
                select(User).where(User.cpf == clean_cpf, User.is_active.is_(True))
            )
            user = result.scalar_one_or_none()
            if user:
                customer_id = user.id
                customer_kind = 'user'

        if customer_id is None:
            return {"success": False, "error": "CPF não encontrado ou cliente inativo", "data": None}

        cashback_generated = to_money(value * percentage / Decimal("100"))

        purchase = Purchase(
            customer_cpf=clean_cpf,
            customer_id=customer_id,
            customer_kind=customer_kind,
            cashier_cpf=clean_cashier_cpf,
            purchase_value=value,
            cashback_percentage=percentage,
            cashback_generated=cashback_generated
        )
        self.db.add(purchase)
        await self.db.commit()
        await self.db.refresh(purchase)

        purchase_id = purchase.id
        logger.info(
            "Compra %s registrada: cliente=%s (%s) valor=%s cashback=%s",
            purchase_id, customer_id, customer_kind, value, cashback_generated
        )

        await CommissionService(self.db).distribute(
            purchase_id, customer_id, customer_kind, cashback_generated
        )

        return {"success": True, "data": await self.get_purchase(purchase_id), "error": None}

    async def get_purchase(self, purchase_id: int) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase)
            .where(Purchase.id == purchase_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
