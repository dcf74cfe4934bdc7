# D:\CashMais\app\services\affiliate_service.py
"""
affiliate_service.py

Este módulo contém a consulta ao diretório de afiliados usada pela distribuição
de comissões: identidade, patrocinador, situação e quantidade de indicados diretos.

Classes:
    AffiliateService: Provedor de consultas e cadastro de afiliados.
"""

import re
from typing import Optional, Dict, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from sqlalchemy.sql import func
from app.models.database import Affiliate
from app.config.settings import MIN_DIRECT_REFERRALS


def normalize_cpf(cpf: str) -> str:
    """
    Remove pontos, traços e espaços de um CPF.

    Args:
        cpf (str): CPF em qualquer formatação.

    Returns:
        str: Apenas os dígitos do CPF.
    """
    return re.sub(r"\D", "", cpf or "")


class AffiliateService:
    """
    Serviço de leitura do diretório de afiliados.

    Attributes:
        db (AsyncSession): Sessão do banco de dados.

    Methods:
        get_affiliate: Busca afiliado pelo ID.
        get_affiliate_by_cpf: Busca afiliado ativo pelo CPF.
        get_sponsor_id: Retorna o ID do patrocinador de um afiliado.
        count_direct_referrals: Conta os indicados diretos ativos.
        has_minimum_referrals: Verifica se o afiliado tem indicados suficientes.
        register_affiliate: Cadastra um afiliado com seu patrocinador.
    """

    def __init__(self, db: AsyncSession):
        """
        Inicializa o serviço com a sessão do banco de dados.

        Args:
            db (AsyncSession): Sessão assíncrona do SQLAlchemy.
        """
        self.db = db

    async def get_affiliate(self, affiliate_id: int, active_only: bool = False) -> Optional[Affiliate]:
        """
        Busca um afiliado pelo ID.

        Args:
            affiliate_id (int): ID do afiliado.
            active_only (bool): Se True, ignora afiliados inativos.

        Returns:
            Optional[Affiliate]: Afiliado encontrado ou None.
        """
        query = select(Affiliate).where(Affiliate.id == affiliate_id)
        if active_only:
            query = query.where(Affiliate.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_affiliate_by_cpf(self, cpf: str) -> Optional[Affiliate]:
        """
        Busca um afiliado ativo pelo CPF.

        Args:
            cpf (str): CPF, com ou sem formatação.

        Returns:
            Optional[Affiliate]: Afiliado encontrado ou None.
        """
        result = await self.db.execute(
            select(Affiliate).where(
                Affiliate.cpf == normalize_cpf(cpf),
                Affiliate.is_active.is_(True)
            )
        )
        return result.scalar_one_or_none()

    async def get_sponsor_id(self, affiliate_id: int) -> Optional[int]:
        """
        Retorna o ID do patrocinador de um afiliado.

        Args:
            affiliate_id (int): ID do afiliado.

        Returns:
            Optional[int]: ID do patrocinador ou None se o afiliado for raiz.

        Raises:
            LookupError: Se o afiliado não existir.
        """
        result = await self.db.execute(
            select(Affiliate.id, Affiliate.sponsor_id).where(Affiliate.id == affiliate_id)
        )
        row = result.one_or_none()
        if row is None:
            raise LookupError(f"Afiliado {affiliate_id} não encontrado")
        return row.sponsor_id

    async def count_direct_referrals(self, affiliate_id: int) -> int:
        """
        Conta os afiliados ativos que têm este afiliado como patrocinador.

        Args:
            affiliate_id (int): ID do afiliado.

        Returns:
            int: Quantidade de indicados diretos ativos.
        """
        result = await self.db.execute(
            select(func.count(Affiliate.id)).where(
                Affiliate.sponsor_id == affiliate_id,
                Affiliate.is_active.is_(True)
            )
        )
        return result.scalar_one() or 0

    async def has_minimum_referrals(self, affiliate_id: int) -> bool:
        """
        Verifica se o afiliado tem o mínimo de indicados diretos ativos para
        receber comissões dos níveis mais profundos.
        """
        return await self.count_direct_referrals(affiliate_id) >= MIN_DIRECT_REFERRALS

    async def register_affiliate(
        self,
        full_name: str,
        email: str,
        cpf: str,
        sponsor_id: Optional[int] = None
    ) -> Dict[str, Union[Affiliate, str, bool, None]]:
        """
        Cadastra um novo afiliado na rede.

        O patrocinador é definido apenas aqui e não é alterado depois.

        Args:
            full_name (str): Nome completo.
            email (str): Email, único.
            cpf (str): CPF, com ou sem formatação.
            sponsor_id (Optional[int]): ID do patrocinador.

        Returns:
            Dict[str, Union[Affiliate, str, bool, None]]: Resultado da operação.
                Estrutura: {"success": bool, "data": Affiliate, "error": str}
        """
        clean_cpf = normalize_cpf(cpf)
        if not full_name or not email or len(clean_cpf) != 11:
            return {"success": False, "error": "Dados de cadastro inválidos.", "data": None}

        result = await self.db.execute(
            select(Affiliate).where(or_(Affiliate.email == email, Affiliate.cpf == clean_cpf))
        )
        existing = result.scalars().first()
        if existing:
            if existing.cpf == clean_cpf:
                return {"success": False, "error": "CPF já está registrado.", "data": None}
            return {"success": False, "error": "Email já está registrado.", "data": None}

        if sponsor_id is not None:
            sponsor = await self.get_affiliate(sponsor_id, active_only=True)
            if not sponsor:
                return {"success": False, "error": "Patrocinador não encontrado.", "data": None}

        affiliate = Affiliate(
            full_name=full_name,
            email=email,
            cpf=clean_cpf,
            sponsor_id=sponsor_id,
            is_active=True
        )
        self.db.add(affiliate)
        await self.db.commit()
        await self.db.refresh(affiliate)

        return {"success": True, "data": affiliate, "error": None}
