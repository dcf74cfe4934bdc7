# D:\CashMais\app\services\network_service.py
"""
network_service.py

Este módulo contém as consultas de relatório da rede de um afiliado: quantidade
de membros por nível, membros ativos e a lista de membros até o décimo nível.

Os níveis são percorridos em largura, um nível por consulta, com limite fixo
de profundidade.

Classes:
    NetworkService: Consultas de relatório da rede.
"""

from datetime import timedelta
from typing import Dict, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import MAX_NETWORK_LEVELS, get_current_timezone
from app.models.database import Affiliate

ACTIVE_WINDOW_DAYS = 30


class NetworkService:
    """
    Serviço de relatórios da rede.

    Attributes:
        db (AsyncSession): Sessão do banco de dados.

    Methods:
        count_members_by_level: Conta os membros ativos de cada nível.
        count_active_members: Conta os membros com acesso recente.
        get_network_stats: Resume a rede (níveis 1 a 10, ativos e inativos).
        list_network_members: Lista os membros com nível e indicados diretos.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _walk_levels(self, affiliate_id: int, max_level: int) -> Dict[int, List[Affiliate]]:
        levels: Dict[int, List[Affiliate]] = {}
        frontier = [affiliate_id]
        level = 1

        while frontier and level <= max_level:
            result = await self.db.execute(
                select(Affiliate)
                .where(Affiliate.sponsor_id.in_(frontier), Affiliate.is_active.is_(True))
                .order_by(Affiliate.id)
            )
            members = list(result.scalars().all())
            if not members:
                break
            levels[level] = members
            frontier = [member.id for member in members]
            level += 1

        return levels

    async def count_members_by_level(self, affiliate_id: int, max_level: int = MAX_NETWORK_LEVELS) -> Dict[int, int]:
        """
        Conta os membros ativos de cada nível abaixo do afiliado.

        Args:
            affiliate_id (int): ID do afiliado raiz do relatório
            max_level (int): Profundidade máxima

        Returns:
            Dict[int, int]: Quantidade por nível (1 a max_level)
        """
        levels = await self._walk_levels(affiliate_id, max_level)
        return {level: len(levels.get(level, [])) for level in range(1, max_level + 1)}

    async def count_active_members(self, affiliate_id: int, max_level: int = MAX_NETWORK_LEVELS) -> int:
        """
        Conta os membros da rede com acesso nos últimos 30 dias.
        """
        cutoff = get_current_timezone() - timedelta(days=ACTIVE_WINDOW_DAYS)
        levels = await self._walk_levels(affiliate_id, max_level)
        return sum(
            1
            for members in levels.values()
            for member in members
            if member.last_access_at and member.last_access_at.replace(tzinfo=None) > cutoff.replace(tzinfo=None)
        )

    async def get_network_stats(self, affiliate_id: int) -> Dict[str, int]:
        """
        Resume a rede de um afiliado.

        Returns:
            Dict[str, int]: level1 a level10, total_active e total_inactive
        """
        counts = await self.count_members_by_level(affiliate_id)
        total_active = await self.count_active_members(affiliate_id)
        total_members = sum(counts.values())

        stats = {f"level{level}": count for level, count in counts.items()}
        stats["total_active"] = total_active
        stats["total_inactive"] = total_members - total_active
        return stats

    async def list_network_members(self, affiliate_id: int, max_level: int = MAX_NETWORK_LEVELS) -> List[Dict]:
        """
        Lista os membros da rede com nível e quantidade de indicados diretos.

        Returns:
            List[Dict]: id, full_name, email, cpf, level, sponsor_id,
                direct_referrals, created_at e last_access_at
        """
        levels = await self._walk_levels(affiliate_id, max_level)
        member_ids = [member.id for members in levels.values() for member in members]

        referral_counts: Dict[int, int] = {}
        if member_ids:
            result = await self.db.execute(
                select(Affiliate.sponsor_id, func.count(Affiliate.id))
                .where(Affiliate.sponsor_id.in_(member_ids), Affiliate.is_active.is_(True))
                .group_by(Affiliate.sponsor_id)
            )
            referral_counts = {sponsor_id: count for sponsor_id, count in result.all()}

        members_list = []
        for level, members in sorted(levels.items()):
            for member in members:
                members_list.append({
                    "id": member.id,
                    "full_name": member.full_name,
                    "email": member.email,
                    "cpf": member.cpf,
                    "level": level,
                    "sponsor_id": member.sponsor_id,
                    "direct_referrals": referral_counts.get(member.id, 0),
                    "created_at": member.created_at.isoformat() if member.created_at else None,
                    "last_access_at": member.last_access_at.isoformat() if member.last_access_at else None,
                })
        return members_list
