# D:\CashMais\app\services\commission_settings_service.py
"""
commission_settings_service.py

Módulo responsável pelos percentuais de comissão por nível da rede.

Funcionalidades principais:
    - Leitura dos níveis ativos, em ordem de nível
    - Validação da soma dos percentuais
    - Atualização administrativa com registro em auditoria
    - Carga inicial com a configuração padrão

Regras de Negócio:
    - Níveis vão de 1 a 10 e percentuais de 0 a 100
    - A soma dos percentuais deve ser 100% (tolerância de 0.01)
    - A validação acontece na atualização, não a cada distribuição
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import MAX_NETWORK_LEVELS
from app.models.finance_models import CommissionLevelSetting, AdminAuditLog

SUM_TOLERANCE = Decimal("0.01")

DEFAULT_LEVEL_PERCENTAGES = {level: Decimal("10.00") for level in range(1, MAX_NETWORK_LEVELS + 1)}


def validate_commission_settings(settings: Iterable[Union[Dict, CommissionLevelSetting]]) -> bool:
    """
    Verifica se os percentuais somam 100%.

    Args:
        settings: Lista de dicionários {"level", "percentage"} ou de registros.

    Returns:
        bool: True se a soma estiver dentro da tolerância.
    """
    total = Decimal("0")
    for setting in settings:
        percentage = setting["percentage"] if isinstance(setting, dict) else setting.percentage
        total += Decimal(str(percentage))
    return abs(total - Decimal("100")) <= SUM_TOLERANCE


async def get_active_settings(session: AsyncSession) -> List[CommissionLevelSetting]:
    """
    Obtém os níveis ativos ordenados por nível.

    Args:
        session (AsyncSession): Sessão do banco de dados

    Returns:
        List[CommissionLevelSetting]: Níveis ativos
    """
    result = await session.execute(
        select(CommissionLevelSetting)
        .where(CommissionLevelSetting.is_active.is_(True))
        .order_by(CommissionLevelSetting.level)
    )
    return list(result.scalars().all())


async def get_all_settings(session: AsyncSession) -> List[CommissionLevelSetting]:
    result = await session.execute(
        select(CommissionLevelSetting).order_by(CommissionLevelSetting.level)
    )
    return list(result.scalars().all())


async def seed_default_settings(session: AsyncSession) -> bool:
    """
    Cria a configuração padrão (10% por nível) se a tabela estiver vazia.

    Returns:
        bool: True se a configuração padrão foi criada.
    """
    result = await session.execute(select(func.count(CommissionLevelSetting.id)))
    if result.scalar_one():
        return False

    for level, percentage in DEFAULT_LEVEL_PERCENTAGES.items():
        session.add(CommissionLevelSetting(level=level, percentage=percentage, is_active=True))
    await session.commit()
    return True


async def update_commission_settings(
    session: AsyncSession,
    settings: List[Dict],
    admin_id: Optional[int] = None
) -> Tuple[bool, Optional[str], List[CommissionLevelSetting]]:
    """
    Atualiza os percentuais de comissão por nível.

    Args:
        session (AsyncSession): Sessão do banco de dados
        settings (List[Dict]): Lista de {"level": int, "percentage": number}
        admin_id (Optional[int]): ID do administrador que fez a alteração

    Returns:
        Tuple[bool, Optional[str], List[CommissionLevelSetting]]:
            - Sucesso da operação
            - Mensagem de erro (se houver)
            - Níveis atualizados (se sucesso)
    """
    if not settings:
        return False, "Nenhum nível informado", []

    parsed = {}
    for item in settings:
        try:
            level = int(item["level"])
            percentage = Decimal(str(item["percentage"]))
        except (KeyError, TypeError, ValueError, InvalidOperation):
            return False, "Dados inválidos", []

        if level < 1 or level > MAX_NETWORK_LEVELS:
            return False, f"Nível inválido: {level}", []
        if percentage < 0 or percentage > 100:
            return False, f"Percentual inválido para o nível {level}", []
        if level in parsed:
            return False, f"Nível duplicado: {level}", []
        parsed[level] = percentage

    existing = {setting.level: setting for setting in await get_all_settings(session)}

    # A soma considera os níveis que continuarão ativos após a alteração
    resulting = {
        level: setting.percentage for level, setting in existing.items() if setting.is_active
    }
    resulting.update(parsed)
    if not validate_commission_settings({"percentage": p} for p in resulting.values()):
        return False, "A soma dos percentuais deve ser 100%", []

    old_data = {str(level): str(setting.percentage) for level, setting in existing.items()}

    for level, percentage in parsed.items():
        setting = existing.get(level)
        if setting:
            setting.percentage = percentage
            setting.is_active = True
        else:
            session.add(CommissionLevelSetting(level=level, percentage=percentage, is_active=True))

    session.add(AdminAuditLog(
        admin_id=admin_id,
        action='UPDATE_COMMISSION_SETTINGS',
        entity_type='system_settings',
        entity_id=0,
        old_data=old_data,
        new_data={str(level): str(percentage) for level, percentage in parsed.items()}
    ))
    await session.commit()

    return True, None, await get_all_settings(session)
