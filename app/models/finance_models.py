# D:\CashMais\app\models\finance_models.py
"""
finance_models.py

Módulo que define os modelos de dados (ORM) relacionados às funcionalidades financeiras
da rede CashMais, usando SQLAlchemy.

Funcionalidades principais:
    - Configuração dos percentuais de comissão por nível
    - Trilha de auditoria de cada centavo distribuído por compra
    - Saldo de cada afiliado (total, disponível, congelado e sacado)
    - Controle de solicitações de saque
    - Log de auditoria das ações administrativas

Regras de Negócio:
    - A soma dos percentuais ativos deve ser 100% (tolerância de 0.01)
    - Cada compra gera uma linha por nível e uma linha da plataforma (nível 999)
    - Comissões de afiliados sem indicados suficientes ficam bloqueadas (congeladas)
    - Apenas uma solicitação de saque por afiliado por mês

Dependências:
    - SQLAlchemy para ORM
    - Models de afiliados existentes
"""

import json
from sqlalchemy import (
    Column, Integer, String, Numeric, Enum, DateTime, ForeignKey, Boolean, Text,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from app.config.settings import get_current_timezone
from app.models.database import Base


class CommissionLevelSetting(Base):
    """
    Representa o percentual de comissão de um nível da rede.

    Attributes:
        id (int): ID único do registro.
        level (int): Nível da rede (1 a 10), único.
        percentage (Decimal): Percentual do valor distribuível (0 a 100).
        is_active (bool): Se o nível participa da distribuição.
        updated_at (datetime): Data da última atualização.
    """
    __tablename__ = 'commission_level_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(Integer, nullable=False, unique=True)
    percentage = Column(Numeric(5, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=get_current_timezone, onupdate=get_current_timezone)


class CommissionDistribution(Base):
    """
    Representa uma linha da distribuição de comissões de uma compra.

    Nível 0 é o próprio comprador, 1 a 9 são os patrocinadores e 999 é a parte da
    plataforma, que fecha a soma da compra no valor exato do cashback.

    Attributes:
        id (int): ID único da linha.
        purchase_id (int): ID da compra que gerou a distribuição.
        affiliate_id (int): ID do afiliado beneficiado (0 para a plataforma).
        level (int): Nível na cadeia de patrocínio.
        commission_amount (Decimal): Valor creditado.
        commission_percentage (Decimal): Percentual aplicado.
        base_cashback (Decimal): Cashback total da compra (auditoria).
        is_blocked (bool): Se o valor está congelado por falta de indicados.
        released_at (datetime): Quando o valor bloqueado foi liberado.
        created_at (datetime): Data de criação da linha.
    """
    __tablename__ = 'commission_distributions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_id = Column(Integer, ForeignKey('purchases.id'), nullable=False, index=True)
    # Sem FK: o ID 0 identifica a plataforma
    affiliate_id = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False)
    commission_amount = Column(Numeric(14, 2), nullable=False)
    commission_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    base_cashback = Column(Numeric(14, 2), nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)
    released_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=get_current_timezone)

    __table_args__ = (
        Index('ix_commission_distributions_affiliate_blocked', 'affiliate_id', 'is_blocked'),
    )


class LedgerAccount(Base):
    """
    Representa o saldo de um afiliado na rede.

    Attributes:
        id (int): ID único do registro de saldo.
        profile_key (str): Chave interna do perfil ('affiliate_<id>').
        affiliate_id (int): ID do afiliado dono do saldo.
        total_earnings (Decimal): Total histórico de comissões (inclui bloqueadas).
        available_balance (Decimal): Saldo disponível para saque.
        frozen_balance (Decimal): Saldo congelado (bloqueado ou em saque pendente).
        total_withdrawn (Decimal): Total já sacado.
        is_active_this_month (bool): Recebeu alguma comissão no mês.
        pix_key (str): Chave PIX para pagamento dos saques.
        updated_at (datetime): Data da última atualização.

    Relacionamentos:
        affiliate: Relação com o afiliado dono do saldo.
        withdrawals: Solicitações de saque feitas contra este saldo.
    """
    __tablename__ = 'ledger_accounts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_key = Column(String(64), nullable=False, unique=True)
    affiliate_id = Column(Integer, ForeignKey('affiliates.id', ondelete="CASCADE"), nullable=False, unique=True)
    total_earnings = Column(Numeric(14, 2), nullable=False, default=0)
    available_balance = Column(Numeric(14, 2), nullable=False, default=0)
    frozen_balance = Column(Numeric(14, 2), nullable=False, default=0)
    total_withdrawn = Column(Numeric(14, 2), nullable=False, default=0)
    is_active_this_month = Column(Boolean, default=False, nullable=False)
    pix_key = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=get_current_timezone, onupdate=get_current_timezone)

    affiliate = relationship("Affiliate", back_populates="ledger")
    withdrawals = relationship("WithdrawalRequest", back_populates="account")


class WithdrawalRequest(Base):
    """
    Representa uma solicitação de saque realizada por um afiliado.

    Attributes:
        id (int): ID único da solicitação.
        ledger_account_id (int): ID do saldo do afiliado.
        amount_requested (Decimal): Valor solicitado.
        fee_amount (Decimal): Taxa cobrada (sempre zero, a taxa já sai do cashback).
        net_amount (Decimal): Valor líquido a pagar.
        status (enum): 'pending', 'approved' ou 'rejected'.
        pix_key (str): Chave PIX de destino.
        period (str): Mês de referência 'YYYY-MM' (uma solicitação por mês).
        created_at (datetime): Data da solicitação.
        processed_at (datetime): Data da aprovação/rejeição.
        admin_notes (str): Notas do administrador.
    """
    __tablename__ = 'withdrawal_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_account_id = Column(Integer, ForeignKey('ledger_accounts.id'), nullable=False)
    amount_requested = Column(Numeric(14, 2), nullable=False)
    fee_amount = Column(Numeric(14, 2), nullable=False, default=0)
    net_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(
        Enum('pending', 'approved', 'rejected', name='withdrawal_status'),
        nullable=False,
        default='pending'
    )
    pix_key = Column(String(255), nullable=False)
    period = Column(String(7), nullable=False)
    created_at = Column(DateTime, default=get_current_timezone)
    processed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)

    account = relationship("LedgerAccount", back_populates="withdrawals")

    # Garante no banco o limite de um saque por mês, mesmo com requisições simultâneas
    __table_args__ = (
        UniqueConstraint('ledger_account_id', 'period', name='unique_withdrawal_per_month'),
    )


class AdminAuditLog(Base):
    """
    Representa uma ação administrativa registrada para auditoria.

    Attributes:
        id (int): ID único do log.
        admin_id (int): ID do administrador (opcional).
        action (str): Ação executada (ex.: 'APPROVE_WITHDRAWAL').
        entity_type (str): Tipo da entidade afetada.
        entity_id (int): ID da entidade afetada.
        old_data (dict): Estado anterior, serializado em JSON.
        new_data (dict): Estado novo, serializado em JSON.
        created_at (datetime): Data do registro.
    """
    __tablename__ = 'admin_audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    admin_id = Column(Integer, nullable=True)
    action = Column(String(64), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(Integer, nullable=False, default=0)
    _old_data = Column("old_data", Text, nullable=True)
    _new_data = Column("new_data", Text, nullable=True)
    created_at = Column(DateTime, default=get_current_timezone)

    @property
    def old_data(self):
        """
        Desserializa o campo old_data de texto para dicionário.
        """
        if self._old_data:
            return json.loads(self._old_data)
        return None

    @old_data.setter
    def old_data(self, value):
        self._old_data = json.dumps(value, default=str) if value is not None else None

    @property
    def new_data(self):
        """
        Desserializa o campo new_data de texto para dicionário.
        """
        if self._new_data:
            return json.loads(self._new_data)
        return None

    @new_data.setter
    def new_data(self, value):
        self._new_data = json.dumps(value, default=str) if value is not None else None
