# D:\CashMais\app\models\database.py
"""
database.py

Este módulo define os modelos de dados (ORM) da rede de afiliados usando SQLAlchemy
e os métodos para criação e interação com o banco de dados de forma assíncrona.

Classes:
    User: Representa um cliente comum (fora da rede de afiliados).
    Affiliate: Representa um afiliado da rede, com seu patrocinador.
    Purchase: Representa uma compra registrada no caixa de uma empresa parceira.

Functions:
    create_database(db_url: str) -> None:
        Cria o schema do banco de dados assíncrono, se não existir.

    get_async_engine(db_url: str):
        Retorna o motor assíncrono configurado para o banco de dados.

    get_session_maker(engine):
        Retorna o criador de sessões assíncronas para o banco de dados.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Enum, DateTime, ForeignKey, Boolean
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker
)
from app.config.settings import get_current_timezone

Base = declarative_base()


class User(Base):
    """
    Representa um cliente comum, identificado pelo CPF no caixa.

    Clientes comuns recebem cashback, mas não fazem parte da árvore de afiliados.

    Attributes:
        id (int): ID único do cliente.
        name (str): Nome do cliente.
        cpf (str): CPF do cliente (apenas dígitos), único.
        is_active (bool): Indica se o cliente está ativo.
        created_at (datetime): Data de criação do registro.
    """
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    cpf = Column(String(11), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=get_current_timezone)


class Affiliate(Base):
    """
    Representa um afiliado da rede.

    O patrocinador (sponsor_id) é definido no cadastro e não muda depois disso.
    A árvore de patrocínio é uma floresta: afiliados raiz não têm patrocinador.

    Attributes:
        id (int): ID único do afiliado.
        full_name (str): Nome completo.
        email (str): Email do afiliado, único.
        cpf (str): CPF do afiliado (apenas dígitos), único.
        sponsor_id (int): ID do afiliado que o indicou (opcional).
        is_active (bool): Indica se o afiliado está ativo.
        last_access_at (datetime): Último acesso ao painel.
        created_at (datetime): Data de criação do registro.
    """
    __tablename__ = 'affiliates'
    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    cpf = Column(String(11), nullable=False, unique=True)
    sponsor_id = Column(Integer, ForeignKey('affiliates.id'), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_access_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=get_current_timezone)

    sponsor = relationship("Affiliate", remote_side=[id], backref="direct_referrals")
    ledger = relationship("LedgerAccount", uselist=False, back_populates="affiliate")


class Purchase(Base):
    """
    Representa uma compra registrada por um caixa de empresa parceira.

    A compra é imutável depois de criada; a distribuição de comissões apenas a lê.

    Attributes:
        id (int): ID único da compra.
        customer_cpf (str): CPF informado no caixa (cupom do cliente).
        customer_id (int): ID do afiliado ou do cliente comum.
        customer_kind (str): 'affiliate' ou 'user'.
        cashier_cpf (str): CPF do caixa que registrou a compra.
        purchase_value (Decimal): Valor da compra.
        cashback_percentage (Decimal): Percentual de cashback da empresa.
        cashback_generated (Decimal): Cashback total gerado pela compra.
        created_at (datetime): Data da compra.
    """
    __tablename__ = 'purchases'
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_cpf = Column(String(11), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False)
    customer_kind = Column(Enum('affiliate', 'user', name='customer_kinds'), nullable=False)
    cashier_cpf = Column(String(11), nullable=True)
    purchase_value = Column(Numeric(14, 2), nullable=False)
    cashback_percentage = Column(Numeric(5, 2), nullable=False)
    cashback_generated = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime, default=get_current_timezone)


# ========== Métodos para criação do banco de dados de forma assíncrona ==========

async def create_database(db_url: str = "sqlite+aiosqlite:///./cashmais.db"):
    """
    Cria o schema no banco de dados assíncrono, se não existir.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.

    Returns:
        None
    """
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


def get_async_engine(db_url: str = "sqlite+aiosqlite:///./cashmais.db"):
    """
    Retorna o motor assíncrono configurado para o banco de dados.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.

    Returns:
        AsyncEngine: Instância do motor assíncrono.
    """
    return create_async_engine(db_url, echo=False)


def get_session_maker(engine):
    """
    Retorna o criador de sessões assíncronas para o banco de dados.

    Args:
        engine: Instância do motor do banco de dados.

    Returns:
        async_sessionmaker: Criador de sessões assíncronas.
    """
    return async_sessionmaker(bind=engine, expire_on_commit=False)

# Importação no final para evitar referência circular
from app.models.finance_models import LedgerAccount  # noqa: E402,F401
