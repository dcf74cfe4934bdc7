# D:\CashMais\app\tests\conftest.py

"""
conftest.py

Este módulo contém fixtures para configuração de banco de dados e cliente de teste
utilizados nos testes da aplicação.

Fixtures:
    setup_database: Cria um banco em memória compartilhado entre sessões.
    async_db_session: Configura uma sessão de banco de dados assíncrona para testes.
    commission_settings: Carrega a configuração padrão de comissões (10% por nível).
    test_client_fixture: Configura um cliente de teste para a aplicação AIOHTTP.
    fixed_now: Fixa a data de referência dos saques em um dia de saque.
"""

import os
import sys
from datetime import datetime

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

# Adiciona o diretório raiz ao path para facilitar imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from app.config.settings import DB_SESSION_KEY, TIMEZONE  # noqa: E402
from app.models.database import Base  # noqa: E402
from app.services.commission_settings_service import seed_default_settings  # noqa: E402
from app.views.finance_views import routes as finance_routes  # noqa: E402
from app.views.network_views import routes as network_routes  # noqa: E402
from app.views.commission_views import routes as commission_routes  # noqa: E402
from app.views.purchase_views import routes as purchase_routes  # noqa: E402

# Usar um banco de dados em memória nomeado para ser compartilhado entre sessões
TEST_DB_URL = "sqlite+aiosqlite:///file:cashmaisdb?mode=memory&cache=shared&uri=true"


@pytest_asyncio.fixture(scope="function")
async def setup_database():
    """
    Configura um banco de dados compartilhado para todas as sessões.

    Cria um único banco de dados em memória nomeado que pode ser
    acessado por várias sessões simultâneas.
    """
    engine = create_async_engine(TEST_DB_URL, echo=False, connect_args={"check_same_thread": False})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_db_session(setup_database):
    """
    Configura uma sessão de banco de dados assíncrona para testes.

    Yields:
        AsyncSession: Sessão de banco de dados assíncrona configurada para testes.
    """
    SessionLocal = sessionmaker(bind=setup_database, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def commission_settings(async_db_session):
    """
    Carrega a configuração padrão de comissões (níveis 1 a 10, 10% cada).
    """
    await seed_default_settings(async_db_session)
    return async_db_session


@pytest_asyncio.fixture(scope="function")
async def test_client_fixture(setup_database):
    """
    Configura um cliente de teste para a aplicação AIOHTTP.

    A sessão injetada na aplicação fica acessível em client.app[DB_SESSION_KEY]
    para preparar os dados de cada teste.

    Yields:
        TestClient: Cliente de teste configurado para a aplicação.
    """
    SessionLocal = sessionmaker(bind=setup_database, class_=AsyncSession, expire_on_commit=False)
    async_session = SessionLocal()

    app = web.Application()
    app[DB_SESSION_KEY] = async_session

    app.add_routes(finance_routes)
    app.add_routes(network_routes)
    app.add_routes(commission_routes)
    app.add_routes(purchase_routes)

    server = TestServer(app)
    client = TestClient(server)

    async with server, client:
        yield client

    await async_session.close()


@pytest.fixture
def fixed_now(monkeypatch):
    """
    Fixa o "agora" do serviço de saques em 10/03/2025 (dia de saque).
    """
    moment = datetime(2025, 3, 10, 12, 0, 0, tzinfo=TIMEZONE)
    monkeypatch.setattr("app.services.withdrawal_service.get_current_timezone", lambda: moment)
    return moment
