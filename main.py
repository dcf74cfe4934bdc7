# D:\CashMais\main.py

"""
main.py

Este módulo inicializa e executa a aplicação AIOHTTP. Ele configura o log, o
banco de dados e a configuração padrão de comissões, registra as rotas e inicia
o servidor web.

Functions:
    init_app() -> web.Application:
        Inicializa a aplicação, configurando o banco de dados e as rotas.

    main() -> None:
        Executa a aplicação e inicia o servidor.
"""

import asyncio
import logging

from aiohttp import web

from app.models.database import create_database, get_session_maker, get_async_engine
from app.views.finance_views import routes as finance_routes
from app.views.network_views import routes as network_routes
from app.views.commission_views import routes as commission_routes
from app.views.purchase_views import routes as purchase_routes
from app.config.settings import DATABASE_URL, DB_SESSION_KEY, LOG_LEVEL
from app.middleware.cors_middleware import setup_cors
from app.services.commission_settings_service import seed_default_settings

logger = logging.getLogger(__name__)


async def init_app():
    """
    Inicializa a aplicação, criando as tabelas do banco de dados e configurando rotas.

    Cria a configuração padrão de comissões (10% por nível) quando a tabela está vazia.

    Returns:
        web.Application: Instância configurada da aplicação AIOHTTP.
    """
    engine = get_async_engine(DATABASE_URL)
    session_maker = get_session_maker(engine)

    await create_database(DATABASE_URL)

    app = web.Application()
    app[DB_SESSION_KEY] = session_maker()

    if await seed_default_settings(app[DB_SESSION_KEY]):
        logger.info("Configuração padrão de comissões criada")

    app.add_routes(finance_routes)
    app.add_routes(network_routes)
    app.add_routes(commission_routes)
    app.add_routes(purchase_routes)

    setup_cors(app)

    return app


async def main():
    """
    Executa a aplicação.

    Inicializa a aplicação e inicia o servidor web na porta 8000.
    """
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app = await init_app()
    return app

if __name__ == "__main__":
    web.run_app(asyncio.run(main()), host="0.0.0.0", port=8000)
