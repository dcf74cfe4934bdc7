"""
cors_middleware.py

Este módulo define o CORS para permitir que o painel do afiliado e o painel
administrativo, servidos em outras origens, consultem saldo, saques e rede.

Functions:
    setup_cors(app) -> None:
        Configura o CORS para a aplicação AIOHTTP.
"""

import aiohttp_cors

from app.config.settings import CORS_ORIGINS


def setup_cors(app, origins=None):
    """
    Configura o CORS para a aplicação AIOHTTP.

    Args:
        app (web.Application): A aplicação AIOHTTP onde o CORS será configurado.
        origins (list, opcional): Origens permitidas (padrão: CORS_ORIGINS).

    Returns:
        None
    """
    options = aiohttp_cors.ResourceOptions(
        allow_credentials=True,
        expose_headers="*",
        allow_headers="*",
        allow_methods=["GET", "POST", "PUT", "OPTIONS"]
    )
    cors = aiohttp_cors.setup(app, defaults={
        origin: options for origin in (origins or CORS_ORIGINS)
    })

    for route in list(app.router.routes()):
        cors.add(route)
