# D:\CashMais\app\middleware\authorization_middleware.py
"""
authorization_middleware.py

Este módulo define o decorador que verifica a autorização com base no papel (role)
armazenado no token JWT. Ele extrai o token do cabeçalho Authorization, decodifica-o
e checa se o usuário possui um dos papéis exigidos para acessar a rota.

Funções:
    validate_token(token: str) -> dict:
        Função auxiliar que valida um token JWT e retorna seu payload.

    require_role(allowed_roles: List[str]) -> Callable:
        Decorador que valida o papel do usuário antes de executar a rota. Caso o token seja
        inválido/ausente ou o papel não seja suficiente, retorna o erro apropriado.

Exemplo de Uso:
    @routes.get("/finance/balance")
    @require_role(["affiliate", "admin"])
    async def get_balance(request: web.Request) -> web.Response:
        affiliate_id = request["user"]["id"]
        ...
"""

import functools
from typing import Callable, List, Optional
from aiohttp import web
from app.services.auth_service import AuthService


async def validate_token(token: str) -> Optional[dict]:
    """
    Função que valida um token JWT e retorna seu payload.

    Args:
        token (str): Token JWT completo com prefixo "Bearer"

    Returns:
        Optional[dict]: Payload do token se válido, None caso contrário
    """
    if not token.startswith("Bearer "):
        return None

    token = token.split(" ")[1]
    try:
        return AuthService.verify_jwt_token(token)
    except ValueError:
        return None


def require_role(allowed_roles: List[str]) -> Callable:
    """
    Decorador que verifica se o usuário possui um dos papéis especificados.

    Args:
        allowed_roles (List[str]): Lista de papéis que podem acessar a rota.

    Returns:
        Callable: Função decoradora que envolve o handler original.

    Raises:
        web.HTTPUnauthorized: Se o cabeçalho Authorization estiver ausente ou o token for inválido.
        web.HTTPForbidden: Se o papel do usuário não estiver em allowed_roles.
    """
    def decorator(handler: Callable) -> Callable:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.Response:
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                raise web.HTTPUnauthorized(
                    text='{"error": "Missing or invalid Authorization header"}',
                    content_type="application/json"
                )

            payload = await validate_token(auth_header)
            if not payload:
                raise web.HTTPUnauthorized(
                    text='{"error": "Token inválido"}',
                    content_type="application/json"
                )

            user_role = payload.get("role")
            user_id = payload.get("sub")

            if user_role not in allowed_roles:
                raise web.HTTPForbidden(
                    text='{"error": "Acesso negado: privilégio insuficiente."}',
                    content_type="application/json"
                )

            # Para afiliados, o "sub" é o ID do afiliado
            request["user"] = {
                "id": int(user_id) if user_id is not None else None,
                "role": user_role
            }
            # Caixas carregam o próprio CPF para a verificação antifraude
            if payload.get("cpf"):
                request["user"]["cpf"] = payload["cpf"]

            return await handler(request)
        return wrapper
    return decorator
