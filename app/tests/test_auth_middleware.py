# D:\CashMais\app\tests\test_auth_middleware.py
"""
test_auth_middleware.py

Este módulo contém testes unitários para o decorador de autorização definido em
authorization_middleware.py. Ele verifica cenários de ausência de token, token inválido,
token expirado, papel insuficiente e papel adequado.

Fixtures:
    aiohttp_client: Fixture padrão do pytest para criar clientes de teste AIOHTTP.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient

from app.middleware.authorization_middleware import require_role
from app.services.auth_service import AuthService


def _build_app():
    async def admin_handler(request: web.Request) -> web.Response:
        return web.json_response({"message": "Acesso concedido", "user": request["user"]}, status=200)

    app = web.Application()
    app.router.add_get("/admin-only", require_role(["admin"])(admin_handler))
    app.router.add_get("/cashier-only", require_role(["cashier"])(admin_handler))
    return app


@pytest.mark.asyncio
async def test_require_role_no_token(aiohttp_client):
    """
    Testa requisição sem cabeçalho Authorization, resultando em HTTP 401.
    """
    client: TestClient = await aiohttp_client(_build_app())
    resp = await client.get("/admin-only")
    assert resp.status == 401
    data = await resp.json()
    assert "Missing or invalid Authorization header" in data["error"]


@pytest.mark.asyncio
async def test_require_role_invalid_token(aiohttp_client):
    client: TestClient = await aiohttp_client(_build_app())

    # Usa um token inválido de forma intencional
    headers = {"Authorization": "Bearer INVALID_TOKEN"}
    resp = await client.get("/admin-only", headers=headers)
    assert resp.status == 401
    data = await resp.json()
    assert "Token" in data["error"]


@pytest.mark.asyncio
async def test_require_role_expired_token(aiohttp_client):
    client: TestClient = await aiohttp_client(_build_app())

    expired = AuthService.generate_jwt_token(1, "admin", expires_minutes=-5)
    resp = await client.get("/admin-only", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status == 401


@pytest.mark.asyncio
async def test_require_role_insufficient_role(aiohttp_client):
    """
    Testa afiliado acessando rota de administrador, resultando em HTTP 403.
    """
    client: TestClient = await aiohttp_client(_build_app())

    affiliate_token = AuthService.generate_jwt_token(123, "affiliate")
    resp = await client.get("/admin-only", headers={"Authorization": f"Bearer {affiliate_token}"})
    assert resp.status == 403
    data = await resp.json()
    assert "Acesso negado" in data["error"]


@pytest.mark.asyncio
async def test_require_role_success(aiohttp_client):
    """
    Testa usuário com papel suficiente, resultando em HTTP 200 com o usuário na requisição.
    """
    client: TestClient = await aiohttp_client(_build_app())

    admin_token = AuthService.generate_jwt_token(999, "admin")
    resp = await client.get("/admin-only", headers={"Authorization": f"Bearer {admin_token}"})
    assert resp.status == 200
    data = await resp.json()
    assert data["message"] == "Acesso concedido"
    assert data["user"] == {"id": 999, "role": "admin"}


@pytest.mark.asyncio
async def test_require_role_cashier_carries_cpf(aiohttp_client):
    client: TestClient = await aiohttp_client(_build_app())

    token = AuthService.generate_jwt_token(5, "cashier", cpf="12345678901")
    resp = await client.get("/cashier-only", headers={"Authorization": f"Bearer {token}"})
    assert resp.status == 200
    assert (await resp.json())["user"] == {"id": 5, "role": "cashier", "cpf": "12345678901"}


def test_jwt_generation_and_verification():
    token = AuthService.generate_jwt_token(42, "affiliate")
    payload = AuthService.verify_jwt_token(token)

    assert payload["sub"] == "42"
    assert payload["role"] == "affiliate"

    with pytest.raises(ValueError, match="Token inválido."):
        AuthService.verify_jwt_token(token + "x")

    expired = AuthService.generate_jwt_token(42, "affiliate", expires_minutes=-1)
    with pytest.raises(ValueError, match="Token expirado."):
        AuthService.verify_jwt_token(expired)
