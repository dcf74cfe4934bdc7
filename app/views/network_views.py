# D:\CashMais\app\views\network_views.py
"""
network_views.py

Endpoints de relatório da rede do afiliado.

Endpoints:
    - GET /network/stats: Quantidade de membros por nível, ativos e inativos
    - GET /network/members: Lista os membros da rede com nível

Afiliados consultam a própria rede; administradores informam affiliate_id.
"""

from aiohttp import web

from app.config.settings import DB_SESSION_KEY
from app.middleware.authorization_middleware import require_role
from app.services.network_service import NetworkService

routes = web.RouteTableDef()


def _target_affiliate(request: web.Request):
    if request["user"]["role"] == 'admin':
        value = request.query.get('affiliate_id')
        return int(value) if value else None
    return request["user"]["id"]


@routes.get('/network/stats')
@require_role(['admin', 'affiliate'])
async def get_network_stats(request: web.Request) -> web.Response:
    """
    Retorna o resumo da rede (level1 a level10, total_active, total_inactive).
    """
    try:
        affiliate_id = _target_affiliate(request)
    except ValueError:
        return web.json_response({"error": "affiliate_id inválido"}, status=400)
    if affiliate_id is None:
        return web.json_response({"error": "affiliate_id é obrigatório"}, status=400)

    db = request.app[DB_SESSION_KEY]
    stats = await NetworkService(db).get_network_stats(affiliate_id)
    return web.json_response(stats, status=200)


@routes.get('/network/members')
@require_role(['admin', 'affiliate'])
async def get_network_members(request: web.Request) -> web.Response:
    """
    Lista os membros da rede.

    Query params:
        level (int, opcional): Filtra um único nível
    """
    try:
        affiliate_id = _target_affiliate(request)
        level = int(request.query['level']) if 'level' in request.query else None
    except ValueError:
        return web.json_response({"error": "Parâmetros de consulta inválidos"}, status=400)
    if affiliate_id is None:
        return web.json_response({"error": "affiliate_id é obrigatório"}, status=400)

    db = request.app[DB_SESSION_KEY]
    members = await NetworkService(db).list_network_members(affiliate_id)
    if level is not None:
        members = [member for member in members if member["level"] == level]

    return web.json_response({"members": members, "total": len(members)}, status=200)
