# D:\CashMais\app\views\commission_views.py
"""
commission_views.py

Endpoints de configuração e auditoria das comissões.

Endpoints:
    - GET /commissions/settings: Percentuais por nível
    - PUT /commissions/settings: Atualiza os percentuais (admin)
    - GET /commissions/purchases/{purchase_id}: Distribuição de uma compra (admin)
"""

from aiohttp import web

from app.config.settings import DB_SESSION_KEY
from app.middleware.authorization_middleware import require_role
from app.services.commission_service import CommissionService
from app.services.commission_settings_service import get_all_settings, update_commission_settings

routes = web.RouteTableDef()


def _serialize_setting(setting) -> dict:
    return {
        "level": setting.level,
        "percentage": float(setting.percentage),
        "is_active": setting.is_active,
        "updated_at": setting.updated_at.isoformat() if setting.updated_at else None
    }


@routes.get('/commissions/settings')
@require_role(['admin', 'affiliate'])
async def get_settings(request: web.Request) -> web.Response:
    db = request.app[DB_SESSION_KEY]
    settings = await get_all_settings(db)
    return web.json_response({"settings": [_serialize_setting(s) for s in settings]}, status=200)


@routes.put('/commissions/settings')
@require_role(['admin'])
async def put_settings(request: web.Request) -> web.Response:
    """
    Atualiza os percentuais de comissão.

    Body:
        settings (list): [{"level": 1, "percentage": 10.0}, ...]

    Returns:
        web.Response: 200 com os níveis atualizados, ou 400 se a soma não fechar 100%
    """
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "JSON inválido"}, status=400)

    settings = data.get('settings') if isinstance(data, dict) else None
    if not isinstance(settings, list):
        return web.json_response({"error": "Campo 'settings' deve ser uma lista"}, status=400)

    db = request.app[DB_SESSION_KEY]
    success, message, updated = await update_commission_settings(
        db, settings, admin_id=request["user"]["id"]
    )
    if not success:
        return web.json_response({"error": message}, status=400)

    return web.json_response({
        "message": "Configurações de comissão atualizadas",
        "settings": [_serialize_setting(s) for s in updated]
    }, status=200)


@routes.get('/commissions/purchases/{purchase_id}')
@require_role(['admin'])
async def get_purchase_distribution(request: web.Request) -> web.Response:
    try:
        purchase_id = int(request.match_info['purchase_id'])
    except ValueError:
        return web.json_response({"error": "ID da compra inválido"}, status=400)

    db = request.app[DB_SESSION_KEY]
    summary = await CommissionService(db).summarize_purchase(purchase_id)
    if not summary["levels"] and not summary["platform_share"]:
        return web.json_response({"error": "Nenhuma distribuição para esta compra"}, status=404)

    return web.json_response(summary, status=200)
