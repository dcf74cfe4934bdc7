# D:\CashMais\app\views\purchase_views.py
"""
purchase_views.py

Endpoint do caixa da empresa parceira para registrar compras com o CPF do
cliente como cupom. O registro dispara a distribuição das comissões na rede.

Endpoints:
    - POST /purchases: Registra uma compra (caixa)

Regras de Negócio:
    - O caixa não pode usar o próprio CPF como cupom
    - O CPF do caixa vem do token, nunca do corpo da requisição
    - O resultado da distribuição não altera a resposta da compra
"""

from aiohttp import web

from app.config.settings import DB_SESSION_KEY, DEFAULT_CASHBACK_PERCENTAGE
from app.middleware.authorization_middleware import require_role
from app.services.purchase_service import PurchaseService

routes = web.RouteTableDef()

CUSTOMER_NOT_FOUND = "CPF não encontrado ou cliente inativo"


def _serialize_purchase(purchase) -> dict:
    return {
        "id": purchase.id,
        "customer_cpf": purchase.customer_cpf,
        "customer_kind": purchase.customer_kind,
        "purchase_value": float(purchase.purchase_value),
        "cashback_percentage": float(purchase.cashback_percentage),
        "cashback_generated": float(purchase.cashback_generated),
        "created_at": purchase.created_at.isoformat() if purchase.created_at else None
    }


@routes.post('/purchases')
@require_role(['cashier'])
async def record_purchase(request: web.Request) -> web.Response:
    """
    Registra uma compra feita no caixa.

    Body:
        customer_coupon (str): CPF do cliente, com ou sem formatação
        purchase_value (float): Valor da compra
        cashback_percentage (float, opcional): Percentual de cashback da empresa

    Returns:
        web.Response: 201 com a compra registrada, 400 para dados inválidos,
            404 se o CPF não pertencer a um cliente ativo
    """
    cashier_cpf = request["user"].get("cpf")
    if not cashier_cpf:
        return web.json_response({"error": "Token do caixa sem CPF"}, status=403)

    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "JSON inválido"}, status=400)
    if not isinstance(data, dict):
        return web.json_response({"error": "JSON inválido"}, status=400)

    customer_coupon = data.get('customer_coupon')
    if not isinstance(customer_coupon, str) or not customer_coupon.strip():
        return web.json_response({"error": "Cupom do cliente é obrigatório"}, status=400)
    if 'purchase_value' not in data:
        return web.json_response({"error": "Valor da compra inválido"}, status=400)

    db = request.app[DB_SESSION_KEY]
    result = await PurchaseService(db).record_purchase(
        customer_coupon,
        cashier_cpf,
        data['purchase_value'],
        data.get('cashback_percentage', DEFAULT_CASHBACK_PERCENTAGE)
    )

    if not result["success"]:
        status = 404 if result["error"] == CUSTOMER_NOT_FOUND else 400
        return web.json_response({"error": result["error"]}, status=status)

    purchase = result["data"]
    return web.json_response({
        "message": "Compra registrada! Cashback gerado: R$ {:.2f}".format(purchase.cashback_generated),
        "cashback_generated": float(purchase.cashback_generated),
        "purchase": _serialize_purchase(purchase)
    }, status=201)
