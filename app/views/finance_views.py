# D:\CashMais\app\views\finance_views.py
"""
finance_views.py

Módulo responsável pelos endpoints financeiros do afiliado: saldo, chave PIX e
solicitações de saque.

Endpoints:
    - GET /finance/balance: Consulta saldo do afiliado
    - PUT /finance/pix-key: Cadastra a chave PIX do afiliado
    - POST /finance/withdrawals/request: Solicita um saque
    - GET /finance/withdrawals: Lista solicitações de saque
    - PUT /finance/withdrawals/{withdrawal_id}/process: Aprova ou rejeita um saque

Regras de Negócio:
    - Afiliados podem consultar apenas seu próprio saldo e seus saques
    - Administradores podem visualizar dados de qualquer afiliado
    - Saques só podem ser solicitados nos dias 10 e 15, uma vez por mês
    - Só administradores aprovam ou rejeitam saques

Dependências:
    - aiohttp para rotas
    - app.services.ledger_service e app.services.withdrawal_service
    - app.middleware.authorization_middleware para autenticação
"""

import logging

from aiohttp import web

from app.config.settings import DB_SESSION_KEY
from app.middleware.authorization_middleware import require_role
from app.services.ledger_service import LedgerService
from app.services.withdrawal_service import (
    WITHDRAWAL_ERROR_MESSAGES,
    WithdrawalError,
    create_withdrawal_request,
    list_withdrawals,
    set_withdrawal_status,
)

logger = logging.getLogger(__name__)

# Definição das rotas
routes = web.RouteTableDef()

ERROR_STATUS = {
    WithdrawalError.REQUEST_NOT_FOUND: 404,
    WithdrawalError.ACCOUNT_NOT_FOUND: 404,
}


def _error_response(reason: WithdrawalError) -> web.Response:
    return web.json_response(
        {"error": WITHDRAWAL_ERROR_MESSAGES[reason], "code": reason.value},
        status=ERROR_STATUS.get(reason, 400)
    )


async def _read_json_object(request: web.Request):
    """
    Lê o corpo JSON da requisição; retorna None se não for um objeto.
    """
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _resolve_affiliate_id(request: web.Request):
    """
    Determina o afiliado consultado: o próprio usuário, ou o informado na query
    quando quem consulta é administrador.
    """
    if request["user"]["role"] == 'admin':
        if 'affiliate_id' in request.query:
            return int(request.query['affiliate_id'])
        return None
    return request["user"]["id"]


def _serialize_withdrawal(withdrawal, include_notes: bool = False) -> dict:
    return {
        "id": withdrawal.id,
        "ledger_account_id": withdrawal.ledger_account_id,
        "amount_requested": float(withdrawal.amount_requested),
        "fee_amount": float(withdrawal.fee_amount),
        "net_amount": float(withdrawal.net_amount),
        "status": withdrawal.status,
        "pix_key": withdrawal.pix_key,
        "period": withdrawal.period,
        "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
        "admin_notes": withdrawal.admin_notes if include_notes else None
    }


@routes.get('/finance/balance')
@require_role(['admin', 'affiliate'])
async def get_affiliate_balance(request: web.Request) -> web.Response:
    """
    Retorna o saldo atual do afiliado autenticado.

    Se o usuário for administrador, deve informar affiliate_id na query.

    Query params:
        affiliate_id (int, opcional): ID do afiliado (apenas para admins)

    Returns:
        web.Response: JSON com dados do saldo
    """
    try:
        affiliate_id = _resolve_affiliate_id(request)
    except ValueError:
        return web.json_response({"error": "affiliate_id inválido"}, status=400)

    if affiliate_id is None:
        return web.json_response({"error": "affiliate_id é obrigatório"}, status=400)

    db = request.app[DB_SESSION_KEY]
    balance = await LedgerService(db).get_balance(affiliate_id)
    return web.json_response(balance, status=200)


@routes.put('/finance/pix-key')
@require_role(['affiliate'])
async def update_pix_key(request: web.Request) -> web.Response:
    """
    Cadastra ou altera a chave PIX do afiliado autenticado.

    Body:
        pix_key (str): Chave PIX
    """
    data = await _read_json_object(request)
    if data is None:
        return web.json_response({"error": "JSON inválido"}, status=400)

    pix_key = data.get('pix_key')
    if not isinstance(pix_key, str) or not pix_key.strip():
        return web.json_response({"error": "Chave PIX é obrigatória"}, status=400)

    db = request.app[DB_SESSION_KEY]
    account = await LedgerService(db).set_pix_key(request["user"]["id"], pix_key)
    return web.json_response({
        "message": "Chave PIX atualizada com sucesso",
        "pix_key": account.pix_key
    }, status=200)


@routes.post('/finance/withdrawals/request')
@require_role(['affiliate'])
async def request_withdrawal(request: web.Request) -> web.Response:
    """
    Cria uma solicitação de saque para o afiliado autenticado.

    Body:
        amount (float): Valor a sacar

    Returns:
        web.Response: 201 com os dados do saque, ou 400 com "error" e "code"
    """
    data = await _read_json_object(request)
    if data is None:
        return web.json_response({"error": "JSON inválido"}, status=400)

    if 'amount' not in data:
        return _error_response(WithdrawalError.INVALID_AMOUNT)

    db = request.app[DB_SESSION_KEY]
    success, reason, withdrawal = await create_withdrawal_request(
        db, request["user"]["id"], data['amount']
    )
    if not success:
        return _error_response(reason)

    return web.json_response({
        "message": "Solicitação de saque criada com sucesso",
        "withdrawal": _serialize_withdrawal(withdrawal)
    }, status=201)


@routes.get('/finance/withdrawals')
@require_role(['admin', 'affiliate'])
async def get_withdrawals(request: web.Request) -> web.Response:
    """
    Lista as solicitações de saque do afiliado ou de todos os afiliados (para admins).

    Query params:
        affiliate_id (int, opcional): ID do afiliado (apenas para admins)
        status (str, opcional): Filtro por status (pending, approved, rejected)
        page (int, opcional): Página de resultados (padrão: 1)
        page_size (int, opcional): Tamanho da página (padrão: 20)

    Returns:
        web.Response: JSON com lista de solicitações e metadados
    """
    try:
        affiliate_id = _resolve_affiliate_id(request)
        page = max(int(request.query.get('page', 1)), 1)
        page_size = max(int(request.query.get('page_size', 20)), 1)
    except ValueError:
        return web.json_response({"error": "Parâmetros de consulta inválidos"}, status=400)

    status = request.query.get('status')
    is_admin = request["user"]["role"] == 'admin'

    db = request.app[DB_SESSION_KEY]
    withdrawals, total_count = await list_withdrawals(db, affiliate_id, status, page, page_size)

    return web.json_response({
        "withdrawals": [_serialize_withdrawal(w, include_notes=is_admin) for w in withdrawals],
        "meta": {
            "page": page,
            "page_size": page_size,
            "total_count": total_count,
            "total_pages": (total_count + page_size - 1) // page_size
        }
    }, status=200)


@routes.put('/finance/withdrawals/{withdrawal_id}/process')
@require_role(['admin'])
async def process_withdrawal(request: web.Request) -> web.Response:
    """
    Aprova ou rejeita uma solicitação de saque pendente.

    Body:
        status (str): 'approved' ou 'rejected'
        admin_notes (str, opcional): Observações do administrador
    """
    try:
        withdrawal_id = int(request.match_info['withdrawal_id'])
    except ValueError:
        return web.json_response({"error": "Dados inválidos"}, status=400)

    data = await _read_json_object(request)
    if data is None:
        return web.json_response({"error": "Dados inválidos"}, status=400)

    db = request.app[DB_SESSION_KEY]
    success, reason, withdrawal = await set_withdrawal_status(
        db,
        withdrawal_id,
        data.get('status'),
        admin_id=request["user"]["id"],
        admin_notes=data.get('admin_notes')
    )
    if not success:
        return _error_response(reason)

    return web.json_response({
        "message": f"Solicitação de saque {withdrawal.status}",
        "withdrawal": _serialize_withdrawal(withdrawal, include_notes=True)
    }, status=200)
