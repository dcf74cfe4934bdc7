# D:\CashMais\app\config\settings.py

"""
settings.py

Este módulo contém as configurações principais da aplicação, incluindo variáveis
de ambiente, configurações do banco de dados, chave JWT, fuso horário e as
constantes de negócio da rede de comissões.

Configurações:
    JWT_SECRET_KEY: Chave secreta para assinar tokens JWT.
    DATABASE_URL: URL de conexão com o banco de dados assíncrono.
    JWT_EXPIRATION_MINUTES: Tempo de expiração dos tokens JWT, em minutos.
    LOG_LEVEL: Nível de log da aplicação.
    LEDGER_MAX_RETRIES: Tentativas em caso de conflito de escrita no saldo.
    DB_SESSION_KEY: Chave para armazenar a sessão do banco de dados na aplicação.
    TIMEZONE: Fuso horário padrão da aplicação.
"""

from dotenv import load_dotenv
import os
from aiohttp import web
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

# Carrega as variáveis do arquivo .env
load_dotenv()

# Pegamos a chave JWT de variável de ambiente ou usamos um fallback inseguro (apenas para desenvolvimento)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "default_secret_key")
"""
str: Chave secreta usada para assinar e verificar tokens JWT.
"""

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./cashmais.db")
"""
str: URL de conexão com o banco de dados assíncrono.
Carregada de uma variável de ambiente ou definida como SQLite padrão em ambiente de desenvolvimento.
"""

JWT_EXPIRATION_MINUTES = int(os.getenv("JWT_EXPIRATION_MINUTES", 60))
"""
int: Tempo de expiração dos tokens JWT, em minutos.
"""

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", 3))
"""
int: Quantidade máxima de tentativas de uma escrita no saldo antes de desistir.
"""

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
"""
list: Origens liberadas para o painel web (separadas por vírgula na variável de ambiente).
"""

DB_SESSION_KEY = web.AppKey[AsyncSession]("db_session")
"""
web.AppKey[AsyncSession]: Chave para armazenar e recuperar a sessão de banco de dados na aplicação AIOHTTP.
"""

TIMEZONE = ZoneInfo("America/Sao_Paulo")
"""
ZoneInfo: Fuso horário "America/Sao_Paulo" usado em todos os registros.
"""


def get_current_timezone() -> datetime:
    """
    Retorna a data e hora atual no fuso horário da aplicação.

    Returns:
        datetime: Data e hora atual (America/Sao_Paulo).
    """
    return datetime.now(TIMEZONE)


# ========== Regras de negócio da rede ==========

NETWORK_SHARE = Decimal("0.70")
"""Decimal: Fração do cashback distribuída na rede."""

PLATFORM_SHARE = Decimal("0.30")
"""Decimal: Fração do cashback que fica com a plataforma."""

MAX_NETWORK_LEVELS = 10
MIN_DIRECT_REFERRALS = 3

PLATFORM_ACCOUNT_ID = 0
PLATFORM_LEVEL = 999

OWN_PURCHASE_RATE = Decimal("0.07")
"""Decimal: 10% dos 70% da rede, usado apenas na conferência de saldo por histórico de compras."""

WITHDRAWAL_DAYS = (10, 15)
DEFAULT_CASHBACK_PERCENTAGE = Decimal("5.0")
