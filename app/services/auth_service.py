# D:\CashMais\app\services\auth_service.py

"""
auth_service.py

Este módulo contém a classe AuthService, responsável por gerar e verificar os
tokens JWT usados pelas rotas de saldo, saque e rede. O login e o cadastro ficam
fora deste serviço.

Classes:
    AuthService: Geração e verificação de tokens JWT.
"""

import jwt
from typing import Optional
from datetime import timedelta

from app.config.settings import JWT_SECRET_KEY, JWT_EXPIRATION_MINUTES, get_current_timezone


class AuthService:
    """
    Serviço de tokens de acesso.

    Métodos:
        generate_jwt_token: Gera um token JWT para um afiliado, caixa ou administrador.
        verify_jwt_token: Decodifica e valida um token JWT.
    """

    @staticmethod
    def generate_jwt_token(
        subject_id: int,
        role: str,
        expires_minutes: int = JWT_EXPIRATION_MINUTES,
        cpf: Optional[str] = None
    ) -> str:
        """
        Gera um token JWT.

        Args:
            subject_id (int): ID do afiliado (ou do administrador).
            role (str): Papel ('affiliate', 'admin' ou 'cashier').
            expires_minutes (int): Validade do token, em minutos.
            cpf (Optional[str]): CPF do titular; obrigatório para caixas.

        Returns:
            str: Token JWT gerado.
        """
        expires = get_current_timezone() + timedelta(minutes=expires_minutes)
        payload = {
            "sub": str(subject_id),
            "role": role,
            "exp": expires
        }
        if cpf:
            payload["cpf"] = cpf
        return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")

    @staticmethod
    def verify_jwt_token(token: str) -> dict:
        """
        Decodifica e valida um token JWT.

        Args:
            token (str): Token JWT a ser validado.

        Returns:
            dict: Payload decodificado do token.

        Raises:
            ValueError: Se o token for inválido ou expirado.
        """
        try:
            return jwt.decode(
                token,
                JWT_SECRET_KEY,
                algorithms=["HS256"],
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token expirado.")
        except jwt.InvalidTokenError:
            raise ValueError("Token inválido.")
