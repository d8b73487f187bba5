"""
Авторизация WebSocket-подключений по JWT.

Токен выпускается внешним сервисом авторизации; здесь он только проверяется.
"""

from __future__ import annotations

from typing import Protocol

import jwt
from fastapi import WebSocket
from pydantic import BaseModel

from src.common.constants import ROLE_HIERARCHY, ApprovalStatus
from src.common.exceptions import AuthenticationError


class AuthenticatedUser(BaseModel):
    """Пользователь, прошедший проверку токена."""
    user_id: str
    username: str | None = None
    email: str | None = None
    role: str
    company_id: str | None = None
    department_id: str | None = None


class UserRecord(BaseModel):
    """Учётная запись из справочника пользователей."""
    id: str
    username: str
    email: str | None = None
    role: str
    is_approved: str = ApprovalStatus.APPROVED.value
    is_active: bool = True
    company_id: str | None = None
    department_id: str | None = None


class UserDirectory(Protocol):
    """Справочник пользователей (реализуется сервисом пользователей)."""

    async def find_by_username(self, username: str) -> UserRecord | None:
        ...


class WsAuthService:
    """Проверка токенов WebSocket-подключений."""

    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        users: UserDirectory | None = None,
    ) -> None:
        """
        Args:
            secret: Секрет подписи (если None, берётся из конфига)
            algorithm: Алгоритм подписи
            users: Справочник пользователей; без него пользователь строится из claims
        """
        if secret is None or algorithm is None:
            from src.config import settings

            secret = settings.jwt.JWT_SECRET if secret is None else secret
            algorithm = algorithm or settings.jwt.JWT_ALGORITHM

        self._secret = secret
        self._algorithm = algorithm
        self._users = users

    @staticmethod
    def extract_token(websocket: WebSocket) -> str | None:
        """Извлекает токен из query-параметра token или заголовка Authorization."""
        token = websocket.query_params.get("token") or websocket.headers.get("authorization")
        return token or None

    async def verify_connection(self, token: str | None) -> AuthenticatedUser:
        """
        Проверяет токен подключения.

        Raises:
            AuthenticationError: Токен отсутствует, невалиден, истёк или пользователь недоступен
        """
        if not token:
            raise AuthenticationError("No token provided")
        if not self._secret:
            raise AuthenticationError("JWT secret is not configured")

        actual_token = token.removeprefix("Bearer ").strip()

        try:
            payload = jwt.decode(actual_token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token") from e

        if self._users is not None:
            return await self._load_user(payload)

        user_id = payload.get("userId", payload.get("sub"))
        role = payload.get("role")
        if user_id is None or not role:
            raise AuthenticationError("Invalid token payload")

        return AuthenticatedUser(
            user_id=str(user_id),
            username=payload.get("username"),
            email=payload.get("email"),
            role=str(role),
            company_id=_optional_str(payload.get("companyId")),
            department_id=_optional_str(payload.get("departmentId")),
        )

    async def _load_user(self, payload: dict) -> AuthenticatedUser:
        """Проверяет пользователя по справочнику."""
        username = payload.get("username")
        if not username:
            raise AuthenticationError("Invalid token payload")

        user = await self._users.find_by_username(username)
        if user is None:
            raise AuthenticationError("User not found")
        if user.is_approved != ApprovalStatus.APPROVED.value:
            raise AuthenticationError("User account not approved")
        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        return AuthenticatedUser(
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            company_id=user.company_id,
            department_id=user.department_id,
        )

    @staticmethod
    def get_user_roles(role: str) -> list[str]:
        """Основная роль пользователя и все унаследованные роли."""
        primary = role.lower()
        return [primary, *ROLE_HIERARCHY.get(primary, ())]


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)
