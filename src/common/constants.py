"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    SYSADMIN = "sysadmin"
    ADMIN = "admin"
    HR = "hr"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    EMPLOYEE = "employee"


class ApprovalStatus(str, Enum):
    """Статусы одобрения учётной записи."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Роли, которые наследуются от основной (sysadmin видит всё, что видит admin, и т.д.)
ROLE_HIERARCHY: dict[str, tuple[str, ...]] = {
    UserRole.SYSADMIN.value: (UserRole.ADMIN.value, UserRole.HR.value, UserRole.MANAGER.value),
    UserRole.ADMIN.value: (UserRole.HR.value, UserRole.MANAGER.value),
    UserRole.HR.value: (UserRole.MANAGER.value,),
}


# Канал доменных событий
SYSTEM_EVENTS_CHANNEL = "system_events"

# Wildcard для паттернов подписки
WILDCARD = "*"

# Источник события по умолчанию
DEFAULT_EVENT_SOURCE = "unknown"

# Имя события и тип сообщения для клиентов realtime
REFRESH_EVENT = "refresh"
REFRESH_TYPE = "REFRESH"
DEFAULT_REFRESH_SCOPE = "ALL"

# Политика переподключения к брокеру (мс)
RECONNECT_STEP_MS = 50
RECONNECT_MAX_DELAY_MS = 2000

# Количество повторов одной команды на командном соединении
COMMAND_RETRIES = 3

# Сколько stop() ждёт незавершённые обработчики перед отменой (с)
DISPATCH_SHUTDOWN_TIMEOUT = 1.0

# Код закрытия WebSocket при ошибке авторизации (policy violation)
WS_POLICY_VIOLATION = 1008
