"""
Шина доменных событий на базе Redis Pub/Sub.

Все события идут через один канал (system_events). Каждый процесс держит
собственный реестр обработчиков с wildcard-паттернами и выполняет
подходящие обработчики локально, параллельно и изолированно друг от друга.

Паттерны подписки:
- DOMAIN.ACTION - точное совпадение
- DOMAIN.*      - любое действие домена
- *.ACTION      - действие в любом домене
- *.*           - все события
"""

from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from src.common.constants import (
    DEFAULT_EVENT_SOURCE,
    DISPATCH_SHUTDOWN_TIMEOUT,
    SYSTEM_EVENTS_CHANNEL,
    WILDCARD,
    TypeMsg,
)
from src.common.exceptions import HandlerExecutionError, MalformedMessage
from src.common.logger import get_logger, log_debug, log_error, log_info, log_warning
from src.infra.pubsub import ChannelSubscriber

if TYPE_CHECKING:
    from src.infra.redis_client import RedisConnectionManager

logger = get_logger("event_bus")


# Обработчик: (data, domain, action) -> None | Awaitable[None]
EventHandler = Callable[[Any, str, str], "Awaitable[None] | None"]


def _utc_now_iso() -> str:
    """Текущее время в ISO-8601 (UTC, с суффиксом Z и миллисекундами)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# ДОМЕННОЕ СОБЫТИЕ
# =============================================================================

@dataclass(frozen=True)
class DomainEvent:
    """Доменное событие в пути между издателем и подписчиками."""
    domain: str
    action: str
    data: Any = None
    timestamp: str = field(default_factory=_utc_now_iso)
    source: str = DEFAULT_EVENT_SOURCE
    correlation_id: str | None = None

    @classmethod
    def create(
        cls,
        domain: str,
        action: str,
        data: Any = None,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> DomainEvent:
        """Создаёт событие с нормализованными domain/action."""
        return cls(
            domain=domain.upper(),
            action=action.upper(),
            data=data,
            source=source or DEFAULT_EVENT_SOURCE,
            correlation_id=correlation_id,
        )

    @property
    def key(self) -> str:
        """Ключ события DOMAIN.ACTION."""
        return f"{self.domain}.{self.action}"

    def to_json(self) -> str:
        """
        Сериализует событие в JSON.

        Несериализуемые данные - ошибка вызывающего кода (TypeError).
        """
        payload: dict[str, Any] = {
            "domain": self.domain,
            "action": self.action,
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
        }
        if self.correlation_id is not None:
            payload["correlationId"] = self.correlation_id
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes, channel: str = SYSTEM_EVENTS_CHANNEL) -> DomainEvent:
        """
        Десериализует событие из JSON.

        Raises:
            MalformedMessage: Невалидный JSON или нет domain/action
        """
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedMessage(channel, raw, f"невалидный JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise MalformedMessage(channel, raw, "ожидался JSON-объект")

        domain = parsed.get("domain")
        action = parsed.get("action")
        if not isinstance(domain, str) or not domain or not isinstance(action, str) or not action:
            raise MalformedMessage(channel, raw, "отсутствует domain или action")

        correlation_id = parsed.get("correlationId")
        return cls(
            domain=domain.upper(),
            action=action.upper(),
            data=parsed.get("data"),
            timestamp=parsed.get("timestamp") or "",
            source=parsed.get("source") or DEFAULT_EVENT_SOURCE,
            correlation_id=str(correlation_id) if correlation_id is not None else None,
        )


# =============================================================================
# ПАТТЕРНЫ ПОДПИСКИ
# =============================================================================

class PatternKind(str, Enum):
    """Вид паттерна подписки."""
    EXACT = "exact"
    DOMAIN_WILDCARD = "domain_wildcard"
    ACTION_WILDCARD = "action_wildcard"
    ALL = "all"


@dataclass(frozen=True)
class EventPattern:
    """Разобранный паттерн подписки. Хэшируется и служит ключом реестра."""
    kind: PatternKind
    domain: str | None = None
    action: str | None = None

    @classmethod
    def parse(cls, raw: str) -> EventPattern:
        """
        Разбирает строку паттерна (регистр не важен).

        Raises:
            ValueError: Паттерн не в формате DOMAIN.ACTION
        """
        parts = raw.strip().upper().split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Некорректный паттерн подписки: {raw!r}")

        domain, action = parts
        if domain == WILDCARD and action == WILDCARD:
            return cls(PatternKind.ALL)
        if action == WILDCARD:
            return cls(PatternKind.DOMAIN_WILDCARD, domain=domain)
        if domain == WILDCARD:
            return cls(PatternKind.ACTION_WILDCARD, action=action)
        return cls(PatternKind.EXACT, domain=domain, action=action)

    @classmethod
    def candidates(cls, domain: str, action: str) -> tuple[EventPattern, ...]:
        """Паттерны, которые могут совпасть с событием, от точного к общему."""
        return (
            cls(PatternKind.EXACT, domain=domain, action=action),
            cls(PatternKind.DOMAIN_WILDCARD, domain=domain),
            cls(PatternKind.ACTION_WILDCARD, action=action),
            cls(PatternKind.ALL),
        )

    @property
    def key(self) -> str:
        """Строковое представление паттерна."""
        return f"{self.domain or WILDCARD}.{self.action or WILDCARD}"

    def __str__(self) -> str:
        return self.key


class HandlerRegistry:
    """Реестр обработчиков процесса. Принадлежит одному роутеру."""

    def __init__(self) -> None:
        self._handlers: dict[EventPattern, list[EventHandler]] = {}

    def add(self, pattern: EventPattern, handler: EventHandler) -> None:
        """Добавляет обработчик; обработчики одного паттерна накапливаются."""
        self._handlers.setdefault(pattern, []).append(handler)

    def remove(self, pattern: EventPattern) -> int:
        """Удаляет все обработчики паттерна, возвращает их количество."""
        return len(self._handlers.pop(pattern, []))

    def match(self, domain: str, action: str) -> list[tuple[EventPattern, EventHandler]]:
        """Все обработчики, подходящие событию, по всем уровням паттернов."""
        matched: list[tuple[EventPattern, EventHandler]] = []
        for pattern in EventPattern.candidates(domain, action):
            for handler in self._handlers.get(pattern, ()):
                matched.append((pattern, handler))
        return matched

    @property
    def total_handlers(self) -> int:
        """Общее количество обработчиков."""
        return sum(len(handlers) for handlers in self._handlers.values())

    @property
    def patterns(self) -> list[str]:
        """Зарегистрированные паттерны."""
        return [pattern.key for pattern in self._handlers]

    def clear(self) -> None:
        """Очищает реестр."""
        self._handlers.clear()


@dataclass
class DispatchReport:
    """Результат обработки одного события."""
    event_key: str
    handlers: int = 0
    errors: list[HandlerExecutionError] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        """Количество успешно отработавших обработчиков."""
        return self.handlers - len(self.errors)


# =============================================================================
# РОУТЕР
# =============================================================================

class EventRouter:
    """
    Роутер доменных событий.

    Реализует:
    - Публикацию событий в общий канал через командное соединение
    - Подписку обработчиков по wildcard-паттернам
    - Параллельный изолированный вызов обработчиков
    """

    def __init__(
        self,
        connections: "RedisConnectionManager",
        channel: str = SYSTEM_EVENTS_CHANNEL,
        shutdown_timeout: float = DISPATCH_SHUTDOWN_TIMEOUT,
    ) -> None:
        """
        Args:
            connections: Менеджер соединений Redis
            channel: Канал доменных событий
            shutdown_timeout: Ожидание незавершённых обработчиков при stop()
        """
        self._connections = connections
        self._channel = channel
        self._shutdown_timeout = shutdown_timeout
        self._registry = HandlerRegistry()
        self._subscriber: ChannelSubscriber | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def channel(self) -> str:
        """Канал доменных событий."""
        return self._channel

    @property
    def is_running(self) -> bool:
        """Слушает ли роутер канал."""
        return self._subscriber is not None and self._subscriber.is_running

    async def start(self) -> None:
        """
        Запускает прослушивание канала и проверяет командное соединение.

        Raises:
            TransportUnavailable: Брокер недоступен
        """
        if self._subscriber is not None:
            return

        self._subscriber = ChannelSubscriber(
            self._connections,
            [self._channel],
            self._on_message,
            name="EventRouter",
        )
        try:
            await self._subscriber.start()

            # Проверка командного соединения (не подписчика)
            await self._connections.ping()
        except Exception as e:
            await log_error(f"Не удалось запустить роутер событий: {e}")
            await self.stop()
            raise

        await log_info(
            f"Роутер событий запущен, канал: {self._channel}",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """
        Отписывается от канала и закрывает соединение подписчика.

        Незавершённые обработчики получают shutdown_timeout секунд,
        затем отменяются.
        """
        if self._subscriber is not None:
            subscriber, self._subscriber = self._subscriber, None
            await subscriber.stop()

        if self._pending:
            pending = set(self._pending)
            _, hanging = await asyncio.wait(pending, timeout=self._shutdown_timeout)
            for task in hanging:
                task.cancel()
            if hanging:
                await log_warning(
                    f"Отменено незавершённых обработчиков при остановке: {len(hanging)}"
                )
            await asyncio.gather(*pending, return_exceptions=True)
            self._pending.clear()

    # =========================================================================
    # ПУБЛИКАЦИЯ И ПОДПИСКА
    # =========================================================================

    async def publish(
        self,
        domain: str,
        action: str,
        data: Any = None,
        source: str | None = None,
        correlation_id: str | None = None,
    ) -> DomainEvent:
        """
        Публикует доменное событие.

        Возвращает управление после подтверждения брокером; обработку
        подписчиками не ждёт. Повторов не делает.

        Args:
            domain: Домен (TRIP, USER, ...)
            action: Действие (CREATE, COMPLETED, ...)
            data: JSON-сериализуемые данные
            source: Источник события
            correlation_id: Идентификатор корреляции

        Returns:
            Опубликованное событие

        Raises:
            TransportUnavailable: Брокер недоступен
            PublishFailed: Брокер отклонил публикацию
        """
        event = DomainEvent.create(domain, action, data, source, correlation_id)
        await self._connections.publish(self._channel, event.to_json())
        await log_debug(f"Опубликовано событие: {event.key}", logger_name="event_bus")
        return event

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """
        Регистрирует обработчик по паттерну.

        Args:
            pattern: DOMAIN.ACTION, DOMAIN.*, *.ACTION или *.*
            handler: Обработчик (data, domain, action), синхронный или асинхронный
        """
        parsed = EventPattern.parse(pattern)
        self._registry.add(parsed, handler)
        logger.debug(f"Подписка на паттерн: {parsed.key}")

    def subscribe_multiple(self, patterns: Iterable[str], handler: EventHandler) -> None:
        """Регистрирует один обработчик на несколько паттернов."""
        for pattern in patterns:
            self.subscribe(pattern, handler)

    def unsubscribe(self, pattern: str) -> None:
        """Удаляет все обработчики паттерна."""
        parsed = EventPattern.parse(pattern)
        removed = self._registry.remove(parsed)
        logger.debug(f"Отписка от паттерна: {parsed.key} (обработчиков: {removed})")

    def get_stats(self) -> dict[str, Any]:
        """Статистика реестра обработчиков."""
        return {
            "total_handlers": self._registry.total_handlers,
            "patterns": self._registry.patterns,
        }

    # =========================================================================
    # ОБРАБОТКА ВХОДЯЩИХ СОБЫТИЙ
    # =========================================================================

    async def _on_message(self, channel: str, raw: str) -> None:
        """
        Принимает сообщение из канала.

        Каждое событие обрабатывается в отдельной задаче, чтобы медленные
        обработчики не задерживали чтение следующих сообщений.
        """
        if channel != self._channel:
            return

        try:
            event = DomainEvent.from_json(raw, channel=channel)
        except MalformedMessage as e:
            await log_error(str(e), logger_name="event_bus", extra={"channel": channel})
            return

        task = asyncio.create_task(self.dispatch(event), name=f"dispatch-{event.key}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def dispatch(self, event: DomainEvent) -> DispatchReport:
        """
        Вызывает все обработчики, подходящие событию.

        Ошибка одного обработчика не влияет на остальные.
        """
        suffix = f" [{event.correlation_id}]" if event.correlation_id else ""
        await log_debug(f"Обработка события: {event.key}{suffix}", logger_name="event_bus")

        matched = self._registry.match(event.domain, event.action)
        report = DispatchReport(event_key=event.key, handlers=len(matched))
        if not matched:
            return report

        results = await asyncio.gather(
            *(self._execute_handler(pattern, handler, event) for pattern, handler in matched),
            return_exceptions=True,
        )
        report.errors = [r for r in results if isinstance(r, HandlerExecutionError)]
        return report

    async def _execute_handler(
        self,
        pattern: EventPattern,
        handler: EventHandler,
        event: DomainEvent,
    ) -> None:
        """Выполняет один обработчик и логирует результат."""
        suffix = f" [{event.correlation_id}]" if event.correlation_id else ""
        try:
            result = handler(event.data, event.domain, event.action)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            error = HandlerExecutionError(
                pattern=pattern.key,
                domain=event.domain,
                action=event.action,
                original=e,
                correlation_id=event.correlation_id,
            )
            await log_error(
                str(error),
                logger_name="event_bus",
                extra={
                    "pattern": pattern.key,
                    "domain": event.domain,
                    "action": event.action,
                    "correlation_id": event.correlation_id,
                },
                exc_info=e,
            )
            raise error from e

        await log_debug(
            f"Обработчик выполнен для {event.key} с паттерном {pattern.key}{suffix}",
            logger_name="event_bus",
        )
