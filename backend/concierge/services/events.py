"""Bus de eventos en proceso para analítica y notificaciones."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from concierge.core.logging import get_logger, log_event

logger = get_logger("concierge.events")

EVENT_TURN_COMPLETED = "conversation.message"
EVENT_HANDOFF = "conversation.handoff"

Subscriber = Callable[[str, dict[str, Any]], Awaitable[None] | None]


class EventSink(Protocol):
    def publish(self, event_name: str, payload: dict[str, Any]) -> None: ...


class EventBus:
    """Publica eventos sin esperar confirmación de los suscriptores.

    Los suscriptores síncronos se ejecutan en línea; los asíncronos se agendan
    como tareas. Un suscriptor que falla sólo se registra en logs.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_name: str, subscriber: Subscriber) -> None:
        self._subscribers[event_name].append(subscriber)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        log_event(logger, "events.published", event=event_name, payload=payload)
        for subscriber in list(self._subscribers.get(event_name, ())):
            try:
                result = subscriber(event_name, payload)
            except Exception:
                logger.exception("events.subscriber_failed", extra={"event": event_name})
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._guard(event_name, result))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Espera a que terminen los suscriptores asíncronos pendientes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _guard(event_name: str, awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("events.subscriber_failed", extra={"event": event_name})
