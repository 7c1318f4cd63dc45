"""Orquestador de turnos: mensaje entrante → respuesta entregada.

Pasos, estrictamente secuenciales:

1. resolver o crear la conversación (caché de sesión revalidada contra el store);
2. guardar el mensaje del usuario;
3. construir el contexto con los mensajes recientes;
4. clasificar la intención (cascada);
5. despachar al handler (router);
6. guardar la respuesta del asistente;
7. entregar la respuesta por el canal de origen y avisar a la sala de operadores;
8. publicar el evento de analítica.

Una falla en los pasos 1–6 aborta el turno como `TurnProcessingError`; lo ya
guardado no se revierte. Los turnos de una misma sesión se serializan.
"""

from __future__ import annotations

import time
from typing import Any, Protocol

from concierge.channels.delivery import DeliverySink
from concierge.core.errors import TurnProcessingError
from concierge.core.logging import get_logger, log_event
from concierge.intents.router import IntentRouter
from concierge.models.conversation import (
    STATUS_CLOSED,
    Conversation,
    ConversationContext,
    Message,
    TurnResponse,
)
from concierge.nlp.cascade import IntentCascade
from concierge.repositories.conversations import ConversationStore
from concierge.services.events import EVENT_TURN_COMPLETED, EventSink
from concierge.services.session_cache import SessionCache, conversation_cache_key

from .locks import KeyedLocks

logger = get_logger("concierge.pipeline")


class RoomNotifier(Protocol):
    """Destino de los turnos completos para los operadores de un tenant."""

    async def notify_turn(self, tenant_id: str, data: dict[str, Any]) -> None: ...


class TurnOrchestrator:
    def __init__(
        self,
        *,
        store: ConversationStore,
        cache: SessionCache,
        cascade: IntentCascade,
        router: IntentRouter,
        delivery: DeliverySink,
        events: EventSink,
        room: RoomNotifier | None = None,
        session_ttl_seconds: int = 3600,
        history_window: int = 10,
    ) -> None:
        self._store = store
        self._cache = cache
        self._cascade = cascade
        self._router = router
        self._delivery = delivery
        self._events = events
        self._room = room
        self._session_ttl = session_ttl_seconds
        self._history_window = history_window
        self._locks = KeyedLocks()

    async def process_turn(
        self,
        tenant_id: str,
        channel: str,
        raw_message: str,
        customer_id: str | None = None,
        session_id: str | None = None,
    ) -> TurnResponse:
        """Procesa un turno completo y devuelve la respuesta entregada."""
        counterpart = customer_id or session_id
        async with self._locks.hold(_lock_key(tenant_id, counterpart)):
            return await self._run_turn(tenant_id, channel, raw_message, customer_id, session_id)

    async def start_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None = None,
        session_id: str | None = None,
    ) -> Conversation:
        """Abre una conversación nueva y la deja como activa para la sesión."""
        counterpart = customer_id or session_id
        async with self._locks.hold(_lock_key(tenant_id, counterpart)):
            return await self._create_conversation(tenant_id, channel, customer_id, session_id)

    async def end_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._store.update_conversation_status(conversation_id, STATUS_CLOSED)
        log_event(
            logger,
            "conversation.closed",
            conversation_id=conversation_id,
            tenant_id=conversation.tenant_id,
        )
        return conversation

    async def get_conversation(
        self, conversation_id: str
    ) -> tuple[Conversation, list[Message]] | None:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            return None
        return conversation, await self._store.list_messages(conversation_id)

    async def list_active_conversations(self, tenant_id: str) -> list[Conversation]:
        return await self._store.list_active_conversations(tenant_id)

    async def build_context(self, conversation: Conversation) -> ConversationContext:
        history = await self._store.recent_messages(conversation.id, self._history_window)
        return ConversationContext(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            channel=conversation.channel,
            customer_id=conversation.customer_id,
            history=history,
            metadata=dict(conversation.metadata),
        )

    async def _run_turn(
        self,
        tenant_id: str,
        channel: str,
        raw_message: str,
        customer_id: str | None,
        session_id: str | None,
    ) -> TurnResponse:
        start = time.perf_counter()
        conversation: Conversation | None = None
        try:
            conversation = await self._resolve_conversation(
                tenant_id, channel, customer_id, session_id
            )
            await self._store.append_message(conversation.id, "user", raw_message)
            context = await self.build_context(conversation)
            classification = await self._cascade.classify(raw_message, context, tenant_id)
            response = await self._router.dispatch(classification, context)
            response.metadata.setdefault("confidence", classification.confidence)
            response.metadata["classified_intent"] = classification.intent
            response.metadata["classification_source"] = classification.source
            await self._store.append_message(
                conversation.id, "assistant", response.content, response.metadata
            )
            response.conversation_id = conversation.id
        except Exception as exc:
            conversation_id = conversation.id if conversation else None
            logger.exception(
                "turn.failed",
                extra={
                    "tenant_id": tenant_id,
                    "conversation_id": conversation_id,
                    "channel": channel,
                    "customer_id": customer_id,
                    "session_id": session_id,
                    "error": repr(exc),
                },
            )
            raise TurnProcessingError(
                "No fue posible procesar el turno",
                tenant_id=tenant_id,
                conversation_id=conversation_id,
            ) from exc

        await self._deliver(channel, customer_id or session_id, response, conversation.id)
        await self._notify_room(
            tenant_id,
            {
                "conversation_id": conversation.id,
                "channel": channel,
                "customer_id": customer_id,
                "session_id": session_id,
                "message": raw_message,
                "response": {
                    "content": response.content,
                    "metadata": response.metadata,
                    "resolved": response.resolved,
                },
            },
        )
        self._events.publish(
            EVENT_TURN_COMPLETED,
            {
                "tenant_id": tenant_id,
                "conversation_id": conversation.id,
                "intent": classification.intent,
                "confidence": classification.confidence,
                "resolved": response.resolved,
            },
        )
        log_event(
            logger,
            "turn.completed",
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            channel=channel,
            intent=classification.intent,
            response_intent=response.intent,
            resolved=response.resolved,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response

    async def _resolve_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None,
        session_id: str | None,
    ) -> Conversation:
        counterpart = customer_id or session_id
        if counterpart:
            cache_key = conversation_cache_key(tenant_id, counterpart)
            cached_id = await self._cache.get(cache_key)
            if cached_id:
                conversation = await self._store.find_active_conversation(cached_id)
                if conversation is not None and conversation.tenant_id == tenant_id:
                    return conversation
                log_event(
                    logger,
                    "conversation.cache_stale",
                    tenant_id=tenant_id,
                    conversation_id=cached_id,
                )
        return await self._create_conversation(tenant_id, channel, customer_id, session_id)

    async def _create_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None,
        session_id: str | None,
    ) -> Conversation:
        metadata: dict[str, Any] = {"session_id": session_id} if session_id else {}
        conversation = await self._store.create_conversation(
            tenant_id, channel, customer_id, metadata
        )
        counterpart = customer_id or session_id
        if counterpart:
            await self._cache.set_with_expiry(
                conversation_cache_key(tenant_id, counterpart),
                conversation.id,
                self._session_ttl,
            )
        log_event(
            logger,
            "conversation.created",
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            channel=channel,
        )
        return conversation

    async def _deliver(
        self,
        channel: str,
        recipient: str | None,
        response: TurnResponse,
        conversation_id: str,
    ) -> None:
        if not recipient:
            log_event(logger, "delivery.skipped_no_recipient", conversation_id=conversation_id)
            return
        try:
            await self._delivery.send(channel, recipient, response)
        except Exception:
            logger.exception(
                "delivery.failed",
                extra={"channel": channel, "conversation_id": conversation_id},
            )

    async def _notify_room(self, tenant_id: str, data: dict[str, Any]) -> None:
        if self._room is None:
            return
        try:
            await self._room.notify_turn(tenant_id, data)
        except Exception:
            logger.exception(
                "room.notify_failed",
                extra={"tenant_id": tenant_id, "conversation_id": data.get("conversation_id")},
            )


def _lock_key(tenant_id: str, counterpart: str | None) -> str | None:
    return f"{tenant_id}:{counterpart}" if counterpart else None
