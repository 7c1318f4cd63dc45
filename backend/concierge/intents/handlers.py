"""Handlers de intención: cada uno produce la respuesta de un turno."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import (
    STATUS_PENDING_HANDOFF,
    ClassificationResult,
    ConversationContext,
    TurnResponse,
)
from concierge.nlp.knowledge import KnowledgeRetriever
from concierge.nlp.providers import ResponseGenerator
from concierge.repositories.bookings import BookingBackend
from concierge.repositories.conversations import ConversationStore
from concierge.services.events import EVENT_HANDOFF, EventSink

logger = get_logger("concierge.intents")

BOOKING_SLOTS: tuple[str, ...] = ("service", "date", "time")
BOOKING_COLLECT_INTENT = "booking.collect"
CLARIFICATION_INTENT = "unclear"
_PENDING_BOOKING_INTENTS = frozenset({BOOKING_COLLECT_INTENT, "booking.alternatives"})


class TurnHandler(Protocol):
    async def handle(self, entities: dict[str, Any], context: ConversationContext) -> TurnResponse: ...


class QueryHandler(Protocol):
    """Handler por defecto: recibe la clasificación completa."""

    async def handle_query(
        self, classification: ClassificationResult, context: ConversationContext
    ) -> TurnResponse: ...


def _clean_slot(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def pending_booking_data(context: ConversationContext) -> dict[str, str]:
    """Datos parciales de la reserva en curso.

    Se toma la respuesta más reciente del asistente que no sea una
    aclaración; si no dejó la reserva pendiente, no hay nada que combinar.
    """
    for message in reversed(context.history):
        if message.role != "assistant":
            continue
        metadata = message.metadata or {}
        intent = metadata.get("intent")
        if intent == CLARIFICATION_INTENT:
            continue
        if intent not in _PENDING_BOOKING_INTENTS:
            return {}
        collected = metadata.get("collected_data") or {}
        if not isinstance(collected, dict):
            return {}
        return {
            slot: cleaned
            for slot in BOOKING_SLOTS
            if (cleaned := _clean_slot(collected.get(slot))) is not None
        }
    return {}


class BookingHandler:
    """Llenado de slots `service`, `date` y `time` a lo largo de varios turnos."""

    def __init__(self, bookings: BookingBackend) -> None:
        self._bookings = bookings

    async def handle(self, entities: dict[str, Any], context: ConversationContext) -> TurnResponse:
        collected = pending_booking_data(context)
        for slot in BOOKING_SLOTS:
            value = _clean_slot(entities.get(slot))
            if value is not None:
                collected[slot] = value

        missing = [slot for slot in BOOKING_SLOTS if slot not in collected]
        if missing:
            return TurnResponse(
                content=(
                    "I'd be happy to help you book an appointment! "
                    f"I just need to know: {', '.join(missing)}"
                ),
                metadata={
                    "intent": BOOKING_COLLECT_INTENT,
                    "missing_fields": missing,
                    "collected_data": {slot: collected.get(slot) for slot in BOOKING_SLOTS},
                },
                resolved=False,
            )

        service, date, time = (collected[slot] for slot in BOOKING_SLOTS)
        available = await self._bookings.check_availability(
            context.tenant_id, service, date, time
        )
        if available:
            booking = await self._bookings.create_booking(
                tenant_id=context.tenant_id,
                customer_id=context.customer_id,
                service=service,
                date=date,
                time=time,
            )
            log_event(
                logger,
                "booking.confirmed",
                booking_id=booking.id,
                tenant_id=context.tenant_id,
                conversation_id=context.conversation_id,
            )
            return TurnResponse(
                content=(
                    f"Great! I've booked your {service} appointment for {date} at {time}. "
                    "You'll receive a confirmation email shortly."
                ),
                metadata={
                    "intent": "booking.confirmed",
                    "booking_id": booking.id,
                    "collected_data": dict(collected),
                },
                resolved=True,
            )

        alternatives = await self._bookings.suggested_times(context.tenant_id, service, date)
        if alternatives:
            content = (
                f"I'm sorry, {time} on {date} is not available. "
                f"How about one of these times instead: {', '.join(alternatives)}?"
            )
        else:
            content = (
                f"I'm sorry, {date} is fully booked. Is there another day that works for you?"
            )
        return TurnResponse(
            content=content,
            metadata={
                "intent": "booking.alternatives",
                "alternatives": alternatives,
                "collected_data": {"service": service, "date": date, "time": None},
            },
            resolved=False,
        )


class FaqHandler:
    """Responde con la entrada `faq/<topic>` de la base de conocimiento del tenant."""

    def __init__(self, store: ConversationStore, topic: str, *, category: str = "faq") -> None:
        self._store = store
        self.topic = topic
        self._category = category

    async def handle(self, entities: dict[str, Any], context: ConversationContext) -> TurnResponse:
        intent = f"faq.{self.topic}"
        entry = await self._store.find_knowledge_entry(
            context.tenant_id, self._category, self.topic
        )
        if entry is not None:
            return TurnResponse(
                content=entry.content,
                metadata={"intent": intent, "source": "knowledge_base", "entry_id": entry.id},
                resolved=True,
            )
        return TurnResponse(
            content=(
                "I don't have that information right now. "
                "Would you like me to connect you with someone who can help?"
            ),
            metadata={"intent": intent, "source": "not_found"},
            resolved=False,
        )


class HandoffHandler:
    """Pasa la conversación a un humano; el turno queda sin resolver."""

    def __init__(self, store: ConversationStore, events: EventSink) -> None:
        self._store = store
        self._events = events

    async def handle(self, entities: dict[str, Any], context: ConversationContext) -> TurnResponse:
        await self._store.update_conversation_status(
            context.conversation_id, STATUS_PENDING_HANDOFF
        )
        self._events.publish(
            EVENT_HANDOFF,
            {"conversation_id": context.conversation_id, "tenant_id": context.tenant_id},
        )
        return TurnResponse(
            content=(
                "I'm connecting you with a team member who can better assist you. "
                "They'll be with you shortly!"
            ),
            metadata={"intent": "human.handoff", "status": "initiated"},
            resolved=False,
        )


class OrderHandler:
    async def handle(self, entities: dict[str, Any], context: ConversationContext) -> TurnResponse:
        item = _clean_slot(entities.get("item"))
        if item:
            content = f"Sure! Let's start an order for {item}. Anything else you'd like to add?"
        else:
            content = "I can help you place an order! What would you like to order today?"
        return TurnResponse(
            content=content,
            metadata={"intent": "order.start", "items": [item] if item else []},
            resolved=False,
        )


class GeneralQueryHandler:
    """Consulta abierta: conocimiento del tenant + respuesta generada por el LLM."""

    def __init__(
        self,
        generator: ResponseGenerator,
        retriever: KnowledgeRetriever,
        *,
        timeout: float,
    ) -> None:
        self._generator = generator
        self._retriever = retriever
        self._timeout = timeout

    async def handle_query(
        self, classification: ClassificationResult, context: ConversationContext
    ) -> TurnResponse:
        query = context.last_user_message or classification.intent
        knowledge = await self._retrieve(query, context)
        generated = await asyncio.wait_for(
            self._generator.generate_response(classification, context, knowledge),
            timeout=self._timeout,
        )
        return TurnResponse(
            content=str(generated.get("content") or ""),
            metadata={
                "intent": classification.intent,
                "confidence": classification.confidence,
                "source": "ai_generated",
                "knowledge_used": len(knowledge),
            },
            resolved=bool(generated.get("resolved", False)),
        )

    async def _retrieve(self, query: str, context: ConversationContext) -> Sequence[str]:
        try:
            return await asyncio.wait_for(
                self._retriever.search_similar(query, context.tenant_id), timeout=self._timeout
            )
        except Exception:
            logger.exception(
                "knowledge.search_failed",
                extra={"tenant_id": context.tenant_id, "conversation_id": context.conversation_id},
            )
            return []
