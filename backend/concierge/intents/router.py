"""Enrutamiento de intenciones clasificadas hacia sus handlers."""

from __future__ import annotations

from collections.abc import Mapping

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import (
    ClassificationResult,
    ConversationContext,
    TurnResponse,
)
from concierge.nlp.knowledge import KnowledgeRetriever
from concierge.nlp.providers import ResponseGenerator
from concierge.repositories.bookings import BookingBackend
from concierge.repositories.conversations import ConversationStore
from concierge.services.events import EventSink

from .handlers import (
    CLARIFICATION_INTENT,
    BookingHandler,
    FaqHandler,
    GeneralQueryHandler,
    HandoffHandler,
    OrderHandler,
    QueryHandler,
    TurnHandler,
)

logger = get_logger("concierge.intents")

CLARIFICATION_MESSAGE = "I'm not quite sure what you're asking. Could you please rephrase that?"
FAQ_TOPICS: tuple[str, ...] = ("hours", "location", "pricing")


class IntentRouter:
    """Registro nombre de intención → handler, con un handler general por defecto."""

    def __init__(
        self,
        default: QueryHandler,
        handlers: Mapping[str, TurnHandler] | None = None,
        *,
        clarification_threshold: float = 0.5,
    ) -> None:
        self._default = default
        self._handlers: dict[str, TurnHandler] = dict(handlers or {})
        self._clarification_threshold = clarification_threshold

    def register(self, intent: str, handler: TurnHandler) -> None:
        self._handlers[intent] = handler

    @property
    def intents(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(
        self, classification: ClassificationResult, context: ConversationContext
    ) -> TurnResponse:
        if classification.confidence < self._clarification_threshold:
            log_event(
                logger,
                "router.clarification",
                intent=classification.intent,
                confidence=classification.confidence,
                conversation_id=context.conversation_id,
            )
            return TurnResponse(
                content=CLARIFICATION_MESSAGE,
                metadata={"intent": CLARIFICATION_INTENT, "confidence": classification.confidence},
                resolved=False,
            )

        handler = self._handlers.get(classification.intent)
        log_event(
            logger,
            "router.dispatch",
            intent=classification.intent,
            handler=type(handler or self._default).__name__,
            conversation_id=context.conversation_id,
        )
        if handler is None:
            return await self._default.handle_query(classification, context)
        return await handler.handle(dict(classification.entities), context)


def build_router(
    *,
    store: ConversationStore,
    bookings: BookingBackend,
    events: EventSink,
    generator: ResponseGenerator,
    retriever: KnowledgeRetriever,
    clarification_threshold: float = 0.5,
    llm_timeout: float = 20.0,
) -> IntentRouter:
    """Router con los handlers estándar del producto."""
    router = IntentRouter(
        GeneralQueryHandler(generator, retriever, timeout=llm_timeout),
        clarification_threshold=clarification_threshold,
    )
    router.register("booking.create", BookingHandler(bookings))
    for topic in FAQ_TOPICS:
        router.register(f"faq.{topic}", FaqHandler(store, topic))
    router.register("order.place", OrderHandler())
    router.register("human.handoff", HandoffHandler(store, events))
    return router
