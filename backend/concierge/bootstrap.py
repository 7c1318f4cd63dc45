"""Construcción de los colaboradores del pipeline a partir de la configuración."""

from __future__ import annotations

from dataclasses import dataclass

from concierge.channels.delivery import ChannelDelivery
from concierge.channels.sms.sender import TwilioSmsSender
from concierge.channels.webchat.hub import WebSocketHub
from concierge.conversation.orchestrator import TurnOrchestrator
from concierge.core.config import Settings, settings
from concierge.core.logging import get_logger, log_event
from concierge.intents.router import build_router
from concierge.nlp.cascade import ExactMatchClassifier, IntentCascade, ProviderStage
from concierge.nlp.knowledge import VectorKnowledgeRetriever
from concierge.nlp.providers import DialogflowProvider, OpenAIProvider, RasaProvider
from concierge.repositories.bookings import BookingRepository
from concierge.repositories.conversations import ConversationRepository, ConversationStore
from concierge.services.events import EVENT_HANDOFF, EventBus
from concierge.services.session_cache import InMemorySessionCache

logger = get_logger(__name__)

WEB_CHANNEL = "web"
SMS_CHANNEL = "sms"


@dataclass(slots=True)
class Services:
    """Dependencias compartidas por las rutas HTTP y WebSocket."""

    store: ConversationStore
    orchestrator: TurnOrchestrator
    delivery: ChannelDelivery
    hub: WebSocketHub
    events: EventBus


def build_cascade(config: Settings) -> IntentCascade:
    """Coincidencia exacta → Rasa → Dialogflow → OpenAI, omitiendo los no configurados."""
    stages: list[ProviderStage] = []
    if config.rasa_url:
        stages.append(
            ProviderStage(
                RasaProvider(config.rasa_url, token=config.rasa_token),
                threshold=config.fast_provider_threshold,
                timeout=config.provider_timeout_seconds,
            )
        )
    if config.dialogflow_project_id and config.dialogflow_access_token:
        stages.append(
            ProviderStage(
                DialogflowProvider(
                    config.dialogflow_project_id,
                    access_token=config.dialogflow_access_token,
                    language_code=config.dialogflow_language_code,
                ),
                threshold=config.secondary_provider_threshold,
                timeout=config.provider_timeout_seconds,
                scoped_to_conversation=True,
            )
        )
    stages.append(
        ProviderStage(
            _openai_provider(config),
            threshold=None,
            timeout=config.llm_timeout_seconds,
        )
    )
    return IntentCascade(ExactMatchClassifier(config.exact_patterns), stages)


def _openai_provider(config: Settings) -> OpenAIProvider:
    intents = set(config.exact_patterns.values()) | {"order.place", "human.handoff"}
    return OpenAIProvider(intents=sorted(intents), model=config.openai_model)


def build_services(config: Settings = settings) -> Services:
    supabase = {"base_url": config.supabase_url, "service_role": config.supabase_service_role}
    store = ConversationRepository(**supabase)
    events = EventBus()
    hub = WebSocketHub()
    events.subscribe(EVENT_HANDOFF, hub.on_event)

    delivery = ChannelDelivery({WEB_CHANNEL: hub})
    if config.twilio_account_sid and config.twilio_from_number:
        delivery.register(SMS_CHANNEL, TwilioSmsSender(from_number=config.twilio_from_number))

    router = build_router(
        store=store,
        bookings=BookingRepository(slots=config.booking_slots, **supabase),
        events=events,
        generator=_openai_provider(config),
        retriever=VectorKnowledgeRetriever(
            embedding_model=config.openai_embedding_model,
            match_count=config.knowledge_match_count,
            **supabase,
        ),
        clarification_threshold=config.clarification_threshold,
        llm_timeout=config.llm_timeout_seconds,
    )
    cascade = build_cascade(config)
    orchestrator = TurnOrchestrator(
        store=store,
        cache=InMemorySessionCache(),
        cascade=cascade,
        router=router,
        delivery=delivery,
        events=events,
        room=hub,
        session_ttl_seconds=config.session_ttl_seconds,
        history_window=config.history_window,
    )
    log_event(
        logger,
        "services.ready",
        cascade=[stage.name for stage in cascade.stages],
        channels=delivery.channels,
        intents=router.intents,
    )
    return Services(
        store=store,
        orchestrator=orchestrator,
        delivery=delivery,
        hub=hub,
        events=events,
    )
