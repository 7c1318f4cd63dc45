"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from itertools import count
from types import SimpleNamespace
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from concierge.bootstrap import SMS_CHANNEL, WEB_CHANNEL, Services
from concierge.channels.delivery import ChannelDelivery
from concierge.channels.webchat.hub import WebSocketHub
from concierge.conversation.orchestrator import TurnOrchestrator
from concierge.core.config import DEFAULT_EXACT_PATTERNS
from concierge.core.errors import StorageError
from concierge.intents.router import build_router
from concierge.main import create_app
from concierge.models.conversation import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    Booking,
    ClassificationResult,
    Conversation,
    ConversationContext,
    KnowledgeEntry,
    Message,
    Tenant,
    TurnResponse,
)
from concierge.nlp.cascade import ExactMatchClassifier, IntentCascade, ProviderStage
from concierge.services.events import EventBus
from concierge.services.session_cache import InMemorySessionCache

TENANT_ID = "tenant-1"
TENANT_SLUG = "acme"
HOURS_ANSWER = "We are open Monday to Friday, 9am to 5pm."

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class InMemoryStore:
    """`ConversationStore` en memoria; `fail_on` fuerza errores por operación."""

    def __init__(self) -> None:
        self.tenants: dict[str, Tenant] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[Message] = []
        self.knowledge: list[KnowledgeEntry] = []
        self.fail_on: set[str] = set()
        self._ids = count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _now(self) -> datetime:
        return _EPOCH + timedelta(seconds=next(self._ids))

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"{operation} failed")

    def add_tenant(
        self,
        tenant_id: str = TENANT_ID,
        slug: str = TENANT_SLUG,
        *,
        is_active: bool = True,
        settings: dict[str, Any] | None = None,
    ) -> Tenant:
        tenant = Tenant(id=tenant_id, slug=slug, is_active=is_active, settings=settings or {})
        self.tenants[tenant_id] = tenant
        return tenant

    def add_knowledge(self, tenant_id: str, category: str, title: str, content: str) -> None:
        self.knowledge.append(
            KnowledgeEntry(
                id=self._next("kb"),
                tenant_id=tenant_id,
                category=category,
                title=title,
                content=content,
            )
        )

    def messages_for(self, conversation_id: str) -> list[Message]:
        return [message for message in self.messages if message.conversation_id == conversation_id]

    async def find_tenant(self, identifier: str) -> Tenant | None:
        self._check("find_tenant")
        for tenant in self.tenants.values():
            if identifier in (tenant.id, tenant.slug) and tenant.is_active:
                return tenant
        return None

    async def update_tenant_settings(self, tenant_id: str, tenant_settings: dict[str, Any]) -> Tenant:
        self._check("update_tenant_settings")
        tenant = self.tenants[tenant_id].model_copy(update={"settings": tenant_settings})
        self.tenants[tenant_id] = tenant
        return tenant

    async def find_active_conversation(self, conversation_id: str) -> Conversation | None:
        self._check("find_active_conversation")
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.status != STATUS_ACTIVE:
            return None
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        self._check("get_conversation")
        return self.conversations.get(conversation_id)

    async def create_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None,
        metadata: dict[str, Any],
    ) -> Conversation:
        self._check("create_conversation")
        conversation = Conversation(
            id=self._next("conv"),
            tenant_id=tenant_id,
            channel=channel,
            customer_id=customer_id,
            metadata=metadata,
            created_at=self._now(),
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def update_conversation_status(self, conversation_id: str, status: str) -> Conversation:
        self._check("update_conversation_status")
        if conversation_id not in self.conversations:
            raise StorageError(f"Conversation {conversation_id} not found")
        update: dict[str, Any] = {"status": status}
        if status == STATUS_CLOSED:
            update["ended_at"] = self._now()
        conversation = self.conversations[conversation_id].model_copy(update=update)
        self.conversations[conversation_id] = conversation
        return conversation

    async def list_active_conversations(self, tenant_id: str) -> list[Conversation]:
        self._check("list_active_conversations")
        active = [
            conversation
            for conversation in self.conversations.values()
            if conversation.tenant_id == tenant_id and conversation.status == STATUS_ACTIVE
        ]
        return sorted(active, key=lambda conversation: conversation.created_at, reverse=True)

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        self._check(f"append_message:{role}")
        message = Message(
            id=self._next("msg"),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=dict(metadata) if metadata is not None else None,
            created_at=self._now(),
        )
        self.messages.append(message)
        return message

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        self._check("recent_messages")
        return self.messages_for(conversation_id)[-limit:]

    async def list_messages(self, conversation_id: str) -> list[Message]:
        self._check("list_messages")
        return self.messages_for(conversation_id)

    async def find_knowledge_entry(
        self, tenant_id: str, category: str, key: str
    ) -> KnowledgeEntry | None:
        self._check("find_knowledge_entry")
        for entry in self.knowledge:
            if (entry.tenant_id, entry.category, entry.title) == (tenant_id, category, key):
                return entry
        return None


class StubBookings:
    """`BookingBackend` en memoria; `taken` contiene pares (fecha, hora) ocupados."""

    def __init__(self, slots: tuple[str, ...] = ("09:00", "10:00", "11:00", "14:00")) -> None:
        self.slots = slots
        self.taken: set[tuple[str, str]] = set()
        self.created: list[Booking] = []

    async def check_availability(self, tenant_id: str, service: str, date: str, time: str) -> bool:
        return (date, time) not in self.taken

    async def create_booking(
        self,
        *,
        tenant_id: str,
        customer_id: str | None,
        service: str,
        date: str,
        time: str,
    ) -> Booking:
        booking = Booking(
            id=f"booking-{len(self.created) + 1}",
            tenant_id=tenant_id,
            customer_id=customer_id,
            service=service,
            date=date,
            time=time,
        )
        self.created.append(booking)
        self.taken.add((date, time))
        return booking

    async def suggested_times(self, tenant_id: str, service: str, date: str) -> list[str]:
        return [slot for slot in self.slots if (date, slot) not in self.taken][:3]


class StubProvider:
    """Proveedor de intención con resultado fijo, demora y error configurables."""

    def __init__(
        self,
        name: str,
        result: dict[str, Any] | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str | None]] = []

    async def detect_intent(
        self, message: str, conversation_id: str | None = None
    ) -> dict[str, Any] | None:
        self.calls.append((message, conversation_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class StubGenerator:
    def __init__(self, content: str = "Happy to help!", *, resolved: bool = True) -> None:
        self.reply: dict[str, Any] = {"content": content, "resolved": resolved}
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[ClassificationResult, ConversationContext, list[str]]] = []

    async def generate_response(
        self,
        classification: ClassificationResult,
        context: ConversationContext,
        knowledge: list[str],
    ) -> dict[str, Any]:
        self.calls.append((classification, context, list(knowledge)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.reply)


class StubRetriever:
    def __init__(self, snippets: list[str] | None = None) -> None:
        self.snippets = snippets or []
        self.error: Exception | None = None
        self.queries: list[tuple[str, str]] = []

    async def search_similar(self, query: str, tenant_id: str) -> list[str]:
        self.queries.append((query, tenant_id))
        if self.error is not None:
            raise self.error
        return list(self.snippets)


class RecordingSender:
    """`ChannelSender` que guarda cada envío."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, TurnResponse]] = []
        self.error: Exception | None = None

    async def send(self, recipient: str, response: TurnResponse) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, response))


class RecordingDelivery(ChannelDelivery):
    def __init__(self, senders: dict[str, Any]) -> None:
        super().__init__(senders)
        self.sent: list[tuple[str, str, TurnResponse]] = []

    async def send(self, channel: str, recipient: str, response: TurnResponse) -> None:
        self.sent.append((channel, recipient, response))
        await super().send(channel, recipient, response)


class RecordingEventBus(EventBus):
    def __init__(self) -> None:
        super().__init__()
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        self.published.append((event_name, payload))
        super().publish(event_name, payload)


class FakeWebSocket:
    """Doble mínimo de `WebSocket` para el hub."""

    def __init__(self, *, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, frame: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(frame)


@pytest.fixture(name="store")
def fixture_store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_tenant()
    store.add_knowledge(TENANT_ID, "faq", "hours", HOURS_ANSWER)
    return store


@pytest.fixture(name="tenant")
def fixture_tenant(store: InMemoryStore) -> Tenant:
    return store.tenants[TENANT_ID]


@pytest.fixture(name="bookings")
def fixture_bookings() -> StubBookings:
    return StubBookings()


@pytest.fixture(name="stub_provider")
def fixture_stub_provider() -> type[StubProvider]:
    return StubProvider


@pytest.fixture(name="generator")
def fixture_generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture(name="retriever")
def fixture_retriever() -> StubRetriever:
    return StubRetriever(["Haircuts cost $30."])


@pytest.fixture(name="recording_sender")
def fixture_recording_sender() -> type[RecordingSender]:
    return RecordingSender


@pytest.fixture(name="fake_websocket")
def fixture_fake_websocket() -> type[FakeWebSocket]:
    return FakeWebSocket


@pytest.fixture(name="make_context")
def fixture_make_context() -> Callable[..., ConversationContext]:
    def _make(
        history: list[Message] | None = None,
        *,
        conversation_id: str = "conv-ctx",
        customer_id: str | None = "+15550001111",
    ) -> ConversationContext:
        return ConversationContext(
            conversation_id=conversation_id,
            tenant_id=TENANT_ID,
            channel=WEB_CHANNEL,
            customer_id=customer_id,
            history=list(history or []),
        )

    return _make


@pytest.fixture(name="make_message")
def fixture_make_message() -> Callable[..., Message]:
    ids = count(1)

    def _make(
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        *,
        conversation_id: str = "conv-ctx",
    ) -> Message:
        index = next(ids)
        return Message(
            id=f"hist-{index}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata,
            created_at=_EPOCH + timedelta(seconds=index),
        )

    return _make


@pytest.fixture(name="pipeline")
def fixture_pipeline(
    store: InMemoryStore,
    bookings: StubBookings,
    generator: StubGenerator,
    retriever: StubRetriever,
) -> SimpleNamespace:
    """Orquestador completo con proveedores, canales y bus de prueba."""
    rasa = StubProvider("rasa")
    dialogflow = StubProvider("dialogflow")
    openai = StubProvider("openai", {"intent": "general.query", "confidence": 0.9})
    cascade = IntentCascade(
        ExactMatchClassifier(DEFAULT_EXACT_PATTERNS),
        [
            ProviderStage(rasa, threshold=0.8, timeout=1.0),
            ProviderStage(dialogflow, threshold=0.7, timeout=1.0, scoped_to_conversation=True),
            ProviderStage(openai, threshold=None, timeout=1.0),
        ],
    )
    events = RecordingEventBus()
    hub = WebSocketHub()
    events.subscribe("conversation.handoff", hub.on_event)
    sms = RecordingSender()
    delivery = RecordingDelivery({WEB_CHANNEL: hub, SMS_CHANNEL: sms})
    router = build_router(
        store=store,
        bookings=bookings,
        events=events,
        generator=generator,
        retriever=retriever,
        clarification_threshold=0.5,
        llm_timeout=1.0,
    )
    cache = InMemorySessionCache()
    orchestrator = TurnOrchestrator(
        store=store,
        cache=cache,
        cascade=cascade,
        router=router,
        delivery=delivery,
        events=events,
        room=hub,
        session_ttl_seconds=3600,
        history_window=10,
    )
    return SimpleNamespace(
        orchestrator=orchestrator,
        store=store,
        cache=cache,
        cascade=cascade,
        router=router,
        rasa=rasa,
        dialogflow=dialogflow,
        openai=openai,
        generator=generator,
        retriever=retriever,
        bookings=bookings,
        events=events,
        hub=hub,
        delivery=delivery,
        sms=sms,
    )


@pytest.fixture(name="services")
def fixture_services(pipeline: SimpleNamespace) -> Services:
    return Services(
        store=pipeline.store,
        orchestrator=pipeline.orchestrator,
        delivery=pipeline.delivery,
        hub=pipeline.hub,
        events=pipeline.events,
    )


@pytest.fixture(name="app")
def fixture_app(services: Services):
    return create_app(services=services)


@pytest.fixture(name="async_client")
async def fixture_async_client(app) -> AsyncIterator[AsyncClient]:
    """Retorna un cliente asíncrono contra la app utilizando ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Tenant-ID": TENANT_SLUG},
    ) as client:
        yield client
