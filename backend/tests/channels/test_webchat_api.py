"""Pruebas de los endpoints HTTP del canal webchat."""

from httpx import ASGITransport, AsyncClient

from concierge.core.errors import DEFAULT_APOLOGY

HOURS_ANSWER = "We are open Monday to Friday, 9am to 5pm."


async def test_post_message_returns_reply(async_client: AsyncClient, pipeline) -> None:
    response = await async_client.post(
        "/webchat/messages", json={"session_id": "sess-web-1", "content": "What are your hours?"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == HOURS_ANSWER
    assert body["resolved"] is True
    assert body["metadata"]["intent"] == "faq.hours"
    assert body["conversation_id"] in pipeline.store.conversations


async def test_post_message_requires_valid_tenant(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/webchat/messages",
        json={"session_id": "sess-web-1", "content": "hello"},
        headers={"X-Tenant-ID": "unknown"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or inactive tenant"


async def test_tenant_resolved_from_subdomain(app) -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://acme.chatbot.test") as client:
        response = await client.post(
            "/webchat/messages", json={"session_id": "sess-sub", "content": "What are your hours?"}
        )

    assert response.status_code == 200
    assert response.json()["reply"] == HOURS_ANSWER


async def test_post_message_validates_payload(async_client: AsyncClient) -> None:
    response = await async_client.post("/webchat/messages", json={"session_id": "s", "content": ""})

    assert response.status_code == 422


async def test_pipeline_failure_returns_apology(async_client: AsyncClient, pipeline) -> None:
    pipeline.generator.error = RuntimeError("llm down")

    response = await async_client.post(
        "/webchat/messages", json={"session_id": "sess-web-2", "content": "tell me a joke"}
    )

    assert response.status_code == 502
    assert response.json()["detail"] == DEFAULT_APOLOGY


async def test_history_and_close(async_client: AsyncClient, pipeline) -> None:
    sent = await async_client.post(
        "/webchat/messages", json={"session_id": "sess-web-3", "content": "What are your hours?"}
    )
    conversation_id = sent.json()["conversation_id"]

    history = await async_client.get(
        "/webchat/messages", params={"conversation_id": conversation_id}
    )
    assert history.status_code == 200
    assert history.json()["status"] == "active"
    assert [m["role"] for m in history.json()["messages"]] == ["user", "assistant"]

    closed = await async_client.post("/webchat/close", json={"conversation_id": conversation_id})
    assert closed.status_code == 204
    assert pipeline.store.conversations[conversation_id].status == "closed"


async def test_history_of_other_tenant_is_hidden(async_client: AsyncClient, pipeline) -> None:
    other = pipeline.store.add_tenant("tenant-2", "globex")
    foreign = await pipeline.store.create_conversation(other.id, "web", None, {})

    history = await async_client.get("/webchat/messages", params={"conversation_id": foreign.id})
    closed = await async_client.post("/webchat/close", json={"conversation_id": foreign.id})

    assert history.status_code == 404
    assert closed.status_code == 404
    assert pipeline.store.conversations[foreign.id].status == "active"
