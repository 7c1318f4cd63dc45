"""Proveedores externos de clasificación de intención y generación de respuestas."""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any, Protocol
from uuid import uuid4

import httpx
from openai import AsyncOpenAI

from concierge.core.config import settings
from concierge.core.errors import ProviderError
from concierge.core.logging import get_logger
from concierge.models.conversation import ClassificationResult, ConversationContext
from concierge.services import openai as openai_service

logger = get_logger(__name__)

DIALOGFLOW_ENDPOINT = "https://dialogflow.googleapis.com/v2"


class IntentProvider(Protocol):
    name: str

    async def detect_intent(
        self, message: str, conversation_id: str | None = None
    ) -> dict[str, Any] | None: ...


class ResponseGenerator(Protocol):
    async def generate_response(
        self,
        classification: ClassificationResult,
        context: ConversationContext,
        knowledge: Sequence[str],
    ) -> dict[str, Any]: ...


async def _post_json(
    provider: str,
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float,
) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers, params=params)
    except httpx.RequestError as exc:
        raise ProviderError(provider, f"error de red: {exc}") from exc
    if response.status_code >= 400:
        raise ProviderError(provider, f"status={response.status_code} body={response.text!r}")
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(provider, "respuesta no es JSON") from exc
    if not isinstance(data, dict):
        raise ProviderError(provider, f"respuesta inesperada: {data!r}")
    return data


class RasaProvider:
    """Clasificador rápido vía el endpoint `/model/parse` de Rasa NLU."""

    name = "rasa"

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/model/parse"
        self._token = token
        self._transport = transport
        self._timeout = timeout

    async def detect_intent(
        self, message: str, conversation_id: str | None = None
    ) -> dict[str, Any] | None:
        payload: dict[str, Any] = {"text": message}
        if conversation_id:
            payload["message_id"] = conversation_id
        params = {"token": self._token} if self._token else None
        data = await _post_json(
            self.name,
            self._url,
            payload=payload,
            params=params,
            transport=self._transport,
            timeout=self._timeout,
        )
        intent = data.get("intent") or {}
        if not intent.get("name"):
            return None
        entities: dict[str, Any] = {}
        for entity in data.get("entities") or []:
            key = entity.get("entity")
            if key and key not in entities:
                entities[key] = entity.get("value")
        return {
            "intent": intent["name"],
            "entities": entities,
            "confidence": intent.get("confidence"),
        }


class DialogflowProvider:
    """Clasificador con estado por conversación (Dialogflow ES `detectIntent`)."""

    name = "dialogflow"

    def __init__(
        self,
        project_id: str,
        *,
        access_token: str,
        language_code: str = "en",
        endpoint: str = DIALOGFLOW_ENDPOINT,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 8.0,
    ) -> None:
        self._project_id = project_id
        self._access_token = access_token
        self._language_code = language_code
        self._endpoint = endpoint.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def detect_intent(
        self, message: str, conversation_id: str | None = None
    ) -> dict[str, Any] | None:
        session = conversation_id or uuid4().hex
        url = (
            f"{self._endpoint}/projects/{self._project_id}/agent/sessions/{session}:detectIntent"
        )
        payload = {
            "queryInput": {"text": {"text": message, "languageCode": self._language_code}},
            "queryParams": {
                "sentimentAnalysisRequestConfig": {"analyzeQueryTextSentiment": True}
            },
        }
        data = await _post_json(
            self.name,
            url,
            payload=payload,
            headers={"Authorization": f"Bearer {self._access_token}"},
            transport=self._transport,
            timeout=self._timeout,
        )
        result = data.get("queryResult") or {}
        intent = result.get("intent") or {}
        if not intent.get("displayName"):
            return None

        # Dialogflow devuelve "" para parámetros sin llenar.
        parameters = {
            key: value
            for key, value in (result.get("parameters") or {}).items()
            if value not in ("", None, [], {})
        }
        suggestions = [
            text
            for fulfillment in result.get("fulfillmentMessages") or []
            for text in (fulfillment.get("text") or {}).get("text") or []
            if text
        ]
        sentiment = (result.get("sentimentAnalysisResult") or {}).get("queryTextSentiment")
        return {
            "intent": intent["displayName"],
            "entities": parameters,
            "confidence": result.get("intentDetectionConfidence"),
            "sentiment": sentiment,
            "suggestions": suggestions or None,
        }


_CLASSIFIER_INSTRUCTIONS = (
    "You classify customer messages for a local business assistant. "
    "Reply with a JSON object with the keys: intent (one of: {intents}, or 'general.query'), "
    "entities (object; use the keys service, date, time, item when present), "
    "confidence (number between 0 and 1) and sentiment (object with score and magnitude, optional)."
)

_RESPONDER_INSTRUCTIONS = (
    "You are the customer assistant of a local business. Answer briefly and only with the "
    "information provided; when you cannot answer, offer to connect the customer with the team. "
    "Reply with a JSON object with the keys content (your reply) and resolved "
    "(true when the customer's request is fully answered).\n"
    "Detected intent: {intent}.\nBusiness knowledge:\n{knowledge}"
)


def _parse_json_object(provider: str, text: str | None) -> dict[str, Any]:
    if not text:
        raise ProviderError(provider, "respuesta vacía")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProviderError(provider, f"JSON inválido: {text!r}") from exc
    if not isinstance(parsed, dict):
        raise ProviderError(provider, f"JSON inesperado: {parsed!r}")
    return parsed


class OpenAIProvider:
    """Proveedor general: clasificación terminal de la cascada y respuestas generadas."""

    name = "openai"

    def __init__(
        self,
        *,
        intents: Sequence[str],
        model: str | None = None,
        client_factory: Callable[[], AsyncOpenAI] = openai_service.get_openai_client,
    ) -> None:
        self._intents = sorted(set(intents))
        self._model = model or settings.openai_model
        self._client_factory = client_factory

    async def detect_intent(
        self, message: str, conversation_id: str | None = None
    ) -> dict[str, Any] | None:
        request_kwargs: dict[str, Any] = {
            "model": self._model,
            "instructions": _CLASSIFIER_INSTRUCTIONS.format(intents=", ".join(self._intents)),
            "input": message,
            "text": {"format": {"type": "json_object"}},
        }
        if conversation_id:
            request_kwargs["metadata"] = {"conversation_id": conversation_id}
        response = await self._client_factory().responses.create(**request_kwargs)
        return _parse_json_object(self.name, openai_service.extract_output_text(response))

    async def generate_response(
        self,
        classification: ClassificationResult,
        context: ConversationContext,
        knowledge: Sequence[str],
    ) -> dict[str, Any]:
        history = [
            {"role": message.role, "content": message.content}
            for message in context.history
            if message.role in ("user", "assistant")
        ]
        instructions = _RESPONDER_INSTRUCTIONS.format(
            intent=classification.intent,
            knowledge="\n".join(f"- {snippet}" for snippet in knowledge) or "- (none)",
        )
        response = await self._client_factory().responses.create(
            model=self._model,
            instructions=instructions,
            input=history or [{"role": "user", "content": ""}],
            text={"format": {"type": "json_object"}},
            metadata={"conversation_id": context.conversation_id, "tenant_id": context.tenant_id},
        )
        text = openai_service.extract_output_text(response)
        try:
            return _parse_json_object(self.name, text)
        except ProviderError:
            if not text:
                raise
            logger.warning(
                "openai.unstructured_reply", extra={"conversation_id": context.conversation_id}
            )
            return {"content": text, "resolved": False}
