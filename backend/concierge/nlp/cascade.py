"""Cascada de clasificación de intención.

Etapas en orden, la primera aceptada gana:

1. coincidencia exacta contra frases configuradas (confianza 1.0);
2. proveedores externos, cada uno con su umbral (`confidence > threshold`);
3. un proveedor terminal cuyo resultado siempre se acepta.

Cualquier falla o timeout dentro de la cascada produce el resultado sintético
`fallback` con confianza 0; la cascada nunca propaga excepciones.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import ClassificationResult, ConversationContext

from .providers import IntentProvider

logger = get_logger("concierge.nlp.cascade")

FALLBACK_INTENT = "fallback"
UNKNOWN_INTENT = "unknown"
EXACT_MATCH_SOURCE = "exact_match"


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def normalize_classification(
    payload: Mapping[str, Any] | None, *, source: str | None = None
) -> ClassificationResult:
    """Lleva la respuesta de cualquier proveedor a `ClassificationResult`."""
    payload = payload or {}
    raw_intent = payload.get("intent")
    confidence = payload.get("confidence")
    if isinstance(raw_intent, Mapping):
        intent = raw_intent.get("name") or raw_intent.get("displayName")
        if confidence is None:
            confidence = raw_intent.get("confidence")
    else:
        intent = raw_intent

    raw_entities = payload.get("entities")
    entities: dict[str, Any] = {}
    if isinstance(raw_entities, Mapping):
        entities = {str(key): value for key, value in raw_entities.items()}
    elif isinstance(raw_entities, list):
        for item in raw_entities:
            if isinstance(item, Mapping) and item.get("entity"):
                entities.setdefault(str(item["entity"]), item.get("value"))

    suggestions = payload.get("suggestions") or payload.get("suggestedResponses")
    if isinstance(suggestions, str):
        suggestions = [suggestions]
    sentiment = payload.get("sentiment")
    return ClassificationResult(
        intent=str(intent) if intent else UNKNOWN_INTENT,
        entities=entities,
        confidence=_coerce_confidence(confidence),
        sentiment=dict(sentiment) if isinstance(sentiment, Mapping) else None,
        suggestions=[str(item) for item in suggestions] if suggestions else None,
        source=source,
    )


def fallback_result() -> ClassificationResult:
    return ClassificationResult(intent=FALLBACK_INTENT, entities={}, confidence=0.0)


class ExactMatchClassifier:
    """Busca frases literales dentro del mensaje normalizado."""

    def __init__(self, patterns: Mapping[str, str]) -> None:
        self._patterns = [
            (pattern.strip().lower(), intent) for pattern, intent in patterns.items() if pattern
        ]

    def match(self, message: str) -> ClassificationResult | None:
        normalized = message.strip().lower()
        for pattern, intent in self._patterns:
            if pattern in normalized:
                return ClassificationResult(
                    intent=intent, entities={}, confidence=1.0, source=EXACT_MATCH_SOURCE
                )
        return None


@dataclass(slots=True)
class ProviderStage:
    """Proveedor con su umbral; `threshold=None` marca la etapa terminal."""

    provider: IntentProvider
    threshold: float | None
    timeout: float
    scoped_to_conversation: bool = False

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def terminal(self) -> bool:
        return self.threshold is None

    def accepts(self, result: ClassificationResult) -> bool:
        return self.threshold is None or result.confidence > self.threshold


class IntentCascade:
    def __init__(self, exact_match: ExactMatchClassifier, stages: Sequence[ProviderStage]) -> None:
        if any(stage.terminal for stage in stages[:-1]):
            raise ValueError("Sólo la última etapa de la cascada puede ser terminal")
        self._exact_match = exact_match
        self._stages = list(stages)

    @property
    def stages(self) -> list[ProviderStage]:
        return list(self._stages)

    async def classify(
        self, message: str, context: ConversationContext, tenant_id: str
    ) -> ClassificationResult:
        try:
            return await self._run(message, context, tenant_id)
        except Exception as exc:
            logger.exception(
                "cascade.failed",
                extra={
                    "tenant_id": tenant_id,
                    "conversation_id": context.conversation_id,
                    "error": repr(exc),
                },
            )
            return fallback_result()

    async def _run(
        self, message: str, context: ConversationContext, tenant_id: str
    ) -> ClassificationResult:
        exact = self._exact_match.match(message)
        if exact is not None:
            self._accepted(exact, tenant_id, context)
            return exact

        for stage in self._stages:
            conversation_id = context.conversation_id if stage.scoped_to_conversation else None
            raw = await asyncio.wait_for(
                stage.provider.detect_intent(message, conversation_id),
                timeout=stage.timeout,
            )
            if raw is None and not stage.terminal:
                log_event(
                    logger,
                    "cascade.stage_empty",
                    stage=stage.name,
                    tenant_id=tenant_id,
                    conversation_id=context.conversation_id,
                )
                continue
            result = normalize_classification(raw, source=stage.name)
            if stage.accepts(result):
                self._accepted(result, tenant_id, context)
                return result
            log_event(
                logger,
                "cascade.stage_rejected",
                stage=stage.name,
                intent=result.intent,
                confidence=result.confidence,
                threshold=stage.threshold,
                tenant_id=tenant_id,
                conversation_id=context.conversation_id,
            )

        logger.warning(
            "cascade.exhausted",
            extra={"tenant_id": tenant_id, "conversation_id": context.conversation_id},
        )
        return fallback_result()

    @staticmethod
    def _accepted(
        result: ClassificationResult, tenant_id: str, context: ConversationContext
    ) -> None:
        log_event(
            logger,
            "cascade.stage_accepted",
            stage=result.source,
            intent=result.intent,
            confidence=result.confidence,
            tenant_id=tenant_id,
            conversation_id=context.conversation_id,
        )
