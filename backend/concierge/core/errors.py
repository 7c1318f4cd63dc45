"""Excepciones compartidas entre el pipeline y la capa de transporte."""

from __future__ import annotations

DEFAULT_APOLOGY = (
    "Sorry, I had a momentary problem handling your message. "
    "Please try again in a few moments."
)


class TenantNotFoundError(LookupError):
    """El tenant no existe o está inactivo; el turno se rechaza antes del pipeline."""

    def __init__(self, identifier: str | None) -> None:
        super().__init__(f"Tenant inválido o inactivo: {identifier!r}")
        self.identifier = identifier


class StorageError(RuntimeError):
    """Errores de persistencia para servicios externos."""


class BookingError(StorageError):
    """Errores del backend de reservas."""


class ProviderError(RuntimeError):
    """Fallas de un proveedor de clasificación o generación."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class TurnProcessingError(RuntimeError):
    """Falla terminal del pipeline de un turno."""

    def __init__(
        self,
        message: str,
        *,
        tenant_id: str,
        conversation_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
        self.conversation_id = conversation_id
