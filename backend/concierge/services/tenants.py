"""Resolución de tenants antes de entrar al pipeline."""

from __future__ import annotations

from concierge.core.errors import TenantNotFoundError
from concierge.core.logging import get_logger
from concierge.models.conversation import Tenant
from concierge.repositories.conversations import ConversationStore

logger = get_logger(__name__)

_RESERVED_SUBDOMAINS = frozenset({"www", "api"})


def tenant_identifier_from_host(host: str | None, base_domain: str | None = None) -> str | None:
    """Extrae el subdominio (`acme` de `acme.chatbot.com`) cuando identifica a un tenant."""
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower()
    if base_domain:
        suffix = f".{base_domain.lower().lstrip('.')}"
        if not hostname.endswith(suffix):
            return None
        subdomain = hostname[: -len(suffix)]
    else:
        parts = hostname.split(".")
        if len(parts) < 3:
            return None
        subdomain = parts[0]
    if not subdomain or "." in subdomain or subdomain in _RESERVED_SUBDOMAINS:
        return None
    return subdomain


async def resolve_tenant(store: ConversationStore, identifier: str | None) -> Tenant:
    """Devuelve el tenant activo o lanza `TenantNotFoundError`."""
    if not identifier:
        raise TenantNotFoundError(identifier)
    tenant = await store.find_tenant(identifier)
    if tenant is None or not tenant.is_active:
        logger.warning("tenant.rejected", extra={"identifier": identifier})
        raise TenantNotFoundError(identifier)
    return tenant
