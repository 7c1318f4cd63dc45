"""Dependencias comunes de FastAPI: servicios y resolución explícita del tenant."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status

from concierge.bootstrap import Services
from concierge.core.config import settings
from concierge.core.errors import TenantNotFoundError
from concierge.models.conversation import Tenant
from concierge.services.tenants import resolve_tenant, tenant_identifier_from_host

INVALID_TENANT_DETAIL = "Invalid or inactive tenant"


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_tenant(
    request: Request,
    x_tenant_id: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> Tenant:
    """Tenant del header `X-Tenant-ID` o, en su defecto, del subdominio."""
    identifier = x_tenant_id or tenant_identifier_from_host(
        request.headers.get("host"), settings.tenant_base_domain
    )
    return await _resolve_or_400(services, identifier)


async def tenant_from_path(
    tenant_identifier: str,
    services: Services = Depends(get_services),
) -> Tenant:
    return await _resolve_or_400(services, tenant_identifier)


async def _resolve_or_400(services: Services, identifier: str | None) -> Tenant:
    try:
        return await resolve_tenant(services.store, identifier)
    except TenantNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TENANT_DETAIL
        ) from exc
