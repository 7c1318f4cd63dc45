"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter, Depends

from concierge.api.deps import get_services
from concierge.bootstrap import Services

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(services: Services = Depends(get_services)) -> dict[str, object]:
    """Retorna el estado y los canales de entrega registrados."""
    return {"status": "ok", "channels": services.delivery.channels}
