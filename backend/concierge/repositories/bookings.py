"""Repositorio de reservas sobre Supabase REST."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from concierge.core.config import settings
from concierge.core.errors import BookingError
from concierge.models.conversation import Booking

from .supabase import SupabaseRepository

_STATUS_CONFIRMED = "confirmed"


class BookingBackend(Protocol):
    async def check_availability(
        self, tenant_id: str, service: str, date: str, time: str
    ) -> bool: ...

    async def create_booking(
        self,
        *,
        tenant_id: str,
        customer_id: str | None,
        service: str,
        date: str,
        time: str,
    ) -> Booking: ...

    async def suggested_times(self, tenant_id: str, service: str, date: str) -> list[str]: ...


class BookingRepository(SupabaseRepository):
    """Consulta disponibilidad por horario y registra reservas confirmadas."""

    error_class = BookingError

    def __init__(self, *, slots: Sequence[str] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._slots = tuple(slots or settings.booking_slots)

    async def check_availability(self, tenant_id: str, service: str, date: str, time: str) -> bool:
        params = {
            "select": "id",
            "tenant_id": f"eq.{tenant_id}",
            "date": f"eq.{date}",
            "time": f"eq.{time}",
            "status": f"eq.{_STATUS_CONFIRMED}",
            "limit": "1",
        }
        response = await self._request("GET", "/rest/v1/bookings", params=params)
        return not self._json_list(response)

    async def create_booking(
        self,
        *,
        tenant_id: str,
        customer_id: str | None,
        service: str,
        date: str,
        time: str,
    ) -> Booking:
        payload = {
            "tenant_id": tenant_id,
            "customer_id": customer_id,
            "service": service,
            "date": date,
            "time": time,
            "status": _STATUS_CONFIRMED,
        }
        response = await self._request(
            "POST", "/rest/v1/bookings", json=payload, prefer="return=representation"
        )
        row = self._first(response)
        if not row:
            raise BookingError("Supabase no devolvió la reserva creada")
        return Booking.model_validate(row)

    async def suggested_times(self, tenant_id: str, service: str, date: str) -> list[str]:
        """Horarios libres del día, en el orden configurado."""
        params = {
            "select": "time",
            "tenant_id": f"eq.{tenant_id}",
            "date": f"eq.{date}",
            "status": f"eq.{_STATUS_CONFIRMED}",
        }
        response = await self._request("GET", "/rest/v1/bookings", params=params)
        taken = {str(row.get("time")) for row in self._json_list(response)}
        free = [slot for slot in self._slots if slot not in taken]
        return free[: settings.booking_suggestion_count]
