"""
直连预订接口适配器
"""
from datetime import datetime
from typing import Any, Dict, List, Tuple

from reservation_sync.adapters.base import SourceAdapter, first_present, to_int
from reservation_sync.config import settings
from reservation_sync.models.ontology import SourceConfig, SourceKind
from reservation_sync.services.status_mapper import map_status


class DirectBookingAdapter(SourceAdapter):
    kind = SourceKind.DIRECT

    @property
    def window_days(self) -> int:
        return settings.DIRECT_WINDOW_DAYS

    def auth_headers(self, config: SourceConfig) -> Dict[str, str]:
        return {"API-Token": config.api_key or ""}

    def build_request(self, config: SourceConfig, start: datetime, end: datetime) -> Tuple[str, str, Dict[str, Any]]:
        return "GET", f"{config.endpoint}/api/bookings", {
            "params": {"from": start.date().isoformat(), "to": end.date().isoformat()}
        }

    def extract_records(self, payload: Any) -> List[Dict[str, Any]]:
        return (payload or {}).get("bookings") or []

    def map_fields(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "external_id": first_present(raw, "_id", "id"),
            "source": self.kind.value,
            "guest_name": raw.get("guestName"),
            "guest_email": raw.get("guestEmail"),
            "guest_phone": raw.get("guestPhone"),
            "room_number": raw.get("roomNumber"),
            "room_type": raw.get("roomType"),
            "check_in": raw.get("checkInDate"),
            "check_out": raw.get("checkOutDate"),
            "number_of_guests": to_int(raw.get("guestCount"), default=1),
            "total_amount": first_present(raw, "totalAmount", default="0"),
            "currency": first_present(raw, "currency", default="USD"),
            "status": map_status(raw.get("status")),
            "booking_date": raw.get("createdAt"),
            "special_requests": raw.get("specialRequests"),
            "metadata": {
                "direct_booking_id": raw.get("_id"),
                "payment_status": raw.get("paymentStatus"),
            },
        }
