"""
PMS 适配器（Opera 等酒店管理系统的通用接口）
"""
from datetime import datetime
from typing import Any, Dict, List, Tuple

from reservation_sync.adapters.base import SourceAdapter, first_present, join_name, lookup, to_int
from reservation_sync.config import settings
from reservation_sync.models.ontology import SourceConfig, SourceKind
from reservation_sync.services.status_mapper import map_status


class PMSAdapter(SourceAdapter):
    """Bearer 认证，GET /bookings，窗口内含已取消预订"""

    kind = SourceKind.PMS

    @property
    def window_days(self) -> int:
        return settings.PMS_WINDOW_DAYS

    def auth_headers(self, config: SourceConfig) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {config.api_key}",
            "X-API-Version": config.version or "v1",
        }

    def build_request(self, config: SourceConfig, start: datetime, end: datetime) -> Tuple[str, str, Dict[str, Any]]:
        return "GET", f"{config.endpoint}/bookings", {
            "params": {
                "start_date": start.date().isoformat(),
                "end_date": end.date().isoformat(),
                "include_cancelled": "true",
            }
        }

    def extract_records(self, payload: Any) -> List[Dict[str, Any]]:
        return (payload or {}).get("bookings") or []

    def map_fields(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "external_id": first_present(raw, "id", "reservation_id"),
            "source": self.kind.value,
            "guest_name": join_name(lookup(raw, "guest.first_name"), lookup(raw, "guest.last_name")),
            "guest_email": lookup(raw, "guest.email"),
            "guest_phone": lookup(raw, "guest.phone"),
            "room_number": lookup(raw, "room.number"),
            "room_type": first_present(raw, "room_type", "room.type"),
            "check_in": first_present(raw, "checkin_date", "arrival_date"),
            "check_out": first_present(raw, "checkout_date", "departure_date"),
            "number_of_guests": to_int(first_present(raw, "guests", "occupancy.adults"), default=1),
            "total_amount": first_present(raw, "total_amount", "rate.total", default="0"),
            "currency": first_present(raw, "currency", default="USD"),
            "status": map_status(raw.get("status")),
            "booking_date": first_present(raw, "created_at", "booking_date"),
            "special_requests": raw.get("special_requests"),
            "metadata": {
                "pms_id": raw.get("id"),
                "confirmation_number": raw.get("confirmation_number"),
                "source": raw.get("source"),
            },
        }
