"""
渠道管理器适配器（SiteMinder、eZee 等）
"""
from datetime import datetime
from typing import Any, Dict, List, Tuple

from reservation_sync.adapters.base import SourceAdapter, first_present, lookup, to_int
from reservation_sync.config import settings
from reservation_sync.models.ontology import SourceConfig, SourceKind
from reservation_sync.services.status_mapper import map_status


class ChannelManagerAdapter(SourceAdapter):
    """POST 查询，请求体携带酒店号与状态过滤"""

    kind = SourceKind.CHANNEL_MANAGER

    @property
    def window_days(self) -> int:
        return settings.CHANNEL_MANAGER_WINDOW_DAYS

    def auth_headers(self, config: SourceConfig) -> Dict[str, str]:
        return {"Authorization": f"API-KEY {config.api_key}"}

    def build_request(self, config: SourceConfig, start: datetime, end: datetime) -> Tuple[str, str, Dict[str, Any]]:
        return "POST", f"{config.endpoint}/api/v1/bookings", {
            "json": {
                "hotel_id": settings.HOTEL_ID,
                "from_date": start.isoformat(),
                "to_date": end.isoformat(),
                "booking_status": ["confirmed", "modified", "cancelled"],
            }
        }

    def extract_records(self, payload: Any) -> List[Dict[str, Any]]:
        return (payload or {}).get("data") or []

    def map_fields(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        guests = raw.get("total_guests")
        if guests in (None, ""):
            guests = to_int(raw.get("adults"), default=1) + to_int(raw.get("children"), default=0)
        return {
            "external_id": first_present(raw, "booking_id", "id"),
            "source": raw.get("source_name") or self.kind.value,
            "guest_name": first_present(raw, "guest_name", "primary_guest.name"),
            "guest_email": first_present(raw, "guest_email", "primary_guest.email"),
            "guest_phone": first_present(raw, "guest_phone", "primary_guest.phone"),
            "room_number": raw.get("room_number"),
            "room_type": raw.get("room_type"),
            "check_in": raw.get("check_in_date"),
            "check_out": raw.get("check_out_date"),
            "number_of_guests": to_int(guests, default=1),
            "total_amount": first_present(raw, "total_amount", default="0"),
            "currency": first_present(raw, "currency_code", default="USD"),
            "status": map_status(raw.get("booking_status")),
            "booking_date": raw.get("booking_date"),
            "special_requests": raw.get("special_instructions"),
            "metadata": {
                "channel_id": raw.get("channel_id"),
                "source_booking_id": raw.get("source_booking_id"),
            },
        }
