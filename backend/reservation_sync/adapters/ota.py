"""
OTA 适配器（Booking.com、Expedia 等在线旅行社）
"""
from datetime import datetime
from typing import Any, Dict, List, Tuple

from reservation_sync.adapters.base import SourceAdapter, first_present, join_name, to_int
from reservation_sync.config import settings
from reservation_sync.models.ontology import SourceConfig, SourceKind
from reservation_sync.services.status_mapper import map_status


class OTAAdapter(SourceAdapter):
    """API Key + Secret Key 请求头，按物业号拉取"""

    kind = SourceKind.OTA

    @property
    def window_days(self) -> int:
        return settings.OTA_WINDOW_DAYS

    def auth_headers(self, config: SourceConfig) -> Dict[str, str]:
        return {
            "X-API-Key": config.api_key or "",
            "X-Secret-Key": config.secret_key or "",
        }

    def build_request(self, config: SourceConfig, start: datetime, end: datetime) -> Tuple[str, str, Dict[str, Any]]:
        return "GET", f"{config.endpoint}/reservations", {
            "params": {
                "property_id": settings.PROPERTY_ID,
                "date_from": start.date().isoformat(),
                "date_to": end.date().isoformat(),
            }
        }

    def extract_records(self, payload: Any) -> List[Dict[str, Any]]:
        return (payload or {}).get("reservations") or []

    def map_fields(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        adults = to_int(raw.get("num_adults"), default=1)
        children = to_int(raw.get("num_children"), default=0)
        return {
            "external_id": first_present(raw, "reservation_id", "id"),
            "source": raw.get("channel") or self.kind.value,
            "guest_name": raw.get("guest_name") or join_name(raw.get("first_name"), raw.get("last_name")),
            "guest_email": first_present(raw, "email", "guest_email"),
            "guest_phone": first_present(raw, "phone", "telephone"),
            "room_number": raw.get("room_number"),
            "room_type": first_present(raw, "room_type_name", "accommodation_type"),
            "check_in": first_present(raw, "checkin", "arrival"),
            "check_out": first_present(raw, "checkout", "departure"),
            "number_of_guests": adults + children,
            "total_amount": first_present(raw, "total_price", "price", default="0"),
            "currency": first_present(raw, "currency", default="USD"),
            "status": map_status(first_present(raw, "status", "reservation_status")),
            "booking_date": first_present(raw, "created_date", "booking_time"),
            "special_requests": raw.get("remarks"),
            "metadata": {
                "ota_id": raw.get("reservation_id"),
                "channel": raw.get("channel"),
                "commission_amount": raw.get("commission"),
            },
        }
