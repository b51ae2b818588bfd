"""
Pydantic 模式定义
标准化预订（CanonicalBooking）以及 API 请求/响应
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from reservation_sync.models.ontology import SourceKind, ReservationStatus


def parse_instant(value: Any) -> Optional[datetime]:
    """
    解析外部系统的时间值

    支持 datetime / date / ISO-8601 字符串（含 Z 后缀和纯日期）。
    带时区的值统一换算为 UTC 后去掉时区信息存储。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ============== 标准化预订 ==============

class CanonicalBooking(BaseModel):
    """
    标准化预订 - 所有适配器的唯一输出形态

    每次拉取时重新生成，不直接持久化，是对账引擎的输入。
    """
    external_id: str = Field(..., min_length=1)
    source: str
    guest_name: str = Field(..., min_length=1)
    guest_email: str = ""
    guest_phone: str = ""
    room_type: str = Field(..., min_length=1)
    room_number: Optional[str] = None
    check_in: datetime
    check_out: datetime
    number_of_guests: int = Field(default=1, ge=1)
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", max_length=3)
    status: ReservationStatus = ReservationStatus.CONFIRMED
    booking_date: Optional[datetime] = None
    special_requests: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("external_id", "room_number", mode="before")
    @classmethod
    def _coerce_identifier(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @field_validator("guest_email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return (v or "").strip().lower()

    @field_validator("guest_phone", "special_requests", mode="before")
    @classmethod
    def _default_empty(cls, v):
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return "\n".join(str(item) for item in v if item)
        return str(v)

    @field_validator("check_in", "check_out", "booking_date", mode="before")
    @classmethod
    def _parse_instant(cls, v):
        return parse_instant(v)

    @model_validator(mode="after")
    def _check_stay(self):
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be later than check_in")
        return self


# ============== 渠道配置 Schemas ==============

class SyncSettings(BaseModel):
    sync_interval: int = Field(default=30, ge=1)  # 分钟
    auto_sync: bool = True
    sync_room_status: bool = True
    sync_rates: bool = False
    sync_inventory: bool = False
    sync_bookings: bool = True


class SourceConfigCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: SourceKind
    endpoint: str = Field(..., min_length=1, max_length=500)
    api_key: str = ""
    secret_key: Optional[str] = None
    version: str = "v1"
    is_active: bool = True
    settings: SyncSettings = Field(default_factory=SyncSettings)

    @field_validator("endpoint")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SourceConfigResponse(BaseModel):
    id: int
    name: str
    kind: SourceKind
    endpoint: str
    version: Optional[str] = None
    is_active: bool
    settings: SyncSettings
    has_credentials: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 同步结果 Schemas ==============

class SyncResult(BaseModel):
    source_name: str
    fetched: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    summary: str = ""
    interrupted: bool = False


class ConnectionTestResult(BaseModel):
    source_name: str
    success: bool
    message: str
    response_time: Optional[int] = None  # 毫秒


class IntegrationStatus(BaseModel):
    total_systems: int
    active_systems: int
    last_sync_times: Dict[str, datetime] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class SyncLogResponse(BaseModel):
    id: int
    source_name: str
    operation: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    success: bool
    model_config = ConfigDict(from_attributes=True)
