"""
领域事件定义 (Domain Events)
对账引擎只负责写入预订并产出状态迁移事件，副作用分发器消费事件修改房态、创建保洁任务
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any

from reservation_sync.models.ontology import ReservationStatus


class EventType(str, Enum):
    """事件类型枚举"""
    # 预订相关
    RESERVATION_SYNCED = "reservation.synced"
    RESERVATION_ROOM_RELEASED = "reservation.room_released"

    # 房间相关
    ROOM_STATUS_CHANGED = "room.status_changed"

    # 保洁相关
    HOUSEKEEPING_TASK_CREATED = "housekeeping.task_created"

    # 同步周期
    SYNC_COMPLETED = "integration.sync_completed"
    SYNC_FAILED = "integration.sync_failed"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


@dataclass
class ReservationTransition(BaseEventData):
    """
    预订状态迁移

    对账引擎在预订写入提交后产出，previous_status 为 None 表示新建预订。
    status_changed 为 False 时分发器不做任何事。
    """
    reservation_id: int = 0
    source_name: str = ""
    external_id: str = ""
    room_id: Optional[int] = None
    previous_status: Optional[ReservationStatus] = None
    new_status: ReservationStatus = ReservationStatus.CONFIRMED
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    is_new: bool = False

    @property
    def status_changed(self) -> bool:
        return self.is_new or self.previous_status != self.new_status


@dataclass
class ReservationSyncedData(BaseEventData):
    """预订同步事件数据"""
    reservation_id: int = 0
    source_name: str = ""
    external_id: str = ""
    is_new: bool = False
    old_status: str = ""
    new_status: str = ""
    room_id: Optional[int] = None


@dataclass
class RoomReleasedData(BaseEventData):
    """日期变更冲突导致预订释放房间"""
    reservation_id: int = 0
    room_id: int = 0
    reason: str = ""


@dataclass
class RoomStatusChangedData(BaseEventData):
    """房间状态变更事件数据"""
    room_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    reservation_id: Optional[int] = None
    reason: str = ""


@dataclass
class HousekeepingTaskCreatedData(BaseEventData):
    """保洁任务创建事件数据"""
    task_id: int = 0
    task_type: str = ""
    room_id: int = 0
    room_number: str = ""
    reservation_id: Optional[int] = None
    scheduled_at: str = ""
    trigger: str = "booking_integration"


@dataclass
class SyncCycleData(BaseEventData):
    """同步周期结果事件数据"""
    source_name: str = ""
    fetched: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    error: str = ""

