"""
本体对象定义
同步核心维护的持久化实体：渠道配置、预订、房间、保洁任务、同步日志
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum,
    Boolean, Numeric, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from reservation_sync.database import Base


# ============== 枚举定义 ==============

class SourceKind(str, Enum):
    """外部预订系统类型"""
    PMS = "pms"
    OTA = "ota"
    CHANNEL_MANAGER = "channel_manager"
    DIRECT = "direct"


class ReservationStatus(str, Enum):
    """预订生命周期状态（标准化后）"""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    MODIFIED = "modified"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class RoomStatus(str, Enum):
    """房间状态"""
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    CLEANING = "cleaning"
    OUT_OF_ORDER = "out_of_order"


class HousekeepingTaskType(str, Enum):
    """保洁任务类型"""
    CHECKOUT_CLEANING = "checkout_cleaning"
    PRE_ARRIVAL_INSPECTION = "pre_arrival_inspection"


# 占用房间的预订状态：除取消外都占用，同一房间内这些预订的区间不得重叠
ROOM_HOLDING_STATUSES = (
    ReservationStatus.CONFIRMED,
    ReservationStatus.MODIFIED,
    ReservationStatus.CHECKED_IN,
    ReservationStatus.CHECKED_OUT,
)


# ============== 本体对象定义 ==============

class SourceConfig(Base):
    """
    外部预订渠道配置
    由管理员维护，同步核心运行期只读
    """
    __tablename__ = "source_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    kind = Column(SQLEnum(SourceKind), nullable=False)
    endpoint = Column(String(500), nullable=False)
    api_key = Column(String(500), default="")
    secret_key = Column(String(500))
    version = Column(String(20), default="v1")
    is_active = Column(Boolean, default=True)
    # sync_interval / auto_sync / sync_room_status / sync_rates / sync_inventory / sync_bookings
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class Room(Base):
    """
    房间对象
    只有副作用分发器会修改 status 和 current_booking 缓存
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(10), unique=True, nullable=False)
    room_type = Column(String(50), nullable=False)
    floor = Column(Integer)
    status = Column(SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE, nullable=False)
    current_booking_check_in = Column(DateTime)
    current_booking_check_out = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    reservations = relationship("Reservation", back_populates="room")
    housekeeping_tasks = relationship("HousekeepingTask", back_populates="room")


class Reservation(Base):
    """
    预订对象 - 内部预订存储
    外部预订按 (source_name, external_id) 唯一，直连创建的预订两者为空
    取消是状态值，本核心从不删除预订
    """
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("source_name", "external_id", name="uq_reservation_source_external"),
        Index("ix_reservation_guest_stay", "guest_email", "check_in", "check_out"),
        Index("ix_reservation_room_stay", "room_id", "check_in", "check_out"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(100))
    source_name = Column(String(100))
    room_id = Column(Integer, ForeignKey("rooms.id"))
    requested_room_number = Column(String(10))
    guest_name = Column(String(200), nullable=False)
    guest_email = Column(String(200), default="")
    guest_phone = Column(String(50), default="")
    room_type = Column(String(50), nullable=False)
    check_in = Column(DateTime, nullable=False)
    check_out = Column(DateTime, nullable=False)
    number_of_guests = Column(Integer, default=1)
    total_amount = Column(Numeric(10, 2), default=0)
    currency = Column(String(3), default="USD")
    status = Column(SQLEnum(ReservationStatus), default=ReservationStatus.CONFIRMED, nullable=False)
    # 最近一次副作用分发成功时的状态，为空表示从未分发
    dispatched_status = Column(SQLEnum(ReservationStatus))
    booking_date = Column(DateTime)
    special_requests = Column(Text, default="")
    source_metadata = Column(JSON, default=dict)
    is_external = Column(Boolean, default=False)
    last_sync_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    room = relationship("Room", back_populates="reservations")


class HousekeepingTask(Base):
    """
    保洁任务
    由副作用分发器创建，外部运维工具消费
    """
    __tablename__ = "housekeeping_tasks"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"))
    task_type = Column(SQLEnum(HousekeepingTaskType), nullable=False)
    title = Column(String(200))
    description = Column(Text)
    priority = Column(String(20), default="medium")
    status = Column(String(20), default="scheduled")
    estimated_duration = Column(Integer)  # 分钟
    scheduled_at = Column(DateTime, nullable=False)
    instructions = Column(JSON, default=list)
    source = Column(String(50), default="booking_integration")
    created_at = Column(DateTime, default=datetime.now)

    room = relationship("Room", back_populates="housekeeping_tasks")


class SyncLog(Base):
    """
    同步日志 - 只追加的审计记录
    """
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    source_name = Column(String(100), nullable=False, index=True)
    operation = Column(String(50), nullable=False)
    details = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.now, index=True)
    success = Column(Boolean, default=True)
