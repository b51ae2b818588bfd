"""
排房服务
为新的标准化预订选择房间；找不到房间时返回 None，预订照常入库等待人工排房
"""
from datetime import datetime
from typing import Optional
import logging
from sqlalchemy import func
from sqlalchemy.orm import Session

from reservation_sync.models.ontology import Room, RoomStatus
from reservation_sync.services.availability_service import AvailabilityChecker

logger = logging.getLogger(__name__)

# 可以接收新预订的房态
ASSIGNABLE_ROOM_STATUSES = (RoomStatus.AVAILABLE, RoomStatus.CLEANING)


class RoomAssignmentResolver:
    """排房"""

    def __init__(self, db: Session, availability_checker: Optional[AvailabilityChecker] = None):
        self.db = db
        self.availability = availability_checker or AvailabilityChecker(db)

    def assign_room(self, room_type: str, check_in: datetime, check_out: datetime) -> Optional[Room]:
        """
        分配房间

        1. 房型（不区分大小写）匹配且房态为 available/cleaning 的房间按 id 顺序逐个检查
        2. 都不可用时，取第一间 available 的房间，复核可用性后返回
        3. 仍无房间返回 None
        """
        candidates = self.db.query(Room).filter(
            func.lower(Room.room_type) == (room_type or "").strip().lower(),
            Room.status.in_(ASSIGNABLE_ROOM_STATUSES)
        ).order_by(Room.id).all()

        for room in candidates:
            if self.availability.is_available(room.id, check_in, check_out):
                return room

        fallback = self.db.query(Room).filter(
            Room.status == RoomStatus.AVAILABLE
        ).order_by(Room.id).first()

        if fallback and self.availability.is_available(fallback.id, check_in, check_out):
            logger.info(
                f"No free '{room_type}' room for {check_in:%Y-%m-%d}~{check_out:%Y-%m-%d}, "
                f"falling back to room {fallback.room_number} ({fallback.room_type})"
            )
            return fallback

        logger.warning(
            f"No room available for '{room_type}' {check_in:%Y-%m-%d}~{check_out:%Y-%m-%d}, "
            f"booking left unassigned"
        )
        return None
