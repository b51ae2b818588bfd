"""
房间可用性检查
半开区间 [check_in, check_out)：a1 < b2 且 b1 < a2 才算重叠，同日退房/入住不冲突
取消以外的预订都占用房间
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session, Query

from reservation_sync.models.ontology import Reservation, ROOM_HOLDING_STATUSES


class AvailabilityChecker:
    """可用性检查（只读）"""

    def __init__(self, db: Session):
        self.db = db

    def _conflict_query(self, room_id: int, check_in: datetime, check_out: datetime,
                        exclude_reservation_id: Optional[int]) -> Query:
        query = self.db.query(Reservation).filter(
            Reservation.room_id == room_id,
            Reservation.status.in_(ROOM_HOLDING_STATUSES),
            Reservation.check_in < check_out,
            Reservation.check_out > check_in
        )
        if exclude_reservation_id is not None:
            query = query.filter(Reservation.id != exclude_reservation_id)
        return query

    def get_conflicts(self, room_id: int, check_in: datetime, check_out: datetime,
                      exclude_reservation_id: Optional[int] = None) -> List[Reservation]:
        """获取与区间重叠、占用该房间的预订"""
        return self._conflict_query(room_id, check_in, check_out, exclude_reservation_id).all()

    def is_available(self, room_id: int, check_in: datetime, check_out: datetime,
                     exclude_reservation_id: Optional[int] = None) -> bool:
        """房间在区间内是否空闲"""
        query = self._conflict_query(room_id, check_in, check_out, exclude_reservation_id)
        return query.first() is None
