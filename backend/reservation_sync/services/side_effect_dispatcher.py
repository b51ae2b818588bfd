"""
副作用分发 - 消费预订状态迁移事件
修改房态、创建保洁任务；预订写入已先行提交，这里的失败不会回滚预订，
预订保留原 dispatched_status，下一次同步会重新分发
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import logging
from sqlalchemy.orm import Session

from reservation_sync.models.ontology import (
    Reservation, Room, RoomStatus, ReservationStatus, HousekeepingTask, HousekeepingTaskType
)
from reservation_sync.models.events import (
    EventType, ReservationTransition, RoomStatusChangedData, HousekeepingTaskCreatedData
)
from reservation_sync.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)


# 预订状态 -> 房态
ROOM_STATUS_BY_RESERVATION = {
    ReservationStatus.CONFIRMED: RoomStatus.RESERVED,
    ReservationStatus.CHECKED_IN: RoomStatus.OCCUPIED,
    ReservationStatus.CHECKED_OUT: RoomStatus.CLEANING,
    ReservationStatus.CANCELLED: RoomStatus.AVAILABLE,
}

PRE_ARRIVAL_LEAD_TIME = timedelta(hours=4)
TASK_SOURCE = "booking_integration"

CHECKOUT_CLEANING_INSTRUCTIONS = [
    "Strip and replace all bed linens",
    "Clean and sanitize bathroom thoroughly",
    "Vacuum and mop floors",
    "Restock amenities",
]

PRE_ARRIVAL_INSTRUCTIONS = [
    "Verify room cleanliness",
    "Check all amenities are stocked",
    "Test all equipment functionality",
    "Ensure room temperature is comfortable",
]


@dataclass
class DispatchResult:
    """一次分发的结果"""
    old_room_status: Optional[RoomStatus] = None
    new_room_status: Optional[RoomStatus] = None
    tasks: List[HousekeepingTask] = field(default_factory=list)

    @property
    def room_status_changed(self) -> bool:
        return self.new_room_status is not None and self.new_room_status != self.old_room_status


class SideEffectDispatcher:
    """
    副作用分发器

    - 新建 confirmed 预订：房间置为 reserved 并缓存入住区间，入住前 4 小时安排查房
    - 已有预订状态变化：按 ROOM_STATUS_BY_RESERVATION 修改房态，迁入 checked_out 时安排退房清洁
    - 状态未变化的迁移不产生任何写入
    - 副作用与预订的 dispatched_status 在同一事务提交，失败后下次同步重新分发
    """

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or datetime.now

    def dispatch(self, transition: ReservationTransition) -> DispatchResult:
        result = DispatchResult()
        if not transition.status_changed:
            return result

        events: List[Event] = []
        try:
            room = self._apply_side_effects(transition, result, events)
            self._mark_dispatched(transition)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for task in result.tasks:
            events.append(Event(
                event_type=EventType.HOUSEKEEPING_TASK_CREATED,
                timestamp=self._clock(),
                data=HousekeepingTaskCreatedData(
                    task_id=task.id,
                    task_type=task.task_type.value,
                    room_id=room.id,
                    room_number=room.room_number,
                    reservation_id=transition.reservation_id,
                    scheduled_at=task.scheduled_at.isoformat(),
                ).to_dict(),
                source="side_effect_dispatcher"
            ))
            logger.info(
                f"Scheduled {task.task_type.value} task {task.id} for room {room.room_number} "
                f"at {task.scheduled_at:%Y-%m-%d %H:%M}"
            )

        for event in events:
            self._publish_event(event)

        return result

    def _apply_side_effects(self, transition: ReservationTransition, result: DispatchResult,
                            events: List[Event]) -> Optional[Room]:
        """在当前会话中写入房态和保洁任务，不提交"""
        if transition.room_id is None:
            logger.info(
                f"Reservation {transition.reservation_id} has no room, "
                f"skipping side effects for {transition.new_status.value}"
            )
            return None

        room = self.db.query(Room).filter(Room.id == transition.room_id).first()
        if not room:
            logger.warning(f"Room {transition.room_id} not found for reservation {transition.reservation_id}")
            return None

        result.old_room_status = room.status

        if transition.is_new:
            if transition.new_status == ReservationStatus.CONFIRMED:
                self._apply_room_status(room, RoomStatus.RESERVED, transition, result, events)
                task = self._schedule_pre_arrival(room, transition)
                if task:
                    result.tasks.append(task)
            elif transition.new_status == ReservationStatus.CHECKED_OUT:
                result.tasks.append(self._schedule_checkout_cleaning(room, transition))
        else:
            target = ROOM_STATUS_BY_RESERVATION.get(transition.new_status)
            if target is not None:
                self._apply_room_status(room, target, transition, result, events)
            if transition.new_status == ReservationStatus.CHECKED_OUT:
                result.tasks.append(self._schedule_checkout_cleaning(room, transition))
        return room

    def _mark_dispatched(self, transition: ReservationTransition) -> None:
        """记录已分发的状态，之后同状态的同步不再重复产生副作用"""
        self.db.query(Reservation).filter(
            Reservation.id == transition.reservation_id
        ).update({Reservation.dispatched_status: transition.new_status}, synchronize_session="fetch")

    def _apply_room_status(self, room: Room, target: RoomStatus, transition: ReservationTransition,
                           result: DispatchResult, events: List[Event]) -> None:
        """房态不同才写入"""
        if room.status == target:
            return

        old_status = room.status
        room.status = target
        if target == RoomStatus.RESERVED:
            room.current_booking_check_in = transition.check_in
            room.current_booking_check_out = transition.check_out
        elif target == RoomStatus.AVAILABLE:
            room.current_booking_check_in = None
            room.current_booking_check_out = None
        result.new_room_status = target

        logger.info(
            f"Room {room.room_number}: {old_status.value} -> {target.value} "
            f"(reservation {transition.reservation_id} {transition.new_status.value})"
        )
        events.append(Event(
            event_type=EventType.ROOM_STATUS_CHANGED,
            timestamp=self._clock(),
            data=RoomStatusChangedData(
                room_id=room.id,
                room_number=room.room_number,
                old_status=old_status.value,
                new_status=target.value,
                reservation_id=transition.reservation_id,
                reason=f"reservation {transition.new_status.value}",
            ).to_dict(),
            source="side_effect_dispatcher"
        ))

    def _schedule_checkout_cleaning(self, room: Room, transition: ReservationTransition) -> HousekeepingTask:
        now = self._clock()
        task = HousekeepingTask(
            room_id=room.id,
            reservation_id=transition.reservation_id,
            task_type=HousekeepingTaskType.CHECKOUT_CLEANING,
            title=f"Checkout Cleaning - Room {room.room_number}",
            description="Complete cleaning after guest checkout",
            priority="high",
            status="scheduled",
            estimated_duration=45,
            scheduled_at=now,
            instructions=list(CHECKOUT_CLEANING_INSTRUCTIONS),
            source=TASK_SOURCE,
        )
        self.db.add(task)
        self.db.flush()
        return task

    def _schedule_pre_arrival(self, room: Room, transition: ReservationTransition) -> Optional[HousekeepingTask]:
        if transition.check_in is None:
            return None

        scheduled_at = transition.check_in - PRE_ARRIVAL_LEAD_TIME
        existing = self.db.query(HousekeepingTask).filter(
            HousekeepingTask.reservation_id == transition.reservation_id,
            HousekeepingTask.task_type == HousekeepingTaskType.PRE_ARRIVAL_INSPECTION,
            HousekeepingTask.scheduled_at == scheduled_at
        ).first()
        if existing:
            return None

        task = HousekeepingTask(
            room_id=room.id,
            reservation_id=transition.reservation_id,
            task_type=HousekeepingTaskType.PRE_ARRIVAL_INSPECTION,
            title=f"Pre-Arrival Inspection - Room {room.room_number}",
            description="Final check before guest arrival",
            priority="medium",
            status="scheduled",
            estimated_duration=15,
            scheduled_at=scheduled_at,
            instructions=list(PRE_ARRIVAL_INSTRUCTIONS),
            source=TASK_SOURCE,
        )
        self.db.add(task)
        self.db.flush()
        return task
