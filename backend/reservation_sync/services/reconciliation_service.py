"""
对账服务 - 标准化预订的新建/更新决策
先写预订并提交，再把状态迁移事件交给副作用分发器

匹配顺序：
1. (source_name, external_id) 精确匹配
2. (guest_email, check_in, check_out) 兜底匹配，识别换了外部编号的重复导入和跨渠道重复
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Set, Tuple
import logging
import threading
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reservation_sync.models.ontology import Reservation, ReservationStatus, ROOM_HOLDING_STATUSES
from reservation_sync.models.schemas import CanonicalBooking
from reservation_sync.models.events import (
    EventType, ReservationTransition, ReservationSyncedData, RoomReleasedData
)
from reservation_sync.services.availability_service import AvailabilityChecker
from reservation_sync.services.room_assignment import RoomAssignmentResolver
from reservation_sync.services.side_effect_dispatcher import SideEffectDispatcher, DispatchResult
from reservation_sync.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

# 排房 + 插入之间持有，避免并发周期把同一间房分给两张重叠的预订
_assignment_lock = threading.Lock()


@dataclass
class ReconcileResult:
    """对账结果"""
    is_new: bool
    reservation_id: int
    transition: ReservationTransition
    previous_status: Optional[ReservationStatus] = None
    dispatch: Optional[DispatchResult] = None


class ReconciliationService:
    """
    对账服务

    一个实例对应一个同步批次，批次内已处理的预订不会被兜底匹配合并。

    支持依赖注入：
    - room_resolver: 排房服务
    - dispatcher: 副作用分发器；为 None 时 reconcile 只写预订，由调用方自行分发 transition
    - event_publisher: 事件发布器
    """

    def __init__(
        self,
        db: Session,
        room_resolver: Optional[RoomAssignmentResolver] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        event_publisher: Callable[[Event], None] = None,
        clock: Callable[[], datetime] = None,
    ):
        self.db = db
        self.availability = AvailabilityChecker(db)
        self.room_resolver = room_resolver or RoomAssignmentResolver(db, self.availability)
        self.dispatcher = dispatcher
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or datetime.now
        # 本实例已处理的 (source_name, external_id)，兜底匹配不会合并到这些预订上
        self._processed: Set[Tuple[str, str]] = set()

    # ============== 匹配 ==============

    def find_by_external_id(self, source_name: str, external_id: str) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.source_name == source_name,
            Reservation.external_id == external_id
        ).first()

    def find_match(self, canonical: CanonicalBooking, source_name: str) -> Optional[Reservation]:
        """按优先级查找已存在的预订"""
        reservation = self.find_by_external_id(source_name, canonical.external_id)
        if reservation:
            return reservation

        if not canonical.guest_email:
            return None

        candidates = self.db.query(Reservation).filter(
            Reservation.guest_email == canonical.guest_email,
            Reservation.check_in == canonical.check_in,
            Reservation.check_out == canonical.check_out
        ).order_by(Reservation.id).all()
        for candidate in candidates:
            # 本渠道同一批次里已处理过的预订是另一张订单（如同一客人订多间房），不做合并
            if candidate.source_name == source_name and (source_name, candidate.external_id) in self._processed:
                continue
            return candidate
        return None

    # ============== 对账 ==============

    def reconcile(self, canonical: CanonicalBooking, source_name: str) -> ReconcileResult:
        """
        对账一条标准化预订

        预订写入提交后才分发副作用；分发失败时异常继续抛出，但预订已保存。
        """
        result = self.persist(canonical, source_name)
        if self.dispatcher is not None:
            result.dispatch = self.dispatcher.dispatch(result.transition)
        return result

    def persist(self, canonical: CanonicalBooking, source_name: str) -> ReconcileResult:
        """只做新建/更新决策和预订写入"""
        existing = self.find_match(canonical, source_name)
        if existing:
            result = self._update(existing, canonical, source_name)
        else:
            result = self._create(canonical, source_name)

        transition = result.transition
        self._publish_event(Event(
            event_type=EventType.RESERVATION_SYNCED,
            timestamp=self._clock(),
            data=ReservationSyncedData(
                reservation_id=transition.reservation_id,
                source_name=source_name,
                external_id=canonical.external_id,
                is_new=result.is_new,
                old_status=result.previous_status.value if result.previous_status else "",
                new_status=transition.new_status.value,
                room_id=transition.room_id,
            ).to_dict(),
            source="reconciliation_service"
        ))
        return result

    def _create(self, canonical: CanonicalBooking, source_name: str) -> ReconcileResult:
        with _assignment_lock:
            room = None
            if canonical.status in ROOM_HOLDING_STATUSES:
                room = self.room_resolver.assign_room(canonical.room_type, canonical.check_in, canonical.check_out)

            now = self._clock()
            reservation = Reservation(
                room_id=room.id if room else None,
                is_external=True,
                created_at=now,
            )
            self._apply_canonical(reservation, canonical, source_name, now, keep_identity=False)
            self.db.add(reservation)
            try:
                self.db.commit()
            except IntegrityError:
                # 另一个周期已插入同一 (source, external_id)，转为更新
                self.db.rollback()
                existing = self.find_by_external_id(source_name, canonical.external_id)
                if existing is None:
                    raise
                logger.info(
                    f"Reservation {source_name}/{canonical.external_id} inserted concurrently, "
                    f"falling back to update"
                )
                return self._update(existing, canonical, source_name)

        self.db.refresh(reservation)
        self._processed.add((reservation.source_name, reservation.external_id))
        if room is not None:
            logger.info(
                f"Created reservation {reservation.id} ({source_name}/{canonical.external_id}) "
                f"in room {room.room_number}"
            )
        elif canonical.status in ROOM_HOLDING_STATUSES:
            logger.warning(
                f"Reservation {reservation.id} ({source_name}/{canonical.external_id}) "
                f"stored without room, needs manual assignment"
            )
        else:
            logger.info(
                f"Created {canonical.status.value} reservation {reservation.id} "
                f"({source_name}/{canonical.external_id}) without room"
            )

        return ReconcileResult(
            is_new=True,
            reservation_id=reservation.id,
            transition=self._transition(reservation, source_name, canonical, now),
        )

    def _update(self, reservation: Reservation, canonical: CanonicalBooking, source_name: str) -> ReconcileResult:
        previous_status = reservation.status
        previous_stay = (reservation.check_in, reservation.check_out)
        previous_external_id = reservation.external_id
        now = self._clock()

        # 跨渠道兜底匹配时保留原渠道身份，避免两个渠道轮流改写
        keep_identity = reservation.source_name is not None and reservation.source_name != source_name
        self._apply_canonical(reservation, canonical, source_name, now, keep_identity=keep_identity)

        released_room_id = None
        if reservation.room_id is not None and reservation.status in ROOM_HOLDING_STATUSES:
            stay_changed = (reservation.check_in, reservation.check_out) != previous_stay
            reactivated = previous_status not in ROOM_HOLDING_STATUSES
            if (stay_changed or reactivated) and not self.availability.is_available(
                reservation.room_id, reservation.check_in, reservation.check_out,
                exclude_reservation_id=reservation.id
            ):
                released_room_id = reservation.room_id
                reservation.room_id = None

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(reservation)
        self._processed.add((reservation.source_name, reservation.external_id))

        if previous_external_id is not None and previous_external_id != reservation.external_id:
            logger.warning(
                f"Reservation {reservation.id} matched by guest email and stay, "
                f"external id {previous_external_id} -> {reservation.external_id} ({source_name})"
            )

        if released_room_id is not None:
            logger.warning(
                f"Reservation {reservation.id} now overlaps another booking in room {released_room_id}, "
                f"room released for manual assignment"
            )
            self._publish_event(Event(
                event_type=EventType.RESERVATION_ROOM_RELEASED,
                timestamp=now,
                data=RoomReleasedData(
                    reservation_id=reservation.id,
                    room_id=released_room_id,
                    reason="stay overlaps another reservation holding the room",
                ).to_dict(),
                source="reconciliation_service"
            ))

        if previous_status != reservation.status:
            logger.info(
                f"Updated reservation {reservation.id} ({source_name}/{canonical.external_id}): "
                f"{previous_status.value} -> {reservation.status.value}"
            )

        return ReconcileResult(
            is_new=False,
            reservation_id=reservation.id,
            transition=self._transition(reservation, source_name, canonical, now),
            previous_status=previous_status,
        )

    def _transition(self, reservation: Reservation, source_name: str, canonical: CanonicalBooking,
                    now: datetime) -> ReservationTransition:
        """
        以最近一次成功分发的状态为起点构造迁移

        分发失败时 dispatched_status 不变，下一次同步会重新分发同一迁移。
        """
        return ReservationTransition(
            timestamp=now,
            reservation_id=reservation.id,
            source_name=source_name,
            external_id=canonical.external_id,
            room_id=reservation.room_id,
            previous_status=reservation.dispatched_status,
            new_status=reservation.status,
            check_in=reservation.check_in,
            check_out=reservation.check_out,
            is_new=reservation.dispatched_status is None,
        )

    def _apply_canonical(self, reservation: Reservation, canonical: CanonicalBooking,
                         source_name: str, now: datetime, keep_identity: bool) -> None:
        """把标准化预订的全部字段合并到预订上"""
        if not keep_identity:
            reservation.external_id = canonical.external_id
            reservation.source_name = source_name
        reservation.guest_name = canonical.guest_name
        reservation.guest_email = canonical.guest_email
        reservation.guest_phone = canonical.guest_phone
        reservation.room_type = canonical.room_type
        reservation.requested_room_number = canonical.room_number
        reservation.check_in = canonical.check_in
        reservation.check_out = canonical.check_out
        reservation.number_of_guests = canonical.number_of_guests
        reservation.total_amount = canonical.total_amount
        reservation.currency = canonical.currency
        reservation.status = canonical.status
        reservation.booking_date = canonical.booking_date
        reservation.special_requests = canonical.special_requests
        reservation.source_metadata = {**canonical.metadata, "reported_source": canonical.source}
        reservation.last_sync_at = now
        reservation.updated_at = now
