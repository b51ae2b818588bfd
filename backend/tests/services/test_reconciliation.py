"""
对账服务测试
覆盖新建/更新决策、兜底匹配、并发插入回退和日期变更后的房间复核
"""
import logging
from datetime import datetime
from unittest.mock import patch

import pytest

from reservation_sync.models.events import EventType
from reservation_sync.models.ontology import (
    HousekeepingTask, HousekeepingTaskType, Reservation, ReservationStatus, RoomStatus
)
from reservation_sync.services.reconciliation_service import ReconciliationService
from reservation_sync.services.side_effect_dispatcher import SideEffectDispatcher

SOURCE = "Opera PMS"


@pytest.fixture
def reconciler(db_session, events, clock):
    dispatcher = SideEffectDispatcher(db_session, event_publisher=events.append, clock=clock)
    return ReconciliationService(db_session, dispatcher=dispatcher, event_publisher=events.append, clock=clock)


@pytest.fixture
def next_cycle(db_session, events, clock):
    """下一个同步周期使用的新对账服务"""
    def _make():
        dispatcher = SideEffectDispatcher(db_session, event_publisher=events.append, clock=clock)
        return ReconciliationService(db_session, dispatcher=dispatcher, event_publisher=events.append, clock=clock)
    return _make


class TestCreate:

    def test_new_booking_assigned_and_reserved(self, db_session, reconciler, deluxe_room, make_canonical):
        """新预订：分配房间、房间置为 reserved、入住前 4 小时安排查房"""
        result = reconciler.reconcile(make_canonical(), SOURCE)

        assert result.is_new
        reservation = db_session.get(Reservation, result.reservation_id)
        assert reservation.room_id == deluxe_room.id
        assert reservation.source_name == SOURCE
        assert reservation.external_id == "X1"
        assert reservation.is_external
        assert reservation.last_sync_at == datetime(2024, 7, 1, 12, 0)

        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.RESERVED

        task = db_session.query(HousekeepingTask).one()
        assert task.task_type == HousekeepingTaskType.PRE_ARRIVAL_INSPECTION
        assert task.scheduled_at == datetime(2024, 7, 9, 20, 0)

    def test_stored_without_room(self, db_session, reconciler, make_canonical):
        """无可用房间时预订照常入库"""
        result = reconciler.reconcile(make_canonical(), SOURCE)

        reservation = db_session.get(Reservation, result.reservation_id)
        assert reservation.room_id is None
        assert db_session.query(HousekeepingTask).count() == 0

    def test_metadata_keeps_reported_source(self, db_session, reconciler, make_canonical):
        result = reconciler.reconcile(
            make_canonical(source="booking.com", metadata={"ota_id": "B-1"}), "Booking.com"
        )

        reservation = db_session.get(Reservation, result.reservation_id)
        assert reservation.source_metadata == {"ota_id": "B-1", "reported_source": "booking.com"}

    def test_publishes_synced_event(self, reconciler, deluxe_room, make_canonical, events):
        reconciler.reconcile(make_canonical(), SOURCE)

        synced = [e for e in events if e.event_type == EventType.RESERVATION_SYNCED]
        assert len(synced) == 1
        assert synced[0].data["is_new"] is True
        assert synced[0].data["new_status"] == "confirmed"
        assert synced[0].data["room_id"] == deluxe_room.id

    def test_overlapping_bookings_get_different_rooms(self, db_session, reconciler, make_room, make_canonical):
        first_room = make_room("201", "Deluxe")
        second_room = make_room("202", "Deluxe")

        first = reconciler.reconcile(make_canonical(external_id="X1", guest_email="a@b.com"), SOURCE)
        second = reconciler.reconcile(make_canonical(external_id="X2", guest_email="c@d.com"), SOURCE)

        assert db_session.get(Reservation, first.reservation_id).room_id == first_room.id
        assert db_session.get(Reservation, second.reservation_id).room_id == second_room.id


class TestUpdate:

    def test_resync_same_record_updates(self, db_session, reconciler, deluxe_room, make_canonical, events):
        """同一条记录再次同步：更新而非新建，状态未变不产生副作用"""
        reconciler.reconcile(make_canonical(), SOURCE)
        events.clear()

        result = reconciler.reconcile(make_canonical(guest_name="Alice C."), SOURCE)

        assert not result.is_new
        assert db_session.query(Reservation).count() == 1
        assert db_session.get(Reservation, result.reservation_id).guest_name == "Alice C."
        assert db_session.query(HousekeepingTask).count() == 1
        assert [e.event_type for e in events] == [EventType.RESERVATION_SYNCED]

    def test_checked_out_resync(self, db_session, reconciler, deluxe_room, make_canonical):
        """再次同步为 checked_out：房间转为清洁中并安排退房清洁"""
        reconciler.reconcile(make_canonical(), SOURCE)

        result = reconciler.reconcile(make_canonical(status="checked_out"), SOURCE)

        assert result.transition.previous_status == ReservationStatus.CONFIRMED
        assert result.transition.new_status == ReservationStatus.CHECKED_OUT
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.CLEANING
        cleaning = db_session.query(HousekeepingTask).filter(
            HousekeepingTask.task_type == HousekeepingTaskType.CHECKOUT_CLEANING
        ).all()
        assert len(cleaning) == 1

    def test_cancel_frees_room(self, db_session, reconciler, deluxe_room, make_canonical):
        reconciler.reconcile(make_canonical(), SOURCE)
        reconciler.reconcile(make_canonical(status="cancelled"), SOURCE)

        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.AVAILABLE
        assert db_session.query(Reservation).one().status == ReservationStatus.CANCELLED

    def test_fallback_match_by_guest_and_stay(self, db_session, reconciler, next_cycle, deluxe_room,
                                              make_canonical, caplog):
        """下一周期换了外部编号但客人邮箱和日期相同：视为同一预订"""
        reconciler.reconcile(make_canonical(external_id="X1"), SOURCE)

        with caplog.at_level(logging.WARNING, logger="reservation_sync.services.reconciliation_service"):
            result = next_cycle().reconcile(make_canonical(external_id="X1-R", guest_email="A@B.com "), SOURCE)

        assert not result.is_new
        assert db_session.query(Reservation).count() == 1
        assert db_session.query(Reservation).one().external_id == "X1-R"
        assert "external id X1 -> X1-R" in caplog.text

    def test_same_batch_bookings_not_merged(self, db_session, reconciler, next_cycle, make_room, make_canonical):
        """同一客人同日期在同一渠道订两间房：两张预订，外部编号稳定"""
        make_room("201", "Deluxe")
        make_room("202", "Deluxe")

        first = reconciler.reconcile(make_canonical(external_id="X1"), SOURCE)
        second = reconciler.reconcile(make_canonical(external_id="X2"), SOURCE)

        assert second.is_new
        assert first.reservation_id != second.reservation_id

        cycle = next_cycle()
        again_first = cycle.reconcile(make_canonical(external_id="X1"), SOURCE)
        again_second = cycle.reconcile(make_canonical(external_id="X2"), SOURCE)

        assert again_first.reservation_id == first.reservation_id
        assert again_second.reservation_id == second.reservation_id
        assert sorted(r.external_id for r in db_session.query(Reservation)) == ["X1", "X2"]

    def test_cross_source_match_keeps_identity(self, db_session, reconciler, deluxe_room, make_canonical):
        """其他渠道的重复预订合并到已有记录，原渠道身份不变"""
        reconciler.reconcile(make_canonical(external_id="X1"), SOURCE)

        result = reconciler.reconcile(make_canonical(external_id="B-77", source="booking.com"), "Booking.com")

        assert not result.is_new
        reservation = db_session.query(Reservation).one()
        assert reservation.source_name == SOURCE
        assert reservation.external_id == "X1"

    def test_empty_email_never_fallback_matches(self, db_session, reconciler, make_room, make_canonical):
        make_room("201", "Deluxe")
        make_room("202", "Deluxe")

        reconciler.reconcile(make_canonical(external_id="X1", guest_email=""), SOURCE)
        result = reconciler.reconcile(make_canonical(external_id="X2", guest_email=""), SOURCE)

        assert result.is_new
        assert db_session.query(Reservation).count() == 2


class TestRoomReverification:

    def test_date_change_into_conflict_releases_room(
        self, db_session, reconciler, deluxe_room, make_canonical, events
    ):
        reconciler.reconcile(make_canonical(external_id="X1", guest_email="a@b.com"), SOURCE)
        # 只有 available/cleaning 的房间参与排房，前台手动放开房态后接续预订才能排进同一间
        deluxe_room.status = RoomStatus.AVAILABLE
        db_session.commit()
        second = reconciler.reconcile(make_canonical(
            external_id="X2", guest_email="c@d.com",
            check_in=datetime(2024, 7, 12), check_out=datetime(2024, 7, 14)
        ), SOURCE)
        assert db_session.get(Reservation, second.reservation_id).room_id == deluxe_room.id

        result = reconciler.reconcile(make_canonical(
            external_id="X2", guest_email="c@d.com",
            check_in=datetime(2024, 7, 11), check_out=datetime(2024, 7, 14)
        ), SOURCE)

        assert db_session.get(Reservation, result.reservation_id).room_id is None
        released = [e for e in events if e.event_type == EventType.RESERVATION_ROOM_RELEASED]
        assert len(released) == 1
        assert released[0].data["room_id"] == deluxe_room.id

    def test_date_change_without_conflict_keeps_room(self, db_session, reconciler, deluxe_room, make_canonical):
        reconciler.reconcile(make_canonical(), SOURCE)

        result = reconciler.reconcile(make_canonical(check_out=datetime(2024, 7, 13)), SOURCE)

        assert db_session.get(Reservation, result.reservation_id).room_id == deluxe_room.id

    def test_reactivated_booking_rechecked(self, db_session, reconciler, deluxe_room, make_canonical):
        """取消后房间被他人占用，原预订恢复时释放房间"""
        reconciler.reconcile(make_canonical(external_id="X1", guest_email="a@b.com"), SOURCE)
        reconciler.reconcile(make_canonical(external_id="X1", guest_email="a@b.com", status="cancelled"), SOURCE)
        other = reconciler.reconcile(make_canonical(external_id="X2", guest_email="c@d.com"), SOURCE)
        assert db_session.get(Reservation, other.reservation_id).room_id == deluxe_room.id

        result = reconciler.reconcile(make_canonical(external_id="X1", guest_email="a@b.com"), SOURCE)

        assert db_session.get(Reservation, result.reservation_id).room_id is None
        assert db_session.get(Reservation, other.reservation_id).room_id == deluxe_room.id


class TestConcurrentInsert:

    def test_integrity_error_falls_back_to_update(self, db_session, reconciler, deluxe_room, make_canonical):
        """匹配查询漏掉并发插入的记录时，唯一约束冲突转为更新"""
        reconciler.reconcile(make_canonical(), SOURCE)

        with patch.object(ReconciliationService, "find_match", return_value=None):
            result = reconciler.persist(make_canonical(guest_name="Alice Updated"), SOURCE)

        assert not result.is_new
        assert db_session.query(Reservation).count() == 1
        assert db_session.query(Reservation).one().guest_name == "Alice Updated"


class TestPersistOnly:

    def test_persist_skips_side_effects(self, db_session, events, clock, deluxe_room, make_canonical):
        service = ReconciliationService(db_session, event_publisher=events.append, clock=clock)

        result = service.reconcile(make_canonical(), SOURCE)

        assert result.dispatch is None
        assert result.transition.is_new
        assert result.transition.room_id == deluxe_room.id
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.AVAILABLE


def assert_no_overlap_in_rooms(db_session):
    """同一房间内未取消的预订区间两两不重叠"""
    held = db_session.query(Reservation).filter(
        Reservation.room_id.isnot(None),
        Reservation.status != ReservationStatus.CANCELLED
    ).all()
    for a in held:
        for b in held:
            if a.id < b.id and a.room_id == b.room_id:
                assert not (a.check_in < b.check_out and b.check_in < a.check_out), \
                    f"reservations {a.id} and {b.id} overlap in room {a.room_id}"


class TestRoomHolding:

    @pytest.mark.parametrize("status", [s.value for s in ReservationStatus])
    def test_no_shared_room_for_any_status(self, db_session, reconciler, deluxe_room, make_canonical, status):
        """先入库任意状态的预订，再来一张重叠的 confirmed：不会排进同一间房"""
        first = reconciler.reconcile(make_canonical(external_id="X1", status=status), SOURCE)
        # 前台手动放开房态，排房只能靠可用性检查拦住
        deluxe_room.status = RoomStatus.AVAILABLE
        db_session.commit()

        second = reconciler.reconcile(make_canonical(external_id="X2", guest_email="c@d.com"), SOURCE)

        assert_no_overlap_in_rooms(db_session)
        first_room = db_session.get(Reservation, first.reservation_id).room_id
        second_room = db_session.get(Reservation, second.reservation_id).room_id
        if status == "cancelled":
            assert first_room is None
            assert second_room == deluxe_room.id
        else:
            assert first_room == deluxe_room.id
            assert second_room is None

    def test_modified_update_keeps_room_blocked(self, db_session, reconciler, deluxe_room, make_canonical):
        reconciler.reconcile(make_canonical(external_id="X1"), SOURCE)
        reconciler.reconcile(make_canonical(external_id="X1", status="modified"), SOURCE)
        deluxe_room.status = RoomStatus.AVAILABLE
        db_session.commit()

        other = reconciler.reconcile(make_canonical(external_id="X2", guest_email="c@d.com"), SOURCE)

        assert db_session.get(Reservation, other.reservation_id).room_id is None
        assert_no_overlap_in_rooms(db_session)

    def test_new_cancelled_booking_gets_no_room(self, db_session, reconciler, deluxe_room, make_canonical):
        result = reconciler.reconcile(make_canonical(status="cancelled"), SOURCE)

        assert db_session.get(Reservation, result.reservation_id).room_id is None
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.AVAILABLE


class TestDispatchRetry:

    def test_failed_dispatch_repeated_on_next_sync(self, db_session, next_cycle, deluxe_room, make_canonical):
        """分发失败后预订已保存，下一次同步同一状态时补做副作用"""
        cycle = next_cycle()
        with patch.object(SideEffectDispatcher, "_apply_side_effects", side_effect=RuntimeError("room table locked")):
            with pytest.raises(RuntimeError):
                cycle.reconcile(make_canonical(), SOURCE)

        reservation = db_session.query(Reservation).one()
        assert reservation.dispatched_status is None
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.AVAILABLE

        result = next_cycle().reconcile(make_canonical(), SOURCE)

        assert not result.is_new
        assert result.transition.is_new
        assert result.transition.status_changed
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.RESERVED
        assert db_session.query(HousekeepingTask).count() == 1
        assert db_session.get(Reservation, result.reservation_id).dispatched_status == ReservationStatus.CONFIRMED

    def test_failed_checkout_dispatch_retried(self, db_session, reconciler, next_cycle, deluxe_room, make_canonical):
        reconciler.reconcile(make_canonical(), SOURCE)

        with patch.object(SideEffectDispatcher, "_schedule_checkout_cleaning",
                          side_effect=RuntimeError("housekeeping unavailable")):
            with pytest.raises(RuntimeError):
                next_cycle().reconcile(make_canonical(status="checked_out"), SOURCE)

        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.RESERVED

        result = next_cycle().reconcile(make_canonical(status="checked_out"), SOURCE)

        assert result.transition.previous_status == ReservationStatus.CONFIRMED
        db_session.refresh(deluxe_room)
        assert deluxe_room.status == RoomStatus.CLEANING
        assert db_session.query(HousekeepingTask).filter(
            HousekeepingTask.task_type == HousekeepingTaskType.CHECKOUT_CLEANING
        ).count() == 1

    def test_dispatched_status_stops_repeat(self, db_session, reconciler, deluxe_room, make_canonical):
        reconciler.reconcile(make_canonical(status="checked_out"), SOURCE)
        reconciler.reconcile(make_canonical(status="checked_out"), SOURCE)

        assert db_session.query(HousekeepingTask).count() == 1
        assert db_session.query(Reservation).one().dispatched_status == ReservationStatus.CHECKED_OUT
