"""
Pytest 配置和共享 fixtures
"""
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reservation_sync.adapters import get_adapter
from reservation_sync.database import Base
from reservation_sync.models import ontology  # noqa
from reservation_sync.models.ontology import Room, RoomStatus, SourceConfig, SourceKind
from reservation_sync.models.schemas import CanonicalBooking
from reservation_sync.services.sync_orchestrator import SyncOrchestrator


FIXED_NOW = datetime(2024, 7, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """会话工厂（编排器每个周期新建会话）"""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """创建数据库会话"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def events():
    """收集发布的事件"""
    return []


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


# ============== 实体相关 Fixtures ==============

@pytest.fixture
def make_room(db_session):
    """创建房间"""
    def _make(room_number="101", room_type="Deluxe", status=RoomStatus.AVAILABLE, floor=1):
        room = Room(room_number=room_number, room_type=room_type, status=status, floor=floor)
        db_session.add(room)
        db_session.commit()
        db_session.refresh(room)
        return room
    return _make


@pytest.fixture
def deluxe_room(make_room):
    return make_room("101", "Deluxe")


@pytest.fixture
def make_canonical():
    """创建标准化预订，未指定的字段使用默认值"""
    def _make(**overrides):
        fields = dict(
            external_id="X1",
            source="pms",
            guest_name="Alice Chen",
            guest_email="a@b.com",
            guest_phone="",
            room_type="Deluxe",
            check_in=datetime(2024, 7, 10),
            check_out=datetime(2024, 7, 12),
            number_of_guests=2,
            total_amount=Decimal("320.00"),
            currency="USD",
            status="confirmed",
        )
        fields.update(overrides)
        return CanonicalBooking(**fields)
    return _make


# ============== 渠道相关 Fixtures ==============

def mock_client_factory(handler):
    """返回使用 httpx.MockTransport 的客户端工厂"""
    def _factory(timeout):
        return httpx.Client(transport=httpx.MockTransport(handler), timeout=timeout)
    return _factory


@pytest.fixture
def pms_config():
    return SourceConfig(
        name="Opera PMS",
        kind=SourceKind.PMS,
        endpoint="https://pms.example.com",
        api_key="pms-key",
        version="v1",
        is_active=True,
        settings={"sync_interval": 30, "auto_sync": True, "sync_bookings": True},
    )


@pytest.fixture
def make_orchestrator(session_factory, events, clock):
    """创建编排器，handler 处理所有外部 HTTP 请求"""
    def _make(handler, **kwargs):
        client_factory = mock_client_factory(handler)
        kwargs.setdefault("lock_timeout", 0.05)
        return SyncOrchestrator(
            session_factory=session_factory,
            adapter_factory=lambda kind: get_adapter(kind, client_factory=client_factory, clock=clock),
            event_publisher=events.append,
            clock=clock,
            **kwargs
        )
    return _make
