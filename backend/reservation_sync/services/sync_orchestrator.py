"""
同步编排 - 渠道配置管理与同步周期

对外只有四个操作：sync_source / test_connection / get_integration_status / setup_source_config。
每个同步周期使用独立的数据库会话；同一渠道的周期由渠道锁串行化，
不同渠道的周期可以并发执行，共享的只有只读的配置映射。
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import threading
from sqlalchemy.orm import Session

from reservation_sync.adapters import get_adapter
from reservation_sync.adapters.base import SourceAdapter
from reservation_sync.config import settings
from reservation_sync.database import SessionLocal
from reservation_sync.exceptions import (
    SourceNotFoundError, SourceInactiveError, SyncInProgressError
)
from reservation_sync.models.ontology import SourceConfig, SourceKind, SyncLog
from reservation_sync.models.schemas import (
    SourceConfigCreate, SyncResult, ConnectionTestResult, IntegrationStatus
)
from reservation_sync.models.events import EventType, SyncCycleData
from reservation_sync.services.event_bus import event_bus, Event
from reservation_sync.services.reconciliation_service import ReconciliationService
from reservation_sync.services.side_effect_dispatcher import SideEffectDispatcher

logger = logging.getLogger(__name__)

SYNC_OPERATION = "booking_sync"
MAX_LOGGED_FAILURES = 20
RECENT_LOG_WINDOW = 100
MAX_STATUS_ERRORS = 10


class SourceLockRegistry:
    """按渠道名分配的互斥锁"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, source_name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(source_name)
            if lock is None:
                lock = self._locks[source_name] = threading.Lock()
            return lock


class SyncOrchestrator:
    """
    同步编排器

    支持依赖注入以便于测试：
    - session_factory: 数据库会话工厂，每个周期/操作新建会话
    - adapter_factory: 按渠道类型创建适配器
    - event_publisher: 事件发布器
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = None,
        adapter_factory: Callable[[SourceKind], SourceAdapter] = None,
        event_publisher: Callable[[Event], None] = None,
        clock: Callable[[], datetime] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory or SessionLocal
        self._adapter_factory = adapter_factory or get_adapter
        self._publish_event = event_publisher or event_bus.publish
        self._clock = clock or datetime.now
        self._lock_timeout = settings.SYNC_LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        self._locks = SourceLockRegistry()
        self._configs: Dict[str, SourceConfig] = {}
        self._config_lock = threading.Lock()
        self._shutdown = threading.Event()
        self.scheduler = None

    # ============== 渠道配置 ==============

    def load_configurations(self) -> int:
        """从数据库加载全部渠道配置（整体替换内存映射）"""
        db = self._session_factory()
        try:
            configs = db.query(SourceConfig).order_by(SourceConfig.id).all()
            db.expunge_all()
        finally:
            db.close()

        with self._config_lock:
            self._configs = {config.name: config for config in configs}
        logger.info(f"Loaded {len(configs)} booking source configurations")
        return len(configs)

    def refresh_configurations(self) -> int:
        """按需重新加载配置并同步定时任务"""
        count = self.load_configurations()
        if self.scheduler is not None:
            self.scheduler.schedule_all()
        return count

    def attach_scheduler(self, scheduler) -> None:
        self.scheduler = scheduler

    def list_configs(self) -> List[SourceConfig]:
        with self._config_lock:
            return list(self._configs.values())

    def get_config(self, source_name: str) -> SourceConfig:
        with self._config_lock:
            config = self._configs.get(source_name)
        if config is None:
            raise SourceNotFoundError(source_name)
        return config

    def setup_source_config(self, data: SourceConfigCreate) -> SourceConfig:
        """新建或更新渠道配置（按名称 upsert）"""
        db = self._session_factory()
        try:
            config = db.query(SourceConfig).filter(SourceConfig.name == data.name).first()
            now = self._clock()
            if config is None:
                config = SourceConfig(name=data.name, created_at=now)
                db.add(config)

            config.kind = data.kind
            config.endpoint = data.endpoint
            config.api_key = data.api_key
            config.secret_key = data.secret_key
            config.version = data.version
            config.is_active = data.is_active
            config.settings = data.settings.model_dump()
            config.updated_at = now

            db.commit()
            db.refresh(config)
            db.expunge(config)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        with self._config_lock:
            configs = dict(self._configs)
            configs[config.name] = config
            self._configs = configs

        if self.scheduler is not None:
            self.scheduler.schedule_source(config)

        logger.info(f"Integration configuration saved for {config.name}")
        return config

    def seed_default_configs(self) -> List[str]:
        """写入默认渠道配置（默认停用），已存在的不覆盖"""
        defaults = [
            SourceConfigCreate(
                name="Opera PMS",
                kind=SourceKind.PMS,
                endpoint=settings.OPERA_PMS_ENDPOINT,
                api_key=settings.OPERA_API_KEY or "",
                version="v1",
                is_active=False,
                settings={
                    "sync_interval": 30, "auto_sync": True, "sync_room_status": True,
                    "sync_rates": True, "sync_inventory": True, "sync_bookings": True,
                },
            ),
            SourceConfigCreate(
                name="Booking.com",
                kind=SourceKind.OTA,
                endpoint=settings.BOOKING_COM_ENDPOINT,
                api_key=settings.BOOKING_COM_API_KEY or "",
                secret_key=settings.BOOKING_COM_SECRET or "",
                version="2.6",
                is_active=False,
                settings={
                    "sync_interval": 60, "auto_sync": True, "sync_room_status": True,
                    "sync_rates": False, "sync_inventory": True, "sync_bookings": True,
                },
            ),
        ]

        with self._config_lock:
            existing = set(self._configs)
        created = []
        for data in defaults:
            if data.name not in existing:
                self.setup_source_config(data)
                created.append(data.name)
        return created

    # ============== 同步周期 ==============

    def sync_source(self, source_name: str) -> SyncResult:
        """
        同步一个渠道

        Raises:
            SourceNotFoundError: 渠道未配置
            SourceInactiveError: 渠道已停用
            SyncInProgressError: 同一渠道的周期在等待时间内未结束
            SourceTransportError: 外部接口失败（已写入失败日志）
        """
        config = self.get_config(source_name)
        if not config.is_active:
            raise SourceInactiveError(source_name)

        lock = self._locks.get(source_name)
        if not lock.acquire(timeout=self._lock_timeout):
            raise SyncInProgressError(source_name)
        try:
            return self._run_cycle(config)
        finally:
            lock.release()

    def run_scheduled_sync(self, source_name: str) -> Optional[SyncResult]:
        """定时任务入口：异常只记录日志，不影响其他渠道和调度线程"""
        try:
            return self.sync_source(source_name)
        except SyncInProgressError:
            logger.info(f"Skipping scheduled sync for {source_name}: previous cycle still running")
        except Exception as e:
            logger.error(f"Scheduled booking sync failed for {source_name}: {e}", exc_info=True)
        return None

    def _run_cycle(self, config: SourceConfig) -> SyncResult:
        name = config.name
        db = self._session_factory()
        try:
            if self._shutdown.is_set():
                summary = "Sync skipped: shutdown in progress"
                self._log_sync(db, name, {"fetched": 0, "created": 0, "updated": 0, "errors": 0,
                                          "error": summary}, success=False)
                return SyncResult(source_name=name, summary=summary, interrupted=True)

            logger.info(f"Syncing bookings from {name}...")
            adapter = self._adapter_factory(config.kind)

            try:
                raw_records = adapter.fetch_raw(config)
            except Exception as e:
                logger.error(f"Booking sync failed for {name}: {e}")
                details = {"fetched": 0, "created": 0, "updated": 0, "errors": 1, "error": str(e)}
                self._log_sync(db, name, details, success=False)
                self._publish_cycle(EventType.SYNC_FAILED, name, details)
                raise

            fetched = len(raw_records)
            created = updated = errors = 0
            failures: List[Dict[str, Any]] = []
            interrupted = False

            reconciler = ReconciliationService(db, event_publisher=self._publish_event, clock=self._clock)
            dispatcher = SideEffectDispatcher(db, event_publisher=self._publish_event, clock=self._clock)

            for index, raw in enumerate(raw_records):
                if self._shutdown.is_set():
                    # 未处理的记录计为错误，保证 created + updated + errors == fetched
                    errors += fetched - index
                    interrupted = True
                    logger.warning(f"Sync for {name} interrupted by shutdown, {fetched - index} records not processed")
                    break

                external_id = None
                try:
                    canonical = adapter.normalize(raw)
                    external_id = canonical.external_id
                    result = reconciler.persist(canonical, name)
                    dispatcher.dispatch(result.transition)
                    if result.is_new:
                        created += 1
                    else:
                        updated += 1
                except Exception as e:
                    db.rollback()
                    errors += 1
                    external_id = external_id or getattr(e, "external_id", None) or _raw_identifier(raw)
                    logger.error(f"Failed to process booking {external_id} from {name}: {e}", exc_info=True)
                    if len(failures) < MAX_LOGGED_FAILURES:
                        failures.append({"external_id": external_id, "error": str(e)})

            summary = f"Sync completed: {created} created, {updated} updated, {errors} errors"
            if interrupted:
                summary = f"Sync interrupted: {created} created, {updated} updated, {errors} errors"

            details: Dict[str, Any] = {
                "fetched": fetched, "created": created, "updated": updated, "errors": errors,
            }
            if failures:
                details["failures"] = failures
            if errors:
                details["error"] = f"{errors} of {fetched} bookings failed"
            if interrupted:
                details["interrupted"] = True

            self._log_sync(db, name, details, success=errors == 0)
            self._publish_cycle(EventType.SYNC_COMPLETED, name, details)
            logger.info(f"{name}: {summary}")

            return SyncResult(
                source_name=name,
                fetched=fetched,
                created=created,
                updated=updated,
                errors=errors,
                summary=summary,
                interrupted=interrupted,
            )
        finally:
            db.close()

    def _log_sync(self, db: Session, source_name: str, details: Dict[str, Any], success: bool) -> None:
        """写入同步日志"""
        db.add(SyncLog(
            source_name=source_name,
            operation=SYNC_OPERATION,
            details=details,
            timestamp=self._clock(),
            success=success,
        ))
        db.commit()

    def _publish_cycle(self, event_type: EventType, source_name: str, details: Dict[str, Any]) -> None:
        self._publish_event(Event(
            event_type=event_type,
            timestamp=self._clock(),
            data=SyncCycleData(
                source_name=source_name,
                fetched=details.get("fetched", 0),
                created=details.get("created", 0),
                updated=details.get("updated", 0),
                errors=details.get("errors", 0),
                error=details.get("error", ""),
            ).to_dict(),
            source="sync_orchestrator"
        ))

    def shutdown(self) -> None:
        """通知进行中的周期停止处理后续记录"""
        self._shutdown.set()
        logger.info("Sync orchestrator shutting down")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown.is_set()

    # ============== 运维查询 ==============

    def test_connection(self, source_name: str) -> ConnectionTestResult:
        """连通性探测，不读写预订数据"""
        config = self.get_config(source_name)
        adapter = self._adapter_factory(config.kind)
        outcome = adapter.health_check(config, timeout=settings.HEALTH_CHECK_TIMEOUT)
        return ConnectionTestResult(source_name=source_name, **outcome)

    def get_integration_status(self) -> IntegrationStatus:
        """渠道数量、各渠道最近同步时间与最近的失败"""
        configs = self.list_configs()
        db = self._session_factory()
        try:
            logs = db.query(SyncLog).order_by(
                SyncLog.timestamp.desc(), SyncLog.id.desc()
            ).limit(RECENT_LOG_WINDOW).all()
        finally:
            db.close()

        last_sync_times: Dict[str, datetime] = {}
        errors: List[str] = []
        for log in logs:
            last_sync_times.setdefault(log.source_name, log.timestamp)
            if not log.success:
                errors.append(f"{log.source_name}: {(log.details or {}).get('error') or 'Unknown error'}")

        return IntegrationStatus(
            total_systems=len(configs),
            active_systems=sum(1 for c in configs if c.is_active),
            last_sync_times=last_sync_times,
            errors=errors[:MAX_STATUS_ERRORS],
        )

    def list_sync_logs(self, source_name: Optional[str] = None, limit: int = 50) -> List[SyncLog]:
        db = self._session_factory()
        try:
            query = db.query(SyncLog)
            if source_name:
                query = query.filter(SyncLog.source_name == source_name)
            logs = query.order_by(SyncLog.timestamp.desc(), SyncLog.id.desc()).limit(limit).all()
            db.expunge_all()
            return logs
        finally:
            db.close()


def _raw_identifier(raw: Any) -> Optional[str]:
    """从原始记录里尽量取出一个可读的编号用于日志"""
    if not isinstance(raw, dict):
        return None
    for key in ("id", "reservation_id", "booking_id", "_id"):
        if raw.get(key):
            return str(raw[key])
    return None
