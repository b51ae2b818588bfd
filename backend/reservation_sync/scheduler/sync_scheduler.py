"""
同步调度
每个启用且开启自动同步的渠道一个定时周期任务，周期之间互不共享可变状态
"""
import logging
from typing import TYPE_CHECKING, List

from reservation_sync.models.ontology import SourceConfig
from reservation_sync.scheduler.backend import ISchedulerBackend

if TYPE_CHECKING:
    from reservation_sync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

JOB_PREFIX = "sync:"


def job_id_for(source_name: str) -> str:
    return f"{JOB_PREFIX}{source_name}"


def _sync_settings(config: SourceConfig) -> dict:
    return config.settings or {}


class SyncScheduler:
    """渠道同步定时器"""

    def __init__(self, orchestrator: "SyncOrchestrator", backend: ISchedulerBackend):
        self.orchestrator = orchestrator
        self.backend = backend

    def should_schedule(self, config: SourceConfig) -> bool:
        options = _sync_settings(config)
        return bool(config.is_active and options.get("auto_sync", True) and options.get("sync_bookings", True))

    def schedule_source(self, config: SourceConfig) -> bool:
        """按配置添加/替换/移除渠道定时任务，返回是否已排期"""
        job_id = job_id_for(config.name)
        if not self.should_schedule(config):
            self.backend.remove_job(job_id)
            return False

        minutes = int(_sync_settings(config).get("sync_interval") or 30)
        self.backend.add_job(
            job_id,
            self.orchestrator.run_scheduled_sync,
            "interval",
            minutes=minutes,
            args=[config.name],
            name=f"Booking sync: {config.name}",
        )
        logger.info(f"Scheduled booking sync for {config.name} every {minutes} min")
        return True

    def schedule_all(self) -> List[str]:
        """为已加载的全部配置排期，返回已排期的渠道名"""
        scheduled = []
        for config in self.orchestrator.list_configs():
            if self.schedule_source(config):
                scheduled.append(config.name)
        return scheduled

    def start(self) -> None:
        self.schedule_all()
        self.backend.start()

    def shutdown(self) -> None:
        self.backend.shutdown(wait=False)
