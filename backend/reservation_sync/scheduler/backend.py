"""
调度器后端：定时任务抽象与 APScheduler 实现
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


class ISchedulerBackend(ABC):
    """调度后端接口"""

    @abstractmethod
    def start(self) -> None:
        """启动调度"""

    @abstractmethod
    def shutdown(self, wait: bool = False) -> None:
        """停止调度"""

    @abstractmethod
    def add_job(self, job_id: str, func: Callable, trigger: str, **trigger_args) -> None:
        """添加（或替换）定时任务

        Args:
            job_id: 任务唯一标识
            func: 要执行的函数
            trigger: 触发器类型（'cron', 'interval', 'date'）
            **trigger_args: 触发器参数
        """

    @abstractmethod
    def remove_job(self, job_id: str) -> None:
        """移除任务，不存在时忽略"""


class APSchedulerBackend(ISchedulerBackend):
    """基于 APScheduler BackgroundScheduler 的后端，任务在线程池中执行"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler()

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Sync scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Sync scheduler stopped")

    def add_job(self, job_id: str, func: Callable, trigger: str, **trigger_args) -> None:
        self._scheduler.add_job(
            func,
            trigger,
            id=job_id,
            name=trigger_args.pop("name", job_id),
            args=trigger_args.pop("args", None),
            max_instances=trigger_args.pop("max_instances", 1),
            coalesce=trigger_args.pop("coalesce", True),
            replace_existing=True,
            **trigger_args,
        )

    def remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug(f"Job {job_id} not scheduled, nothing to remove")

