# Scheduling
from reservation_sync.scheduler.backend import ISchedulerBackend, APSchedulerBackend
from reservation_sync.scheduler.sync_scheduler import SyncScheduler, job_id_for

__all__ = ['ISchedulerBackend', 'APSchedulerBackend', 'SyncScheduler', 'job_id_for']
