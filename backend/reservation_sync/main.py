"""
Reservation Sync 主应用入口
外部预订渠道同步核心：拉取、标准化、对账、排房、房态与保洁联动
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from reservation_sync.config import settings
from reservation_sync.database import init_db
from reservation_sync.routers import integrations
from reservation_sync.scheduler import APSchedulerBackend, SyncScheduler
from reservation_sync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    """Setup logging configuration"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    setup_logging("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
    init_db()

    orchestrator = SyncOrchestrator()
    orchestrator.load_configurations()
    if settings.SEED_DEFAULT_SOURCES:
        seeded = orchestrator.seed_default_configs()
        if seeded:
            logger.info(f"Seeded default booking sources: {', '.join(seeded)}")
    app.state.orchestrator = orchestrator

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SyncScheduler(orchestrator, APSchedulerBackend())
        orchestrator.attach_scheduler(scheduler)
        scheduler.start()

    yield

    # 先通知进行中的周期停止，再停调度
    orchestrator.shutdown()
    if scheduler is not None:
        scheduler.shutdown()


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="外部预订渠道同步与对账服务",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(integrations.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "description": "外部预订渠道同步与对账服务"
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
